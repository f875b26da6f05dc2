"""
Workflow engine client.
"""

from typing import Any, Dict, Optional

import httpx

from edge_shared.errors import EdgeCoreException, OperationNotFoundError, ValidationError
from ..operations.models import OperationRecord
from .base import AuthorityClient


class WorkflowClient(AuthorityClient):
    """Initiates, observes and cancels operations; never mutates engine state otherwise."""

    service_name = "workflow_engine"

    async def initiate(
        self,
        workflow_type: str,
        payload: Dict[str, Any],
        *,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        synchronous: bool = False,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Start an operation; the engine answers ``type: sync`` or ``type: async``."""
        response = await self.request(
            "POST",
            f"/api/v1/workflows/{workflow_type}",
            json={
                "tenantId": tenant_id,
                "userId": user_id,
                "data": payload,
                "options": {"synchronous": synchronous},
            },
            token=token,
            tenant_id=tenant_id,
        )
        if response.status_code in (400, 422):
            raise ValidationError(
                f"Workflow engine rejected {workflow_type}",
                details={"workflowType": workflow_type, "statusCode": response.status_code},
            )
        if response.status_code >= 400:
            raise EdgeCoreException(
                "WORKFLOW_INITIATION_FAILED",
                f"Workflow engine refused {workflow_type}",
                {"workflowType": workflow_type, "statusCode": response.status_code},
                status_code=502,
            )
        return self.payload(response)

    async def get_status(
        self,
        operation_id: str,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> OperationRecord:
        response = await self.request(
            "GET",
            f"/api/v1/workflows/{operation_id}/status",
            idempotent=True,
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, operation_id)
        body = dict(self.payload(response))
        body.setdefault("operationId", operation_id)
        return OperationRecord.model_validate(body)

    async def cancel(self, operation_id: str, token: Optional[str] = None, tenant_id: Optional[str] = None) -> None:
        response = await self.request(
            "POST",
            f"/api/v1/workflows/{operation_id}/cancel",
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, operation_id)

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation_id: str) -> None:
        if response.status_code == 404:
            raise OperationNotFoundError(operation_id)
        if response.status_code == 409:
            raise EdgeCoreException(
                "OPERATION_NOT_CANCELLABLE",
                f"Operation already finished: {operation_id}",
                {"operationId": operation_id},
                status_code=409,
            )
        if response.status_code >= 400:
            raise EdgeCoreException(
                "WORKFLOW_REQUEST_FAILED",
                f"Workflow engine returned HTTP {response.status_code}",
                {"operationId": operation_id, "statusCode": response.status_code},
                status_code=502,
            )
