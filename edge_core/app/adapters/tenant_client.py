"""
Tenant Authority client: tenant records, memberships, access checks and analytics.
"""

from typing import Any, Dict, List, Optional

import httpx

from edge_shared.errors import (
    AccessDeniedError,
    PermissionDeniedError,
    TenantNotFoundError,
    ValidationError,
)
from ..tenancy.models import AccessCheck, Tenant, TenantMembership
from .base import AuthorityClient


def _items(body: Any, *names: str) -> List[Dict[str, Any]]:
    """Accept a bare list or a list nested under one of ``names``."""
    if isinstance(body, list):
        return body
    for name in names:
        if isinstance(body, dict) and isinstance(body.get(name), list):
            return body[name]
    return []


class TenantAuthorityClient(AuthorityClient):
    """System of record for tenants. Read-mostly; writes go through ``update_tenant``."""

    service_name = "tenant_authority"

    def _raise_for_status(self, response: httpx.Response, tenant_id: str) -> None:
        if response.status_code == 404:
            raise TenantNotFoundError(tenant_id)
        if response.status_code in (400, 422):
            raise ValidationError("Tenant Authority rejected the request", details=_error_details(response))
        if response.status_code == 403:
            raise PermissionDeniedError(
                "TENANT_ACCESS_DENIED",
                f"Tenant Authority denied the request for tenant {tenant_id}",
                {"tenantId": tenant_id},
            )
        if response.status_code >= 400:
            raise ValidationError(
                f"Tenant Authority returned HTTP {response.status_code}",
                details=_error_details(response),
            )

    async def get_tenant(self, tenant_id: str, token: Optional[str] = None) -> Tenant:
        response = await self.request("GET", f"/api/v1/tenants/{tenant_id}", idempotent=True, token=token)
        self._raise_for_status(response, tenant_id)
        return Tenant.model_validate(self.payload(response))

    async def update_tenant(self, tenant_id: str, updates: Dict[str, Any], token: Optional[str] = None) -> Tenant:
        response = await self.request(
            "PUT",
            f"/api/v1/tenants/{tenant_id}",
            json=updates,
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, tenant_id)
        return Tenant.model_validate(self.payload(response))

    async def validate_access(self, tenant_id: str, user_id: str, token: Optional[str] = None) -> AccessCheck:
        """Ask whether ``user_id`` may access ``tenant_id``.

        A 403 is an explicit denial rather than an error.
        """
        response = await self.request(
            "GET",
            f"/api/v1/tenants/{tenant_id}/access/{user_id}",
            idempotent=True,
            token=token,
        )
        if response.status_code == 403:
            return AccessCheck(has_access=False, reason="denied by tenant authority")
        self._raise_for_status(response, tenant_id)
        return AccessCheck.model_validate(self.payload(response))

    async def get_membership(self, tenant_id: str, user_id: str, token: Optional[str] = None) -> TenantMembership:
        response = await self.request(
            "GET",
            f"/api/v1/users/{user_id}/tenants/{tenant_id}/context",
            idempotent=True,
            token=token,
            tenant_id=tenant_id,
        )
        if response.status_code == 404:
            raise AccessDeniedError(tenant_id, user_id, "no membership")
        self._raise_for_status(response, tenant_id)

        body = self.payload(response)
        membership = dict(body.get("membership", body)) if isinstance(body, dict) else {}
        membership.setdefault("tenantId", tenant_id)
        membership.setdefault("userId", user_id)
        return TenantMembership.model_validate(membership)

    async def list_memberships(self, tenant_id: str, page: int = 1, limit: int = 50,
                               token: Optional[str] = None) -> List[TenantMembership]:
        response = await self.request(
            "GET",
            f"/api/v1/tenants/{tenant_id}/memberships",
            params={"page": page, "limit": limit},
            idempotent=True,
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, tenant_id)
        items = _items(self.payload(response), "memberships", "items")
        return [TenantMembership.model_validate({"tenantId": tenant_id, **item}) for item in items]

    async def list_user_tenants(self, user_id: str, token: Optional[str] = None) -> List[Tenant]:
        response = await self.request("GET", f"/api/v1/users/{user_id}/tenants", idempotent=True, token=token)
        if response.status_code == 404:
            return []
        self._raise_for_status(response, user_id)
        return [Tenant.model_validate(item) for item in _items(self.payload(response), "tenants", "items")]

    async def get_analytics(self, tenant_id: str, period: str, token: Optional[str] = None) -> Dict[str, Any]:
        response = await self.request(
            "GET",
            f"/api/v1/tenants/{tenant_id}/analytics",
            params={"period": period},
            idempotent=True,
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, tenant_id)
        return self.payload(response)

    async def get_configuration(self, tenant_id: str, token: Optional[str] = None) -> Dict[str, Any]:
        response = await self.request(
            "GET",
            f"/api/v1/tenants/{tenant_id}/configuration",
            idempotent=True,
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, tenant_id)
        return self.payload(response)

    async def update_configuration(self, tenant_id: str, configuration: Dict[str, Any],
                                   token: Optional[str] = None) -> Dict[str, Any]:
        response = await self.request(
            "PUT",
            f"/api/v1/tenants/{tenant_id}/configuration",
            json=configuration,
            token=token,
            tenant_id=tenant_id,
        )
        self._raise_for_status(response, tenant_id)
        return self.payload(response)

    async def switch_tenant(self, user_id: str, target_tenant_id: str,
                            current_tenant_id: Optional[str] = None,
                            token: Optional[str] = None) -> Dict[str, Any]:
        """Make ``target_tenant_id`` the user's active tenant."""
        response = await self.request(
            "POST",
            f"/api/v1/users/{user_id}/active-tenant",
            json={"targetTenantId": target_tenant_id, "currentTenantId": current_tenant_id},
            token=token,
            tenant_id=target_tenant_id,
        )
        if response.status_code == 403:
            raise AccessDeniedError(target_tenant_id, user_id, "switch refused by tenant authority")
        self._raise_for_status(response, target_tenant_id)
        return self.payload(response)


def _error_details(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"statusCode": response.status_code}
    details = {"statusCode": response.status_code}
    if isinstance(body, dict):
        details["upstream"] = body.get("error") or body.get("message") or body
    return details
