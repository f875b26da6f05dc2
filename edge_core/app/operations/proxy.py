"""
Long-running operation proxy.

Status caching policy: terminal records never change and are cached under the
long ``operation_terminal`` class; running records are cached for a few
seconds to absorb bursts of near-simultaneous status reads. Waits and streams
read the engine on every tick so they see a terminal state within one poll
interval; each read still rewrites the cached record.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from pydantic import ValidationError as ModelValidationError

from edge_shared.logging import get_logger
from ..caching.cache_manager import CacheManager
from ..caching.invalidation import Invalidation
from .models import InitiateResult, OperationHandle, OperationRecord
from .streaming import OperationSubscription

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from edge_shared.metrics import MetricsCollector
    from ..adapters.workflow_client import WorkflowClient


class OperationProxy:
    """Initiates and observes operations on the workflow engine."""

    def __init__(
        self,
        workflow_client: "WorkflowClient",
        cache: CacheManager,
        *,
        metrics: Optional["MetricsCollector"] = None,
        poll_interval: float = 2.0,
        sync_wait: float = 5.0,
        route_prefix: str = "/api/workflows",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.workflow_client = workflow_client
        self.cache = cache
        self.metrics = metrics
        self.poll_interval = poll_interval
        self.sync_wait = sync_wait
        self.route_prefix = route_prefix.rstrip("/")
        self._sleep = sleep
        self._clock = clock
        self.logger = get_logger("edge.operation_proxy")

    def handle_for(self, operation_id: str, estimated_duration: Optional[int] = None) -> OperationHandle:
        return OperationHandle(
            operation_id=operation_id,
            status_url=f"{self.route_prefix}/{operation_id}/status",
            stream_url=f"{self.route_prefix}/{operation_id}/stream",
            estimated_duration=estimated_duration,
        )

    async def initiate(
        self,
        workflow_type: str,
        payload: Dict[str, Any],
        synchronous: bool = False,
        *,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        token: Optional[str] = None,
    ) -> InitiateResult:
        """Start an operation.

        With ``synchronous`` the proxy waits up to ``sync_wait`` seconds for a
        terminal state and returns the result directly; otherwise, or when the
        wait elapses, the caller gets a polling handle.
        """
        response = await self.workflow_client.initiate(
            workflow_type,
            payload,
            tenant_id=tenant_id,
            user_id=user_id,
            synchronous=synchronous,
            token=token,
        )

        if response.get("type") == "sync":
            return InitiateResult(synchronous=True, result=response.get("data"))

        operation_id = response.get("operationId")
        handle = self.handle_for(operation_id, response.get("estimatedDuration"))
        self.logger.info(
            "Operation initiated",
            operation_id=operation_id,
            workflow_type=workflow_type,
            synchronous=synchronous,
        )

        if synchronous:
            record = await self._wait_for_terminal(operation_id, token, tenant_id)
            if record is not None:
                return InitiateResult(synchronous=True, result=record.result, record=record)
            self.logger.info("Synchronous wait elapsed, returning handle", operation_id=operation_id)

        return InitiateResult(synchronous=False, handle=handle)

    async def _wait_for_terminal(
        self,
        operation_id: str,
        token: Optional[str],
        tenant_id: Optional[str],
    ) -> Optional[OperationRecord]:
        deadline = self._clock() + self.sync_wait
        while True:
            record = await self.refresh(operation_id, token, tenant_id)
            if record.is_terminal:
                return record
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            await self._sleep(min(self.poll_interval, remaining))

    async def get_status(
        self,
        operation_id: str,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> OperationRecord:
        """Cached status read."""
        cached = await self.cache.get_operation(operation_id)
        if cached is not None:
            try:
                record = OperationRecord.model_validate(cached)
            except ModelValidationError as exc:
                self.logger.warning("Discarding malformed cached operation", operation_id=operation_id, error=str(exc))
            else:
                self._count_poll("cache")
                return record

        return await self.refresh(operation_id, token, tenant_id)

    async def refresh(
        self,
        operation_id: str,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> OperationRecord:
        """Read the engine and replace the cached record."""
        record = await self.workflow_client.get_status(operation_id, token=token, tenant_id=tenant_id)
        self._count_poll("engine")
        await self.cache.set_operation(operation_id, record.to_cache(), terminal=record.is_terminal)
        return record

    async def cancel(
        self,
        operation_id: str,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Invalidation:
        """Forward cancellation and drop the cached status immediately."""
        await self.workflow_client.cancel(operation_id, token=token, tenant_id=tenant_id)
        invalidation = self.cache.contract.operation_cancelled(operation_id)
        await self.cache.apply(invalidation)
        self.logger.info("Operation cancelled", operation_id=operation_id)
        return invalidation

    def subscribe(
        self,
        operation_id: str,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> OperationSubscription:
        """A subscription reading the engine every ``poll_interval`` seconds."""

        async def poll() -> OperationRecord:
            return await self.refresh(operation_id, token, tenant_id)

        return OperationSubscription(operation_id, poll, interval=self.poll_interval, metrics=self.metrics)

    def _count_poll(self, origin: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("operation_polls_total", origin=origin)
