"""
Operation status streaming.

A subscription owns one asyncio task that polls on a fixed interval and
forwards every record to a single consumer. It stops on a terminal state, on
``close()``, or when the consumer's connection goes away, and never outlives
the request that created it.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TYPE_CHECKING, Union

from edge_shared.errors import EdgeCoreException
from edge_shared.logging import get_logger
from .models import OperationRecord, OperationState

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from edge_shared.metrics import MetricsCollector

logger = get_logger("edge.operation_stream")

_END = object()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_EVENT_NAMES = {
    OperationState.RUNNING: "progress",
    OperationState.COMPLETED: "completed",
    OperationState.FAILED: "failed",
    OperationState.CANCELLED: "cancelled",
}


class StreamError:
    """Poll failure forwarded to the consumer before the stream ends."""

    def __init__(self, error: EdgeCoreException):
        self.code = error.code
        self.message = error.message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class OperationSubscription:
    """Cancellable polling loop bound to one consumer."""

    def __init__(
        self,
        operation_id: str,
        poll: Callable[[], Awaitable[OperationRecord]],
        *,
        interval: float = 2.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.operation_id = operation_id
        self.interval = interval
        self.metrics = metrics
        self._poll = poll
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "OperationSubscription":
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"operation-stream:{self.operation_id}")
            if self.metrics:
                self.metrics.adjust_gauge("active_operation_streams", 1)
        return self

    async def _run(self) -> None:
        try:
            while True:
                try:
                    record = await self._poll()
                except EdgeCoreException as exc:
                    logger.error("Operation stream poll failed", operation_id=self.operation_id, error=exc.message)
                    self._queue.put_nowait(StreamError(exc))
                    return

                self._queue.put_nowait(record)
                if record.is_terminal:
                    logger.info(
                        "Operation stream reached terminal state",
                        operation_id=self.operation_id,
                        state=record.state.value,
                    )
                    return
                await asyncio.sleep(self.interval)
        finally:
            self._queue.put_nowait(_END)

    async def close(self) -> None:
        """Stop polling and release the task; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        task = self._task
        if task is not None:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            if self.metrics:
                self.metrics.adjust_gauge("active_operation_streams", -1)
        logger.debug("Operation stream closed", operation_id=self.operation_id)

    def __aiter__(self) -> "OperationSubscription":
        self.start()
        return self

    async def __anext__(self) -> Union[OperationRecord, StreamError]:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "OperationSubscription":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def format_sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def render_event(item: Union[OperationRecord, StreamError]) -> str:
    if isinstance(item, StreamError):
        return format_sse("error", {"error": item.to_dict()})
    return format_sse(_EVENT_NAMES[item.state], item.model_dump(mode="json", by_alias=True))


async def stream_operation_events(
    subscription: OperationSubscription,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Render a subscription as SSE frames.

    The connection is checked once per received update, so a disconnect is
    noticed within one poll interval.
    """
    try:
        async for item in subscription:
            if is_disconnected is not None and await is_disconnected():
                logger.info("Operation stream client disconnected", operation_id=subscription.operation_id)
                break
            yield render_event(item)
    finally:
        await subscription.close()
