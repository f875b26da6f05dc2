"""
Long-running operations: models, proxy and status streaming.
"""

from .models import InitiateResult, OperationHandle, OperationProgress, OperationRecord, OperationState
from .proxy import OperationProxy
from .streaming import SSE_HEADERS, OperationSubscription, StreamError, format_sse, stream_operation_events

__all__ = [
    "InitiateResult",
    "OperationHandle",
    "OperationProgress",
    "OperationProxy",
    "OperationRecord",
    "OperationState",
    "OperationSubscription",
    "SSE_HEADERS",
    "StreamError",
    "format_sse",
    "stream_operation_events",
]
