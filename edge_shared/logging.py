"""
Structured JSON logging with per-request correlation fields.

Every event carries the request id, user, tenant and endpoint of the request
being processed, taken from context variables so concurrent requests never
mix their fields.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

_CORRELATION: Dict[str, ContextVar] = {
    field: ContextVar(field, default=None)
    for field in ("request_id", "user_id", "tenant_id", "endpoint")
}

REDACTED_KEYS = frozenset({"authorization", "token", "access_token", "password", "secret", "api_key"})
REDACTED = "[REDACTED]"


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog for a service; output is one JSON object per line."""

    def bind_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            bind_service,
            add_correlation_context,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for field, var in _CORRELATION.items():
        value = var.get()
        if value:
            event_dict.setdefault(field, value)
    return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in REDACTED_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Credentials never reach the log stream, including inside nested dicts."""
    return _redact(event_dict)


def set_request_id(request_id: Optional[str] = None) -> str:
    request_id = request_id or str(uuid.uuid4())
    _CORRELATION["request_id"].set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return _CORRELATION["request_id"].get()


def set_user_context(user_id: Optional[str] = None, tenant_id: Optional[str] = None):
    if user_id:
        _CORRELATION["user_id"].set(user_id)
    if tenant_id:
        _CORRELATION["tenant_id"].set(tenant_id)


def set_endpoint(endpoint: Optional[str]):
    _CORRELATION["endpoint"].set(endpoint)


def get_log_context() -> Dict[str, Optional[str]]:
    """Snapshot of the correlation fields, attached to error audit entries."""
    return {field: var.get() for field, var in _CORRELATION.items()}


def clear_context():
    for var in _CORRELATION.values():
        var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
