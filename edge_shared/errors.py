"""
Shared error handling for edge services.

Every failure that reaches a client is rendered with the same envelope::

    {"error": {"code": ..., "message": ..., "details": ..., "timestamp": ..., "requestId": ...}}
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    """Inner error payload."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: str
    request_id: Optional[str] = Field(default=None, serialization_alias="requestId")


class ErrorEnvelope(BaseModel):
    """Standard error response format."""

    error: ErrorBody

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EdgeCoreException(Exception):
    """Base exception for edge services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers: Dict[str, str] = {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorEnvelope:
        """Convert to error envelope."""
        return ErrorEnvelope(
            error=ErrorBody(
                code=self.code,
                message=self.message,
                details=self.details or None,
                timestamp=datetime.now(timezone.utc).isoformat(),
                request_id=request_id,
            )
        )


class AuthenticationError(EdgeCoreException):
    """Missing, invalid or expired credential."""

    status_code = 401

    def __init__(
        self,
        message: str = "Authentication is required",
        details: Optional[Dict[str, Any]] = None,
        code: str = "AUTHENTICATION_REQUIRED",
    ):
        super().__init__(code, message, details)


class ValidationError(EdgeCoreException):
    """Malformed request."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


# Tenant errors

class TenantError(EdgeCoreException):
    """Base class for tenant resolution failures."""

    def __init__(self, code: str, message: str, tenant_id: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.tenant_id = tenant_id
        payload = dict(details or {})
        if tenant_id:
            payload.setdefault("tenantId", tenant_id)
        super().__init__(code, message, payload)


class TenantNotFoundError(TenantError):
    status_code = 404

    def __init__(self, tenant_id: str):
        super().__init__("TENANT_NOT_FOUND", f"Tenant not found: {tenant_id}", tenant_id)


class TenantSuspendedError(TenantError):
    status_code = 403

    def __init__(self, tenant_id: str):
        super().__init__("TENANT_SUSPENDED", f"Tenant is suspended: {tenant_id}", tenant_id)


class TenantInactiveError(TenantError):
    status_code = 403

    def __init__(self, tenant_id: str, status: str):
        super().__init__(
            "TENANT_INACTIVE",
            f"Tenant is not active: {status}",
            tenant_id,
            {"status": status},
        )


class TenantRequiredError(TenantError):
    status_code = 400

    def __init__(self):
        super().__init__("TENANT_REQUIRED", "Tenant context is required for this endpoint")


# Permission errors

class PermissionDeniedError(EdgeCoreException):
    """Base class for authorization failures."""

    status_code = 403


class AccessDeniedError(PermissionDeniedError):

    def __init__(self, tenant_id: str, user_id: str, reason: Optional[str] = None):
        details: Dict[str, Any] = {"tenantId": tenant_id, "userId": user_id}
        if reason:
            details["reason"] = reason
        super().__init__(
            "TENANT_ACCESS_DENIED",
            f"Access denied to tenant {tenant_id}",
            details,
        )


class InsufficientPermissionsError(PermissionDeniedError):

    def __init__(self, permission: str):
        self.permission = permission
        super().__init__(
            "INSUFFICIENT_PERMISSIONS",
            f"Permission required: {permission}",
            {"requiredPermission": permission},
        )


class InsufficientRoleError(PermissionDeniedError):

    def __init__(self, role: str):
        self.role = role
        super().__init__(
            "INSUFFICIENT_ROLE",
            f"Tenant role required: {role}",
            {"requiredRole": role},
        )


class RateLimitError(EdgeCoreException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, tier: str, retry_after: int, details: Optional[Dict[str, Any]] = None):
        self.tier = tier
        self.retry_after = retry_after
        payload = {"tier": tier, "retryAfter": retry_after}
        payload.update(details or {})
        super().__init__(
            f"{tier.upper()}_RATE_LIMIT_EXCEEDED",
            f"{tier.capitalize()} rate limit exceeded",
            payload,
        )
        self.headers["Retry-After"] = str(retry_after)


# Dependency errors

class DependencyError(EdgeCoreException):
    """A mandatory external collaborator failed."""

    def __init__(self, code: str, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.service = service
        payload = {"service": service}
        payload.update(details or {})
        super().__init__(code, f"{service}: {message}", payload)


class DependencyTimeoutError(DependencyError):
    status_code = 504

    def __init__(self, service: str, message: str = "request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEPENDENCY_TIMEOUT", service, message, details)


class DependencyUnavailableError(DependencyError):
    status_code = 503

    def __init__(self, service: str, message: str = "service unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEPENDENCY_UNAVAILABLE", service, message, details)


class OperationNotFoundError(EdgeCoreException):
    status_code = 404

    def __init__(self, operation_id: str):
        super().__init__(
            "OPERATION_NOT_FOUND",
            f"Operation not found: {operation_id}",
            {"operationId": operation_id},
        )
