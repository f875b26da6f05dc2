"""
Access control: permission matching and tenant access validation.
"""

from .permissions import (
    CANCEL_WORKFLOW_PERMISSION,
    ROLE_PERMISSIONS,
    WORKFLOW_PERMISSIONS,
    PermissionToken,
    TokenKind,
    effective_permissions,
    expand_roles,
    has_permission,
    normalize_permissions,
    parse_permission,
    workflow_permission,
)
from .validator import AccessValidator, AuthorizedContext

__all__ = [
    "AccessValidator",
    "AuthorizedContext",
    "CANCEL_WORKFLOW_PERMISSION",
    "PermissionToken",
    "ROLE_PERMISSIONS",
    "TokenKind",
    "WORKFLOW_PERMISSIONS",
    "effective_permissions",
    "expand_roles",
    "has_permission",
    "normalize_permissions",
    "parse_permission",
    "workflow_permission",
]
