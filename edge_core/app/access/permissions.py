"""
Permission tokens and the canonical permission-matching function.

A permission string ending in ``*`` is a prefix grant: ``tenant:*`` grants
every permission starting with ``tenant:`` and a lone ``*`` grants everything.
Any other string must match exactly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

WILDCARD = "*"


class TokenKind(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"


@dataclass(frozen=True)
class PermissionToken:
    """Normalized permission entry."""
    kind: TokenKind
    value: str

    def grants(self, required: str) -> bool:
        if self.kind == TokenKind.EXACT:
            return self.value == required
        return required.startswith(self.value)

    def __str__(self) -> str:
        if self.kind == TokenKind.PREFIX:
            return f"{self.value}{WILDCARD}"
        return self.value


def parse_permission(permission: str) -> PermissionToken:
    value = permission.strip()
    if value.endswith(WILDCARD):
        return PermissionToken(TokenKind.PREFIX, value[:-1])
    return PermissionToken(TokenKind.EXACT, value)


def normalize_permissions(permissions: Iterable[str]) -> FrozenSet[PermissionToken]:
    """Parse and de-duplicate; blank entries are dropped."""
    return frozenset(parse_permission(p) for p in permissions if p and p.strip())


def has_permission(permissions: Iterable, required: str) -> bool:
    """Exact match, or any prefix grant whose prefix starts ``required``.

    Accepts raw permission strings or already-normalized tokens.
    """
    for entry in permissions:
        token = entry if isinstance(entry, PermissionToken) else parse_permission(entry)
        if token.grants(required):
            return True
    return False


# Static role table
ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({"*"}),
    "owner": frozenset({"tenant:*"}),
    "manager": frozenset({"tenant:read", "tenant:write", "tenant:members"}),
    "member": frozenset({"tenant:read"}),
    "viewer": frozenset({"tenant:read"}),
}

# Workflow type -> permission required to initiate it
WORKFLOW_PERMISSIONS: Dict[str, str] = {
    "provision-tenant": "tenant:provision",
    "migrate-tenant": "tenant:migrate",
    "bulk-invite-users": "tenant:members:invite",
    "bulk-update-memberships": "tenant:members:manage",
    "tenant-backup": "tenant:backup",
    "tenant-restore": "tenant:restore",
    "tenant-analytics-export": "tenant:analytics:export",
    "tenant-configuration-backup": "tenant:config:backup",
}

CANCEL_WORKFLOW_PERMISSION = "workflow:cancel"


def expand_roles(roles: Iterable[str]) -> FrozenSet[str]:
    """Role names to permissions; unknown roles contribute nothing."""
    expanded = set()
    for role in roles:
        expanded |= ROLE_PERMISSIONS.get(role.lower(), frozenset())
    return frozenset(expanded)


def effective_permissions(
    direct: Iterable[str] = (),
    roles: Iterable[str] = (),
    membership: Iterable[str] = (),
) -> FrozenSet[str]:
    """direct ∪ expand(roles) ∪ membership-specific permissions."""
    permissions = {p.strip() for p in direct if p and p.strip()}
    permissions |= expand_roles(roles)
    permissions |= {p.strip() for p in membership if p and p.strip()}
    return frozenset(permissions)


def workflow_permission(workflow_type: str) -> Optional[str]:
    return WORKFLOW_PERMISSIONS.get(workflow_type)
