"""
Cache invalidation contracts.

Each mutating operation returns an ``Invalidation`` naming the exact keys and
key patterns it invalidates; the cache manager applies it. The catalogue below
is the single place where invalidation policy lives.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .keys import CacheKeys


@dataclass(frozen=True)
class Invalidation:
    """Keys and glob patterns to delete, plus the reason for auditing."""

    reason: str
    keys: Tuple[str, ...] = field(default_factory=tuple)
    patterns: Tuple[str, ...] = field(default_factory=tuple)

    def merge(self, other: "Invalidation") -> "Invalidation":
        return Invalidation(
            reason=f"{self.reason}+{other.reason}",
            keys=tuple(dict.fromkeys(self.keys + other.keys)),
            patterns=tuple(dict.fromkeys(self.patterns + other.patterns)),
        )

    def is_empty(self) -> bool:
        return not self.keys and not self.patterns


class InvalidationContract:
    """Catalogue of invalidations declared by mutating operations."""

    def __init__(self, keys: CacheKeys):
        self.keys = keys

    def tenant_updated(self, tenant_id: str) -> Invalidation:
        """Tenant record changed: the record and everything derived from it.

        Users' tenant lists embed the record, so every cached list goes too.
        """
        return Invalidation(
            reason="tenant_updated",
            keys=(
                self.keys.tenant(tenant_id),
                self.keys.memberships(tenant_id),
                self.keys.configuration(tenant_id),
            ),
            patterns=(
                self.keys.tenant_contexts(tenant_id),
                self.keys.analytics_all(tenant_id),
                self.keys.all_user_tenants(),
            ),
        )

    def tenant_suspended(self, tenant_id: str) -> Invalidation:
        return Invalidation(
            reason="tenant_suspended",
            keys=(self.keys.tenant(tenant_id),),
            patterns=(self.keys.tenant_contexts(tenant_id), self.keys.all_user_tenants()),
        )

    def membership_changed(self, tenant_id: str, user_id: Optional[str] = None) -> Invalidation:
        """A single membership (or all, when no user is given) changed."""
        keys = [self.keys.memberships(tenant_id)]
        patterns = []
        if user_id:
            keys.append(self.keys.tenant_context(tenant_id, user_id))
            keys.append(self.keys.user_tenants(user_id))
        else:
            patterns.append(self.keys.tenant_contexts(tenant_id))
        return Invalidation(reason="membership_changed", keys=tuple(keys), patterns=tuple(patterns))

    def members_bulk_changed(self, tenant_id: str) -> Invalidation:
        return Invalidation(
            reason="members_bulk_changed",
            keys=(self.keys.memberships(tenant_id), self.keys.invitations(tenant_id)),
            patterns=(self.keys.tenant_contexts(tenant_id), self.keys.all_user_tenants()),
        )

    def invitations_changed(self, tenant_id: str) -> Invalidation:
        return Invalidation(
            reason="invitations_changed",
            keys=(self.keys.invitations(tenant_id), self.keys.memberships(tenant_id)),
        )

    def configuration_changed(self, tenant_id: str) -> Invalidation:
        return Invalidation(
            reason="configuration_changed",
            keys=(self.keys.configuration(tenant_id), self.keys.tenant(tenant_id)),
            patterns=(self.keys.tenant_contexts(tenant_id),),
        )

    def tenant_switched(self, user_id: str) -> Invalidation:
        """Switching the active tenant only touches the user's tenant list."""
        return Invalidation(reason="tenant_switched", keys=(self.keys.user_tenants(user_id),))

    def admin_flush(self, tenant_id: str) -> Invalidation:
        return Invalidation(reason="admin_flush", patterns=(self.keys.tenant_scope(tenant_id),))

    def operation_cancelled(self, operation_id: str) -> Invalidation:
        return Invalidation(reason="operation_cancelled", keys=(self.keys.operation(operation_id),))

    def analytics_cleared(self, tenant_id: str) -> Invalidation:
        return Invalidation(reason="analytics_cleared", patterns=(self.keys.analytics_all(tenant_id),))

    def for_workflow(self, workflow_type: str, tenant_id: str) -> Optional[Invalidation]:
        """What a tenant workflow invalidates once the engine has accepted it."""
        if workflow_type == "bulk-invite-users":
            return self.invitations_changed(tenant_id)
        if workflow_type == "bulk-update-memberships":
            return self.members_bulk_changed(tenant_id)
        if workflow_type == "migrate-tenant":
            return self.tenant_updated(tenant_id)
        if workflow_type == "tenant-restore":
            return self.admin_flush(tenant_id)
        return None
