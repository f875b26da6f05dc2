"""
Access validation for a (tenant, principal) pair.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, TYPE_CHECKING

from pydantic import ValidationError as ModelValidationError

from edge_shared.errors import (
    AccessDeniedError,
    AuthenticationError,
    InsufficientPermissionsError,
    InsufficientRoleError,
    TenantRequiredError,
)
from edge_shared.logging import get_logger, set_user_context
from ..caching.cache_manager import CacheManager
from ..tenancy.models import (
    MembershipStatus,
    Principal,
    ResolvedTenant,
    Tenant,
    TenantContext,
)
from .permissions import PermissionToken, effective_permissions, has_permission, normalize_permissions

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.tenant_client import TenantAuthorityClient


@dataclass
class AuthorizedContext:
    """A principal's verified view of one tenant."""
    tenant: Tenant
    principal: Principal
    context: TenantContext
    cache_hit: bool = False
    tokens: FrozenSet[PermissionToken] = field(default_factory=frozenset)

    def __post_init__(self):
        if not self.tokens:
            self.tokens = normalize_permissions(self.context.permissions)

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    @property
    def user_id(self) -> str:
        return self.principal.id

    @property
    def roles(self):
        return self.context.membership.roles

    def has_permission(self, permission: str) -> bool:
        return has_permission(self.tokens, permission)


class AccessValidator:
    """Computes, caches and checks effective permissions within a tenant."""

    def __init__(self, cache: CacheManager, tenant_client: "TenantAuthorityClient"):
        self.cache = cache
        self.tenant_client = tenant_client
        self.logger = get_logger("edge.access_validator")

    async def authorize(self, resolved: ResolvedTenant, principal: Optional[Principal]) -> AuthorizedContext:
        """Verify the principal may act within the resolved tenant.

        The cached context is populated only after the Tenant Authority has
        granted access, never speculatively.
        """
        if principal is None:
            raise AuthenticationError("Authentication is required for tenant access")
        if not resolved.is_resolved:
            raise TenantRequiredError()

        tenant = resolved.tenant
        set_user_context(user_id=principal.id, tenant_id=tenant.id)

        context = await self._cached_context(tenant.id, principal.id)
        if context is not None:
            return AuthorizedContext(tenant=tenant, principal=principal, context=context, cache_hit=True)

        check = await self.tenant_client.validate_access(tenant.id, principal.id)
        if not check.has_access:
            self.logger.warning("Tenant access denied", tenant_id=tenant.id, user_id=principal.id, reason=check.reason)
            raise AccessDeniedError(tenant.id, principal.id, check.reason)

        membership = await self.tenant_client.get_membership(tenant.id, principal.id)
        if membership.status != MembershipStatus.ACTIVE:
            raise AccessDeniedError(tenant.id, principal.id, f"membership {membership.status.value}")

        permissions = effective_permissions(
            direct=principal.permissions,
            roles=list(principal.roles) + list(membership.roles),
            membership=list(membership.permissions) + list(check.permissions),
        )
        context = TenantContext(
            tenant_id=tenant.id,
            user_id=principal.id,
            membership=membership,
            permissions=sorted(permissions),
            quotas=tenant.quotas,
            features=tenant.features,
        )
        await self.cache.set_tenant_context(tenant.id, principal.id, context.to_cache())

        self.logger.info(
            "Tenant access granted",
            tenant_id=tenant.id,
            user_id=principal.id,
            roles=membership.roles,
        )
        return AuthorizedContext(tenant=tenant, principal=principal, context=context)

    async def _cached_context(self, tenant_id: str, user_id: str) -> Optional[TenantContext]:
        cached = await self.cache.get_tenant_context(tenant_id, user_id)
        if cached is None:
            return None
        try:
            context = TenantContext.model_validate(cached)
        except ModelValidationError as exc:
            self.logger.warning("Discarding malformed cached tenant context", tenant_id=tenant_id, error=str(exc))
            return None
        # Keys are tenant-scoped; a mismatch means a corrupt entry.
        if context.tenant_id != tenant_id or context.user_id != user_id:
            self.logger.error("Cached tenant context does not match its key", tenant_id=tenant_id, user_id=user_id)
            return None
        return context

    @staticmethod
    def require_permission(ctx: AuthorizedContext, permission: str) -> None:
        if not ctx.has_permission(permission):
            raise InsufficientPermissionsError(permission)

    @staticmethod
    def require_role(ctx: AuthorizedContext, role: str) -> None:
        if role not in ctx.roles:
            raise InsufficientRoleError(role)

    async def invalidate(self, tenant_id: str, user_id: Optional[str] = None) -> int:
        """Drop one user's context, or every context in the tenant."""
        return await self.cache.apply(self.cache.contract.membership_changed(tenant_id, user_id))
