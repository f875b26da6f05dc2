"""
Tenant resolution.

Extracts the tenant identifier from a request, loads the tenant record through
the cache, and applies the status gate on every request (cache hits included)
so a suspension takes effect within one tenant TTL.
"""

import ipaddress
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Tuple, TYPE_CHECKING

from pydantic import ValidationError as ModelValidationError
from starlette.requests import Request

from edge_shared.errors import (
    TenantInactiveError,
    TenantSuspendedError,
    ValidationError,
)
from edge_shared.logging import get_logger, set_user_context
from ..caching.cache_manager import CacheManager
from .models import Principal, ResolvedTenant, Tenant, TenantSource, TenantStatus

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from edge_shared.metrics import MetricsCollector
    from ..adapters.tenant_client import TenantAuthorityClient

TENANT_HEADER = "x-tenant-id"
TENANT_PATH_PARAMS = ("tenant_id", "tenantId")
TENANT_QUERY_PARAMS = ("tenantId", "tenant_id")
TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


@dataclass(frozen=True)
class RequestInfo:
    """The parts of an inbound request that can carry a tenant identifier."""

    headers: Dict[str, str] = field(default_factory=dict)
    path_params: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, str] = field(default_factory=dict)
    host: Optional[str] = None

    @classmethod
    def build(
        cls,
        headers: Optional[Mapping[str, str]] = None,
        path_params: Optional[Mapping[str, str]] = None,
        query_params: Optional[Mapping[str, str]] = None,
        host: Optional[str] = None,
    ) -> "RequestInfo":
        normalized = {k.lower(): v for k, v in (headers or {}).items()}
        return cls(
            headers=normalized,
            path_params=dict(path_params or {}),
            query_params=dict(query_params or {}),
            host=host or normalized.get("host"),
        )

    @classmethod
    def from_request(cls, request: Request) -> "RequestInfo":
        return cls.build(
            headers=request.headers,
            path_params=request.path_params,
            query_params=request.query_params,
            host=request.headers.get("host"),
        )


def _first(mapping: Mapping[str, str], names: Iterable[str]) -> Optional[str]:
    for name in names:
        value = mapping.get(name)
        if value:
            return value.strip()
    return None


def extract_subdomain(host: Optional[str], reserved: Iterable[str] = ("www", "api")) -> Optional[str]:
    """``acme.example.com`` -> ``acme``; IPs, bare domains and reserved labels yield ``None``."""
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower()
    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass

    parts = hostname.split(".")
    if len(parts) < 3 or not parts[0]:
        return None
    if parts[0] in set(reserved):
        return None
    return parts[0]


def tenant_headers(tenant: Tenant) -> Dict[str, str]:
    """Diagnostic response headers describing the resolved tenant."""
    return {
        "X-Tenant-ID": tenant.id,
        "X-Tenant-Name": tenant.label,
        "X-Tenant-Tier": tenant.subscription_tier.value,
    }


class TenantResolver:
    """Resolves and validates the tenant a request belongs to."""

    def __init__(
        self,
        cache: CacheManager,
        tenant_client: "TenantAuthorityClient",
        *,
        reserved_subdomains: Iterable[str] = ("www", "api"),
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.tenant_client = tenant_client
        self.reserved_subdomains = tuple(s.lower() for s in reserved_subdomains)
        self.metrics = metrics
        self.logger = get_logger("edge.tenant_resolver")

    def extract_tenant_id(
        self,
        info: RequestInfo,
        principal: Optional[Principal] = None,
    ) -> Tuple[Optional[str], TenantSource]:
        """Header > path > query > principal default > subdomain."""
        header_value = info.headers.get(TENANT_HEADER)
        if header_value and header_value.strip():
            return header_value.strip(), TenantSource.HEADER

        path_value = _first(info.path_params, TENANT_PATH_PARAMS)
        if path_value:
            return path_value, TenantSource.PATH

        query_value = _first(info.query_params, TENANT_QUERY_PARAMS)
        if query_value:
            return query_value, TenantSource.QUERY

        if principal is not None and principal.tenant_id:
            return principal.tenant_id, TenantSource.PRINCIPAL

        subdomain = extract_subdomain(info.host, self.reserved_subdomains)
        if subdomain:
            return subdomain, TenantSource.SUBDOMAIN

        return None, TenantSource.NONE

    async def resolve(self, info: RequestInfo, principal: Optional[Principal] = None) -> ResolvedTenant:
        """Resolve the request's tenant, or a neutral result when none is named."""
        tenant_id, source = self.extract_tenant_id(info, principal)
        if tenant_id is None:
            return ResolvedTenant()

        if not TENANT_ID_PATTERN.match(tenant_id):
            raise ValidationError("Malformed tenant identifier", details={"source": source.value})

        set_user_context(tenant_id=tenant_id)
        if self.metrics:
            self.metrics.increment_counter("tenant_resolutions_total", source=source.value)

        tenant, cache_hit = await self.load_tenant(tenant_id)
        self.check_status(tenant)

        self.logger.debug("Tenant resolved", tenant_id=tenant_id, source=source.value, cache_hit=cache_hit)
        return ResolvedTenant(tenant_id=tenant_id, source=source, tenant=tenant, cache_hit=cache_hit)

    async def load_tenant(self, tenant_id: str) -> Tuple[Tenant, bool]:
        """Cached read of the tenant record; a miss populates the cache."""
        cached = await self.cache.get_tenant(tenant_id)
        if cached is not None:
            try:
                return Tenant.model_validate(cached), True
            except ModelValidationError as exc:
                self.logger.warning("Discarding malformed cached tenant", tenant_id=tenant_id, error=str(exc))

        tenant = await self.tenant_client.get_tenant(tenant_id)
        if tenant.status == TenantStatus.SUSPENDED:
            # Contexts and tenant lists computed while the tenant was active must go.
            await self.cache.apply(self.cache.contract.tenant_suspended(tenant_id))
            self.logger.info("Tenant observed suspended", tenant_id=tenant_id)
        await self.cache.set_tenant(tenant_id, tenant.to_cache())
        return tenant, False

    @staticmethod
    def check_status(tenant: Tenant) -> None:
        """Status gate: only active tenants pass."""
        if tenant.status == TenantStatus.SUSPENDED:
            raise TenantSuspendedError(tenant.id)
        if tenant.status != TenantStatus.ACTIVE:
            raise TenantInactiveError(tenant.id, tenant.status.value)

    async def refresh(self, tenant_id: str) -> Tenant:
        """Drop the cached record and everything derived from it, then reload."""
        await self.cache.apply(self.cache.contract.tenant_updated(tenant_id))
        tenant, _ = await self.load_tenant(tenant_id)
        return tenant
