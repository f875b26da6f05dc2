"""
Tenancy package: tenant/principal models and the tenant resolver.
"""

from .models import (
    AccessCheck,
    MembershipStatus,
    Principal,
    ResolvedTenant,
    SubscriptionTier,
    Tenant,
    TenantContext,
    TenantMembership,
    TenantQuotas,
    TenantSource,
    TenantStatus,
)
from .resolver import RequestInfo, TenantResolver, extract_subdomain, tenant_headers

__all__ = [
    "AccessCheck",
    "MembershipStatus",
    "Principal",
    "RequestInfo",
    "ResolvedTenant",
    "SubscriptionTier",
    "Tenant",
    "TenantContext",
    "TenantMembership",
    "TenantQuotas",
    "TenantResolver",
    "TenantSource",
    "TenantStatus",
    "extract_subdomain",
    "tenant_headers",
]
