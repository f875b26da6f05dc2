"""
Tenant, principal and membership models.

Authorities speak camelCase; models accept either camelCase or snake_case and
are cached in their snake_case JSON form.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AuthorityModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_cache(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"
    PENDING = "pending"
    ARCHIVED = "archived"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
    CUSTOM = "custom"


class TenantQuotas(AuthorityModel):
    max_users: Optional[int] = None
    max_storage_gb: Optional[float] = Field(default=None, alias="maxStorageGB")
    max_api_calls_per_hour: Optional[int] = None
    max_workflows_per_hour: Optional[int] = None
    max_modules: Optional[int] = None
    max_custom_domains: Optional[int] = None


class TenantSettings(AuthorityModel):
    timezone: str = "UTC"
    locale: str = "en-US"
    currency: Optional[str] = None
    allow_user_registration: bool = False
    require_email_verification: bool = True
    enable_mfa: bool = Field(default=False, alias="enableMFA")
    session_timeout_minutes: Optional[int] = None


class TenantBranding(AuthorityModel):
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    custom_domain: Optional[str] = None


class Tenant(AuthorityModel):
    """Read-through copy of the Tenant Authority's record."""

    id: str
    name: str
    display_name: Optional[str] = None
    status: TenantStatus
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    features: List[str] = Field(default_factory=list)
    quotas: TenantQuotas = Field(default_factory=TenantQuotas)
    settings: TenantSettings = Field(default_factory=TenantSettings)
    branding: TenantBranding = Field(default_factory=TenantBranding)

    @property
    def label(self) -> str:
        return self.display_name or self.name


class Principal(AuthorityModel):
    """Authenticated caller, produced per request by the Identity Authority."""

    id: str
    email: Optional[str] = None
    session_id: Optional[str] = None
    tenant_id: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    INVITED = "invited"
    SUSPENDED = "suspended"
    REMOVED = "removed"


class TenantMembership(AuthorityModel):
    tenant_id: str
    user_id: str
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    status: MembershipStatus = MembershipStatus.ACTIVE


class AccessCheck(AuthorityModel):
    """Tenant Authority answer to "may this user access this tenant"."""

    has_access: bool
    permissions: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class TenantContext(AuthorityModel):
    """Per (tenant, principal) view computed by the access validator."""

    tenant_id: str
    user_id: str
    membership: TenantMembership
    permissions: List[str] = Field(default_factory=list)
    quotas: TenantQuotas = Field(default_factory=TenantQuotas)
    features: List[str] = Field(default_factory=list)


class TenantSource(str, Enum):
    """Where a tenant identifier came from."""

    HEADER = "header"
    PATH = "path"
    QUERY = "query"
    PRINCIPAL = "principal"
    SUBDOMAIN = "subdomain"
    NONE = "none"


class ResolvedTenant(BaseModel):
    """Outcome of tenant resolution; ``tenant`` is ``None`` for tenant-agnostic requests."""

    tenant_id: Optional[str] = None
    source: TenantSource = TenantSource.NONE
    tenant: Optional[Tenant] = None
    cache_hit: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.tenant is not None
