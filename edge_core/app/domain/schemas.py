"""
Request bodies accepted by the HTTP surface.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..tenancy.models import AuthorityModel, MembershipStatus, TenantBranding, TenantSettings

MAX_BULK_INVITES = 100
MAX_BULK_UPDATES = 50


class AnalyticsPeriod(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class CacheType(str, Enum):
    ALL = "all"
    ANALYTICS = "analytics"
    MEMBERSHIPS = "memberships"
    CONFIGURATION = "configuration"


class TenantUpdateRequest(AuthorityModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    display_name: Optional[str] = Field(default=None, max_length=200)
    features: Optional[List[str]] = None
    settings: Optional[TenantSettings] = None
    branding: Optional[TenantBranding] = None

    def to_authority(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class TenantSwitchRequest(AuthorityModel):
    target_tenant_id: str = Field(min_length=1)
    current_tenant_id: Optional[str] = None
    preserve_session: bool = False


class MembershipUpdate(AuthorityModel):
    user_id: str = Field(min_length=1)
    roles: Optional[List[str]] = None
    status: Optional[MembershipStatus] = None


class BulkMembershipUpdateRequest(AuthorityModel):
    updates: List[MembershipUpdate] = Field(min_length=1)


class Invitation(AuthorityModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    roles: List[str] = Field(default_factory=lambda: ["member"])


class BulkInviteRequest(AuthorityModel):
    invitations: List[Invitation] = Field(min_length=1)
    message: Optional[str] = None


class WorkflowInitiateRequest(AuthorityModel):
    workflow_type: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    synchronous: bool = False


class CacheFlushRequest(AuthorityModel):
    cache_type: CacheType = CacheType.ALL
