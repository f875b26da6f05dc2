"""
Rate limit policy: per-tier limits and their optional YAML overrides.

Override file format::

    window_seconds: 60
    global: 200
    user: 500
    tiers:
      free: 100
      professional: 1000
      enterprise: 10000
    endpoints:
      tenant_switch: 10
      migrate_tenant: 2
"""

from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING, Union

import yaml

from edge_shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from edge_shared.config import BaseConfig

logger = get_logger("edge.rate_limit_policy")

DEFAULT_TIER_LIMITS: Dict[str, int] = {
    "free": 100,
    "professional": 1000,
    "enterprise": 10000,
}

# Sensitive operations get markedly stricter per-minute ceilings.
DEFAULT_ENDPOINT_LIMITS: Dict[str, int] = {
    "tenant_switch": 10,
    "provision_tenant": 5,
    "migrate_tenant": 2,
    "bulk_invite_users": 10,
    "bulk_update_memberships": 15,
    "analytics": 30,
    "workflows": 20,
    "configuration": 15,
}

FALLBACK_SUBSCRIPTION_TIER = "free"


class RateLimitPolicy:
    """Limits for the global, tenant, user and endpoint tiers."""

    def __init__(
        self,
        window_seconds: int = 60,
        global_limit: int = 100,
        user_limit: int = 500,
        tier_limits: Optional[Dict[str, int]] = None,
        endpoint_limits: Optional[Dict[str, int]] = None,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self.global_limit = global_limit
        self.user_limit = user_limit
        self.tier_limits = dict(DEFAULT_TIER_LIMITS)
        self.tier_limits.update(tier_limits or {})
        self.endpoint_limits = dict(DEFAULT_ENDPOINT_LIMITS)
        self.endpoint_limits.update(endpoint_limits or {})

    @classmethod
    def from_config(cls, config: "BaseConfig") -> "RateLimitPolicy":
        policy = cls(
            window_seconds=config.rate_limit_window_seconds,
            global_limit=config.rate_limit_global,
            user_limit=config.rate_limit_user,
            tier_limits=config.rate_limit_tiers,
        )
        if config.rate_limits_file:
            policy.load_overrides(config.rate_limits_file)
        return policy

    def load_overrides(self, path: Union[str, Path]) -> None:
        """Apply overrides from a YAML file; a missing file is ignored."""
        file_path = Path(path)
        if not file_path.exists():
            logger.warning("Rate limit overrides file not found", path=str(file_path))
            return

        with file_path.open("r", encoding="utf-8") as handle:
            data: Dict[str, Any] = yaml.safe_load(handle) or {}

        self.window_seconds = int(data.get("window_seconds", self.window_seconds))
        self.global_limit = int(data.get("global", self.global_limit))
        self.user_limit = int(data.get("user", self.user_limit))
        self.tier_limits.update({k: int(v) for k, v in (data.get("tiers") or {}).items()})
        self.endpoint_limits.update({k: int(v) for k, v in (data.get("endpoints") or {}).items()})
        logger.info("Loaded rate limit overrides", path=str(file_path))

    def tenant_limit(self, subscription_tier: Optional[str]) -> int:
        """Tenant ceiling derived from the subscription tier.

        Unknown or missing tiers get the most conservative (free) limit.
        """
        if subscription_tier and subscription_tier in self.tier_limits:
            return self.tier_limits[subscription_tier]
        return self.tier_limits.get(FALLBACK_SUBSCRIPTION_TIER, min(self.tier_limits.values()))

    def endpoint_limit(self, endpoint: Optional[str]) -> Optional[int]:
        """Limit for a sensitive endpoint, or ``None`` when unrestricted."""
        if not endpoint:
            return None
        return self.endpoint_limits.get(endpoint)
