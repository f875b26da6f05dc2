"""
Rate limiting package.

Holds the layered fixed-window limiter and the policy that sizes each tier
(global, tenant, user, endpoint-specific).
"""

from .fixed_window import (
    FixedWindowRateLimiter,
    IdentityKeys,
    RateLimitDecision,
    RateLimitTier,
    TierResult,
)
from .policy import RateLimitPolicy

__all__ = [
    "FixedWindowRateLimiter",
    "IdentityKeys",
    "RateLimitDecision",
    "RateLimitPolicy",
    "RateLimitTier",
    "TierResult",
]
