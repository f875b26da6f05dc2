"""
Layered fixed-window rate limiter.

Four tiers are evaluated in a fixed order (global, tenant, user, endpoint),
each as an independent counter keyed by ``{tier}:{identity}:{bucket}`` where
``bucket = floor(now_ms / window_ms)``.
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from edge_shared.errors import DependencyUnavailableError, RateLimitError
from edge_shared.logging import get_logger
from ..caching.store import CacheStoreError, RedisStore
from .policy import RateLimitPolicy

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from edge_shared.metrics import MetricsCollector


class RateLimitTier(str, Enum):
    GLOBAL = "global"
    TENANT = "tenant"
    USER = "user"
    ENDPOINT = "endpoint"


TIER_ORDER: Tuple[RateLimitTier, ...] = (
    RateLimitTier.GLOBAL,
    RateLimitTier.TENANT,
    RateLimitTier.USER,
    RateLimitTier.ENDPOINT,
)

HEADER_PREFIXES: Dict[RateLimitTier, str] = {
    RateLimitTier.GLOBAL: "X-RateLimit",
    RateLimitTier.TENANT: "X-Tenant-RateLimit",
    RateLimitTier.USER: "X-User-RateLimit",
    RateLimitTier.ENDPOINT: "X-Endpoint-RateLimit",
}


@dataclass(frozen=True)
class IdentityKeys:
    """Identities the request is counted against."""

    client_ip: Optional[str] = None
    tenant_id: Optional[str] = None
    subscription_tier: Optional[str] = None
    user_id: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass(frozen=True)
class TierResult:
    tier: RateLimitTier
    identity: str
    limit: int
    count: int
    remaining: int
    reset_at_ms: int

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at_ms / 1000, tz=timezone.utc)

    def headers(self) -> Dict[str, str]:
        prefix = HEADER_PREFIXES[self.tier]
        return {
            f"{prefix}-Limit": str(self.limit),
            f"{prefix}-Remaining": str(self.remaining),
            f"{prefix}-Reset": self.reset_at.isoformat().replace("+00:00", "Z"),
        }


@dataclass
class RateLimitDecision:
    allowed: bool
    results: List[TierResult] = field(default_factory=list)
    rejected_tier: Optional[RateLimitTier] = None
    retry_after: Optional[int] = None
    skipped: List[RateLimitTier] = field(default_factory=list)
    window_seconds: int = 60

    def result_for(self, tier: RateLimitTier) -> Optional[TierResult]:
        for result in self.results:
            if result.tier == tier:
                return result
        return None

    def headers(self) -> Dict[str, str]:
        """Limit/remaining/reset for every evaluated tier, plus Retry-After on rejection."""
        headers: Dict[str, str] = {}
        for result in self.results:
            headers.update(result.headers())
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def raise_for_rejection(self) -> None:
        if self.allowed or self.rejected_tier is None:
            return
        rejected = self.result_for(self.rejected_tier)
        details = {"windowSeconds": self.window_seconds}
        if rejected is not None:
            details.update({
                "limit": rejected.limit,
                "remaining": rejected.remaining,
                "resetTime": rejected.reset_at.isoformat().replace("+00:00", "Z"),
            })
        error = RateLimitError(self.rejected_tier.value, self.retry_after or 1, details=details)
        error.headers.update(self.headers())
        raise error


class FixedWindowRateLimiter:
    """Distributed fixed-window rate limiter over the shared counter store."""

    def __init__(
        self,
        store: RedisStore,
        policy: Optional[RateLimitPolicy] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        fail_open: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.policy = policy or RateLimitPolicy()
        self.metrics = metrics
        self.fail_open = fail_open
        self._clock = clock
        self.logger = get_logger("edge.rate_limiter")

    def _make_key(self, tier: RateLimitTier, identity: str, bucket: int) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{tier.value}:{identity}:{bucket}"

    def _plan(self, keys: IdentityKeys) -> List[Tuple[RateLimitTier, str, int]]:
        """Tiers to evaluate, in order; tiers without an identity are skipped."""
        plan = [(RateLimitTier.GLOBAL, keys.client_ip or "pool", self.policy.global_limit)]

        if keys.tenant_id:
            plan.append((RateLimitTier.TENANT, keys.tenant_id, self.policy.tenant_limit(keys.subscription_tier)))

        if keys.user_id:
            plan.append((RateLimitTier.USER, keys.user_id, self.policy.user_limit))

        endpoint_limit = self.policy.endpoint_limit(keys.endpoint)
        if endpoint_limit is not None:
            caller = keys.user_id or keys.client_ip or "anonymous"
            plan.append((RateLimitTier.ENDPOINT, f"{keys.endpoint}:{caller}", endpoint_limit))

        return plan

    def _window(self, now: Optional[float]) -> Tuple[int, int, int]:
        now_ms = int((now if now is not None else self._clock()) * 1000)
        window_ms = self.policy.window_seconds * 1000
        bucket = now_ms // window_ms
        return now_ms, bucket, (bucket + 1) * window_ms

    async def check(self, keys: IdentityKeys, now: Optional[float] = None) -> RateLimitDecision:
        """Count the request against every applicable tier.

        Stops at the first tier whose count exceeds its limit; results for
        every tier evaluated up to and including that one are reported.
        """
        now_ms, bucket, reset_ms = self._window(now)
        decision = RateLimitDecision(allowed=True, window_seconds=self.policy.window_seconds)

        for tier, identity, limit in self._plan(keys):
            key = self._make_key(tier, identity, bucket)
            try:
                count = await self.store.increment_with_expiry(key, self.policy.window_seconds)
            except CacheStoreError as exc:
                if not self.fail_open:
                    self.logger.error("Rate limit store unavailable, failing closed", tier=tier.value, error=str(exc))
                    raise DependencyUnavailableError("rate_limit_store", "counter store unavailable") from exc
                self.logger.warning(
                    "Rate limit store unavailable, failing open",
                    tier=tier.value,
                    error=str(exc),
                )
                if self.metrics:
                    self.metrics.increment_counter("rate_limit_store_failures_total", tier=tier.value)
                decision.skipped.append(tier)
                continue

            result = TierResult(
                tier=tier,
                identity=identity,
                limit=limit,
                count=count,
                remaining=max(0, limit - count),
                reset_at_ms=reset_ms,
            )
            decision.results.append(result)

            if result.exceeded:
                decision.allowed = False
                decision.rejected_tier = tier
                decision.retry_after = math.ceil((reset_ms - now_ms) / 1000)
                self.logger.warning(
                    "Rate limit exceeded",
                    tier=tier.value,
                    identity=identity,
                    count=count,
                    limit=limit,
                    retry_after=decision.retry_after,
                )
                if self.metrics:
                    self.metrics.increment_counter("rate_limit_rejections_total", tier=tier.value)
                break

        return decision

    async def enforce(self, keys: IdentityKeys, now: Optional[float] = None) -> RateLimitDecision:
        """``check`` that raises ``RateLimitError`` on rejection."""
        decision = await self.check(keys, now=now)
        decision.raise_for_rejection()
        return decision

    async def get_status(self, tier: RateLimitTier, identity: str, limit: int,
                         now: Optional[float] = None) -> Dict[str, int]:
        """Current window usage without counting a request."""
        _, bucket, reset_ms = self._window(now)
        raw = await self.store.get(self._make_key(tier, identity, bucket))
        count = int(raw) if raw else 0
        return {
            "count": count,
            "limit": limit,
            "remaining": max(0, limit - count),
            "reset_at_ms": reset_ms,
        }

    async def reset(self, tier: RateLimitTier, identity: str, now: Optional[float] = None) -> bool:
        """Reset the current window for an identity."""
        _, bucket, _ = self._window(now)
        try:
            await self.store.delete(self._make_key(tier, identity, bucket))
        except CacheStoreError as exc:
            self.logger.error("Rate limit reset error", tier=tier.value, identity=identity, error=str(exc))
            return False
        self.logger.info("Rate limit reset", tier=tier.value, identity=identity)
        return True
