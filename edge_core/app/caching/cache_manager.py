"""
Cache manager for tenant, membership, configuration, analytics and
operation views.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING, Union

from edge_shared.logging import get_logger
from .invalidation import Invalidation, InvalidationContract
from .keys import CacheKeys
from .store import CacheStoreError, RedisStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from edge_shared.config import BaseConfig
    from edge_shared.metrics import MetricsCollector


class TTLClass(str, Enum):
    """TTL classes shared by every cached entity."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    PERIOD = "period"
    OPERATION_RUNNING = "operation_running"
    OPERATION_TERMINAL = "operation_terminal"


# Every entity maps to exactly one TTL class.
ENTITY_TTL_CLASSES: Dict[str, TTLClass] = {
    "tenant": TTLClass.MEDIUM,
    "tenant_context": TTLClass.MEDIUM,
    "memberships": TTLClass.SHORT,
    "user_tenants": TTLClass.SHORT,
    "invitations": TTLClass.SHORT,
    "configuration": TTLClass.LONG,
    "analytics": TTLClass.PERIOD,
    "operation": TTLClass.OPERATION_RUNNING,
    "operation_terminal": TTLClass.OPERATION_TERMINAL,
}


class CacheTTLPolicy:
    """Maps TTL classes to seconds."""

    DEFAULTS: Dict[TTLClass, int] = {
        TTLClass.SHORT: 120,
        TTLClass.MEDIUM: 300,
        TTLClass.LONG: 1800,
        TTLClass.PERIOD: 600,
        TTLClass.OPERATION_RUNNING: 10,
        TTLClass.OPERATION_TERMINAL: 3600,
    }

    def __init__(self, overrides: Optional[Dict[TTLClass, int]] = None):
        self._ttls = dict(self.DEFAULTS)
        self._ttls.update(overrides or {})

    @classmethod
    def from_config(cls, config: "BaseConfig") -> "CacheTTLPolicy":
        return cls({
            TTLClass.SHORT: config.cache_ttl_short,
            TTLClass.MEDIUM: config.cache_ttl_medium,
            TTLClass.LONG: config.cache_ttl_long,
            TTLClass.PERIOD: config.cache_ttl_period,
            TTLClass.OPERATION_RUNNING: config.cache_ttl_operation_running,
            TTLClass.OPERATION_TERMINAL: config.cache_ttl_operation_terminal,
        })

    def seconds(self, ttl_class: TTLClass) -> int:
        return self._ttls[TTLClass(ttl_class)]

    def for_entity(self, entity: str) -> Tuple[TTLClass, int]:
        ttl_class = ENTITY_TTL_CLASSES[entity]
        return ttl_class, self._ttls[ttl_class]


class CacheManager:
    """Typed get/set/invalidate over the shared store.

    Store failures never escape: reads degrade to a miss and writes or
    invalidations report ``False``/``0`` after logging. The manager performs
    deletions but does not decide policy; mutating operations hand it an
    ``Invalidation`` from the contract catalogue.
    """

    def __init__(
        self,
        store: RedisStore,
        policy: Optional[CacheTTLPolicy] = None,
        *,
        keys: Optional[CacheKeys] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.policy = policy or CacheTTLPolicy()
        self.keys = keys or CacheKeys()
        self.contract = InvalidationContract(self.keys)
        self.metrics = metrics
        self.logger = get_logger("edge.cache_manager")
        self._stats: Dict[str, Dict[str, int]] = {}

    # Generic operations

    async def get(self, key: str, entity: str = "raw") -> Optional[Any]:
        """Get a cached value; ``None`` on miss or store failure."""
        try:
            raw = await self.store.get(key)
        except CacheStoreError as exc:
            self.logger.warning("Cache read failed, treating as miss", key=key, error=str(exc))
            self._record("error", entity, operation="get")
            return None

        if raw is None:
            self._record("miss", entity)
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("Discarding undecodable cache entry", key=key)
            self._record("miss", entity)
            return None

        self._record("hit", entity)
        return value

    async def set(self, key: str, value: Any, ttl_class: Union[TTLClass, str]) -> bool:
        """Store a JSON-serializable value under a TTL class."""
        ttl = self.policy.seconds(TTLClass(ttl_class))
        try:
            await self.store.set(key, json.dumps(value, default=str), ttl)
        except CacheStoreError as exc:
            self.logger.warning("Cache write failed", key=key, error=str(exc))
            self._record("error", "raw", operation="set")
            return False

        self.logger.debug("Cached value", key=key, ttl_class=TTLClass(ttl_class).value, ttl=ttl)
        return True

    async def get_entity(self, entity: str, key: str) -> Optional[Any]:
        return await self.get(key, entity=entity)

    async def set_entity(self, entity: str, key: str, value: Any) -> bool:
        ttl_class, _ = self.policy.for_entity(entity)
        return await self.set(key, value, ttl_class)

    async def invalidate(self, key_or_pattern: str) -> int:
        """Delete one key, or every key matching a glob pattern."""
        try:
            if CacheKeys.is_pattern(key_or_pattern):
                deleted = await self.store.delete_pattern(key_or_pattern)
            else:
                deleted = await self.store.delete(key_or_pattern)
        except CacheStoreError as exc:
            self.logger.error("Cache invalidation failed", target=key_or_pattern, error=str(exc))
            self._record("error", "raw", operation="invalidate")
            return 0
        return deleted

    async def apply(self, invalidation: Invalidation) -> int:
        """Apply an invalidation contract returned by a mutating operation."""
        if invalidation.is_empty():
            return 0

        deleted = 0
        if invalidation.keys:
            try:
                deleted += await self.store.delete(*invalidation.keys)
            except CacheStoreError as exc:
                self.logger.error(
                    "Cache invalidation failed",
                    reason=invalidation.reason,
                    keys=list(invalidation.keys),
                    error=str(exc),
                )
                self._record("error", "raw", operation="invalidate")

        for pattern in invalidation.patterns:
            deleted += await self.invalidate(pattern)

        if self.metrics:
            self.metrics.increment_counter("cache_invalidations_total", reason=invalidation.reason)
        self.logger.info(
            "Cache invalidation applied",
            reason=invalidation.reason,
            keys=len(invalidation.keys),
            patterns=len(invalidation.patterns),
            deleted=deleted,
        )
        return deleted

    async def flush_tenant(self, tenant_id: str) -> int:
        """Administrator-triggered full-tenant flush."""
        return await self.apply(self.contract.admin_flush(tenant_id))

    # Tenant views

    async def get_tenant(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_entity("tenant", self.keys.tenant(tenant_id))

    async def set_tenant(self, tenant_id: str, tenant: Dict[str, Any]) -> bool:
        return await self.set_entity("tenant", self.keys.tenant(tenant_id), tenant)

    async def get_tenant_context(self, tenant_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_entity("tenant_context", self.keys.tenant_context(tenant_id, user_id))

    async def set_tenant_context(self, tenant_id: str, user_id: str, context: Dict[str, Any]) -> bool:
        return await self.set_entity("tenant_context", self.keys.tenant_context(tenant_id, user_id), context)

    async def get_memberships(self, tenant_id: str) -> Optional[List[Dict[str, Any]]]:
        return await self.get_entity("memberships", self.keys.memberships(tenant_id))

    async def set_memberships(self, tenant_id: str, memberships: List[Dict[str, Any]]) -> bool:
        return await self.set_entity("memberships", self.keys.memberships(tenant_id), memberships)

    async def get_user_tenants(self, user_id: str) -> Optional[List[Dict[str, Any]]]:
        return await self.get_entity("user_tenants", self.keys.user_tenants(user_id))

    async def set_user_tenants(self, user_id: str, tenants: List[Dict[str, Any]]) -> bool:
        return await self.set_entity("user_tenants", self.keys.user_tenants(user_id), tenants)

    async def get_configuration(self, tenant_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_entity("configuration", self.keys.configuration(tenant_id))

    async def set_configuration(self, tenant_id: str, configuration: Dict[str, Any]) -> bool:
        return await self.set_entity("configuration", self.keys.configuration(tenant_id), configuration)

    async def get_analytics(self, tenant_id: str, period: str) -> Optional[Dict[str, Any]]:
        return await self.get_entity("analytics", self.keys.analytics(tenant_id, period))

    async def set_analytics(self, tenant_id: str, period: str, analytics: Dict[str, Any]) -> bool:
        return await self.set_entity("analytics", self.keys.analytics(tenant_id, period), analytics)

    # Operation views

    async def get_operation(self, operation_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_entity("operation", self.keys.operation(operation_id))

    async def set_operation(self, operation_id: str, record: Dict[str, Any], terminal: bool) -> bool:
        entity = "operation_terminal" if terminal else "operation"
        return await self.set_entity(entity, self.keys.operation(operation_id), record)

    # Statistics

    def _record(self, outcome: str, entity: str, operation: Optional[str] = None) -> None:
        stats = self._stats.setdefault(entity, {"hits": 0, "misses": 0, "errors": 0})
        if outcome == "hit":
            stats["hits"] += 1
            if self.metrics:
                self.metrics.increment_counter("cache_hits_total", entity=entity)
        elif outcome == "miss":
            stats["misses"] += 1
            if self.metrics:
                self.metrics.increment_counter("cache_misses_total", entity=entity)
        else:
            stats["errors"] += 1
            if self.metrics:
                self.metrics.increment_counter("cache_errors_total", operation=operation or "unknown")

    def get_stats(self) -> Dict[str, Any]:
        """In-process hit/miss statistics per entity."""
        entities = {}
        for entity, stats in self._stats.items():
            total = stats["hits"] + stats["misses"]
            entities[entity] = {
                **stats,
                "hit_ratio": stats["hits"] / total if total else 0.0,
            }
        return {
            "entities": entities,
            "ttl_classes": {ttl_class.value: self.policy.seconds(ttl_class) for ttl_class in TTLClass},
        }
