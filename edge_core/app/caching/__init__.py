"""
Caching package.

Typed get/set/invalidate over the shared store. Every entity maps to exactly
one TTL class, and every mutating operation declares what it invalidates in
``invalidation.InvalidationContract``.
"""

from .store import CacheStoreError, RedisStore
from .keys import CacheKeys
from .cache_manager import CacheManager, CacheTTLPolicy, TTLClass
from .invalidation import Invalidation, InvalidationContract

__all__ = [
    "CacheStoreError",
    "RedisStore",
    "CacheKeys",
    "CacheManager",
    "CacheTTLPolicy",
    "TTLClass",
    "Invalidation",
    "InvalidationContract",
]
