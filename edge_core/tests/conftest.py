"""
Shared fixtures for edge core tests.
"""

import re
import time
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest

from edge_core.app.caching.cache_manager import CacheManager
from edge_core.app.caching.store import CacheStoreError
from edge_core.app.tenancy.models import AccessCheck, Principal, Tenant, TenantMembership


def _glob_to_regex(pattern: str) -> "re.Pattern":
    """Redis glob semantics, backslash escapes included."""
    parts = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                parts.append(pattern[i:end + 1])
                i = end
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


class InMemoryStore:
    """Async store double with the RedisStore interface and TTL expiry."""

    def __init__(self, clock=time.monotonic):
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, float] = {}
        self.clock = clock
        self.fail = False

    def _check(self, operation: str) -> None:
        if self.fail:
            raise CacheStoreError(operation, ConnectionError("store unreachable"))

    def _alive(self, key: str) -> bool:
        expires_at = self.expiry.get(key)
        if expires_at is not None and self.clock() >= expires_at:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    async def get(self, key: str) -> Optional[str]:
        self._check("get")
        return self.data[key] if self._alive(key) else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._check("set")
        self.data[key] = value
        self.expiry[key] = self.clock() + ttl

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        deleted = 0
        for key in keys:
            if self._alive(key):
                del self.data[key]
                self.expiry.pop(key, None)
                deleted += 1
        return deleted

    async def delete_pattern(self, pattern: str) -> int:
        self._check("delete_pattern")
        regex = _glob_to_regex(pattern)
        matched = [key for key in list(self.data) if regex.match(key)]
        return await self.delete(*matched)

    async def increment_with_expiry(self, key: str, ttl: int) -> int:
        self._check("increment")
        count = int(self.data[key]) + 1 if self._alive(key) else 1
        self.data[key] = str(count)
        if count == 1:
            self.expiry[key] = self.clock() + ttl
        return count

    async def ttl(self, key: str) -> int:
        self._check("ttl")
        if not self._alive(key):
            return -2
        expires_at = self.expiry.get(key)
        return -1 if expires_at is None else int(round(expires_at - self.clock()))

    async def ping(self) -> bool:
        return not self.fail

    async def close(self) -> None:
        pass


def make_tenant(tenant_id: str = "t1", **overrides: Any) -> Tenant:
    data = {
        "id": tenant_id,
        "name": f"Tenant {tenant_id}",
        "status": "active",
        "subscriptionTier": "professional",
        "features": ["analytics"],
        "quotas": {"maxUsers": 50},
    }
    data.update(overrides)
    return Tenant.model_validate(data)


def make_membership(tenant_id: str = "t1", user_id: str = "user-1", roles=("member",), **overrides: Any) -> TenantMembership:
    data = {"tenantId": tenant_id, "userId": user_id, "roles": list(roles)}
    data.update(overrides)
    return TenantMembership.model_validate(data)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache(store):
    return CacheManager(store)


@pytest.fixture
def principal():
    return Principal(id="user-1", email="user@example.com", session_id="sess-1", tenant_id="t1")


@pytest.fixture
def tenants():
    """Tenant records served by the fake Tenant Authority, keyed by id."""
    return {
        "t1": make_tenant("t1"),
        "t2": make_tenant("t2", subscriptionTier="enterprise"),
        "t-suspended": make_tenant("t-suspended", status="suspended"),
        "t-pending": make_tenant("t-pending", status="pending"),
    }


@pytest.fixture
def memberships():
    """Memberships keyed by (tenant_id, user_id)."""
    return {
        ("t1", "user-1"): make_membership("t1", "user-1", roles=("manager",)),
        ("t2", "user-1"): make_membership("t2", "user-1", roles=("viewer",)),
    }


@pytest.fixture
def tenant_client(tenants, memberships):
    """Tenant Authority double backed by the ``tenants`` and ``memberships`` fixtures."""
    from edge_shared.errors import AccessDeniedError, TenantNotFoundError

    client = AsyncMock()

    def get_tenant(tenant_id, token=None):
        if tenant_id not in tenants:
            raise TenantNotFoundError(tenant_id)
        return tenants[tenant_id]

    def validate_access(tenant_id, user_id, token=None):
        if (tenant_id, user_id) in memberships:
            return AccessCheck(has_access=True)
        return AccessCheck(has_access=False, reason="not a member")

    def get_membership(tenant_id, user_id, token=None):
        if (tenant_id, user_id) not in memberships:
            raise AccessDeniedError(tenant_id, user_id, "no membership")
        return memberships[(tenant_id, user_id)]

    client.get_tenant.side_effect = get_tenant
    client.validate_access.side_effect = validate_access
    client.get_membership.side_effect = get_membership
    return client
