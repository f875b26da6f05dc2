"""
Namespaced cache key builder.

Tenant-scoped entries share the ``{ns}:t:{tenant_id}:`` prefix so a single
pattern covers a full-tenant flush.
"""

import re

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters in an identifier."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class CacheKeys:
    """Key and pattern builder for every cached entity."""

    def __init__(self, namespace: str = "edge"):
        self.namespace = namespace

    def _tenant_prefix(self, tenant_id: str) -> str:
        return f"{self.namespace}:t:{tenant_id}"

    # Concrete keys

    def tenant(self, tenant_id: str) -> str:
        return f"{self._tenant_prefix(tenant_id)}:tenant"

    def tenant_context(self, tenant_id: str, user_id: str) -> str:
        return f"{self._tenant_prefix(tenant_id)}:context:{user_id}"

    def memberships(self, tenant_id: str) -> str:
        return f"{self._tenant_prefix(tenant_id)}:memberships"

    def invitations(self, tenant_id: str) -> str:
        return f"{self._tenant_prefix(tenant_id)}:invitations"

    def configuration(self, tenant_id: str) -> str:
        return f"{self._tenant_prefix(tenant_id)}:config"

    def analytics(self, tenant_id: str, period: str) -> str:
        return f"{self._tenant_prefix(tenant_id)}:analytics:{period}"

    def user_tenants(self, user_id: str) -> str:
        return f"{self.namespace}:u:{user_id}:tenants"

    def operation(self, operation_id: str) -> str:
        return f"{self.namespace}:op:{operation_id}"

    # Patterns

    def tenant_contexts(self, tenant_id: str) -> str:
        return f"{self.namespace}:t:{escape_glob(tenant_id)}:context:*"

    def analytics_all(self, tenant_id: str) -> str:
        return f"{self.namespace}:t:{escape_glob(tenant_id)}:analytics:*"

    def all_user_tenants(self) -> str:
        return f"{self.namespace}:u:*:tenants"

    def tenant_scope(self, tenant_id: str) -> str:
        return f"{self.namespace}:t:{escape_glob(tenant_id)}:*"

    @staticmethod
    def is_pattern(value: str) -> bool:
        """True when the value contains an unescaped glob metacharacter."""
        escaped = False
        for char in value:
            if escaped:
                escaped = False
                continue
            if char == "\\":
                escaped = True
            elif char in "*?[":
                return True
        return False
