"""
Unit tests for permission matching and role expansion.
"""

import pytest

from edge_core.app.access.permissions import (
    PermissionToken,
    TokenKind,
    effective_permissions,
    expand_roles,
    has_permission,
    normalize_permissions,
    parse_permission,
    workflow_permission,
)


class TestPermissionMatching:
    """Exact and prefix grants."""

    def test_exact_match(self):
        assert has_permission(["tenant:read"], "tenant:read")
        assert not has_permission(["tenant:read"], "tenant:write")

    def test_prefix_grant(self):
        assert has_permission(["tenant:*"], "tenant:members:invite")
        assert not has_permission(["tenant:*"], "workflow:cancel")

    def test_lone_wildcard_grants_everything(self):
        assert has_permission(["*"], "workflow:cancel")
        assert has_permission(["*"], "tenant:analytics:read")

    def test_no_implicit_hierarchy(self):
        """``tenant:members`` does not grant ``tenant:members:read``."""
        assert not has_permission(["tenant:members"], "tenant:members:read")

    def test_empty_permissions(self):
        assert not has_permission([], "tenant:read")

    def test_accepts_normalized_tokens(self):
        tokens = normalize_permissions(["tenant:*", "workflow:cancel"])
        assert has_permission(tokens, "tenant:write")
        assert has_permission(tokens, "workflow:cancel")

    @pytest.mark.parametrize(
        "raw,kind,value",
        [
            ("tenant:read", TokenKind.EXACT, "tenant:read"),
            ("tenant:*", TokenKind.PREFIX, "tenant:"),
            ("*", TokenKind.PREFIX, ""),
            ("  tenant:write ", TokenKind.EXACT, "tenant:write"),
        ],
    )
    def test_parse_permission(self, raw, kind, value):
        assert parse_permission(raw) == PermissionToken(kind, value)

    def test_normalize_drops_blanks_and_duplicates(self):
        tokens = normalize_permissions(["tenant:read", "tenant:read", "", "  "])
        assert tokens == frozenset({PermissionToken(TokenKind.EXACT, "tenant:read")})

    def test_token_str(self):
        assert str(parse_permission("tenant:*")) == "tenant:*"


class TestRoles:
    """Role expansion and effective permissions."""

    def test_expand_known_roles(self):
        assert expand_roles(["admin"]) == frozenset({"*"})
        assert expand_roles(["Owner"]) == frozenset({"tenant:*"})
        assert "tenant:members" in expand_roles(["manager"])

    def test_unknown_roles_contribute_nothing(self):
        assert expand_roles(["auditor"]) == frozenset()

    def test_effective_permissions_union(self):
        permissions = effective_permissions(
            direct=["workflow:cancel"],
            roles=["viewer"],
            membership=["tenant:analytics:read"],
        )
        assert permissions == frozenset({"workflow:cancel", "tenant:read", "tenant:analytics:read"})

    def test_workflow_permission(self):
        assert workflow_permission("bulk-invite-users") == "tenant:members:invite"
        assert workflow_permission("unknown") is None
