"""Tests for permission strings and safe pattern matching."""

from __future__ import annotations

import time

import pytest

from contextaccess import PermissionFormatError, safe_pattern_match
from contextaccess.permissions import (
    MAX_PATTERN_LENGTH,
    Permission,
    PermissionAction,
    PermissionScope,
    glob_match,
    has_permission,
    parse_permission,
)
from contextaccess.permissions.access import can_access, check_scoped_access, is_denied, scope_applies
from contextaccess.permissions.matching import scope_covers, try_parse_permission


class TestParsePermission:
    """Tests for parsing resource:action[:scope] strings."""

    def test_two_parts(self) -> None:
        """resource:action parses with no scope."""
        perm = parse_permission("documents:read")
        assert perm == Permission("documents", "read", None)

    def test_three_parts(self) -> None:
        """resource:action:scope keeps the scope."""
        perm = parse_permission("documents:update:own")
        assert perm.scope == PermissionScope.OWN.value

    def test_bare_wildcard(self) -> None:
        """'*' is the full wildcard."""
        perm = parse_permission("*")
        assert perm.is_wildcard
        assert str(perm) == "*"

    def test_round_trip_string(self) -> None:
        """str() returns the canonical permission string."""
        assert str(parse_permission("reports:*:team")) == "reports:*:team"
        assert str(parse_permission("users:read")) == "users:read"

    @pytest.mark.parametrize(
        "value",
        ["", "documents", "documents:read:own:extra", "documents:fly", "documents:read:planet", "bad resource:read"],
    )
    def test_malformed(self, value: str) -> None:
        """Malformed strings raise PermissionFormatError."""
        with pytest.raises(PermissionFormatError):
            parse_permission(value)

    def test_format_error_is_value_error(self) -> None:
        """PermissionFormatError is also a ValueError."""
        with pytest.raises(ValueError):
            parse_permission("nope")

    def test_try_parse_returns_none(self) -> None:
        """try_parse_permission swallows format errors."""
        assert try_parse_permission("x:y:z:w") is None
        assert try_parse_permission("a:read") == Permission("a", "read")

    def test_every_action_accepted(self) -> None:
        """All PermissionAction values are valid actions."""
        for action in PermissionAction:
            assert parse_permission(f"items:{action.value}").action == action.value


class TestPermissionCovers:
    """Tests for positional wildcard coverage and scope breadth."""

    def test_resource_wildcard(self) -> None:
        assert Permission("*", "read").covers(Permission("documents", "read"))

    def test_action_wildcard(self) -> None:
        assert Permission("documents", "*").covers(Permission("documents", "delete"))

    def test_different_resource(self) -> None:
        assert not Permission("documents", "*").covers(Permission("users", "read"))

    def test_broader_scope_covers_narrower(self) -> None:
        """org covers team and own."""
        granted = Permission("documents", "read", "org")
        assert granted.covers(Permission("documents", "read", "team"))
        assert granted.covers(Permission("documents", "read", "own"))

    def test_narrow_grant_does_not_cover_unscoped(self) -> None:
        """An own-scoped grant never satisfies an unscoped (global) request."""
        assert not Permission("documents", "read", "own").covers(Permission("documents", "read"))

    def test_unscoped_grant_is_global(self) -> None:
        assert Permission("documents", "read").covers(Permission("documents", "read", "own"))

    def test_scope_wildcard(self) -> None:
        assert scope_covers("*", "global")
        assert scope_covers("own", "*")

    def test_scope_rank_order(self) -> None:
        ranks = [s.rank for s in (PermissionScope.OWN, PermissionScope.TEAM, PermissionScope.ORG, PermissionScope.GLOBAL)]
        assert ranks == sorted(ranks)


class TestSafePatternMatch:
    """Tests for ReDoS-safe glob matching."""

    def test_prefix_wildcard_match(self) -> None:
        assert safe_pattern_match("users:*", "users:read")

    def test_prefix_wildcard_mismatch(self) -> None:
        assert not safe_pattern_match("users:*", "orders:read")

    def test_exact_without_wildcards(self) -> None:
        assert safe_pattern_match("doc-1", "doc-1")
        assert not safe_pattern_match("doc-1", "doc-2")

    def test_question_mark(self) -> None:
        assert safe_pattern_match("doc-?", "doc-7")
        assert not safe_pattern_match("doc-?", "doc-77")

    def test_star_matches_empty(self) -> None:
        assert safe_pattern_match("doc*", "doc")
        assert safe_pattern_match("*", "")

    def test_inner_wildcards(self) -> None:
        assert safe_pattern_match("a*b*c", "axxbyyc")
        assert not safe_pattern_match("a*b*c", "axxbyy")

    def test_regex_metacharacters_are_literal(self) -> None:
        """Patterns are never compiled to regex."""
        assert safe_pattern_match("a.b", "a.b")
        assert not safe_pattern_match("a.b", "axb")
        assert safe_pattern_match("(x+)+", "(x+)+")

    def test_oversized_pattern_rejected(self) -> None:
        """Patterns longer than the limit never match, even identical values."""
        pattern = "a" * (MAX_PATTERN_LENGTH + 1)
        assert not safe_pattern_match(pattern, pattern)
        assert not safe_pattern_match("*" * (MAX_PATTERN_LENGTH + 1), "anything")

    def test_oversized_value_rejected(self) -> None:
        assert not safe_pattern_match("*", "a" * (MAX_PATTERN_LENGTH * 4 + 1))

    def test_adversarial_pattern_is_fast(self) -> None:
        """Many stars against a long non-matching string finish promptly."""
        value = "a" * 1000
        start = time.perf_counter()
        assert not safe_pattern_match("a*a*a*a*a*a*a*a*b", value)
        assert time.perf_counter() - start < 1.0

    def test_glob_match_direct(self) -> None:
        assert glob_match("*read", "documents:read")
        assert not glob_match("*read", "documents:reads")


class TestPermissionSets:
    """Tests for flat permission-set helpers."""

    def test_has_permission_wildcards(self) -> None:
        assert has_permission({"documents:*"}, "documents:delete")
        assert has_permission({"*"}, "anything:read")
        assert not has_permission({"documents:read"}, "documents:delete")

    def test_has_permission_malformed_request(self) -> None:
        """A malformed requested permission is never granted."""
        assert not has_permission({"*"}, "not-a-permission")

    def test_malformed_grants_skipped(self) -> None:
        assert has_permission({"garbage", "documents:read"}, "documents:read")

    def test_can_access(self) -> None:
        assert can_access({"reports:read:team"}, "reports", "read", "own")
        assert not can_access({"reports:read:team"}, "reports", "read")

    def test_is_denied_ignores_scope(self) -> None:
        assert is_denied({"documents:delete:own"}, "documents", "delete")
        assert is_denied({"*:delete"}, "users", "delete")
        assert not is_denied({"documents:delete"}, "documents", "read")


class TestScopedAccess:
    """Tests for own/team/org grants against resource attributes."""

    def test_own_scope_matches_owner(self) -> None:
        assert check_scoped_access(
            {"documents:update:own"},
            "documents",
            "update",
            subject_id="u1",
            resource_attributes={"owner_id": "u1"},
        )

    def test_own_scope_other_owner(self) -> None:
        assert not check_scoped_access(
            {"documents:update:own"},
            "documents",
            "update",
            subject_id="u1",
            resource_attributes={"owner_id": "u2"},
        )

    def test_team_scope(self) -> None:
        assert check_scoped_access(
            {"documents:read:team"},
            "documents",
            "read",
            subject_id="u1",
            subject_attributes={"team_id": "t1"},
            resource_attributes={"team_id": "t1"},
        )
        assert not check_scoped_access(
            {"documents:read:team"},
            "documents",
            "read",
            subject_id="u1",
            subject_attributes={"team_id": "t1"},
            resource_attributes={"team_id": "t2"},
        )

    def test_global_grant_wins(self) -> None:
        assert check_scoped_access({"documents:read"}, "documents", "read", subject_id="u1")

    def test_scope_applies_user_id_fallback(self) -> None:
        """own falls back to the resource user_id attribute."""
        assert scope_applies("own", "u1", {}, {"user_id": "u1"})
        assert not scope_applies("own", None, {}, {"owner_id": "u1"})
        assert scope_applies("own", None, {"id": "u1"}, {"owner_id": "u1"})

    def test_org_scope_requires_both_sides(self) -> None:
        assert not scope_applies("org", "u1", {}, {"org_id": "o1"})
        assert scope_applies("org", "u1", {"org_id": "o1"}, {"org_id": "o1"})
