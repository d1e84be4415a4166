"""Tests for role inheritance and resolution."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from contextaccess import RoleDefinition, RoleHierarchy
from contextaccess.permissions import (
    STANDARD_ROLE_HIERARCHY,
    PermissionAction,
    PermissionScope,
    StructuredPermission,
    expand_graph,
    find_cycle,
)


def _chain() -> RoleHierarchy:
    """a inherits b inherits c."""
    return RoleHierarchy(
        [
            RoleDefinition(id="c", permissions=["reports:read"], priority=1),
            RoleDefinition(id="b", permissions=["reports:update"], inherits=["c"], priority=5),
            RoleDefinition(id="a", permissions=["reports:delete"], inherits=["b"], priority=10),
        ]
    )


class TestGraphUtilities:
    """Tests for expand_graph and find_cycle."""

    def test_expand_graph_reaches_all(self) -> None:
        graph = {"a": ["b"], "b": ["c"], "c": []}
        assert expand_graph(["a"], lambda n: graph.get(n, ())) == {"b", "c"}

    def test_expand_graph_terminates_on_cycle(self) -> None:
        graph = {"a": ["b"], "b": ["c", "a"], "c": []}
        assert expand_graph(["a"], lambda n: graph.get(n, ())) == {"a", "b", "c"}

    def test_find_cycle_path(self) -> None:
        graph = {"a": ["b"], "b": ["a"]}
        assert find_cycle("a", lambda n: graph.get(n, ())) == ["a", "b", "a"]

    def test_find_cycle_none(self) -> None:
        graph = {"a": ["b"], "b": []}
        assert find_cycle("a", lambda n: graph.get(n, ())) is None


class TestRoleHierarchy:
    """Tests for RoleHierarchy queries."""

    def test_inheritance_soundness(self) -> None:
        """A inherits B inherits C => effective(A) contains effective(C)."""
        hierarchy = _chain()
        assert hierarchy.get_effective_permissions("a") >= hierarchy.get_effective_permissions("c")
        assert hierarchy.get_effective_permissions("a") == frozenset(
            {"reports:read", "reports:update", "reports:delete"}
        )

    def test_parents_children(self) -> None:
        hierarchy = _chain()
        assert hierarchy.get_parents("a") == ["b"]
        assert hierarchy.get_children("c") == ["b"]
        assert hierarchy.get_parents("unknown") == []

    def test_ancestors_and_descendants(self) -> None:
        hierarchy = _chain()
        assert hierarchy.get_ancestors("a") == frozenset({"b", "c"})
        assert hierarchy.get_descendants("c") == frozenset({"a", "b"})
        assert hierarchy.inherits_from("a", "c")
        assert not hierarchy.inherits_from("c", "a")

    def test_levels(self) -> None:
        hierarchy = _chain()
        assert hierarchy.get_level("c") == 0
        assert hierarchy.get_level("b") == 1
        assert hierarchy.get_level("a") == 2
        node = hierarchy.get_hierarchy("a")
        assert node is not None
        assert node.level == 2

    def test_root_and_leaf_roles(self) -> None:
        hierarchy = _chain()
        assert hierarchy.get_root_roles() == ["c"]
        assert hierarchy.get_leaf_roles() == ["a"]

    def test_has_permission_with_wildcard(self) -> None:
        hierarchy = RoleHierarchy([RoleDefinition(id="admin", permissions=["*"])])
        assert hierarchy.has_permission("admin", "documents:delete")

    def test_unknown_role_has_no_permissions(self) -> None:
        assert _chain().get_effective_permissions("ghost") == frozenset()

    def test_inactive_role_contributes_nothing(self) -> None:
        """Inactive roles are skipped and not expanded through."""
        hierarchy = RoleHierarchy(
            [
                RoleDefinition(id="base", permissions=["reports:read"]),
                RoleDefinition(id="mid", permissions=["reports:update"], inherits=["base"], is_active=False),
                RoleDefinition(id="top", permissions=["reports:delete"], inherits=["mid"]),
            ]
        )
        assert hierarchy.get_effective_permissions("top") == frozenset({"reports:delete"})
        assert hierarchy.get_effective_permissions("mid") == frozenset()

    def test_structured_permissions_and_denials(self) -> None:
        hierarchy = RoleHierarchy(
            [
                RoleDefinition(
                    id="editor",
                    permissions=["documents:*"],
                    structured_permissions=[
                        StructuredPermission(resource="documents", action=PermissionAction.EXPORT, scope=PermissionScope.OWN),
                        StructuredPermission(resource="documents", action=PermissionAction.DELETE, deny=True),
                    ],
                )
            ]
        )
        assert "documents:export:own" in hierarchy.get_effective_permissions("editor")
        assert hierarchy.get_effective_denials("editor") == frozenset({"documents:delete"})

    def test_cache_cleared_on_mutation(self) -> None:
        hierarchy = _chain()
        assert "reports:export" not in hierarchy.get_effective_permissions("a")
        hierarchy.update_role("c", permissions=["reports:read", "reports:export"])
        assert "reports:export" in hierarchy.get_effective_permissions("a")
        hierarchy.remove_role("b")
        assert hierarchy.get_effective_permissions("a") == frozenset({"reports:delete"})

    def test_effective_permissions_for_roles(self) -> None:
        hierarchy = RoleHierarchy(
            [
                RoleDefinition(id="x", permissions=["a:read"]),
                RoleDefinition(id="y", permissions=["b:read"]),
            ]
        )
        assert hierarchy.get_effective_permissions_for_roles(["x", "y"]) == frozenset({"a:read", "b:read"})

    def test_invalid_permission_rejected_at_construction(self) -> None:
        """Malformed permission strings fail role validation eagerly."""
        with pytest.raises(ValidationError):
            RoleDefinition(id="bad", permissions=["documents"])


class TestRolePriority:
    """Tests for priority comparison helpers."""

    def test_compare_roles(self) -> None:
        hierarchy = _chain()
        assert hierarchy.compare_roles("a", "c") > 0
        assert hierarchy.compare_roles("a", "ghost") == 0

    def test_highest_priority(self) -> None:
        hierarchy = _chain()
        assert hierarchy.get_highest_priority_role(["c", "a", "b"]) == "a"
        assert hierarchy.get_highest_priority_role(["ghost"]) is None

    def test_sort_by_priority(self) -> None:
        assert _chain().sort_by_priority(["c", "a", "b"]) == ["a", "b", "c"]


class TestValidation:
    """Tests for cycle detection and validation."""

    def _cyclic(self) -> RoleHierarchy:
        return RoleHierarchy(
            [
                RoleDefinition(id="a", permissions=["x:read"], inherits=["b"]),
                RoleDefinition(id="b", permissions=["y:read"], inherits=["a"]),
            ]
        )

    def test_cycle_resolution_terminates(self) -> None:
        """Effective permissions on a cyclic role are finite."""
        hierarchy = self._cyclic()
        assert hierarchy.get_effective_permissions("a") == frozenset({"x:read", "y:read"})
        assert hierarchy.get_ancestors("a") == frozenset({"b"})

    def test_detect_cycles_reports_once(self) -> None:
        cycles = self._cyclic().detect_cycles()
        assert len(cycles) == 1
        assert cycles[0].startswith("Cycle detected: ")
        assert cycles[0] in ("Cycle detected: a -> b -> a", "Cycle detected: b -> a -> b")

    def test_self_cycle(self) -> None:
        hierarchy = RoleHierarchy([RoleDefinition(id="loop", inherits=["loop"])])
        assert hierarchy.detect_cycles() == ["Cycle detected: loop -> loop"]
        assert hierarchy.get_effective_permissions("loop") == frozenset()

    def test_missing_parent(self) -> None:
        hierarchy = RoleHierarchy([RoleDefinition(id="child", inherits=["ghost"])])
        assert hierarchy.validate() == ["Role 'child' references missing parent 'ghost'"]

    def test_duplicate_ids(self) -> None:
        hierarchy = RoleHierarchy(
            [
                RoleDefinition(id="dup", permissions=["a:read"]),
                RoleDefinition(id="dup", permissions=["b:read"]),
            ]
        )
        assert "Duplicate role ID: dup" in hierarchy.validate()
        assert hierarchy.get_effective_permissions("dup") == frozenset({"b:read"})

    def test_sound_hierarchy_has_no_errors(self) -> None:
        assert _chain().validate() == []


class TestStandardHierarchy:
    """Tests for the STANDARD_ROLE_HIERARCHY preset."""

    def test_preset_is_valid(self) -> None:
        assert RoleHierarchy(STANDARD_ROLE_HIERARCHY).validate() == []

    def test_admin_inherits_guest(self) -> None:
        hierarchy = RoleHierarchy(STANDARD_ROLE_HIERARCHY)
        assert hierarchy.inherits_from("admin", "guest")
        assert hierarchy.has_permission("admin", "public:read")
        assert hierarchy.has_permission("manager", "documents:update:team")
        assert not hierarchy.has_permission("user", "documents:update")

    def test_super_admin_wildcard(self) -> None:
        hierarchy = RoleHierarchy(STANDARD_ROLE_HIERARCHY)
        assert hierarchy.has_permission("super_admin", "billing:delete")
