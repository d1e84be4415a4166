"""Role inheritance: graph traversal, permission resolution, validation.

Provides:
- ``expand_graph()`` / ``find_cycle()`` — traversal utilities shared by all
  hierarchy operations. Both terminate on cyclic graphs.
- ``RoleHierarchy`` — role registry with cached ancestor and effective
  permission resolution.
- ``STANDARD_ROLE_HIERARCHY`` — a common five-role preset.

A role that ``inherits`` another receives all of its permissions, so the
inherited role is an *ancestor* (parent) and the inheriting role one of its
*descendants* (children).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from .access import has_permission as set_has_permission
from .models import RoleDefinition

logger = logging.getLogger(__name__)


# ── Graph Traversal ─────────────────────────────────────


def expand_graph(seeds: Iterable[str], edges: Callable[[str], Iterable[str]]) -> set[str]:
    """Collect every node reachable from ``seeds`` (excluding the seeds
    themselves unless reachable through an edge).

    Each node is expanded at most once, so cycles terminate.

    Example::

        graph = {"a": ["b"], "b": ["c", "a"], "c": []}
        expand_graph(["a"], lambda n: graph.get(n, ()))  # {"a", "b", "c"}
    """
    reached: set[str] = set()
    expanded: set[str] = set()
    queue = list(seeds)

    while queue:
        node = queue.pop()
        if node in expanded:
            continue
        expanded.add(node)
        for child in edges(node):
            reached.add(child)
            if child not in expanded:
                queue.append(child)

    return reached


def find_cycle(start: str, edges: Callable[[str], Iterable[str]], visited: set[str] | None = None) -> list[str] | None:
    """Path-tracking DFS from ``start``.

    Returns the offending path (first node repeated at the end, e.g.
    ``["a", "b", "a"]``) or None. ``visited`` may be shared across calls to
    skip nodes already proven cycle-free.
    """
    done = visited if visited is not None else set()
    path: list[str] = []
    on_path: set[str] = set()

    def visit(node: str) -> list[str] | None:
        if node in on_path:
            return path[path.index(node) :] + [node]
        if node in done:
            return None
        on_path.add(node)
        path.append(node)
        for child in edges(node):
            cycle = visit(child)
            if cycle is not None:
                return cycle
        path.pop()
        on_path.discard(node)
        done.add(node)
        return None

    return visit(start)


# ── Role Hierarchy ──────────────────────────────────────


@dataclass
class HierarchyNode:
    """Position of a role in the hierarchy (level 0 = root)."""

    role_id: str
    parents: list[str] = field(default_factory=list)
    children: list[str] = field(default_factory=list)
    level: int = 0


class RoleHierarchy:
    """Registry of roles with inheritance-aware permission resolution.

    Derived data (ancestors, effective permissions) is cached per role and
    dropped on every mutation. Structural problems (missing parents,
    duplicate ids, cycles) are reported by :meth:`validate`, never raised.

    Example::

        hierarchy = RoleHierarchy([
            RoleDefinition(id="viewer", permissions=["documents:read"]),
            RoleDefinition(id="editor", permissions=["documents:update"], inherits=["viewer"]),
        ])
        hierarchy.get_effective_permissions("editor")
        # frozenset({"documents:read", "documents:update"})
    """

    def __init__(self, roles: Iterable[RoleDefinition] | None = None) -> None:
        self._roles: dict[str, RoleDefinition] = {}
        self._duplicates: list[str] = []
        self._nodes: dict[str, HierarchyNode] = {}
        self._permission_cache: dict[str, frozenset[str]] = {}
        self._denial_cache: dict[str, frozenset[str]] = {}
        self._ancestor_cache: dict[str, frozenset[str]] = {}
        if roles:
            self.add_roles(roles)

    # ── Role management ──

    def add_role(self, role: RoleDefinition) -> None:
        self._roles[role.id] = role
        self._rebuild()

    def add_roles(self, roles: Iterable[RoleDefinition]) -> None:
        for role in roles:
            if role.id in self._roles:
                self._duplicates.append(role.id)
            self._roles[role.id] = role
        self._rebuild()

    def remove_role(self, role_id: str) -> None:
        self._roles.pop(role_id, None)
        self._duplicates = [d for d in self._duplicates if d != role_id]
        self._rebuild()

    def update_role(self, role_id: str, **updates: Any) -> None:
        """Apply partial updates to an existing role (no-op if unknown)."""
        existing = self._roles.get(role_id)
        if existing is None:
            return
        data = existing.model_dump()
        data.update(updates)
        self._roles[role_id] = RoleDefinition.model_validate(data)
        self._rebuild()

    def get_role(self, role_id: str) -> RoleDefinition | None:
        return self._roles.get(role_id)

    def get_all_roles(self) -> list[RoleDefinition]:
        return list(self._roles.values())

    def has_role(self, role_id: str) -> bool:
        return role_id in self._roles

    # ── Hierarchy queries ──

    def get_hierarchy(self, role_id: str) -> HierarchyNode | None:
        return self._nodes.get(role_id)

    def get_parents(self, role_id: str) -> list[str]:
        node = self._nodes.get(role_id)
        return list(node.parents) if node else []

    def get_children(self, role_id: str) -> list[str]:
        node = self._nodes.get(role_id)
        return list(node.children) if node else []

    def get_ancestors(self, role_id: str) -> frozenset[str]:
        """All roles ``role_id`` inherits from, transitively."""
        cached = self._ancestor_cache.get(role_id)
        if cached is not None:
            return cached
        ancestors = frozenset(expand_graph([role_id], self._parents_of) - {role_id})
        self._ancestor_cache[role_id] = ancestors
        return ancestors

    def get_descendants(self, role_id: str) -> frozenset[str]:
        """All roles inheriting from ``role_id``, transitively."""
        return frozenset(expand_graph([role_id], self.get_children) - {role_id})

    def inherits_from(self, role_id: str, ancestor_id: str) -> bool:
        return ancestor_id in self.get_ancestors(role_id)

    def get_level(self, role_id: str) -> int:
        node = self._nodes.get(role_id)
        return node.level if node else 0

    def get_root_roles(self) -> list[str]:
        return [n.role_id for n in self._nodes.values() if not n.parents]

    def get_leaf_roles(self) -> list[str]:
        return [n.role_id for n in self._nodes.values() if not n.children]

    # ── Permission resolution ──

    def get_effective_permissions(self, role_id: str) -> frozenset[str]:
        """Own plus inherited permission strings. Finite even on cycles."""
        cached = self._permission_cache.get(role_id)
        if cached is not None:
            return cached

        permissions: set[str] = set()
        for rid in self._active_lineage(role_id):
            role = self._roles[rid]
            permissions.update(role.permissions)
            permissions.update(sp.to_permission_string() for sp in role.structured_permissions if not sp.deny)

        result = frozenset(permissions)
        self._permission_cache[role_id] = result
        return result

    def get_effective_denials(self, role_id: str) -> frozenset[str]:
        """Permission strings explicitly denied through structured permissions."""
        cached = self._denial_cache.get(role_id)
        if cached is not None:
            return cached

        denials = frozenset(
            sp.to_permission_string()
            for rid in self._active_lineage(role_id)
            for sp in self._roles[rid].structured_permissions
            if sp.deny
        )
        self._denial_cache[role_id] = denials
        return denials

    def get_effective_permissions_for_roles(self, role_ids: Iterable[str]) -> frozenset[str]:
        permissions: set[str] = set()
        for role_id in role_ids:
            permissions.update(self.get_effective_permissions(role_id))
        return frozenset(permissions)

    def get_effective_denials_for_roles(self, role_ids: Iterable[str]) -> frozenset[str]:
        denials: set[str] = set()
        for role_id in role_ids:
            denials.update(self.get_effective_denials(role_id))
        return frozenset(denials)

    def has_permission(self, role_id: str, permission: str) -> bool:
        """Check a permission against the role's effective set with wildcards."""
        return set_has_permission(self.get_effective_permissions(role_id), permission)

    # ── Comparison ──

    def compare_roles(self, role_a: str, role_b: str) -> int:
        """Priority difference (a - b); 0 if either role is unknown."""
        a = self._roles.get(role_a)
        b = self._roles.get(role_b)
        if a is None or b is None:
            return 0
        return a.priority - b.priority

    def get_highest_priority_role(self, role_ids: Iterable[str]) -> str | None:
        best: RoleDefinition | None = None
        for role_id in role_ids:
            role = self._roles.get(role_id)
            if role is not None and (best is None or role.priority > best.priority):
                best = role
        return best.id if best else None

    def sort_by_priority(self, role_ids: Sequence[str]) -> list[str]:
        """Highest priority first; unknown roles sort as priority 0."""
        return sorted(role_ids, key=lambda r: self.priority_of(r), reverse=True)

    def priority_of(self, role_id: str) -> int:
        role = self._roles.get(role_id)
        return role.priority if role else 0

    def priorities(self) -> Mapping[str, int]:
        return {role_id: role.priority for role_id, role in self._roles.items()}

    # ── Validation ──

    def detect_cycles(self) -> list[str]:
        """Report each inheritance cycle once as ``"Cycle detected: a -> b -> a"``."""
        cycles: list[str] = []
        seen: set[frozenset[str]] = set()
        visited: set[str] = set()

        for role_id in self._roles:
            path = find_cycle(role_id, self._parents_of, visited)
            if path is None:
                continue
            members = frozenset(path)
            if members in seen:
                continue
            seen.add(members)
            cycles.append(f"Cycle detected: {' -> '.join(path)}")

        return cycles

    def validate(self) -> list[str]:
        """Return configuration errors; empty list means a sound hierarchy."""
        errors: list[str] = []

        for role in self._roles.values():
            for parent_id in role.inherits:
                if parent_id not in self._roles:
                    errors.append(f"Role '{role.id}' references missing parent '{parent_id}'")

        errors.extend(self.detect_cycles())

        for role_id in dict.fromkeys(self._duplicates):
            errors.append(f"Duplicate role ID: {role_id}")

        return errors

    # ── Internals ──

    def _parents_of(self, role_id: str) -> list[str]:
        role = self._roles.get(role_id)
        return list(role.inherits) if role else []

    def _active_parents_of(self, role_id: str) -> list[str]:
        return [p for p in self._parents_of(role_id) if self._is_active(p)]

    def _is_active(self, role_id: str) -> bool:
        role = self._roles.get(role_id)
        return role is not None and role.is_active

    def _active_lineage(self, role_id: str) -> list[str]:
        """The role itself plus active ancestors reachable through active roles."""
        if not self._is_active(role_id):
            return []
        return [role_id] + sorted(expand_graph([role_id], self._active_parents_of) - {role_id})

    def _rebuild(self) -> None:
        self._nodes = {
            role.id: HierarchyNode(role_id=role.id, parents=list(role.inherits))
            for role in self._roles.values()
        }
        for role in self._roles.values():
            for parent_id in role.inherits:
                parent = self._nodes.get(parent_id)
                if parent is not None and role.id not in parent.children:
                    parent.children.append(role.id)

        self._calculate_levels()
        self._permission_cache.clear()
        self._denial_cache.clear()
        self._ancestor_cache.clear()

    def _calculate_levels(self) -> None:
        levels: dict[str, int] = {}
        in_progress: set[str] = set()

        def level(role_id: str) -> int:
            if role_id in levels:
                return levels[role_id]
            node = self._nodes.get(role_id)
            if node is None or role_id in in_progress:
                return 0
            in_progress.add(role_id)
            parents = [p for p in node.parents if p in self._nodes]
            value = 1 + max(level(p) for p in parents) if parents else 0
            in_progress.discard(role_id)
            levels[role_id] = value
            node.level = value
            return value

        for role_id in self._nodes:
            level(role_id)


# ── Presets ─────────────────────────────────────────────

STANDARD_ROLE_HIERARCHY: tuple[RoleDefinition, ...] = (
    RoleDefinition(id="super_admin", name="Super Administrator", permissions=["*"], priority=1000, is_system=True),
    RoleDefinition(
        id="admin",
        name="Administrator",
        permissions=["users:*", "roles:*", "settings:*"],
        inherits=["manager"],
        priority=100,
    ),
    RoleDefinition(
        id="manager",
        name="Manager",
        permissions=["reports:*", "documents:*:team", "users:read"],
        inherits=["user"],
        priority=50,
    ),
    RoleDefinition(
        id="user",
        name="User",
        permissions=["profile:*:own", "documents:*:own"],
        inherits=["guest"],
        priority=10,
    ),
    RoleDefinition(id="guest", name="Guest", permissions=["public:read"], priority=1),
)


__all__ = [
    "STANDARD_ROLE_HIERARCHY",
    "HierarchyNode",
    "RoleHierarchy",
    "expand_graph",
    "find_cycle",
]
