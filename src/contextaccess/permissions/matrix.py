"""Role x resource permission matrix.

Provides:
- ``PermissionMatrixBuilder`` — fluent builder producing an immutable
  ``PermissionMatrix``.
- ``evaluate_permission_matrix()`` — matrix decision for a request, with
  ``deny-wins`` / ``allow-wins`` / ``priority`` conflict resolution.
- Filters, merge, validation and the ``create_standard_matrix()`` preset.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Mapping, Optional, Sequence

from .access import scope_applies
from .conditions import evaluate_permission_condition
from .constants import (
    CRUD_ACTIONS,
    FULL_ACCESS_ACTIONS,
    READ_ONLY_ACTIONS,
    WILDCARD,
    ConflictResolution,
    Decision,
    Effect,
    PermissionAction,
    PermissionScope,
)
from .models import (
    AccessRequest,
    EvaluationResult,
    PermissionCondition,
    PermissionMatrix,
    PermissionMatrixEntry,
)

logger = logging.getLogger(__name__)


# ── Builder ─────────────────────────────────────────────


class PermissionMatrixBuilder:
    """Fluent builder for :class:`PermissionMatrix`.

    Example::

        matrix = (
            PermissionMatrixBuilder()
            .set_conflict_resolution(ConflictResolution.DENY_WINS)
            .grant_full_access("admin")
            .grant_crud("editor", "documents")
            .deny_actions("editor", "documents", [PermissionAction.DELETE])
            .build()
        )
    """

    def __init__(self) -> None:
        self._entries: list[PermissionMatrixEntry] = []
        self._default_behavior = Effect.DENY
        self._conflict_resolution = ConflictResolution.DENY_WINS
        self._version = "1.0.0"

    def set_default_behavior(self, behavior: Effect | str) -> PermissionMatrixBuilder:
        self._default_behavior = Effect(behavior)
        return self

    def set_conflict_resolution(self, strategy: ConflictResolution | str) -> PermissionMatrixBuilder:
        self._conflict_resolution = ConflictResolution(strategy)
        return self

    def set_version(self, version: str) -> PermissionMatrixBuilder:
        self._version = version
        return self

    def add_entry(self, entry: PermissionMatrixEntry) -> PermissionMatrixBuilder:
        self._entries.append(entry)
        return self

    def add_entries(self, entries: Iterable[PermissionMatrixEntry]) -> PermissionMatrixBuilder:
        self._entries.extend(entries)
        return self

    def grant_full_access(self, role_id: str) -> PermissionMatrixBuilder:
        return self.add_entry(
            PermissionMatrixEntry(role_id=role_id, resource=WILDCARD, allowed_actions=FULL_ACCESS_ACTIONS)
        )

    def grant_read_only(
        self, role_id: str, resource: str, scope: Optional[PermissionScope] = None
    ) -> PermissionMatrixBuilder:
        return self.add_entry(
            PermissionMatrixEntry(role_id=role_id, resource=resource, allowed_actions=READ_ONLY_ACTIONS, scope=scope)
        )

    def grant_crud(
        self, role_id: str, resource: str, scope: Optional[PermissionScope] = None
    ) -> PermissionMatrixBuilder:
        return self.add_entry(
            PermissionMatrixEntry(
                role_id=role_id,
                resource=resource,
                allowed_actions=(*CRUD_ACTIONS, PermissionAction.LIST),
                scope=scope,
            )
        )

    def deny_actions(
        self, role_id: str, resource: str, actions: Sequence[PermissionAction | str]
    ) -> PermissionMatrixBuilder:
        return self.add_entry(PermissionMatrixEntry(role_id=role_id, resource=resource, denied_actions=actions))

    def add_conditional_entry(
        self, entry: PermissionMatrixEntry, conditions: Iterable[PermissionCondition]
    ) -> PermissionMatrixBuilder:
        return self.add_entry(entry.model_copy(update={"conditions": tuple(conditions)}))

    def clear(self) -> PermissionMatrixBuilder:
        self._entries = []
        return self

    def remove_role_entries(self, role_id: str) -> PermissionMatrixBuilder:
        self._entries = [e for e in self._entries if e.role_id != role_id]
        return self

    def remove_resource_entries(self, resource: str) -> PermissionMatrixBuilder:
        self._entries = [e for e in self._entries if e.resource != resource]
        return self

    def build(self) -> PermissionMatrix:
        return PermissionMatrix(
            entries=tuple(self._entries),
            default_behavior=self._default_behavior,
            conflict_resolution=self._conflict_resolution,
            version=self._version,
        )


# ── Evaluation ──────────────────────────────────────────


def _result(allowed: bool, decision: Decision, reason: str) -> EvaluationResult:
    return EvaluationResult(allowed=allowed, decision=decision, reason=reason)


def _mentions(actions: Sequence[str], action: str) -> bool:
    return action in actions or WILDCARD in actions


def _entry_applies(entry: PermissionMatrixEntry, request: AccessRequest) -> bool:
    subject_attrs = request.subject.attributes
    resource_attrs = request.resource.attributes
    scope = entry.scope.value if entry.scope is not None else None
    if not scope_applies(scope, request.subject.id, subject_attrs, resource_attrs):
        return False
    return all(evaluate_permission_condition(c, resource_attrs, subject_attrs) for c in entry.conditions)


def _resolve_by_priority(
    entries: Sequence[PermissionMatrixEntry],
    action: str,
    role_priority: Mapping[str, int],
) -> bool:
    """Return True (allow) or False (deny) from the top-priority entries.

    Entries are ordered by role priority (descending, stable). Among the
    highest-priority entries mentioning the action, deny wins.
    """
    ranked = sorted(entries, key=lambda e: role_priority.get(e.role_id, 0), reverse=True)
    top: Optional[int] = None
    allowed = False
    for entry in ranked:
        priority = role_priority.get(entry.role_id, 0)
        if top is not None and priority < top:
            break
        if _mentions(entry.denied_actions, action):
            return False
        if _mentions(entry.allowed_actions, action):
            top = priority
            allowed = True
    return allowed


def evaluate_permission_matrix(
    matrix: PermissionMatrix,
    request: AccessRequest,
    roles: Iterable[str],
    role_priority: Mapping[str, int] | None = None,
) -> EvaluationResult:
    """Decide a request from the matrix.

    No entry for the caller's roles -> the matrix default behaviour.
    Entries exist but none mentions the action -> ``not-applicable``.
    """
    role_set = set(roles)
    action = request.action
    candidates = [
        e for e in matrix.entries if e.role_id in role_set and e.resource in (WILDCARD, request.resource.type)
    ]

    if not candidates:
        allowed = matrix.default_behavior == Effect.ALLOW
        return _result(allowed, Decision.ALLOW if allowed else Decision.DENY, "no_matching_matrix_entry")

    applicable = [e for e in candidates if _entry_applies(e, request)]
    has_deny = any(_mentions(e.denied_actions, action) for e in applicable)
    has_allow = any(_mentions(e.allowed_actions, action) for e in applicable)

    if has_deny and has_allow:
        strategy = matrix.conflict_resolution
        logger.debug("Matrix conflict on %s:%s resolved by %s", request.resource.type, action, strategy.value)
        if strategy == ConflictResolution.ALLOW_WINS:
            return _result(True, Decision.ALLOW, "conflict_allow_wins")
        if strategy == ConflictResolution.PRIORITY:
            allowed = _resolve_by_priority(applicable, action, role_priority or {})
            return _result(allowed, Decision.ALLOW if allowed else Decision.DENY, "conflict_priority")
        return _result(False, Decision.DENY, "conflict_deny_wins")

    if has_deny:
        return _result(False, Decision.DENY, "matrix_deny")
    if has_allow:
        return _result(True, Decision.ALLOW, "matrix_allow")
    return _result(False, Decision.NOT_APPLICABLE, "no_applicable_entry")


# ── Queries ─────────────────────────────────────────────


def filter_entries_by_role(matrix: PermissionMatrix, role_ids: Iterable[str]) -> list[PermissionMatrixEntry]:
    wanted = set(role_ids)
    return [e for e in matrix.entries if e.role_id in wanted]


def filter_entries_by_resource(matrix: PermissionMatrix, resource: str) -> list[PermissionMatrixEntry]:
    """Entries for ``resource`` including wildcard-resource entries."""
    return [e for e in matrix.entries if e.resource in (resource, WILDCARD)]


def get_defined_resources(matrix: PermissionMatrix) -> list[str]:
    return sorted({e.resource for e in matrix.entries if e.resource != WILDCARD})


def get_defined_roles(matrix: PermissionMatrix) -> list[str]:
    return sorted({e.role_id for e in matrix.entries})


def merge_permission_matrices(
    matrices: Iterable[PermissionMatrix],
    *,
    default_behavior: Effect = Effect.DENY,
    conflict_resolution: ConflictResolution = ConflictResolution.DENY_WINS,
) -> PermissionMatrix:
    """Concatenate entries of several matrices into a new one."""
    entries: list[PermissionMatrixEntry] = []
    for matrix in matrices:
        entries.extend(matrix.entries)
    return PermissionMatrix(
        entries=tuple(entries),
        default_behavior=default_behavior,
        conflict_resolution=conflict_resolution,
        version=str(int(time.time() * 1000)),
    )


def validate_permission_matrix(matrix: PermissionMatrix) -> list[str]:
    """Return consistency errors (empty when the matrix is sound)."""
    errors: list[str] = []
    known = PermissionAction.values()

    for index, entry in enumerate(matrix.entries):
        prefix = f"Entry at index {index}"
        if not entry.role_id:
            errors.append(f"{prefix}: role_id is required")
        if not entry.resource:
            errors.append(f"{prefix}: resource is required")
        for action in entry.allowed_actions:
            if action not in known:
                errors.append(f"{prefix}: invalid action '{action}'")
        for action in entry.denied_actions:
            if action not in known:
                errors.append(f"{prefix}: invalid denied action '{action}'")

        overlap = [a for a in entry.allowed_actions if a in entry.denied_actions]
        if overlap:
            errors.append(f"{prefix}: conflicting allow/deny for actions: {', '.join(overlap)}")

    return errors


# ── Presets ─────────────────────────────────────────────


def create_standard_matrix(
    resources: Iterable[str],
    *,
    admin_role: str = "admin",
    manager_role: str = "manager",
    user_role: str = "user",
    guest_role: str = "guest",
) -> PermissionMatrix:
    """Common four-tier matrix.

    - admin: full access
    - manager: CRUD, list, export and approve within the team
    - user: CRUD on own resources, read/list within the team
    - guest: read on anything flagged ``is_public``
    """
    builder = (
        PermissionMatrixBuilder()
        .set_default_behavior(Effect.DENY)
        .set_conflict_resolution(ConflictResolution.DENY_WINS)
        .grant_full_access(admin_role)
    )

    for resource in resources:
        builder.add_entry(
            PermissionMatrixEntry(
                role_id=manager_role,
                resource=resource,
                allowed_actions=(*CRUD_ACTIONS, PermissionAction.LIST, PermissionAction.EXPORT, PermissionAction.APPROVE),
                scope=PermissionScope.TEAM,
            )
        )
        builder.grant_crud(user_role, resource, PermissionScope.OWN)
        builder.grant_read_only(user_role, resource, PermissionScope.TEAM)

    builder.add_conditional_entry(
        PermissionMatrixEntry(role_id=guest_role, resource=WILDCARD, allowed_actions=(PermissionAction.READ,)),
        [PermissionCondition(field="is_public", operator="equals", value=True)],
    )
    return builder.build()


__all__ = [
    "PermissionMatrixBuilder",
    "create_standard_matrix",
    "evaluate_permission_matrix",
    "filter_entries_by_resource",
    "filter_entries_by_role",
    "get_defined_resources",
    "get_defined_roles",
    "merge_permission_matrices",
    "validate_permission_matrix",
]
