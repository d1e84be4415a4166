"""Tests for the permission matrix."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from contextaccess import (
    AccessRequest,
    ConflictResolution,
    Decision,
    Effect,
    PermissionAction,
    PermissionMatrix,
    PermissionMatrixBuilder,
    PermissionMatrixEntry,
    RequestResource,
    RequestSubject,
)
from contextaccess.permissions import (
    PermissionCondition,
    PermissionScope,
    create_standard_matrix,
    evaluate_permission_matrix,
    filter_entries_by_resource,
    filter_entries_by_role,
    get_defined_resources,
    get_defined_roles,
    merge_permission_matrices,
    validate_permission_matrix,
)


def _request(action: str = "delete", resource: str = "documents", **attributes: object) -> AccessRequest:
    return AccessRequest(
        subject=RequestSubject(id="u1", attributes={"team_id": "t1"}),
        resource=RequestResource(type=resource, id="doc-1", attributes=dict(attributes)),
        action=action,
    )


def _conflicting(strategy: ConflictResolution) -> PermissionMatrix:
    return (
        PermissionMatrixBuilder()
        .set_conflict_resolution(strategy)
        .add_entry(PermissionMatrixEntry(role_id="editor", resource="documents", allowed_actions=["delete"]))
        .deny_actions("editor", "documents", [PermissionAction.DELETE])
        .build()
    )


class TestPermissionMatrixBuilder:
    """Tests for the fluent builder."""

    def test_build_defaults(self) -> None:
        matrix = PermissionMatrixBuilder().build()
        assert matrix.entries == ()
        assert matrix.default_behavior == Effect.DENY
        assert matrix.conflict_resolution == ConflictResolution.DENY_WINS

    def test_grant_helpers(self) -> None:
        matrix = (
            PermissionMatrixBuilder()
            .set_version("2.0.0")
            .grant_full_access("admin")
            .grant_crud("editor", "documents")
            .grant_read_only("viewer", "documents")
            .build()
        )
        assert matrix.version == "2.0.0"
        assert matrix.entries[0].allowed_actions == ("*",)
        assert set(matrix.entries[1].allowed_actions) == {"create", "read", "update", "delete", "list"}
        assert matrix.entries[2].allowed_actions == ("read", "list")

    def test_remove_and_clear(self) -> None:
        builder = PermissionMatrixBuilder().grant_crud("editor", "documents").grant_crud("editor", "reports")
        assert len(builder.remove_resource_entries("reports").build().entries) == 1
        assert builder.remove_role_entries("editor").build().entries == ()
        assert builder.grant_full_access("admin").clear().build().entries == ()

    def test_conditional_entry(self) -> None:
        condition = PermissionCondition(field="status", operator="equals", value="draft")
        matrix = (
            PermissionMatrixBuilder()
            .add_conditional_entry(
                PermissionMatrixEntry(role_id="editor", resource="documents", allowed_actions=["update"]),
                [condition],
            )
            .build()
        )
        assert matrix.entries[0].conditions == (condition,)

    def test_matrix_is_immutable(self) -> None:
        matrix = PermissionMatrixBuilder().build()
        with pytest.raises(ValidationError):
            matrix.version = "x"  # type: ignore[misc]


class TestEvaluatePermissionMatrix:
    """Tests for matrix decisions and conflict resolution."""

    def test_deny_wins(self) -> None:
        result = evaluate_permission_matrix(_conflicting(ConflictResolution.DENY_WINS), _request(), ["editor"])
        assert result.allowed is False
        assert result.reason == "conflict_deny_wins"

    def test_allow_wins(self) -> None:
        result = evaluate_permission_matrix(_conflicting(ConflictResolution.ALLOW_WINS), _request(), ["editor"])
        assert result.allowed is True
        assert result.reason == "conflict_allow_wins"

    def test_priority_higher_role_decides(self) -> None:
        matrix = (
            PermissionMatrixBuilder()
            .set_conflict_resolution(ConflictResolution.PRIORITY)
            .deny_actions("viewer", "documents", ["delete"])
            .add_entry(PermissionMatrixEntry(role_id="owner", resource="documents", allowed_actions=["delete"]))
            .build()
        )
        result = evaluate_permission_matrix(matrix, _request(), ["viewer", "owner"], {"owner": 10, "viewer": 1})
        assert result.allowed is True
        assert result.reason == "conflict_priority"

    def test_priority_tie_denies(self) -> None:
        result = evaluate_permission_matrix(_conflicting(ConflictResolution.PRIORITY), _request(), ["editor"])
        assert result.allowed is False

    def test_no_entries_uses_default(self) -> None:
        matrix = PermissionMatrixBuilder().set_default_behavior(Effect.ALLOW).build()
        result = evaluate_permission_matrix(matrix, _request(), ["editor"])
        assert result.allowed is True
        assert result.reason == "no_matching_matrix_entry"

    def test_entries_without_action_not_applicable(self) -> None:
        matrix = PermissionMatrixBuilder().grant_read_only("editor", "documents").build()
        result = evaluate_permission_matrix(matrix, _request("delete"), ["editor"])
        assert result.decision == Decision.NOT_APPLICABLE
        assert result.allowed is False

    def test_wildcard_resource_and_action(self) -> None:
        matrix = PermissionMatrixBuilder().grant_full_access("admin").build()
        result = evaluate_permission_matrix(matrix, _request("export", "invoices"), ["admin"])
        assert result.allowed is True
        assert result.reason == "matrix_allow"

    def test_only_deny(self) -> None:
        matrix = PermissionMatrixBuilder().deny_actions("editor", "documents", ["*"]).build()
        assert evaluate_permission_matrix(matrix, _request(), ["editor"]).reason == "matrix_deny"

    def test_condition_must_hold(self) -> None:
        matrix = (
            PermissionMatrixBuilder()
            .add_conditional_entry(
                PermissionMatrixEntry(role_id="editor", resource="documents", allowed_actions=["update"]),
                [PermissionCondition(field="status", operator="equals", value="draft")],
            )
            .build()
        )
        assert evaluate_permission_matrix(matrix, _request("update", status="draft"), ["editor"]).allowed
        result = evaluate_permission_matrix(matrix, _request("update", status="final"), ["editor"])
        assert result.decision == Decision.NOT_APPLICABLE

    def test_condition_from_subject_attribute(self) -> None:
        """context_key compares the resource field with a subject attribute."""
        matrix = (
            PermissionMatrixBuilder()
            .add_conditional_entry(
                PermissionMatrixEntry(role_id="member", resource="documents", allowed_actions=["read"]),
                [PermissionCondition(field="team_id", operator="equals", context_key="team_id")],
            )
            .build()
        )
        assert evaluate_permission_matrix(matrix, _request("read", team_id="t1"), ["member"]).allowed
        assert not evaluate_permission_matrix(matrix, _request("read", team_id="t9"), ["member"]).allowed

    def test_scoped_entry(self) -> None:
        matrix = PermissionMatrixBuilder().grant_crud("user", "documents", PermissionScope.OWN).build()
        assert evaluate_permission_matrix(matrix, _request("update", owner_id="u1"), ["user"]).allowed
        assert not evaluate_permission_matrix(matrix, _request("update", owner_id="u2"), ["user"]).allowed


class TestMatrixQueries:
    """Tests for filters, merge and validation."""

    def _matrix(self) -> PermissionMatrix:
        return (
            PermissionMatrixBuilder()
            .grant_full_access("admin")
            .grant_crud("editor", "documents")
            .grant_read_only("viewer", "reports")
            .build()
        )

    def test_filters(self) -> None:
        matrix = self._matrix()
        assert [e.role_id for e in filter_entries_by_role(matrix, ["editor", "viewer"])] == ["editor", "viewer"]
        assert [e.role_id for e in filter_entries_by_resource(matrix, "documents")] == ["admin", "editor"]

    def test_defined_resources_and_roles(self) -> None:
        matrix = self._matrix()
        assert get_defined_resources(matrix) == ["documents", "reports"]
        assert get_defined_roles(matrix) == ["admin", "editor", "viewer"]

    def test_merge(self) -> None:
        other = PermissionMatrixBuilder().grant_read_only("guest", "public").build()
        merged = merge_permission_matrices(
            [self._matrix(), other], conflict_resolution=ConflictResolution.ALLOW_WINS
        )
        assert len(merged.entries) == 4
        assert merged.conflict_resolution == ConflictResolution.ALLOW_WINS

    def test_valid_matrix(self) -> None:
        assert validate_permission_matrix(self._matrix()) == []

    def test_invalid_actions_reported(self) -> None:
        matrix = (
            PermissionMatrixBuilder()
            .add_entry(PermissionMatrixEntry(role_id="", resource="documents", allowed_actions=["fly", "read"]))
            .add_entry(
                PermissionMatrixEntry(
                    role_id="editor", resource="", allowed_actions=["read"], denied_actions=["read", "swim"]
                )
            )
            .build()
        )
        assert validate_permission_matrix(matrix) == [
            "Entry at index 0: role_id is required",
            "Entry at index 0: invalid action 'fly'",
            "Entry at index 1: resource is required",
            "Entry at index 1: invalid denied action 'swim'",
            "Entry at index 1: conflicting allow/deny for actions: read",
        ]


class TestStandardMatrix:
    """Tests for create_standard_matrix."""

    def test_roles(self) -> None:
        matrix = create_standard_matrix(["documents"])
        assert validate_permission_matrix(matrix) == []
        assert evaluate_permission_matrix(matrix, _request("delete"), ["admin"]).allowed

    def test_manager_team_scope(self) -> None:
        matrix = create_standard_matrix(["documents"])
        assert evaluate_permission_matrix(matrix, _request("approve", team_id="t1"), ["manager"]).allowed
        assert not evaluate_permission_matrix(matrix, _request("approve", team_id="t2"), ["manager"]).allowed

    def test_guest_public_only(self) -> None:
        matrix = create_standard_matrix(["documents"])
        assert evaluate_permission_matrix(matrix, _request("read", is_public=True), ["guest"]).allowed
        assert not evaluate_permission_matrix(matrix, _request("read", is_public=False), ["guest"]).allowed
