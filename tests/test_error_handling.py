"""Tests for error handling and edge cases in contextaccess."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from contextaccess import (
    AccessConfig,
    AccessControlError,
    AccessDeniedError,
    AccessEngine,
    ACLNotFoundError,
    ConditionEvaluationError,
    ConfigurationError,
    OwnershipError,
    PermissionFormatError,
    ResourcePermissionManager,
    RoleDefinition,
    safe_pattern_match,
)
from contextaccess.exceptions import ErrorRegistry, error_registry, register_error
from contextaccess.permissions import parse_permission
from contextaccess.permissions.conditions import compare_value


class TestExceptionHierarchy:
    """Tests for exception codes and details."""

    def test_base_defaults(self) -> None:
        error = AccessControlError()
        assert error.code == "INTERNAL_ERROR"
        assert error.message == "An internal error occurred"
        assert error.details == {}

    def test_details_from_kwargs(self) -> None:
        error = AccessDeniedError("Access denied: documents:read", resource="documents", action="read")
        assert error.code == "ACCESS_DENIED"
        assert str(error) == "Access denied: documents:read"
        assert error.details == {"resource": "documents", "action": "read"}

    def test_code_override(self) -> None:
        error = ConfigurationError("bad", code="CUSTOM")
        assert error.code == "CUSTOM"
        assert ConfigurationError.code == "CONFIGURATION_ERROR"

    @pytest.mark.parametrize(
        "error_cls",
        [
            ConfigurationError,
            PermissionFormatError,
            ACLNotFoundError,
            OwnershipError,
            ConditionEvaluationError,
            AccessDeniedError,
        ],
    )
    def test_subclasses_share_base(self, error_cls: type[AccessControlError]) -> None:
        assert issubclass(error_cls, AccessControlError)

    def test_permission_format_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_permission("documents")


class TestErrorRegistry:
    """Tests for the code -> exception registry."""

    def test_builtin_codes(self) -> None:
        assert error_registry.get("ACCESS_DENIED") is AccessDeniedError
        assert error_registry.get("ACL_NOT_FOUND") is ACLNotFoundError
        assert error_registry.get("OWNERSHIP_ERROR") is OwnershipError
        assert error_registry.get("UNKNOWN") is None

    def test_register_error_decorator(self) -> None:
        @register_error("TENANT_MISMATCH")
        class TenantMismatchError(AccessControlError):
            code = "TENANT_MISMATCH"

        assert error_registry.get("TENANT_MISMATCH") is TenantMismatchError
        assert "TENANT_MISMATCH" in error_registry.all()

    def test_isolated_registry(self) -> None:
        registry = ErrorRegistry()
        registry.register("X", ConfigurationError)
        assert registry.all() == {"X": ConfigurationError}
        registry.all().clear()
        assert registry.get("X") is ConfigurationError


class TestErrorHandling:
    """Tests for error paths in the engine components."""

    def test_malformed_permissions(self) -> None:
        for value in ("", "documents", "a:b:c:d", "documents:peek", "documents:read:planet", "bad name:read"):
            with pytest.raises(PermissionFormatError) as exc_info:
                parse_permission(value)
            assert exc_info.value.details["permission"] == value

    def test_role_with_malformed_permission(self) -> None:
        with pytest.raises(ValidationError):
            RoleDefinition(id="broken", permissions=["documents"])

    def test_role_with_empty_id(self) -> None:
        with pytest.raises(ValidationError):
            RoleDefinition(id="", permissions=[])

    def test_transfer_ownership_without_acl(self) -> None:
        manager = ResourcePermissionManager()
        with pytest.raises(ACLNotFoundError) as exc_info:
            manager.transfer_ownership("documents", "missing", "u2", "u1")
        assert exc_info.value.details == {"resource_type": "documents", "resource_id": "missing"}

    def test_check_access_without_acl_denies(self) -> None:
        manager = ResourcePermissionManager()
        assert manager.check_access("documents", "missing", "u1", "read") is False

    def test_require_raises_access_denied(self) -> None:
        engine = AccessEngine(AccessConfig(roles=[RoleDefinition(id="viewer", permissions=["documents:read"])]))
        engine.set_user_context(["viewer"])
        engine.require("documents", "read")
        with pytest.raises(AccessDeniedError) as exc_info:
            engine.require("documents", "delete")
        assert exc_info.value.details["action"] == "delete"

    def test_update_config_rejects_invalid(self) -> None:
        engine = AccessEngine(AccessConfig())
        with pytest.raises(ConfigurationError):
            engine.update_config(cache_ttl_seconds=0)
        assert engine.config.cache_ttl_seconds == 300


class TestEdgeCases:
    """Tests for input limits and incomparable operands."""

    def test_oversized_pattern_rejected(self) -> None:
        assert safe_pattern_match("a" * 300, "a" * 300) is False

    def test_oversized_value_rejected(self) -> None:
        assert safe_pattern_match("*", "a" * 2000) is False

    def test_pathological_glob_completes(self) -> None:
        assert safe_pattern_match("*a*a*a*a*a*a*b", "a" * 200) is False

    def test_incomparable_operands(self) -> None:
        assert compare_value("greaterThan", "3", 2) is False

    def test_invalid_regex(self) -> None:
        assert compare_value("regex", "abc", "(") is False

    def test_unknown_operator(self) -> None:
        assert compare_value("roughlyEquals", 1, 1) is False
