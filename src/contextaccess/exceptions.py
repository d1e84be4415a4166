"""Exception hierarchy for contextaccess.

All errors inherit from AccessControlError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for mapping codes back to exception classes

Configuration problems in role graphs and permission matrices are NOT
raised: they are returned as strings from ``validate()`` so callers decide
whether they are fatal. Exceptions here cover malformed input that cannot
be represented at all (bad permission strings), missing ACLs, and explicit
``require()`` checks.

Usage:
    from contextaccess.exceptions import AccessDeniedError, ConfigurationError
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "AccessControlError",
    "ConfigurationError",
    "PermissionFormatError",
    "ACLNotFoundError",
    "OwnershipError",
    "ConditionEvaluationError",
    "AccessDeniedError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
]


# ---- Exception Hierarchy ----------------------------------------------------


class AccessControlError(Exception):
    """Base exception for the access-control engine.

    Attributes:
        code: Stable error code string (e.g. "ACCESS_DENIED").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AccessControlError):
    """Invalid engine configuration."""

    code: str = "CONFIGURATION_ERROR"


class PermissionFormatError(AccessControlError, ValueError):
    """Permission string does not follow ``resource:action[:scope]``.

    Also a ValueError so pydantic validators surface it as a ValidationError.
    """

    code: str = "PERMISSION_FORMAT_ERROR"


class ACLNotFoundError(AccessControlError):
    """No ACL registered for the given resource."""

    code: str = "ACL_NOT_FOUND"


class OwnershipError(AccessControlError):
    """Grant or revocation would leave a resource without exactly one owner.

    Use ``ResourcePermissionManager.transfer_ownership()`` to change owners.
    """

    code: str = "OWNERSHIP_ERROR"


class ConditionEvaluationError(AccessControlError):
    """A custom condition handler failed."""

    code: str = "CONDITION_ERROR"


class AccessDeniedError(AccessControlError):
    """Raised by ``AccessEngine.require()`` when access is not granted."""

    code: str = "ACCESS_DENIED"


# ---- Error Registry ---------------------------------------------------------

_E = TypeVar("_E", bound=type[AccessControlError])


class ErrorRegistry:
    """Registry mapping stable error codes to exception classes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AccessControlError]] = {}

    def register(self, code: str, error_cls: type[AccessControlError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AccessControlError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AccessControlError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("TENANT_MISMATCH")
        class TenantMismatchError(AccessControlError):
            code = "TENANT_MISMATCH"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


error_registry.register("INTERNAL_ERROR", AccessControlError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("PERMISSION_FORMAT_ERROR", PermissionFormatError)
error_registry.register("ACL_NOT_FOUND", ACLNotFoundError)
error_registry.register("OWNERSHIP_ERROR", OwnershipError)
error_registry.register("CONDITION_ERROR", ConditionEvaluationError)
error_registry.register("ACCESS_DENIED", AccessDeniedError)
