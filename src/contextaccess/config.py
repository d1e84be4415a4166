"""Configuration contract for the access-control engine.

This module provides Pydantic-validated configuration models:

- ``AccessConfig`` — what the engine evaluates (roles, matrix, policy sets)
  and how (default decision, caching, audit, super-admin roles).
- ``AccessSettings`` — ambient, environment-driven settings (logging,
  cache and audit switches).

Loading roles and policies from files or databases is the host's job; the
engine only consumes an ``AccessConfig`` object. Environment variables are
read in ``load_access_settings_from_env()`` and nowhere else.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .permissions.constants import CombiningAlgorithm, Effect
from .permissions.models import PermissionMatrix, PolicySet, RoleDefinition

_TRUTHY = ("true", "1", "yes", "on")


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AccessSettings(BaseModel):
    """Ambient settings shared by every engine in a process."""

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    service_name: Optional[str] = Field(
        default=None,
        description="Service name stamped on log records",
    )
    enable_caching: bool = Field(
        default=True,
        description="Cache permission checks and evaluation results",
    )
    cache_ttl_seconds: float = Field(
        default=300,
        description="Lifetime of the decision caches in seconds",
    )
    enable_audit: bool = Field(
        default=True,
        description="Emit access_check audit events on evaluate()",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        return v

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }


class AccessConfig(BaseModel):
    """Engine configuration.

    Immutable once built; ``AccessEngine.update_config()`` produces a new
    validated copy.

    Example::

        config = AccessConfig(
            roles=[RoleDefinition(id="admin", permissions=["*"])],
            super_admin_roles=["root"],
            cache_ttl_seconds=60,
        )
    """

    roles: list[RoleDefinition] = Field(default_factory=list)
    permission_matrix: Optional[PermissionMatrix] = None
    policy_sets: list[PolicySet] = Field(default_factory=list)
    default_decision: Effect = Field(
        default=Effect.DENY,
        description="Outcome for indeterminate decisions (fail-closed by default)",
    )
    enable_caching: bool = True
    cache_ttl_seconds: float = Field(default=300, description="Shared TTL of the decision caches")
    enable_audit: bool = True
    super_admin_roles: list[str] = Field(
        default_factory=list,
        description="Roles that bypass every check",
    )
    default_combining_algorithm: CombiningAlgorithm = CombiningAlgorithm.DENY_OVERRIDES

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        return v

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @classmethod
    def from_settings(cls, settings: AccessSettings, **fields: Any) -> AccessConfig:
        """Build a config seeded with the cache and audit switches of ``settings``."""
        seeded: dict[str, Any] = {
            "enable_caching": settings.enable_caching,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "enable_audit": settings.enable_audit,
        }
        seeded.update(fields)
        return cls(**seeded)

    def with_changes(self, **changes: Any) -> AccessConfig:
        """Return a validated copy with ``changes`` applied.

        Raises:
            ConfigurationError: the changed configuration does not validate.
        """
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        try:
            return type(self)(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration change: {', '.join(sorted(changes))}",
                errors=e.errors(include_url=False),
            ) from e


def load_access_settings_from_env() -> AccessSettings:
    """Load ambient settings from environment variables.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - SERVICE_NAME: Service name for log records
    - ACCESS_CACHE_ENABLED: Cache decisions (true/false, default: true)
    - ACCESS_CACHE_TTL_SECONDS: Decision cache lifetime (default: 300)
    - ACCESS_AUDIT_ENABLED: Emit audit events (true/false, default: true)

    Returns:
        AccessSettings instance with values from environment or defaults.

    Raises:
        ConfigurationError: a variable is set to an invalid value.
    """
    import os

    raw_ttl = os.getenv("ACCESS_CACHE_TTL_SECONDS", "300")
    try:
        cache_ttl_seconds = float(raw_ttl)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid ACCESS_CACHE_TTL_SECONDS: {raw_ttl!r}",
            variable="ACCESS_CACHE_TTL_SECONDS",
            value=raw_ttl,
        ) from e

    try:
        return AccessSettings(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "false").lower() in _TRUTHY,
            service_name=os.getenv("SERVICE_NAME"),
            enable_caching=os.getenv("ACCESS_CACHE_ENABLED", "true").lower() in _TRUTHY,
            cache_ttl_seconds=cache_ttl_seconds,
            enable_audit=os.getenv("ACCESS_AUDIT_ENABLED", "true").lower() in _TRUTHY,
        )
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid access settings in environment",
            errors=e.errors(include_url=False),
        ) from e


__all__ = [
    "AccessConfig",
    "AccessSettings",
    "LogLevel",
    "load_access_settings_from_env",
]
