"""Data model for roles, matrices, ACLs, policies, requests and results.

These are Pydantic models. Configuration objects (roles, matrix, policies)
are owned by the caller and treated as immutable snapshots by the engine.
"""

from __future__ import annotations

import hashlib
import json
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .constants import (
    CombiningAlgorithm,
    ConflictResolution,
    Decision,
    Effect,
    GranteeType,
    MatchType,
    ObligationType,
    PermissionAction,
    PermissionLevel,
    PermissionScope,
    PolicySubjectType,
    SubjectType,
)
from .matching import parse_permission

ComparisonOperator = Literal[
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "greaterThan",
    "lessThan",
    "in",
    "notIn",
    "exists",
    "regex",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum_values(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [item.value if isinstance(item, Enum) else item for item in value]
    return value


# ── Roles ───────────────────────────────────────────────


class PermissionCondition(BaseModel):
    """Condition attached to a structured permission or matrix entry.

    ``field`` is read from the resource attributes. It is compared with
    ``value``, or with the subject attribute named by ``context_key``.
    """

    model_config = {"frozen": True}

    field: str
    operator: ComparisonOperator
    value: Any = None
    context_key: Optional[str] = None


class StructuredPermission(BaseModel):
    """Fine-grained permission. ``deny=True`` makes it an explicit denial."""

    resource: str
    action: PermissionAction
    scope: Optional[PermissionScope] = None
    conditions: list[PermissionCondition] = Field(default_factory=list)
    deny: bool = False

    def to_permission_string(self) -> str:
        if self.scope is not None:
            return f"{self.resource}:{self.action.value}:{self.scope.value}"
        return f"{self.resource}:{self.action.value}"


class RoleDefinition(BaseModel):
    """Role with flat and structured permissions and parent roles.

    Permission strings are parsed at construction; a malformed string
    fails validation immediately instead of silently never matching.
    """

    id: str
    name: str = ""
    description: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)
    structured_permissions: list[StructuredPermission] = Field(default_factory=list)
    inherits: list[str] = Field(default_factory=list)
    priority: int = 0
    is_active: bool = True
    is_system: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: list[str]) -> list[str]:
        """Parse every permission string (raises on malformed input)."""
        for permission in v:
            parse_permission(permission)
        return v

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v:
            raise ValueError("Role id must be a non-empty string")
        return v


# ── Permission Matrix ───────────────────────────────────


class PermissionMatrixEntry(BaseModel):
    """Role x resource row of the permission matrix.

    Actions are kept as plain strings so an unknown action name is reported
    by ``validate_permission_matrix()`` rather than raised here.
    """

    model_config = {"frozen": True}

    role_id: str
    resource: str
    allowed_actions: tuple[str, ...] = ()
    denied_actions: tuple[str, ...] = ()
    scope: Optional[PermissionScope] = None
    conditions: tuple[PermissionCondition, ...] = ()

    @field_validator("allowed_actions", "denied_actions", mode="before")
    @classmethod
    def normalize_actions(cls, v: Any) -> Any:
        return _enum_values(v)


class PermissionMatrix(BaseModel):
    """Immutable permission matrix produced by ``PermissionMatrixBuilder``."""

    model_config = {"frozen": True}

    entries: tuple[PermissionMatrixEntry, ...] = ()
    default_behavior: Effect = Effect.DENY
    conflict_resolution: ConflictResolution = ConflictResolution.DENY_WINS
    version: str = "1.0.0"
    updated_at: datetime = Field(default_factory=_utcnow)


# ── Resource ACLs ───────────────────────────────────────


class ResourceRef(BaseModel):
    model_config = {"frozen": True}

    type: str
    id: str


class ResourcePermission(BaseModel):
    """One ACL entry granting a level (or explicit actions) to a grantee."""

    resource_type: str
    resource_id: Optional[str] = None
    grantee_type: GranteeType
    grantee_id: Optional[str] = None
    permission_level: PermissionLevel
    actions: Optional[list[str]] = None
    inherited: bool = False
    inherited_from: Optional[str] = None
    granted_at: datetime = Field(default_factory=_utcnow)
    granted_by: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("actions", mode="before")
    @classmethod
    def normalize_actions(cls, v: Any) -> Any:
        return _enum_values(v)

    @field_validator("granted_at", "expires_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def is_expired(self, *, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or _utcnow())


class ResourceACL(BaseModel):
    """Access control list of a single resource instance."""

    resource_type: str
    resource_id: str
    owner: str
    entries: list[ResourcePermission] = Field(default_factory=list)
    inherit_parent: bool = False
    parent_resource: Optional[ResourceRef] = None
    version: int = 1
    updated_at: datetime = Field(default_factory=_utcnow)

    def touch(self) -> None:
        self.version += 1
        self.updated_at = _utcnow()


# ── Policies ────────────────────────────────────────────


class PolicySubject(BaseModel):
    """Who a policy applies to.

    For ``attribute`` subjects ``identifier`` is the attribute name; with
    ``value`` unset the attribute only has to be present.
    """

    type: PolicySubjectType
    identifier: str
    match: MatchType = MatchType.EXACT
    value: Any = None


class PolicyResource(BaseModel):
    """What a policy (or policy set target) applies to."""

    type: str
    identifier: Optional[str] = None
    attributes: Optional[dict[str, Any]] = None


class TimeCondition(BaseModel):
    type: Literal["time"] = "time"
    operator: Literal["between", "before", "after", "dayOfWeek", "timeOfDay"]
    value: Any = None
    key: Optional[str] = None


class IPCondition(BaseModel):
    type: Literal["ip"] = "ip"
    operator: Literal["equals", "in", "notIn", "startsWith", "cidr"]
    value: Any = None
    key: Optional[str] = None


class LocationCondition(BaseModel):
    type: Literal["location"] = "location"
    operator: Literal["equals", "in", "notIn"]
    value: Any = None
    key: Literal["country", "region", "city"] = "country"


class AttributeCondition(BaseModel):
    """Compares a subject attribute (falling back to resource attributes)."""

    type: Literal["attribute"] = "attribute"
    operator: ComparisonOperator
    value: Any = None
    key: Optional[str] = None


class ContextCondition(BaseModel):
    """Compares a request context attribute (falling back to evaluation context)."""

    type: Literal["context"] = "context"
    operator: ComparisonOperator
    value: Any = None
    key: Optional[str] = None


class CustomCondition(BaseModel):
    """Delegates to a handler registered under ``key`` on the evaluator."""

    type: Literal["custom"] = "custom"
    operator: str = "custom"
    value: Any = None
    key: str


PolicyCondition = Annotated[
    Union[
        TimeCondition,
        IPCondition,
        LocationCondition,
        AttributeCondition,
        ContextCondition,
        CustomCondition,
    ],
    Field(discriminator="type"),
]


class Obligation(BaseModel):
    """Side-effect instruction attached to a decision (e.g. "must audit")."""

    model_config = {"frozen": True}

    id: str
    type: ObligationType
    parameters: dict[str, Any] = Field(default_factory=dict)
    mandatory: bool = False


class Policy(BaseModel):
    """ABAC policy."""

    id: str
    name: str = ""
    description: Optional[str] = None
    effect: Effect
    priority: int = 0
    subjects: list[PolicySubject] = Field(default_factory=list)
    resources: list[PolicyResource] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    conditions: list[PolicyCondition] = Field(default_factory=list)
    obligations: list[Obligation] = Field(default_factory=list)
    advice: list[str] = Field(default_factory=list)
    enabled: bool = True
    version: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("actions", mode="before")
    @classmethod
    def normalize_actions(cls, v: Any) -> Any:
        return _enum_values(v)


class PolicySet(BaseModel):
    """Policies combined under one algorithm, gated by an optional target."""

    id: str
    name: str = ""
    policies: list[Policy] = Field(default_factory=list)
    combining_algorithm: CombiningAlgorithm = CombiningAlgorithm.DENY_OVERRIDES
    target: Optional[list[PolicyResource]] = None


# ── Requests & Results ──────────────────────────────────


class RequestSubject(BaseModel):
    id: str
    type: SubjectType = SubjectType.USER
    roles: Optional[list[str]] = None
    groups: Optional[list[str]] = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class RequestResource(BaseModel):
    type: str
    id: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class Location(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


class DeviceInfo(BaseModel):
    type: Optional[str] = None
    platform: Optional[str] = None
    trusted: Optional[bool] = None


class SessionInfo(BaseModel):
    id: Optional[str] = None
    created_at: Optional[float] = None
    mfa_verified: Optional[bool] = None


class RequestContext(BaseModel):
    """Environment of a request. ``timestamp`` is epoch seconds."""

    timestamp: Optional[float] = None
    ip_address: Optional[str] = None
    location: Optional[Location] = None
    device: Optional[DeviceInfo] = None
    session: Optional[SessionInfo] = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class AccessRequest(BaseModel):
    """Subject / resource / action triple plus request context."""

    subject: RequestSubject
    resource: RequestResource
    action: str
    context: RequestContext = Field(default_factory=RequestContext)

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> Any:
        return v.value if isinstance(v, Enum) else v

    def cache_key(self) -> str:
        """Stable digest of the whole request, used as evaluation cache key."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class EvaluationResult(BaseModel):
    """Outcome of an access evaluation.

    ``evaluated_at`` is epoch seconds, ``evaluation_time`` milliseconds.
    """

    model_config = {"frozen": True}

    allowed: bool
    decision: Decision
    matching_policies: tuple[str, ...] = ()
    reason: str = ""
    obligations: tuple[Obligation, ...] = ()
    advice: tuple[str, ...] = ()
    evaluated_at: float = Field(default_factory=time.time)
    evaluation_time: Optional[float] = None

    @property
    def denied(self) -> bool:
        return not self.allowed


__all__ = [
    "AccessRequest",
    "AttributeCondition",
    "ComparisonOperator",
    "ContextCondition",
    "CustomCondition",
    "DeviceInfo",
    "EvaluationResult",
    "IPCondition",
    "Location",
    "LocationCondition",
    "Obligation",
    "PermissionCondition",
    "PermissionMatrix",
    "PermissionMatrixEntry",
    "Policy",
    "PolicyCondition",
    "PolicyResource",
    "PolicySet",
    "PolicySubject",
    "RequestContext",
    "RequestResource",
    "RequestSubject",
    "ResourceACL",
    "ResourcePermission",
    "ResourceRef",
    "RoleDefinition",
    "SessionInfo",
    "StructuredPermission",
    "TimeCondition",
]
