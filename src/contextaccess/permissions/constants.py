"""Closed vocabularies for the access-control engine.

Provides:
- ``PermissionAction`` / ``PermissionScope`` — the parts of a permission string.
- ``PermissionLevel`` — ordered ACL levels (none < view < edit < manage < owner).
- ``Decision`` / ``Effect`` — evaluation outcomes and policy effects.
- ``CombiningAlgorithm`` / ``ConflictResolution`` — reduction strategies.
- Grantee, subject, match and audit event types.
"""

from __future__ import annotations

from enum import Enum

WILDCARD = "*"

# Patterns longer than this are rejected outright by the glob matcher.
MAX_PATTERN_LENGTH = 256
MAX_VALUE_LENGTH = MAX_PATTERN_LENGTH * 4


class PermissionAction(str, Enum):
    """Actions a permission string may name."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    EXECUTE = "execute"
    MANAGE = "manage"
    APPROVE = "approve"
    EXPORT = "export"
    IMPORT = "import"
    ALL = "*"

    @classmethod
    def values(cls) -> frozenset[str]:
        return frozenset(member.value for member in cls)


class PermissionScope(str, Enum):
    """Breadth of a permission.

    Ordered ``own`` < ``team`` < ``org`` < ``global``.
    A broader scope implies all narrower ones.
    """

    OWN = "own"
    TEAM = "team"
    ORG = "org"
    GLOBAL = "global"

    @property
    def rank(self) -> int:
        return _SCOPE_ORDER.index(self)


_SCOPE_ORDER = (
    PermissionScope.OWN,
    PermissionScope.TEAM,
    PermissionScope.ORG,
    PermissionScope.GLOBAL,
)


class PermissionLevel(str, Enum):
    """ACL permission level. Totally ordered, compare via ``rank``."""

    NONE = "none"
    VIEW = "view"
    EDIT = "edit"
    MANAGE = "manage"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = (
    PermissionLevel.NONE,
    PermissionLevel.VIEW,
    PermissionLevel.EDIT,
    PermissionLevel.MANAGE,
    PermissionLevel.OWNER,
)


class Decision(str, Enum):
    """Outcome of an evaluation.

    ``NOT_APPLICABLE`` and ``INDETERMINATE`` are results, not errors.
    Consumers treat both as deny unless configured otherwise.
    """

    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not-applicable"
    INDETERMINATE = "indeterminate"

    @property
    def conclusive(self) -> bool:
        return self in (Decision.ALLOW, Decision.DENY)


class Effect(str, Enum):
    """Policy effect, matrix default behaviour and engine default decision."""

    ALLOW = "allow"
    DENY = "deny"


class CombiningAlgorithm(str, Enum):
    """Strategies for reducing several policy results into one decision."""

    DENY_OVERRIDES = "deny-overrides"
    PERMIT_OVERRIDES = "permit-overrides"
    FIRST_APPLICABLE = "first-applicable"
    ORDERED_DENY_OVERRIDES = "ordered-deny-overrides"
    ORDERED_PERMIT_OVERRIDES = "ordered-permit-overrides"

    @property
    def ordered(self) -> bool:
        """Whether results must be priority-sorted before combining."""
        return self in (
            CombiningAlgorithm.FIRST_APPLICABLE,
            CombiningAlgorithm.ORDERED_DENY_OVERRIDES,
            CombiningAlgorithm.ORDERED_PERMIT_OVERRIDES,
        )


class ConflictResolution(str, Enum):
    """How the permission matrix resolves an allow/deny clash."""

    DENY_WINS = "deny-wins"
    ALLOW_WINS = "allow-wins"
    PRIORITY = "priority"


class GranteeType(str, Enum):
    USER = "user"
    ROLE = "role"
    GROUP = "group"
    EVERYONE = "everyone"


class SubjectType(str, Enum):
    """Kind of principal making a request."""

    USER = "user"
    SERVICE = "service"
    SYSTEM = "system"


class PolicySubjectType(str, Enum):
    USER = "user"
    ROLE = "role"
    GROUP = "group"
    ATTRIBUTE = "attribute"


class MatchType(str, Enum):
    EXACT = "exact"
    PATTERN = "pattern"
    ANY = "any"


class ObligationType(str, Enum):
    AUDIT = "audit"
    NOTIFY = "notify"
    FILTER = "filter"
    TRANSFORM = "transform"
    CUSTOM = "custom"


class AuditEventType(str, Enum):
    ACCESS_CHECK = "access_check"
    PERMISSION_GRANT = "permission_grant"
    PERMISSION_REVOKE = "permission_revoke"
    ROLE_ASSIGN = "role_assign"
    ROLE_REVOKE = "role_revoke"


# ── Action Sets ─────────────────────────────────────────

CRUD_ACTIONS: tuple[PermissionAction, ...] = (
    PermissionAction.CREATE,
    PermissionAction.READ,
    PermissionAction.UPDATE,
    PermissionAction.DELETE,
)
READ_ONLY_ACTIONS: tuple[PermissionAction, ...] = (PermissionAction.READ, PermissionAction.LIST)
FULL_ACCESS_ACTIONS: tuple[PermissionAction, ...] = (PermissionAction.ALL,)


__all__ = [
    "CRUD_ACTIONS",
    "FULL_ACCESS_ACTIONS",
    "MAX_PATTERN_LENGTH",
    "MAX_VALUE_LENGTH",
    "READ_ONLY_ACTIONS",
    "WILDCARD",
    "AuditEventType",
    "CombiningAlgorithm",
    "ConflictResolution",
    "Decision",
    "Effect",
    "GranteeType",
    "MatchType",
    "ObligationType",
    "PermissionAction",
    "PermissionLevel",
    "PermissionScope",
    "PolicySubjectType",
    "SubjectType",
]
