"""Permission strings and safe pattern matching.

Provides:
- ``Permission`` — structured form of ``resource:action[:scope]``.
- ``parse_permission()`` — parse and validate a permission string.
- ``safe_pattern_match()`` / ``glob_match()`` — linear glob matching
  over ``*`` and ``?``, used wherever identifiers come from configuration
  or requests. No regex is ever built from a pattern.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..exceptions import PermissionFormatError
from .constants import (
    MAX_PATTERN_LENGTH,
    MAX_VALUE_LENGTH,
    WILDCARD,
    PermissionAction,
    PermissionScope,
)

logger = logging.getLogger(__name__)

_RESOURCE_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass(frozen=True)
class Permission:
    """Parsed permission.

    ``scope=None`` means unscoped, which is treated as ``global``.
    ``scope="*"`` matches any requested scope.

    Example::

        Permission.parse("documents:read:own")
        # Permission(resource='documents', action='read', scope='own')

        Permission.parse("*")
        # Permission(resource='*', action='*', scope=None)
    """

    resource: str
    action: str
    scope: str | None = None

    @classmethod
    def parse(cls, value: str) -> Permission:
        return parse_permission(value)

    @property
    def is_wildcard(self) -> bool:
        return self.resource == WILDCARD and self.action == WILDCARD and self.scope in (None, WILDCARD)

    def covers(self, requested: Permission) -> bool:
        """Check if this (granted) permission satisfies ``requested``.

        Positional wildcard matching on resource and action; the granted
        scope must be at least as broad as the requested scope.
        """
        if self.resource != WILDCARD and self.resource != requested.resource:
            return False
        if self.action != WILDCARD and self.action != requested.action:
            return False
        return scope_covers(self.scope, requested.scope)

    def __str__(self) -> str:
        if self.resource == WILDCARD and self.action == WILDCARD and self.scope is None:
            return WILDCARD
        if self.scope:
            return f"{self.resource}:{self.action}:{self.scope}"
        return f"{self.resource}:{self.action}"


def scope_covers(granted: str | None, requested: str | None) -> bool:
    """Check if a granted scope is at least as broad as the requested one.

    ``None`` stands for ``global`` on both sides.
    """
    if granted == WILDCARD or requested == WILDCARD:
        return True
    granted_scope = PermissionScope(granted) if granted else PermissionScope.GLOBAL
    requested_scope = PermissionScope(requested) if requested else PermissionScope.GLOBAL
    return granted_scope.rank >= requested_scope.rank


def parse_permission(value: str) -> Permission:
    """Parse ``resource:action[:scope]`` (or ``*``) into a Permission.

    Raises:
        PermissionFormatError: malformed string, unknown action or scope.
    """
    if not isinstance(value, str) or not value:
        raise PermissionFormatError(f"Invalid permission: {value!r}", permission=value)

    if value == WILDCARD:
        return Permission(WILDCARD, WILDCARD)

    parts = value.split(":")
    if len(parts) not in (2, 3):
        raise PermissionFormatError(
            f"Invalid permission format: {value!r} (expected resource:action[:scope])",
            permission=value,
        )

    resource, action = parts[0], parts[1]
    scope = parts[2] if len(parts) == 3 else None

    if resource != WILDCARD and not _RESOURCE_RE.match(resource):
        raise PermissionFormatError(f"Invalid resource in permission {value!r}", permission=value)
    if action not in PermissionAction.values():
        raise PermissionFormatError(f"Unknown action {action!r} in permission {value!r}", permission=value)
    if scope is not None and scope != WILDCARD and scope not in {s.value for s in PermissionScope}:
        raise PermissionFormatError(f"Unknown scope {scope!r} in permission {value!r}", permission=value)

    return Permission(resource, action, scope)


def try_parse_permission(value: str) -> Permission | None:
    """Like :func:`parse_permission` but returns None on malformed input."""
    try:
        return parse_permission(value)
    except PermissionFormatError:
        return None


# ── Pattern Matching ────────────────────────────────────


def safe_pattern_match(pattern: str, value: str) -> bool:
    """Match a glob pattern (``*``, ``?``) against a value, ReDoS-safe.

    Oversized patterns (> MAX_PATTERN_LENGTH) and values
    (> 4 * MAX_PATTERN_LENGTH) are rejected with ``False``, never an
    exception.

    Example::

        safe_pattern_match("users:*", "users:read")    # True
        safe_pattern_match("users:*", "orders:read")   # False
        safe_pattern_match("a" * 300, "a" * 300)       # False (too long)
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        logger.debug("Pattern exceeds maximum length (%d), rejecting", MAX_PATTERN_LENGTH)
        return False
    if len(value) > MAX_VALUE_LENGTH:
        logger.debug("Value exceeds maximum length for pattern matching, rejecting")
        return False

    if "*" not in pattern and "?" not in pattern:
        return pattern == value

    return glob_match(pattern, value)


def glob_match(pattern: str, value: str) -> bool:
    """Two-pointer glob matching, O(len(pattern) * len(value)) worst case.

    On a mismatch it only ever resumes from the most recent ``*``, so
    there is no exponential backtracking.
    """
    p = v = 0
    star = -1
    mark = 0
    plen, vlen = len(pattern), len(value)

    while v < vlen:
        if p < plen and pattern[p] == "*":
            star = p
            mark = v
            p += 1
        elif p < plen and (pattern[p] == "?" or pattern[p] == value[v]):
            p += 1
            v += 1
        elif star != -1:
            p = star + 1
            mark += 1
            v = mark
        else:
            return False

    while p < plen and pattern[p] == "*":
        p += 1

    return p == plen


__all__ = [
    "Permission",
    "glob_match",
    "parse_permission",
    "safe_pattern_match",
    "scope_covers",
    "try_parse_permission",
]
