"""Access-check helpers over flat permission sets.

Provides runtime functions to check whether a resolved set of permission
strings grants an action on a resource, including ``own`` / ``team`` /
``org`` scoped grants checked against subject and resource attributes.
Used by the engine's fallback path and by the permission matrix.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from .constants import WILDCARD, PermissionScope
from .matching import Permission, try_parse_permission

logger = logging.getLogger(__name__)

# Narrow scopes whose applicability depends on resource attributes.
_SCOPED_CHECK_ORDER = (PermissionScope.ORG, PermissionScope.TEAM, PermissionScope.OWN)


def _parsed(permissions: Iterable[str]) -> list[Permission]:
    parsed = []
    for value in permissions:
        perm = try_parse_permission(value)
        if perm is None:
            logger.debug("Skipping malformed permission %r", value)
            continue
        parsed.append(perm)
    return parsed


def has_permission(permissions: Iterable[str], permission: str) -> bool:
    """Check if a permission set grants ``permission``.

    Matching is positional with wildcards (``resource:*``, ``*:action``,
    ``*``); the granted scope must be at least as broad as the requested one.

    Example::

        has_permission({"documents:*"}, "documents:delete")          # True
        has_permission({"documents:read:own"}, "documents:read")     # False
        has_permission({"documents:read:own"}, "documents:read:own") # True
    """
    requested = try_parse_permission(permission)
    if requested is None:
        return False
    return any(granted.covers(requested) for granted in _parsed(permissions))


def is_denied(denials: Iterable[str], resource: str, action: str) -> bool:
    """Check if an explicit denial names this resource/action (any scope)."""
    for denied in _parsed(denials):
        if denied.resource not in (WILDCARD, resource):
            continue
        if denied.action not in (WILDCARD, action):
            continue
        return True
    return False


def has_any_permission(permissions: Iterable[str], required: Iterable[str]) -> bool:
    granted = frozenset(permissions)
    return any(has_permission(granted, p) for p in required)


def has_all_permissions(permissions: Iterable[str], required: Iterable[str]) -> bool:
    granted = frozenset(permissions)
    return all(has_permission(granted, p) for p in required)


def can_access(
    permissions: Iterable[str],
    resource: str,
    action: str,
    scope: Optional[str] = None,
) -> bool:
    """Check ``resource:action[:scope]`` against a permission set."""
    requested = Permission(resource, action, scope)
    return any(granted.covers(requested) for granted in _parsed(permissions))


# ── Scoped Access ───────────────────────────────────────


def scope_applies(
    scope: Optional[str],
    subject_id: Optional[str],
    subject_attributes: Mapping[str, Any],
    resource_attributes: Mapping[str, Any],
) -> bool:
    """Check if a resource falls within ``scope`` for the subject.

    - ``own``: resource ``owner_id`` (or ``user_id``) equals the subject id.
    - ``team`` / ``org``: resource ``team_id`` / ``org_id`` equals the
      subject attribute of the same name.
    - ``global``, ``*`` or unset: always.
    """
    if scope in (None, WILDCARD, PermissionScope.GLOBAL.value):
        return True

    if scope == PermissionScope.OWN.value:
        owner = resource_attributes.get("owner_id", resource_attributes.get("user_id"))
        caller = subject_id if subject_id is not None else subject_attributes.get("id")
        return owner is not None and caller is not None and owner == caller

    key = f"{scope}_id"
    resource_value = resource_attributes.get(key)
    subject_value = subject_attributes.get(key)
    return resource_value is not None and subject_value is not None and resource_value == subject_value


def check_scoped_access(
    permissions: Iterable[str],
    resource: str,
    action: str,
    *,
    subject_id: Optional[str] = None,
    subject_attributes: Mapping[str, Any] | None = None,
    resource_attributes: Mapping[str, Any] | None = None,
) -> bool:
    """Check access to a concrete resource instance.

    A global grant wins outright. Otherwise each narrower scope the subject
    holds is tried against the resource attributes.

    Example::

        check_scoped_access(
            {"documents:update:own"},
            "documents",
            "update",
            subject_id="u1",
            resource_attributes={"owner_id": "u1"},
        )  # True
    """
    granted = _parsed(permissions)
    subject_attrs = subject_attributes or {}
    resource_attrs = resource_attributes or {}

    if any(p.covers(Permission(resource, action)) for p in granted):
        return True

    for scope in _SCOPED_CHECK_ORDER:
        requested = Permission(resource, action, scope.value)
        if not any(p.covers(requested) for p in granted):
            continue
        if scope_applies(scope.value, subject_id, subject_attrs, resource_attrs):
            return True

    return False


__all__ = [
    "can_access",
    "check_scoped_access",
    "has_all_permissions",
    "has_any_permission",
    "has_permission",
    "is_denied",
    "scope_applies",
]
