"""Per-resource access control lists.

Provides:
- ``ResourcePermissionManager`` — ACL registry with ownership, public access,
  expiry and parent inheritance.
- ``ACLContext`` — caller roles and groups used when matching ACL entries.
- ``LEVEL_ACTIONS`` and level helpers (``compare_permission_levels``,
  ``level_grants_action``, ``get_minimum_level_for_action``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Iterator, Optional, Sequence

from ..exceptions import ACLNotFoundError, OwnershipError
from .constants import WILDCARD, AuditEventType, GranteeType, PermissionAction, PermissionLevel
from .models import ResourceACL, ResourcePermission, ResourceRef

if TYPE_CHECKING:
    from ..audit import AuditDispatcher

logger = logging.getLogger(__name__)

SYSTEM_GRANTOR = "system"

LEVEL_ACTIONS: dict[PermissionLevel, frozenset[str]] = {
    PermissionLevel.NONE: frozenset(),
    PermissionLevel.VIEW: frozenset({"read", "list"}),
    PermissionLevel.EDIT: frozenset({"read", "list", "update"}),
    PermissionLevel.MANAGE: frozenset({"read", "list", "update", "delete", "create"}),
    PermissionLevel.OWNER: frozenset({WILDCARD}),
}


def compare_permission_levels(a: PermissionLevel | str, b: PermissionLevel | str) -> int:
    """Positive if ``a`` is higher than ``b``, zero if equal."""
    return PermissionLevel(a).rank - PermissionLevel(b).rank


def level_grants_action(level: PermissionLevel | str, action: PermissionAction | str) -> bool:
    actions = LEVEL_ACTIONS[PermissionLevel(level)]
    name = action.value if isinstance(action, PermissionAction) else action
    return name in actions or WILDCARD in actions


def get_minimum_level_for_action(action: PermissionAction | str) -> PermissionLevel:
    for level in LEVEL_ACTIONS:
        if level_grants_action(level, action):
            return level
    return PermissionLevel.OWNER


def max_level(a: PermissionLevel, b: PermissionLevel) -> PermissionLevel:
    return a if a.rank >= b.rank else b


@dataclass(frozen=True)
class ACLContext:
    """Roles and groups of the caller, matched against role/group entries."""

    roles: Sequence[str] = ()
    groups: Sequence[str] = ()


def _entry_allows(entry: ResourcePermission, action: str) -> bool:
    if entry.actions:
        return action in entry.actions or WILDCARD in entry.actions
    return level_grants_action(entry.permission_level, action)


def _action_name(action: PermissionAction | str) -> str:
    return action.value if isinstance(action, PermissionAction) else action


class ResourcePermissionManager:
    """In-memory registry of resource ACLs.

    The owner always holds an ``owner`` entry. Expired entries are ignored by
    every query. When an ``AuditDispatcher`` is attached, grants, revocations
    and ownership transfers are emitted as audit events.

    Example::

        manager = ResourcePermissionManager()
        manager.create_acl("documents", "doc-1", owner="u1")
        manager.grant_permission("documents", "doc-1", GranteeType.USER, "u2", PermissionLevel.VIEW)
        manager.check_access("documents", "doc-1", "u2", "read")    # True
        manager.check_access("documents", "doc-1", "u2", "update")  # False
    """

    def __init__(self, audit: AuditDispatcher | None = None) -> None:
        self._acls: dict[tuple[str, str], ResourceACL] = {}
        self._audit = audit

    # ── ACL lifecycle ──

    def create_acl(
        self,
        resource_type: str,
        resource_id: str,
        owner: str,
        *,
        inherit_parent: bool = False,
        parent_resource: Optional[ResourceRef] = None,
    ) -> ResourceACL:
        acl = ResourceACL(
            resource_type=resource_type,
            resource_id=resource_id,
            owner=owner,
            entries=[
                ResourcePermission(
                    resource_type=resource_type,
                    resource_id=resource_id,
                    grantee_type=GranteeType.USER,
                    grantee_id=owner,
                    permission_level=PermissionLevel.OWNER,
                    granted_by=owner,
                )
            ],
            inherit_parent=inherit_parent,
            parent_resource=parent_resource,
        )
        self._acls[(resource_type, resource_id)] = acl
        logger.debug("Created ACL for %s/%s (owner=%s)", resource_type, resource_id, owner)
        return acl

    def get_acl(self, resource_type: str, resource_id: str) -> ResourceACL | None:
        return self._acls.get((resource_type, resource_id))

    def delete_acl(self, resource_type: str, resource_id: str) -> None:
        self._acls.pop((resource_type, resource_id), None)

    # ── Grants ──

    def grant_permission(
        self,
        resource_type: str,
        resource_id: str,
        grantee_type: GranteeType | str,
        grantee_id: Optional[str],
        level: PermissionLevel | str,
        *,
        granted_by: Optional[str] = None,
        actions: Optional[Iterable[PermissionAction | str]] = None,
        expires_at: Optional[datetime] = None,
    ) -> ResourcePermission:
        """Grant ``level`` to a grantee, replacing any existing entry of theirs.

        Creates the ACL (owned by ``granted_by`` or ``system``) if missing.

        Raises:
            OwnershipError: the grant would change the owner's level or add a
                second owner.
        """
        acl = self.get_acl(resource_type, resource_id)
        if acl is None:
            acl = self.create_acl(resource_type, resource_id, granted_by or SYSTEM_GRANTOR)

        grantee = GranteeType(grantee_type)
        self._check_owner_entry(acl, grantee, grantee_id, PermissionLevel(level))
        self._remove_entry(acl, grantee, grantee_id)

        permission = ResourcePermission(
            resource_type=resource_type,
            resource_id=resource_id,
            grantee_type=grantee,
            grantee_id=grantee_id,
            permission_level=PermissionLevel(level),
            actions=list(actions) if actions is not None else None,
            granted_by=granted_by,
            expires_at=expires_at,
        )
        acl.entries.append(permission)
        acl.touch()

        self._emit(AuditEventType.PERMISSION_GRANT, acl, granted_by, grantee, grantee_id, permission.permission_level)
        return permission

    def revoke_permission(
        self,
        resource_type: str,
        resource_id: str,
        grantee_type: GranteeType | str,
        grantee_id: Optional[str] = None,
        *,
        revoked_by: Optional[str] = None,
    ) -> bool:
        """Remove the grantee's entry. Returns False if there was none.

        Raises:
            OwnershipError: the grantee is the owner.
        """
        acl = self.get_acl(resource_type, resource_id)
        if acl is None:
            return False

        grantee = GranteeType(grantee_type)
        self._check_owner_entry(acl, grantee, grantee_id, None)
        if not self._remove_entry(acl, grantee, grantee_id):
            return False
        acl.touch()

        self._emit(AuditEventType.PERMISSION_REVOKE, acl, revoked_by, grantee, grantee_id, None)
        return True

    def grant_public_access(
        self,
        resource_type: str,
        resource_id: str,
        level: PermissionLevel | str = PermissionLevel.VIEW,
        *,
        granted_by: Optional[str] = None,
    ) -> ResourcePermission:
        return self.grant_permission(
            resource_type, resource_id, GranteeType.EVERYONE, None, level, granted_by=granted_by
        )

    def revoke_public_access(self, resource_type: str, resource_id: str) -> bool:
        return self.revoke_permission(resource_type, resource_id, GranteeType.EVERYONE)

    def transfer_ownership(self, resource_type: str, resource_id: str, new_owner: str, grantor: str) -> None:
        """Make ``new_owner`` the owner and demote the previous owner to ``manage``.

        Raises:
            ACLNotFoundError: no ACL exists for the resource.
        """
        acl = self.get_acl(resource_type, resource_id)
        if acl is None:
            raise ACLNotFoundError(
                f"ACL not found for {resource_type}/{resource_id}",
                resource_type=resource_type,
                resource_id=resource_id,
            )

        old_owner = acl.owner
        if old_owner == new_owner:
            return

        # The owner entry is renamed in place, so drop the new owner's old grant first.
        self._remove_entry(acl, GranteeType.USER, new_owner)

        now = datetime.now(timezone.utc)
        for entry in acl.entries:
            if (
                entry.grantee_type == GranteeType.USER
                and entry.grantee_id == old_owner
                and entry.permission_level == PermissionLevel.OWNER
            ):
                entry.grantee_id = new_owner
                entry.granted_by = grantor
                entry.granted_at = now
                break
        else:
            acl.entries.append(
                ResourcePermission(
                    resource_type=resource_type,
                    resource_id=resource_id,
                    grantee_type=GranteeType.USER,
                    grantee_id=new_owner,
                    permission_level=PermissionLevel.OWNER,
                    granted_by=grantor,
                )
            )

        acl.owner = new_owner
        self.grant_permission(
            resource_type, resource_id, GranteeType.USER, old_owner, PermissionLevel.MANAGE, granted_by=grantor
        )
        logger.info("Transferred ownership of %s/%s from %s to %s", resource_type, resource_id, old_owner, new_owner)

    # ── Queries ──

    def check_access(
        self,
        resource_type: str,
        resource_id: str,
        user_id: str,
        action: PermissionAction | str,
        context: ACLContext | None = None,
    ) -> bool:
        """Check ``action`` against user, role, group and everyone entries in turn.

        Falls back to the parent resource when ``inherit_parent`` is set.
        Unknown ACLs deny.
        """
        name = _action_name(action)
        ctx = context or ACLContext()
        for acl in self._chain(resource_type, resource_id):
            if any(_entry_allows(entry, name) for entry in self._applicable_entries(acl, user_id, ctx)):
                return True
        return False

    def get_effective_permission_level(
        self,
        resource_type: str,
        resource_id: str,
        user_id: str,
        context: ACLContext | None = None,
    ) -> PermissionLevel:
        """Highest level across all applicable entries, parents included."""
        ctx = context or ACLContext()
        level = PermissionLevel.NONE
        for acl in self._chain(resource_type, resource_id):
            for entry in self._applicable_entries(acl, user_id, ctx):
                level = max_level(level, entry.permission_level)
        return level

    def get_accessible_resources(self, user_id: str, resource_type: Optional[str] = None) -> list[str]:
        """IDs of resources with an unexpired user entry for ``user_id``."""
        now = datetime.now(timezone.utc)
        resources: list[str] = []
        for (rtype, rid), acl in self._acls.items():
            if resource_type is not None and rtype != resource_type:
                continue
            if any(
                e.grantee_type == GranteeType.USER and e.grantee_id == user_id and not e.is_expired(now=now)
                for e in acl.entries
            ):
                resources.append(rid)
        return resources

    def get_resource_permissions(self, resource_type: str, resource_id: str) -> list[ResourcePermission]:
        acl = self.get_acl(resource_type, resource_id)
        if acl is None:
            return []
        now = datetime.now(timezone.utc)
        return [e for e in acl.entries if not e.is_expired(now=now)]

    # ── Internals ──

    def _chain(self, resource_type: str, resource_id: str) -> Iterator[ResourceACL]:
        """The ACL followed by its inherited parents; stops on revisits."""
        visited: set[tuple[str, str]] = set()
        key = (resource_type, resource_id)
        while key not in visited:
            visited.add(key)
            acl = self._acls.get(key)
            if acl is None:
                return
            yield acl
            if not acl.inherit_parent or acl.parent_resource is None:
                return
            key = (acl.parent_resource.type, acl.parent_resource.id)

    @staticmethod
    def _applicable_entries(acl: ResourceACL, user_id: str, context: ACLContext) -> list[ResourcePermission]:
        now = datetime.now(timezone.utc)
        live = [e for e in acl.entries if not e.is_expired(now=now)]

        ordered: list[ResourcePermission] = []
        ordered.extend(e for e in live if e.grantee_type == GranteeType.USER and e.grantee_id == user_id)
        for role in context.roles:
            ordered.extend(e for e in live if e.grantee_type == GranteeType.ROLE and e.grantee_id == role)
        for group in context.groups:
            ordered.extend(e for e in live if e.grantee_type == GranteeType.GROUP and e.grantee_id == group)
        ordered.extend(e for e in live if e.grantee_type == GranteeType.EVERYONE)
        return ordered

    @staticmethod
    def _check_owner_entry(
        acl: ResourceACL,
        grantee_type: GranteeType,
        grantee_id: Optional[str],
        level: Optional[PermissionLevel],
    ) -> None:
        is_owner = grantee_type == GranteeType.USER and grantee_id == acl.owner
        if is_owner and level != PermissionLevel.OWNER:
            raise OwnershipError(
                f"Cannot change the owner entry of {acl.resource_type}/{acl.resource_id}; use transfer_ownership()",
                resource_type=acl.resource_type,
                resource_id=acl.resource_id,
                owner=acl.owner,
            )
        if not is_owner and level == PermissionLevel.OWNER:
            raise OwnershipError(
                f"{acl.resource_type}/{acl.resource_id} already has an owner; use transfer_ownership()",
                resource_type=acl.resource_type,
                resource_id=acl.resource_id,
                owner=acl.owner,
            )

    @staticmethod
    def _remove_entry(acl: ResourceACL, grantee_type: GranteeType, grantee_id: Optional[str]) -> bool:
        for index, entry in enumerate(acl.entries):
            if entry.grantee_type != grantee_type:
                continue
            if grantee_type == GranteeType.EVERYONE or entry.grantee_id == grantee_id:
                del acl.entries[index]
                return True
        return False

    def _emit(
        self,
        event_type: AuditEventType,
        acl: ResourceACL,
        actor: Optional[str],
        grantee_type: GranteeType,
        grantee_id: Optional[str],
        level: Optional[PermissionLevel],
    ) -> None:
        if self._audit is None:
            return
        from ..audit import AuditEvent, AuditResource, AuditSubject

        self._audit.emit(
            AuditEvent(
                type=event_type,
                subject=AuditSubject(id=actor or SYSTEM_GRANTOR),
                resource=AuditResource(type=acl.resource_type, id=acl.resource_id),
                result="allowed",
                reason=event_type.value,
                metadata={
                    "grantee_type": grantee_type.value,
                    "grantee_id": grantee_id,
                    "permission_level": level.value if level is not None else None,
                    "acl_version": acl.version,
                },
            )
        )


__all__ = [
    "LEVEL_ACTIONS",
    "ACLContext",
    "ResourcePermissionManager",
    "compare_permission_levels",
    "get_minimum_level_for_action",
    "level_grants_action",
    "max_level",
]
