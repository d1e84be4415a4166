"""Access engine facade.

Provides:
- ``AccessEngine`` — wires role hierarchy, policy sets, permission matrix and
  flat permission checks behind one API, with decision caching and audit.
- ``UserContext`` — immutable per-user state (roles, attributes, resolved
  permissions and denials).
- ``create_access_engine()`` — factory.

Evaluation order for ``evaluate()``: cache, super-admin bypass, policy sets,
permission matrix, then the flattened permission set. The first stage with a
conclusive (or indeterminate) answer decides.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from .audit import AuditDispatcher, AuditEvent, AuditHandler
from .cache import DecisionCache
from .config import AccessConfig, AccessSettings
from .exceptions import AccessDeniedError
from .logging import get_access_logger
from .permissions.access import check_scoped_access, is_denied
from .permissions.access import has_permission as set_has_permission
from .permissions.acl import ResourcePermissionManager
from .permissions.conditions import CustomConditionHandler, EvaluationContext
from .permissions.constants import Decision, Effect, PermissionAction, PermissionScope
from .permissions.hierarchy import RoleHierarchy
from .permissions.matching import Permission, try_parse_permission
from .permissions.matrix import evaluate_permission_matrix, validate_permission_matrix
from .permissions.models import AccessRequest, EvaluationResult, RoleDefinition
from .permissions.policy import PolicyEvaluator

logger = get_access_logger(__name__)


@dataclass(frozen=True)
class UserContext:
    """Snapshot of the current user as seen by one engine."""

    roles: tuple[str, ...] = ()
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    permissions: frozenset[str] = frozenset()
    denials: frozenset[str] = frozenset()

    @property
    def user_id(self) -> Optional[str]:
        value = self.attributes.get("id")
        return str(value) if value is not None else None


def _value(item: Any) -> Any:
    return item.value if isinstance(item, (PermissionAction, PermissionScope)) else item


class AccessEngine:
    """RBAC/ABAC access engine.

    One engine holds one user context. Use :meth:`for_user` to derive an
    isolated engine per request or session; derived engines share the
    configuration and audit handlers but never caches or context.

    Example::

        engine = AccessEngine(AccessConfig(roles=[
            RoleDefinition(id="viewer", permissions=["documents:read"]),
            RoleDefinition(id="editor", permissions=["documents:update"], inherits=["viewer"]),
        ]))
        engine.set_user_context(["editor"], {"id": "u1"})
        engine.has_permission("documents:read")   # True
        engine.can_access("documents", "delete")  # False
    """

    def __init__(
        self,
        config: AccessConfig | None = None,
        *,
        condition_handlers: Mapping[str, CustomConditionHandler] | None = None,
        audit: AuditDispatcher | None = None,
    ) -> None:
        self._config = config or AccessConfig()
        self._handlers: dict[str, CustomConditionHandler] = dict(condition_handlers or {})
        self._audit = audit or AuditDispatcher()
        self._acl = ResourcePermissionManager(audit=self._audit)
        self._build()
        self._context = UserContext()

    # ── Configuration ──

    @property
    def config(self) -> AccessConfig:
        return self._config

    @property
    def hierarchy(self) -> RoleHierarchy:
        return self._hierarchy

    @property
    def policy_evaluator(self) -> PolicyEvaluator:
        return self._evaluator

    @property
    def acl(self) -> ResourcePermissionManager:
        """Resource ACLs, shared with derived engines; grants and revocations are audited."""
        return self._acl

    def update_config(self, **changes: Any) -> None:
        """Apply validated config changes, re-resolve the user and clear caches."""
        self._config = self._config.with_changes(**changes)
        self._build()
        self._context = self._resolve(self._context.roles, self._context.attributes)

    def add_role(self, role: RoleDefinition) -> None:
        roles = [r for r in self._config.roles if r.id != role.id]
        roles.append(role)
        self.update_config(roles=roles)

    def remove_role(self, role_id: str) -> None:
        self.update_config(roles=[r for r in self._config.roles if r.id != role_id])

    def validate(self) -> list[str]:
        """Hierarchy and matrix configuration errors (empty when sound)."""
        errors = self._hierarchy.validate()
        if self._config.permission_matrix is not None:
            errors.extend(validate_permission_matrix(self._config.permission_matrix))
        return errors

    # ── User context ──

    def set_user_context(self, roles: Iterable[str], attributes: Mapping[str, Any] | None = None) -> UserContext:
        """Replace the user context, re-resolve permissions and clear caches."""
        self._context = self._resolve(roles, attributes)
        self._cache.clear()
        logger.debug("User context set: roles=%s", list(self._context.roles), subject_id=self._context.user_id)
        return self._context

    def for_user(self, roles: Iterable[str], attributes: Mapping[str, Any] | None = None) -> AccessEngine:
        """Derive an engine for another user, sharing configuration and audit."""
        engine = copy.copy(self)
        engine._cache = DecisionCache(self._config.cache_ttl_seconds, enabled=self._config.enable_caching)
        engine._context = engine._resolve(roles, attributes)
        return engine

    @property
    def user_context(self) -> UserContext:
        return self._context

    def get_user_roles(self) -> list[str]:
        return list(self._context.roles)

    def get_resolved_permissions(self) -> frozenset[str]:
        return self._context.permissions

    # ── Permission checks ──

    def has_permission(self, permission: str) -> bool:
        """Check a permission string against the resolved set (wildcards, scopes, denials)."""
        cached = self._cache.get_permission(permission)
        if cached is not None:
            return cached

        if self._is_super_admin(self._context.roles):
            granted = True
        else:
            requested = try_parse_permission(permission)
            granted = (
                requested is not None
                and not is_denied(self._context.denials, requested.resource, requested.action)
                and set_has_permission(self._context.permissions, permission)
            )

        self._cache.set_permission(permission, granted)
        return granted

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return all(self.has_permission(p) for p in permissions)

    def has_role(self, role_id: str) -> bool:
        """Direct or inherited role membership."""
        return any(r == role_id or self._hierarchy.inherits_from(r, role_id) for r in self._context.roles)

    def has_any_role(self, role_ids: Iterable[str]) -> bool:
        return any(self.has_role(r) for r in role_ids)

    def has_all_roles(self, role_ids: Iterable[str]) -> bool:
        return all(self.has_role(r) for r in role_ids)

    def can_access(
        self,
        resource: str,
        action: PermissionAction | str,
        scope: PermissionScope | str | None = None,
    ) -> bool:
        """Flat permission check for ``resource:action[:scope]``."""
        return self.has_permission(str(Permission(resource, _value(action), _value(scope))))

    def require(
        self,
        resource: str,
        action: PermissionAction | str,
        scope: PermissionScope | str | None = None,
    ) -> None:
        """Raise AccessDeniedError unless :meth:`can_access` allows."""
        if not self.can_access(resource, action, scope):
            raise AccessDeniedError(
                f"Access denied: {resource}:{_value(action)}",
                resource=resource,
                action=_value(action),
                scope=_value(scope),
            )

    def check_resource_permission(
        self,
        resource_type: str,
        resource_id: str,
        action: PermissionAction | str,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """Check access to one resource instance.

        ``context`` carries the resource attributes (``owner_id``, ``team_id``,
        ``org_id``) that scoped grants are checked against.
        """
        name = _value(action)
        if self._is_super_admin(self._context.roles):
            return True
        if is_denied(self._context.denials, resource_type, name):
            return False
        return check_scoped_access(
            self._context.permissions,
            resource_type,
            name,
            subject_id=self._context.user_id,
            subject_attributes=self._context.attributes,
            resource_attributes=context or {},
        )

    # ── Evaluation ──

    def evaluate(self, request: AccessRequest, context: EvaluationContext | None = None) -> EvaluationResult:
        """Full evaluation of an access request. Every call is audited."""
        start = time.perf_counter()
        key = request.cache_key()
        if context is not None:
            key = f"{key}:{context.cache_key()}"

        cached = self._cache.get_evaluation(key)
        if cached is not None:
            self._audit_check(request, cached)
            return cached

        result = self._decide(request, context)
        if result.decision == Decision.INDETERMINATE:
            result = result.model_copy(update={"allowed": self._config.default_decision == Effect.ALLOW})
        result = result.model_copy(update={"evaluation_time": (time.perf_counter() - start) * 1000})

        logger.debug(
            "Evaluated %s:%s -> %s (%s)",
            request.resource.type,
            request.action,
            result.decision.value,
            result.reason,
            request=request,
        )
        self._cache.set_evaluation(key, result)
        self._audit_check(request, result)
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    def on_audit(self, handler: AuditHandler) -> Callable[[], None]:
        """Register an audit handler; returns a callable that unregisters it."""
        return self._audit.subscribe(handler)

    # ── Internals ──

    def _build(self) -> None:
        self._hierarchy = RoleHierarchy(self._config.roles)
        self._evaluator = PolicyEvaluator(
            policy_sets=self._config.policy_sets,
            default_combining_algorithm=self._config.default_combining_algorithm,
            condition_handlers=self._handlers,
        )
        self._cache = DecisionCache(self._config.cache_ttl_seconds, enabled=self._config.enable_caching)

    def _resolve(self, roles: Iterable[str], attributes: Mapping[str, Any] | None) -> UserContext:
        role_ids = tuple(dict.fromkeys(roles))
        return UserContext(
            roles=role_ids,
            attributes=MappingProxyType(dict(attributes or {})),
            permissions=self._hierarchy.get_effective_permissions_for_roles(role_ids),
            denials=self._hierarchy.get_effective_denials_for_roles(role_ids),
        )

    def _is_super_admin(self, roles: Iterable[str]) -> bool:
        admins = self._config.super_admin_roles
        return bool(admins) and any(r in admins for r in roles)

    def _decide(self, request: AccessRequest, context: EvaluationContext | None) -> EvaluationResult:
        request = self._bind_subject(request)
        roles = tuple(request.subject.roles or ())

        if self._is_super_admin(roles):
            return EvaluationResult(allowed=True, decision=Decision.ALLOW, reason="super_admin_bypass")

        if self._config.policy_sets:
            policy_result = self._evaluator.evaluate_policy_sets(request, context)
            if policy_result.decision != Decision.NOT_APPLICABLE:
                return policy_result

        if self._config.permission_matrix is not None:
            matrix_result = evaluate_permission_matrix(
                self._config.permission_matrix,
                request,
                roles,
                role_priority=self._hierarchy.priorities(),
            )
            if matrix_result.decision != Decision.NOT_APPLICABLE:
                return matrix_result

        return self._fallback(request, roles)

    def _bind_subject(self, request: AccessRequest) -> AccessRequest:
        """Fill the request subject from the user context.

        Missing roles default to the context roles. Context attributes are merged
        only for the context user itself (or, for an anonymous context, a subject
        borrowing its roles); other subjects are evaluated as given.
        """
        subject = request.subject
        updates: dict[str, Any] = {}
        borrows_roles = subject.roles is None
        if borrows_roles:
            updates["roles"] = list(self._context.roles)
        user_id = self._context.user_id
        if self._context.attributes and (subject.id == user_id or (user_id is None and borrows_roles)):
            updates["attributes"] = {**self._context.attributes, **subject.attributes}
        if not updates:
            return request
        return request.model_copy(update={"subject": subject.model_copy(update=updates)})

    def _fallback(self, request: AccessRequest, roles: tuple[str, ...]) -> EvaluationResult:
        if roles == self._context.roles:
            permissions, denials = self._context.permissions, self._context.denials
        else:
            permissions = self._hierarchy.get_effective_permissions_for_roles(roles)
            denials = self._hierarchy.get_effective_denials_for_roles(roles)

        resource_type, action = request.resource.type, request.action
        allowed = not is_denied(denials, resource_type, action) and check_scoped_access(
            permissions,
            resource_type,
            action,
            subject_id=request.subject.id,
            subject_attributes=request.subject.attributes,
            resource_attributes=request.resource.attributes,
        )
        return EvaluationResult(
            allowed=allowed,
            decision=Decision.ALLOW if allowed else Decision.DENY,
            reason="permission_granted" if allowed else "permission_denied",
        )

    def _audit_check(self, request: AccessRequest, result: EvaluationResult) -> None:
        if not self._config.enable_audit:
            return
        self._audit.emit(AuditEvent.for_access_check(request, result))


def create_access_engine(
    config: AccessConfig | None = None,
    *,
    settings: AccessSettings | None = None,
    **kwargs: Any,
) -> AccessEngine:
    """Create an engine; ``settings`` seeds the cache/audit switches when no config is given."""
    if config is None:
        config = AccessConfig.from_settings(settings) if settings is not None else AccessConfig()
    return AccessEngine(config, **kwargs)


__all__ = [
    "AccessEngine",
    "UserContext",
    "create_access_engine",
]
