"""Role, matrix, ACL and policy building blocks of the access engine.

Defines:
- Permission strings: ``Permission``, ``parse_permission``, ``safe_pattern_match``
- Vocabularies: actions, scopes, levels, decisions, combining algorithms
- RoleHierarchy: inheritance-aware permission resolution
- Permission matrix: builder, evaluation, validation
- ResourcePermissionManager: per-resource ACLs
- PolicyEvaluator: ABAC policies and combining algorithms
"""

from .access import (
    can_access,
    check_scoped_access,
    has_all_permissions,
    has_any_permission,
    has_permission,
    is_denied,
    scope_applies,
)
from .acl import (
    LEVEL_ACTIONS,
    ACLContext,
    ResourcePermissionManager,
    compare_permission_levels,
    get_minimum_level_for_action,
    level_grants_action,
)
from .conditions import CustomConditionHandler, EvaluationContext, compare_value, evaluate_condition
from .constants import (
    CRUD_ACTIONS,
    FULL_ACCESS_ACTIONS,
    MAX_PATTERN_LENGTH,
    READ_ONLY_ACTIONS,
    WILDCARD,
    AuditEventType,
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
from .hierarchy import STANDARD_ROLE_HIERARCHY, HierarchyNode, RoleHierarchy, expand_graph, find_cycle
from .matching import Permission, glob_match, parse_permission, safe_pattern_match
from .matrix import (
    PermissionMatrixBuilder,
    create_standard_matrix,
    evaluate_permission_matrix,
    filter_entries_by_resource,
    filter_entries_by_role,
    get_defined_resources,
    get_defined_roles,
    merge_permission_matrices,
    validate_permission_matrix,
)
from .models import (
    AccessRequest,
    AttributeCondition,
    ContextCondition,
    CustomCondition,
    DeviceInfo,
    EvaluationResult,
    IPCondition,
    Location,
    LocationCondition,
    Obligation,
    PermissionCondition,
    PermissionMatrix,
    PermissionMatrixEntry,
    Policy,
    PolicyResource,
    PolicySet,
    PolicySubject,
    RequestContext,
    RequestResource,
    RequestSubject,
    ResourceACL,
    ResourcePermission,
    ResourceRef,
    RoleDefinition,
    SessionInfo,
    StructuredPermission,
    TimeCondition,
)
from .policy import PolicyEvaluator, PolicyResult, combine_results, create_policy_evaluator

__all__ = [
    "CRUD_ACTIONS",
    "FULL_ACCESS_ACTIONS",
    "LEVEL_ACTIONS",
    "MAX_PATTERN_LENGTH",
    "READ_ONLY_ACTIONS",
    "STANDARD_ROLE_HIERARCHY",
    "WILDCARD",
    "ACLContext",
    "AccessRequest",
    "AttributeCondition",
    "AuditEventType",
    "CombiningAlgorithm",
    "ConflictResolution",
    "ContextCondition",
    "CustomCondition",
    "CustomConditionHandler",
    "Decision",
    "DeviceInfo",
    "Effect",
    "EvaluationContext",
    "EvaluationResult",
    "GranteeType",
    "HierarchyNode",
    "IPCondition",
    "Location",
    "LocationCondition",
    "MatchType",
    "Obligation",
    "ObligationType",
    "Permission",
    "PermissionAction",
    "PermissionCondition",
    "PermissionLevel",
    "PermissionMatrix",
    "PermissionMatrixBuilder",
    "PermissionMatrixEntry",
    "PermissionScope",
    "Policy",
    "PolicyEvaluator",
    "PolicyResource",
    "PolicyResult",
    "PolicySet",
    "PolicySubject",
    "PolicySubjectType",
    "RequestContext",
    "RequestResource",
    "RequestSubject",
    "ResourceACL",
    "ResourcePermission",
    "ResourcePermissionManager",
    "ResourceRef",
    "RoleDefinition",
    "RoleHierarchy",
    "SessionInfo",
    "StructuredPermission",
    "SubjectType",
    "TimeCondition",
    "can_access",
    "check_scoped_access",
    "combine_results",
    "compare_permission_levels",
    "compare_value",
    "create_policy_evaluator",
    "create_standard_matrix",
    "evaluate_condition",
    "evaluate_permission_matrix",
    "expand_graph",
    "filter_entries_by_resource",
    "filter_entries_by_role",
    "find_cycle",
    "get_defined_resources",
    "get_defined_roles",
    "get_minimum_level_for_action",
    "glob_match",
    "has_all_permissions",
    "has_any_permission",
    "has_permission",
    "is_denied",
    "level_grants_action",
    "merge_permission_matrices",
    "parse_permission",
    "safe_pattern_match",
    "scope_applies",
    "validate_permission_matrix",
]
