from .audit import AuditDispatcher, AuditEvent, LoggingAuditHandler
from .cache import DecisionCache
from .config import AccessConfig, AccessSettings, LogLevel, load_access_settings_from_env
from .engine import AccessEngine, UserContext, create_access_engine
from .exceptions import (
    AccessControlError,
    AccessDeniedError,
    ACLNotFoundError,
    ConditionEvaluationError,
    ConfigurationError,
    OwnershipError,
    PermissionFormatError,
)
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AccessLogFormatter,
    AccessLoggerAdapter,
    setup_logging,
    get_access_logger,
)
from .permissions import (
    ACLContext,
    AccessRequest,
    CombiningAlgorithm,
    ConflictResolution,
    Decision,
    Effect,
    EvaluationContext,
    EvaluationResult,
    GranteeType,
    PermissionAction,
    PermissionLevel,
    PermissionMatrix,
    PermissionMatrixBuilder,
    PermissionMatrixEntry,
    PermissionScope,
    Policy,
    PolicyEvaluator,
    PolicySet,
    RequestContext,
    RequestResource,
    RequestSubject,
    ResourcePermissionManager,
    RoleDefinition,
    RoleHierarchy,
    safe_pattern_match,
)

__all__ = [
    'AccessEngine',
    'UserContext',
    'create_access_engine',
    'AccessConfig',
    'AccessSettings',
    'LogLevel',
    'load_access_settings_from_env',
    'AuditDispatcher',
    'AuditEvent',
    'LoggingAuditHandler',
    'DecisionCache',
    'AccessControlError',
    'AccessDeniedError',
    'ACLNotFoundError',
    'ConditionEvaluationError',
    'ConfigurationError',
    'OwnershipError',
    'PermissionFormatError',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AccessLogFormatter',
    'AccessLoggerAdapter',
    'setup_logging',
    'get_access_logger',
    'ACLContext',
    'AccessRequest',
    'CombiningAlgorithm',
    'ConflictResolution',
    'Decision',
    'Effect',
    'EvaluationContext',
    'EvaluationResult',
    'GranteeType',
    'PermissionAction',
    'PermissionLevel',
    'PermissionMatrix',
    'PermissionMatrixBuilder',
    'PermissionMatrixEntry',
    'PermissionScope',
    'Policy',
    'PolicyEvaluator',
    'PolicySet',
    'RequestContext',
    'RequestResource',
    'RequestSubject',
    'ResourcePermissionManager',
    'RoleDefinition',
    'RoleHierarchy',
    'safe_pattern_match',
]
