"""Core modules for tenantops - centralized definitions and utilities."""

from tenantops.core.errors import (
    ApplyFailure,
    ApprovalPending,
    ApprovalRejected,
    ApprovalStateError,
    BackupError,
    ConfigurationError,
    CycleError,
    DeploymentLockedError,
    ExitCode,
    MalformedConfigError,
    NotFoundError,
    RemoteError,
    RestoreFailure,
    TenantOpsError,
    TerminalRemoteError,
    TransientRemoteError,
    UnresolvedReferenceError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)
from tenantops.core.environments import (
    ENVIRONMENT_NAMES,
    Environment,
    EnvironmentPolicy,
    get_environment_policy,
    normalize_environment,
)

__all__ = [
    # Environments
    "Environment",
    "EnvironmentPolicy",
    "ENVIRONMENT_NAMES",
    "get_environment_policy",
    "normalize_environment",
    # Errors
    "ExitCode",
    "TenantOpsError",
    "ConfigurationError",
    "MalformedConfigError",
    "CycleError",
    "UnresolvedReferenceError",
    "ValidationError",
    "ApprovalPending",
    "ApprovalRejected",
    "ApprovalStateError",
    "RemoteError",
    "TransientRemoteError",
    "TerminalRemoteError",
    "NotFoundError",
    "ApplyFailure",
    "RestoreFailure",
    "DeploymentLockedError",
    "BackupError",
    "main_with_error_handling",
    "format_error_message",
]
