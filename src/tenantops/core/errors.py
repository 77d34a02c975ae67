"""
Unified error handling for tenantops.

This module provides the error taxonomy shared by the deployment engine,
standardized exit codes, and error reporting for CLI commands.

Exit Codes:
- 0: Success
- 2: Approval rejected
- 3: Approval pending
- 10: Configuration error (malformed items, cycles, unresolved references)
- 11: Provider error (directory service failure)
- 12: Validation error
- 13: Apply failure (deployment rolled back)
- 14: Restore incomplete (partial failure, operator action required)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    APPROVAL_REJECTED = 2
    APPROVAL_PENDING = 3
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    ROLLED_BACK = 13
    RESTORE_PARTIAL = 14
    UNKNOWN_ERROR = 127


class TenantOpsError(Exception):
    """Base exception for tenantops errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TenantOpsError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class MalformedConfigError(ConfigurationError):
    """A configuration document could not be parsed into an item."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message, {"source": source} if source else None)
        self.source = source


class CycleError(ConfigurationError):
    """Configuration items reference each other in a cycle."""

    def __init__(self, cycle: Sequence[tuple[Any, str]]):
        path = " -> ".join(_format_key(key) for key in cycle)
        super().__init__(f"Dependency cycle detected: {path}", {"cycle": path})
        self.cycle = list(cycle)

    @property
    def members(self) -> set[tuple[Any, str]]:
        """Distinct items taking part in the cycle."""
        return set(self.cycle)


class UnresolvedReferenceError(ConfigurationError):
    """A placeholder points at an item that is unknown or not yet applied."""

    def __init__(self, source: tuple[Any, str], target: tuple[Any, str], reason: str = "not found"):
        super().__init__(
            f"{_format_key(source)} references {_format_key(target)}: {reason}",
            {"source": _format_key(source), "target": _format_key(target)},
        )
        self.source = source
        self.target = target
        self.reason = reason


class ValidationError(TenantOpsError):
    """Raised for hard validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class ApprovalPending(TenantOpsError):
    """The deployment has not collected enough approvals yet."""

    exit_code = ExitCode.APPROVAL_PENDING


class ApprovalRejected(TenantOpsError):
    """The deployment attempt was rejected by an approver."""

    exit_code = ExitCode.APPROVAL_REJECTED


class ApprovalStateError(TenantOpsError):
    """An approval transition was requested from a terminal state."""

    exit_code = ExitCode.APPROVAL_PENDING


class RemoteError(TenantOpsError):
    """Base class for directory service failures."""

    exit_code = ExitCode.PROVIDER_ERROR


class TransientRemoteError(RemoteError):
    """Network-level or throttling failure that is safe to retry."""


class TerminalRemoteError(RemoteError):
    """Authorization failure or rejected payload; never retried."""


class NotFoundError(RemoteError):
    """The object does not exist in the directory."""


class ApplyFailure(TenantOpsError):
    """An item could not be applied; the deployment was rolled back."""

    exit_code = ExitCode.ROLLED_BACK


class RestoreFailure(TenantOpsError):
    """One or more items could not be restored from a restore point."""

    exit_code = ExitCode.RESTORE_PARTIAL


class DeploymentLockedError(TenantOpsError):
    """Another apply or restore holds the deployment lock."""

    exit_code = ExitCode.CONFIG_ERROR


class BackupError(TenantOpsError):
    """A restore point could not be written or read."""

    exit_code = ExitCode.CONFIG_ERROR


def _format_key(key: tuple[Any, str]) -> str:
    kind, name = key
    return f"{getattr(kind, 'value', kind)}:{name}"


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - TenantOpsError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except TenantOpsError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: TenantOpsError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
