"""Restore points and compensating restore."""

from tenantops.backup.locks import DeploymentLocks
from tenantops.backup.manager import (
    BackupManager,
    RestoreAction,
    RestoreItemResult,
    RestoreReport,
)
from tenantops.backup.storage import RestorePoint, RestorePointStorage

__all__ = [
    "BackupManager",
    "DeploymentLocks",
    "RestoreAction",
    "RestoreItemResult",
    "RestorePoint",
    "RestorePointStorage",
    "RestoreReport",
]
