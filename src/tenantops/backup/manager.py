"""
Backup and compensating restore.

The directory service has no transactions, so a failed deployment is undone
by restoring the state captured before the first mutation: items that did
not exist are deleted, everything else gets its prior document back. The
walk runs in reverse plan order so dependents are reverted before the
objects they point at.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

import structlog

from tenantops.backup.locks import DeploymentLocks
from tenantops.backup.storage import RestorePoint, RestorePointStorage
from tenantops.clients.base import RemoteDirectoryClient
from tenantops.clients.payload import matches, same_state, writable
from tenantops.clients.retry import NO_RETRY, RetryPolicy
from tenantops.core.errors import NotFoundError, RemoteError
from tenantops.store.models import ItemKey, format_key

if TYPE_CHECKING:
    from tenantops.orchestration.plan_builder import DeploymentPlan

logger = structlog.get_logger()


class RestoreAction(Enum):
    RESTORED = "restored"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    STALE = "stale"
    FAILED = "failed"


@dataclass
class RestoreItemResult:
    key: ItemKey
    action: RestoreAction
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.action not in (RestoreAction.STALE, RestoreAction.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {"key": format_key(self.key), "action": self.action.value, "error": self.error}


@dataclass
class RestoreReport:
    """Outcome of one restore; incomplete restores are always surfaced."""

    deployment_id: str
    results: list[RestoreItemResult] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(result.ok for result in self.results)

    @property
    def failed(self) -> list[RestoreItemResult]:
        return [result for result in self.results if not result.ok]

    def keys_with(self, action: RestoreAction) -> list[ItemKey]:
        return [result.key for result in self.results if result.action is action]

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "complete": self.complete,
            "results": [result.to_dict() for result in self.results],
        }


class BackupManager:
    """Takes restore points and restores from them."""

    def __init__(
        self,
        client: RemoteDirectoryClient,
        storage: RestorePointStorage,
        locks: DeploymentLocks | None = None,
        retry: RetryPolicy = NO_RETRY,
    ):
        self.client = client
        self.storage = storage
        self.locks = locks if locks is not None else DeploymentLocks()
        self.retry = retry

    def _read(self, key: ItemKey) -> dict[str, Any] | None:
        kind, name = key
        try:
            return self.retry.call(self.client.get, kind, name)
        except NotFoundError:
            return None

    def snapshot(self, plan: DeploymentPlan) -> RestorePoint:
        """Capture and persist the current remote state of every planned item.

        Raises:
            RemoteError: If any item cannot be read
            BackupError: If the restore point cannot be written
        """
        snapshots = {key: self._read(key) for key in plan.order}
        restore_point = RestorePoint(
            deployment_id=plan.deployment_id,
            created_at=datetime.now(timezone.utc),
            order=tuple(plan.order),
            snapshots=snapshots,
        )
        self.storage.save(restore_point)
        logger.info(
            "snapshot_taken",
            deployment_id=plan.deployment_id,
            items=len(snapshots),
            absent=sum(1 for doc in snapshots.values() if doc is None),
        )
        return restore_point

    def restore(
        self,
        restore_point: RestorePoint,
        expected: Mapping[ItemKey, dict[str, Any]] | None = None,
    ) -> RestoreReport:
        """Best-effort restore in reverse plan order.

        Args:
            restore_point: State to return to
            expected: Payloads this deployment sent, by key. When given, an
                item whose current state matches neither its payload nor its
                snapshot was changed by someone else and is left alone.
        """
        report = RestoreReport(deployment_id=restore_point.deployment_id)

        with self.locks.hold(restore_point.deployment_id):
            logger.info(
                "restore_started",
                deployment_id=restore_point.deployment_id,
                items=len(restore_point.order),
            )
            for key in reversed(restore_point.order):
                result = self._restore_item(restore_point, key, expected)
                report.results.append(result)
                if result.ok:
                    logger.info("restore_item_done", key=format_key(key), action=result.action.value)
                else:
                    logger.error(
                        "restore_item_failed",
                        key=format_key(key),
                        action=result.action.value,
                        error=result.error,
                    )

        log = logger.info if report.complete else logger.error
        log(
            "restore_completed",
            deployment_id=restore_point.deployment_id,
            complete=report.complete,
            failed=[format_key(result.key) for result in report.failed],
        )
        return report

    def preview(self, restore_point: RestorePoint) -> RestoreReport:
        """What ``restore`` would do, in the same order; nothing is written."""
        report = RestoreReport(deployment_id=restore_point.deployment_id)
        for key in reversed(restore_point.order):
            prior = restore_point.snapshots.get(key)
            try:
                current = self._read(key)
            except RemoteError as e:
                report.results.append(RestoreItemResult(key, RestoreAction.FAILED, str(e)))
                continue
            if same_state(prior, current):
                action = RestoreAction.UNCHANGED
            elif prior is None:
                action = RestoreAction.DELETED
            else:
                action = RestoreAction.RESTORED
            report.results.append(RestoreItemResult(key, action))
        logger.info(
            "restore_previewed",
            deployment_id=restore_point.deployment_id,
            changes=sum(1 for result in report.results if result.action is not RestoreAction.UNCHANGED),
        )
        return report

    def _restore_item(
        self,
        restore_point: RestorePoint,
        key: ItemKey,
        expected: Mapping[ItemKey, dict[str, Any]] | None,
    ) -> RestoreItemResult:
        kind, name = key
        prior = restore_point.snapshots.get(key)

        try:
            if expected is not None:
                current = self._read(key)
                if same_state(prior, current):
                    return RestoreItemResult(key, RestoreAction.UNCHANGED)
                if key not in expected or not matches(expected[key], current):
                    return RestoreItemResult(
                        key,
                        RestoreAction.STALE,
                        "remote state changed outside this deployment; restore manually",
                    )

            if prior is None:
                try:
                    self.retry.call(self.client.delete, kind, name)
                except NotFoundError:
                    return RestoreItemResult(key, RestoreAction.UNCHANGED)
                return RestoreItemResult(key, RestoreAction.DELETED)

            self.retry.call(self.client.create_or_update, kind, name, writable(prior))
            return RestoreItemResult(key, RestoreAction.RESTORED)
        except RemoteError as e:
            return RestoreItemResult(key, RestoreAction.FAILED, str(e))
