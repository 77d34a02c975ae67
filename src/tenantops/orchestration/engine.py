"""
Deployment orchestrator.

Drives a planned deployment through approval, snapshot, wave-by-wave apply,
verification and, on failure or cancellation, compensating restore:

    plan -> request_approval -> approve... -> apply
                                               |-- snapshot (no mutation on failure)
                                               |-- waves (bounded worker pool)
                                               |-- verify (drift -> warnings)
                                               `-- restore on failure/cancel

No remote mutation happens before validation has passed, and every mutating
call is preceded by a fresh break-glass check on the item.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import structlog

from tenantops.approvals.gate import ApprovalGate, ApprovalRecord
from tenantops.backup.locks import DeploymentLocks
from tenantops.backup.manager import BackupManager, RestoreReport
from tenantops.backup.storage import RestorePoint, RestorePointStorage
from tenantops.clients.base import RemoteDirectoryClient
from tenantops.clients.payload import drift_fields, render_payload
from tenantops.clients.retry import RetryPolicy
from tenantops.config.settings import Settings, get_settings
from tenantops.core.environments import Environment
from tenantops.core.errors import (
    BackupError,
    NotFoundError,
    RemoteError,
    TenantOpsError,
    ValidationError,
)
from tenantops.graph.builder import DependencyGraph
from tenantops.graph.resolver import PlaceholderResolver, ResolutionContext
from tenantops.logging import deployment_context
from tenantops.orchestration.plan_builder import DeploymentPlan, PlanBuilder
from tenantops.orchestration.recorder import DeploymentLog
from tenantops.orchestration.results import (
    DeploymentOutcome,
    DeploymentRecord,
    ItemResult,
    ItemStatus,
    PlanResult,
)
from tenantops.store.models import ConfigurationItem, ItemKey, ItemState, format_key
from tenantops.validation.engine import ValidationEngine

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentOrchestrator:
    """Coordinates every component of a deployment."""

    def __init__(
        self,
        client: RemoteDirectoryClient,
        settings: Settings | None = None,
        gate: ApprovalGate | None = None,
        backups: BackupManager | None = None,
        log: DeploymentLog | None = None,
        validator: ValidationEngine | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.retry = RetryPolicy.from_settings(self.settings)
        self.gate = gate or ApprovalGate()
        self.backups = backups or BackupManager(
            client,
            RestorePointStorage(self.settings.state_dir, self.settings.backup_retention_days),
            DeploymentLocks(),
            self.retry,
        )
        self.log = log or DeploymentLog(self.settings.state_dir)
        self.validator = validator or ValidationEngine(self.settings)
        self.planner = PlanBuilder(self.validator)

    @property
    def locks(self) -> DeploymentLocks:
        return self.backups.locks

    def plan(
        self, config_path: str | Path, environment: str | Environment | None = None
    ) -> PlanResult:
        """Load, build the graph and validate; nothing remote is touched."""
        return self.planner.build(config_path, environment or self.settings.environment)

    def request_approval(self, plan_result: PlanResult) -> ApprovalRecord:
        """
        Open the approval record for a clean plan.

        Raises:
            ValidationError: The plan has graph or validation errors
        """
        self._require_clean(plan_result)
        return self.gate.open(plan_result.deployment_id, plan_result.environment)

    def approve(self, deployment_id: str, approver: str) -> ApprovalRecord:
        return self.gate.approve(deployment_id, approver)

    def apply(
        self, plan_result: PlanResult, cancel: threading.Event | None = None
    ) -> DeploymentRecord:
        """
        Apply an approved plan.

        Raises:
            ValidationError: The plan has errors
            ApprovalPending: Not enough approvals
            ApprovalRejected: The attempt was rejected
            ApprovalStateError: The approval was already used
            DeploymentLockedError: Another apply or restore is running
        """
        self._require_clean(plan_result)
        plan = plan_result.plan
        cancel = cancel or threading.Event()

        with self.locks.hold(plan.deployment_id, timeout=0):
            self.gate.consume(plan.deployment_id)
            with deployment_context(plan.deployment_id, plan.environment):
                return self._run(plan, plan_result.graph, cancel)

    def deploy(
        self,
        config_path: str | Path,
        environment: str | Environment | None = None,
        approvers: Iterable[str] = (),
        cancel: threading.Event | None = None,
    ) -> DeploymentRecord:
        """Plan, approve with the given identities and apply."""
        plan_result = self.plan(config_path, environment)
        record = self.request_approval(plan_result)
        for approver in approvers:
            if self.gate.get(record.deployment_id).is_approved:
                break
            self.gate.approve(record.deployment_id, approver)
        return self.apply(plan_result, cancel)

    def rollback(self, deployment_id: str) -> DeploymentRecord:
        """
        Operator-initiated restore from a stored restore point.

        Raises:
            BackupError: No usable restore point for the deployment
        """
        restore_point = self.backups.storage.load(deployment_id)
        latest = self.log.latest(deployment_id) or {}
        environment = latest.get("environment", "unknown")

        record = DeploymentRecord(
            deployment_id=deployment_id,
            environment=environment,
            started_at=_utcnow(),
            plan=list(restore_point.order),
            operation="rollback",
        )
        with deployment_context(deployment_id, environment):
            logger.info("rollback_requested", items=len(restore_point.order))
            self._restore(record, restore_point, expected=None)
            return self._finalize(record, phase="rollback")

    def preview_rollback(self, deployment_id: str) -> RestoreReport:
        """
        Compare a restore point with the current tenant without changing it.

        Raises:
            BackupError: No usable restore point for the deployment
        """
        restore_point = self.backups.storage.load(deployment_id)
        return self.backups.preview(restore_point)

    def _require_clean(self, plan_result: PlanResult) -> None:
        if not plan_result.success:
            errors = plan_result.all_errors
            raise ValidationError(
                f"Plan has {len(errors)} error(s); fix them before deploying",
                {"first_error": errors[0] if errors else "no plan"},
            )

    def _run(
        self, plan: DeploymentPlan, graph: DependencyGraph, cancel: threading.Event
    ) -> DeploymentRecord:
        record = DeploymentRecord(
            deployment_id=plan.deployment_id,
            environment=plan.environment,
            started_at=_utcnow(),
            plan=list(plan.order),
            item_results={key: ItemResult(key) for key in plan.order},
        )
        self.log.append(record, phase="started")
        logger.info("deployment_started", items=len(plan.order), waves=len(plan.waves))

        try:
            restore_point = self.backups.snapshot(plan)
        except (RemoteError, BackupError) as e:
            logger.error("snapshot_failed", error=str(e))
            record.error = f"Snapshot failed, nothing was changed: {e}"
            record.outcome = DeploymentOutcome.FAILED
            return self._finalize(record)

        halt = threading.Event()
        self._apply_waves(plan, graph, record, halt, cancel)

        failed = record.results_with(ItemStatus.FAILED)
        if failed:
            record.error = f"{format_key(failed[0].key)}: {failed[0].error}"
        elif cancel.is_set() and len(record.applied) < len(plan.order):
            record.error = "Deployment cancelled"
            logger.warning("deployment_cancelled", applied=len(record.applied))
            if not record.applied:
                record.outcome = DeploymentOutcome.FAILED
                return self._finalize(record)
        else:
            self._verify(record)
            record.outcome = DeploymentOutcome.SUCCESS
            return self._finalize(record)

        expected = {
            result.key: result.payload
            for result in record.item_results.values()
            if result.payload is not None
        }
        self._restore(record, restore_point, expected)
        self._mark_reverted(graph, record.restore)
        return self._finalize(record)

    def _apply_waves(
        self,
        plan: DeploymentPlan,
        graph: DependencyGraph,
        record: DeploymentRecord,
        halt: threading.Event,
        cancel: threading.Event,
    ) -> None:
        resolver = PlaceholderResolver(graph)
        context = ResolutionContext()
        items = list(graph.items.values())
        workers = max(1, self.settings.max_workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tenantops-apply") as pool:
            for number, wave in enumerate(plan.waves, 1):
                if halt.is_set() or cancel.is_set():
                    break
                logger.debug("wave_started", wave=number, items=len(wave))
                futures = [
                    pool.submit(
                        self._apply_item,
                        graph.items[key],
                        record.item_results[key],
                        resolver,
                        context,
                        items,
                        halt,
                        cancel,
                    )
                    for key in wave
                ]
                # in-flight items always finish and are recorded
                for future in futures:
                    future.result()

    def _apply_item(
        self,
        item: ConfigurationItem,
        result: ItemResult,
        resolver: PlaceholderResolver,
        context: ResolutionContext,
        items: list[ConfigurationItem],
        halt: threading.Event,
        cancel: threading.Event,
    ) -> None:
        if halt.is_set() or cancel.is_set():
            return

        kind, name = item.key

        def attempt() -> str:
            result.attempts += 1
            return self.client.create_or_update(kind, name, result.payload)

        try:
            finding = self.validator.check_break_glass(item, items)
            if finding is not None:
                raise ValidationError(str(finding), {"item": item.display})
            resolved = resolver.resolve(item, context)
            item.mark_resolved()
            result.payload = render_payload(kind, name, resolved.body)
            remote_id = self.retry.call(attempt)
        except TenantOpsError as e:
            self._fail_item(item, result, halt, e.message)
            return
        except Exception as e:
            logger.exception("item_apply_crashed", item=item.display)
            self._fail_item(item, result, halt, f"{type(e).__name__}: {e}")
            return

        context.record(item.key, remote_id)
        item.mark_applied(remote_id)
        result.status = ItemStatus.APPLIED
        result.remote_id = remote_id
        logger.info("item_applied", item=item.display, remote_id=remote_id, attempts=result.attempts)

    def _fail_item(
        self, item: ConfigurationItem, result: ItemResult, halt: threading.Event, error: str
    ) -> None:
        halt.set()
        item.mark_failed()
        result.status = ItemStatus.FAILED
        result.error = error
        logger.error("item_failed", item=item.display, error=error, attempts=result.attempts)

    def _verify(self, record: DeploymentRecord) -> None:
        """Re-read applied items; drift is a warning, never a rollback."""
        for key in record.applied:
            result = record.item_results[key]
            kind, name = key
            try:
                current = self.retry.call(self.client.get, kind, name)
            except NotFoundError:
                current = None
            except RemoteError as e:
                record.warnings.append(f"{format_key(key)}: could not verify ({e})")
                continue

            drifted = drift_fields(result.payload or {}, current)
            if drifted:
                warning = f"{format_key(key)}: remote state differs in {', '.join(drifted)}"
                record.warnings.append(warning)
                logger.warning("item_drift_detected", item=format_key(key), fields=drifted)

    def _restore(
        self,
        record: DeploymentRecord,
        restore_point: RestorePoint,
        expected: dict[ItemKey, dict] | None,
    ) -> None:
        report = self.backups.restore(restore_point, expected=expected)
        record.restore = report
        if report.complete:
            record.outcome = DeploymentOutcome.ROLLED_BACK
        else:
            record.outcome = DeploymentOutcome.PARTIAL_FAILURE
            logger.error(
                "deployment_partial_failure",
                unrestored=[format_key(result.key) for result in report.failed],
            )

    def _mark_reverted(self, graph: DependencyGraph, report: RestoreReport) -> None:
        # stale or failed restores leave the item as last applied
        for result in report.results:
            item = graph.items.get(result.key)
            if item is not None and result.ok and item.state is ItemState.APPLIED:
                item.mark_reverted()

    def _finalize(self, record: DeploymentRecord, phase: str = "finalized") -> DeploymentRecord:
        record.finished_at = _utcnow()
        self.log.append(record, phase=phase)
        log = logger.info if record.outcome is DeploymentOutcome.SUCCESS else logger.warning
        log(
            "deployment_finalized",
            operation=record.operation,
            outcome=record.outcome.value if record.outcome else None,
            applied=len(record.applied),
            warnings=len(record.warnings),
            error=record.error,
        )
        return record
