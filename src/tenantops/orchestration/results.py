"""Result types for planning and applying deployments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from tenantops.backup.manager import RestoreReport
from tenantops.core.errors import ApplyFailure, ExitCode, RestoreFailure
from tenantops.store.models import ConfigurationItem, ItemKey, format_key
from tenantops.validation.models import ValidationReport

if TYPE_CHECKING:
    from tenantops.graph.builder import DependencyGraph
    from tenantops.orchestration.plan_builder import DeploymentPlan


class DeploymentOutcome(Enum):
    SUCCESS = "Success"
    PARTIAL_FAILURE = "PartialFailure"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"


class ItemStatus(Enum):
    NOT_ATTEMPTED = "not_attempted"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass
class ItemResult:
    """What happened to one item during apply."""

    key: ItemKey
    status: ItemStatus = ItemStatus.NOT_ATTEMPTED
    remote_id: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    # Rendered document sent to the directory; drives verify and stale checks
    payload: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": format_key(self.key),
            "status": self.status.value,
            "remote_id": self.remote_id,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass
class PlanResult:
    """Result of planning a deployment; nothing remote is touched."""

    environment: str
    config_path: Path
    items: List[ConfigurationItem] = field(default_factory=list)
    graph: Optional[DependencyGraph] = None
    plan: Optional[DeploymentPlan] = None
    validation: Optional[ValidationReport] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def deployment_id(self) -> Optional[str]:
        return self.plan.deployment_id if self.plan else None

    @property
    def success(self) -> bool:
        """Whether the plan can be submitted for approval."""
        return self.plan is not None and not self.all_errors

    @property
    def all_errors(self) -> List[str]:
        errors = list(self.errors)
        if self.validation is not None:
            errors.extend(str(finding) for finding in self.validation.errors)
        return errors

    @property
    def all_warnings(self) -> List[str]:
        warnings = list(self.warnings)
        if self.validation is not None:
            warnings.extend(str(finding) for finding in self.validation.warnings)
        return warnings

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "config_path": str(self.config_path),
            "plan": self.plan.to_dict() if self.plan else None,
            "items": [item.to_dict() for item in self.items],
            "errors": self.all_errors,
            "warnings": self.all_warnings,
        }


@dataclass
class DeploymentRecord:
    """Audit record of one apply or operator rollback."""

    deployment_id: str
    environment: str
    started_at: datetime
    plan: List[ItemKey] = field(default_factory=list)
    operation: str = "apply"
    outcome: Optional[DeploymentOutcome] = None
    item_results: Dict[ItemKey, ItemResult] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    restore: Optional[RestoreReport] = None
    error: Optional[str] = None
    finished_at: Optional[datetime] = None

    def results_with(self, status: ItemStatus) -> List[ItemResult]:
        results = (self.item_results.get(key) for key in self.plan)
        return [result for result in results if result is not None and result.status is status]

    @property
    def applied(self) -> List[ItemKey]:
        return [result.key for result in self.results_with(ItemStatus.APPLIED)]

    @property
    def exit_code(self) -> ExitCode:
        if self.outcome is DeploymentOutcome.SUCCESS:
            return ExitCode.SUCCESS
        if self.outcome is DeploymentOutcome.ROLLED_BACK:
            # a complete operator rollback is a success
            return ExitCode.SUCCESS if self.operation == "rollback" else ExitCode.ROLLED_BACK
        if self.outcome is DeploymentOutcome.PARTIAL_FAILURE:
            return ExitCode.RESTORE_PARTIAL
        return ExitCode.PROVIDER_ERROR

    def raise_for_outcome(self) -> None:
        """Raise the error matching a non-successful outcome."""
        details = {"deployment_id": self.deployment_id}
        if self.outcome is DeploymentOutcome.PARTIAL_FAILURE:
            failed = [format_key(r.key) for r in self.restore.failed] if self.restore else []
            raise RestoreFailure(
                f"Restore incomplete for {self.deployment_id}; operator action required",
                {**details, "unrestored": ", ".join(failed)},
            )
        if self.outcome is DeploymentOutcome.ROLLED_BACK and self.operation == "apply":
            raise ApplyFailure(
                f"Deployment {self.deployment_id} failed and was rolled back: {self.error}",
                details,
            )

    def to_dict(self, phase: str | None = None) -> dict[str, Any]:
        data = {
            "deployment_id": self.deployment_id,
            "environment": self.environment,
            "operation": self.operation,
            "outcome": self.outcome.value if self.outcome else None,
            "plan": [format_key(key) for key in self.plan],
            "item_results": [self.item_results[key].to_dict() for key in self.plan if key in self.item_results],
            "warnings": list(self.warnings),
            "restore": self.restore.to_dict() if self.restore else None,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
        if phase is not None:
            data["phase"] = phase
        return data
