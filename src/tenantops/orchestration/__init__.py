"""Deployment orchestration: planning, apply, verify and rollback."""

from tenantops.orchestration.engine import DeploymentOrchestrator
from tenantops.orchestration.plan_builder import DeploymentPlan, PlanBuilder, new_deployment_id
from tenantops.orchestration.recorder import DeploymentLog
from tenantops.orchestration.results import (
    DeploymentOutcome,
    DeploymentRecord,
    ItemResult,
    ItemStatus,
    PlanResult,
)

__all__ = [
    "DeploymentLog",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "DeploymentPlan",
    "DeploymentRecord",
    "ItemResult",
    "ItemStatus",
    "PlanBuilder",
    "PlanResult",
    "new_deployment_id",
]
