"""Builds deployment plans: load, graph, validate."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from tenantops.core.environments import Environment, normalize_environment
from tenantops.core.errors import ConfigurationError
from tenantops.graph.builder import DependencyGraph
from tenantops.orchestration.results import PlanResult
from tenantops.store.loader import ConfigStore
from tenantops.store.models import ItemKey, format_key
from tenantops.validation.engine import ValidationEngine

logger = structlog.get_logger()


def new_deployment_id(environment: str | Environment, now: datetime | None = None) -> str:
    """Sortable id: UTC timestamp, environment, random suffix."""
    now = now or datetime.now(timezone.utc)
    env = normalize_environment(environment).value
    return f"{now:%Y%m%dT%H%M%S%fZ}-{env}-{secrets.token_hex(4)}"


@dataclass(frozen=True)
class DeploymentPlan:
    """Ordered, wave-partitioned item keys for one deployment attempt."""

    deployment_id: str
    environment: str
    order: tuple[ItemKey, ...]
    waves: tuple[tuple[ItemKey, ...], ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "environment": self.environment,
            "order": [format_key(key) for key in self.order],
            "waves": [[format_key(key) for key in wave] for wave in self.waves],
        }


class PlanBuilder:
    """Turns a config source into a validated plan."""

    def __init__(self, validator: ValidationEngine) -> None:
        self._validator = validator

    def build(
        self,
        config_path: str | Path,
        environment: str | Environment,
        deployment_id: str | None = None,
    ) -> PlanResult:
        """
        Build a plan without touching the remote tenant.

        Load errors become warnings (the malformed item is dropped); graph
        errors and hard validation findings are captured on the result.

        Raises:
            ConfigurationError: Unknown environment or missing config path
        """
        try:
            env = normalize_environment(environment)
        except ValueError as e:
            raise ConfigurationError(str(e), {"environment": str(environment)}) from e

        result = PlanResult(environment=env.value, config_path=Path(config_path))
        loaded = ConfigStore().load(config_path)
        result.items = loaded.items
        result.warnings.extend(f"Skipped malformed item: {error}" for error in loaded.errors)

        result.validation = self._validator.validate(loaded.items, env)

        try:
            graph = DependencyGraph.build(loaded.items)
        except ConfigurationError as e:
            result.errors.append(e.message)
            logger.warning("plan_graph_error", error=e.message)
            return result

        result.graph = graph
        order = graph.topological_order()
        result.plan = DeploymentPlan(
            deployment_id=deployment_id or new_deployment_id(env),
            environment=env.value,
            order=tuple(order),
            waves=tuple(tuple(wave) for wave in graph.waves(order)),
        )

        logger.info(
            "plan_built",
            deployment_id=result.plan.deployment_id,
            environment=env.value,
            items=len(order),
            waves=len(result.plan.waves),
            edges=graph.edge_count,
            errors=len(result.all_errors),
            warnings=len(result.all_warnings),
        )
        return result
