"""
Pre-deployment validation engine.

Runs every rule independently over the loaded items and returns a single
report. Any error blocks the plan before it reaches the approval gate,
in every environment.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from tenantops.config.settings import Settings, get_settings
from tenantops.core.environments import Environment, get_environment_policy
from tenantops.store.models import ConfigurationItem
from tenantops.validation import rules
from tenantops.validation.models import ValidationFinding, ValidationReport

logger = structlog.get_logger()


class ValidationEngine:
    """Evaluates safety and structural invariants over configuration items."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.break_glass = rules.BreakGlassRule(
            designated_names=self.settings.break_glass_groups,
            designated_ids=self.settings.break_glass_group_ids,
        )

    def validate(
        self, items: Sequence[ConfigurationItem], environment: str | Environment
    ) -> ValidationReport:
        """Run every rule; no rule short-circuits another."""
        policy = get_environment_policy(environment)
        report = ValidationReport(environment=policy.name)

        report.extend(rules.check_schema(items))
        report.extend(rules.check_placeholder_syntax(items))
        report.extend(self.break_glass(items))
        report.extend(rules.check_policy_conflicts(items))
        report.extend(rules.check_prod_report_only(items, policy))
        report.extend(rules.check_name_collisions(items))

        logger.info(
            "validation_completed",
            environment=policy.name,
            items=len(items),
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        for finding in report.errors:
            logger.warning("validation_error", rule=finding.rule, detail=str(finding))
        return report

    def check_break_glass(
        self, item: ConfigurationItem, items: Iterable[ConfigurationItem]
    ) -> ValidationFinding | None:
        """Re-check the break-glass invariant for a single item."""
        return self.break_glass.check_item(item, self.break_glass.break_glass_groups(items))
