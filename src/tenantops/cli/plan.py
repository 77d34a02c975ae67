"""
CLI command for planning (dry-run) a deployment.
"""

from __future__ import annotations

import json
from typing import Optional

from tenantops.cli.ux import console, error, header, success, warning
from tenantops.config.settings import get_settings
from tenantops.core.errors import ExitCode
from tenantops.orchestration.plan_builder import PlanBuilder
from tenantops.orchestration.results import PlanResult
from tenantops.store.models import format_key
from tenantops.validation.engine import ValidationEngine


def print_plan_summary(result: PlanResult) -> None:
    """Print the plan: waves, then errors and warnings."""
    header(f"Plan: {result.config_path} ({result.environment})")
    console.print()

    if result.plan is not None:
        console.print(f"[bold]Deployment[/bold] [highlight]{result.plan.deployment_id}[/highlight]")
        for number, wave in enumerate(result.plan.waves, 1):
            console.print(f"  [info]Wave {number}[/info]")
            for key in wave:
                console.print(f"     [muted]└[/muted] {format_key(key)}")
        console.print()

    if result.all_warnings:
        warning("Warnings:")
        for item in result.all_warnings:
            console.print(f"   [warning]•[/warning] {item}")
        console.print()

    if result.all_errors:
        error("Errors:")
        for item in result.all_errors:
            console.print(f"   [error]•[/error] {item}")
        console.print()
    else:
        success(f"{len(result.plan.order)} item(s) ready for approval")
        console.print()


def print_plan_json(result: PlanResult) -> None:
    print(json.dumps(result.to_dict(), indent=2))


def plan_exit_code(result: PlanResult) -> ExitCode:
    if result.errors:
        return ExitCode.CONFIG_ERROR
    if result.all_errors:
        return ExitCode.VALIDATION_ERROR
    return ExitCode.SUCCESS


def plan_command(
    config_path: str,
    environment: Optional[str] = None,
    output_format: str = "text",
) -> int:
    """
    Plan a deployment without touching the tenant.

    Returns:
        0 when the plan is clean, 10 on graph errors, 12 on validation errors
    """
    settings = get_settings()
    planner = PlanBuilder(ValidationEngine(settings))
    result = planner.build(config_path, environment or settings.environment)

    if output_format == "json":
        print_plan_json(result)
    else:
        print_plan_summary(result)

    return plan_exit_code(result)
