"""
CLI command for applying a deployment to the tenant.
"""

from __future__ import annotations

import json
from typing import Optional, Sequence

from tenantops.backup.manager import RestoreAction
from tenantops.cli.backends import build_orchestrator
from tenantops.cli.plan import plan_command
from tenantops.cli.ux import console, error, success, warning
from tenantops.config.settings import get_settings
from tenantops.orchestration.results import DeploymentOutcome, DeploymentRecord, ItemStatus
from tenantops.store.models import format_key

STATUS_STYLE = {
    ItemStatus.APPLIED: "[success]✓[/success]",
    ItemStatus.FAILED: "[error]✗[/error]",
    ItemStatus.NOT_ATTEMPTED: "[muted]-[/muted]",
}


def print_deployment_summary(record: DeploymentRecord) -> None:
    """Print per-item results, restore report and outcome."""
    console.print()
    for key in record.plan:
        result = record.item_results.get(key)
        if result is None:
            continue
        line = f"  {STATUS_STYLE[result.status]} {format_key(key)}"
        if result.error:
            line += f" [muted]({result.error})[/muted]"
        console.print(line)

    if record.restore is not None:
        console.print()
        console.print("[bold]Restore:[/bold]")
        for item in record.restore.results:
            mark = "[success]✓[/success]" if item.ok else "[error]✗[/error]"
            detail = f" [muted]({item.error})[/muted]" if item.error else ""
            console.print(f"  {mark} {format_key(item.key)} {item.action.value}{detail}")

    for item in record.warnings:
        warning(item)

    console.print()
    if record.outcome is DeploymentOutcome.SUCCESS:
        success(f"Deployment {record.deployment_id} applied {len(record.applied)} item(s)")
    elif record.outcome is DeploymentOutcome.ROLLED_BACK and record.operation == "rollback":
        success(f"Tenant restored to its state before {record.deployment_id}")
    elif record.outcome is DeploymentOutcome.ROLLED_BACK:
        warning(f"Deployment {record.deployment_id} rolled back: {record.error}")
    elif record.outcome is DeploymentOutcome.PARTIAL_FAILURE:
        stale = record.restore.keys_with(RestoreAction.STALE) if record.restore else []
        error(f"Deployment {record.deployment_id} could not be fully restored")
        if stale:
            console.print(
                "  [muted]Changed outside this deployment:[/muted] "
                + ", ".join(format_key(key) for key in stale)
            )
    else:
        error(f"Deployment {record.deployment_id} failed: {record.error}")
    console.print()


def print_deployment_json(record: DeploymentRecord) -> None:
    print(json.dumps(record.to_dict(), indent=2))


def apply_command(
    config_path: str,
    environment: Optional[str] = None,
    approvers: Sequence[str] = (),
    dry_run: bool = False,
    backend: str = "graph",
    output_format: str = "text",
) -> int:
    """
    Plan, collect approvals and apply a deployment.

    Args:
        config_path: Config file or directory
        environment: dev, staging or prod
        approvers: Pre-authenticated approver identities
        dry_run: Plan only (same as ``tenantops plan``)
        backend: ``graph`` or ``memory``
        output_format: text or json

    Returns:
        Exit code of the deployment outcome
    """
    if dry_run:
        return plan_command(config_path, environment=environment, output_format=output_format)

    settings = get_settings()
    orchestrator = build_orchestrator(settings, backend)
    record = orchestrator.deploy(config_path, environment, approvers=approvers)

    if output_format == "json":
        print_deployment_json(record)
    else:
        print_deployment_summary(record)

    record.raise_for_outcome()
    return record.exit_code
