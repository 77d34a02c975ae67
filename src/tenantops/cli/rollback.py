"""
CLI command for operator-initiated rollback from a restore point.
"""

from __future__ import annotations

from tenantops.backup.manager import RestoreAction, RestoreReport
from tenantops.cli.apply import print_deployment_summary
from tenantops.cli.backends import build_orchestrator
from tenantops.cli.ux import confirm, console, info, is_interactive, warning
from tenantops.config.settings import get_settings
from tenantops.core.errors import ConfigurationError, ExitCode
from tenantops.store.models import format_key

PREVIEW_VERB = {
    RestoreAction.RESTORED: "would restore",
    RestoreAction.DELETED: "would delete",
    RestoreAction.UNCHANGED: "already matches",
    RestoreAction.FAILED: "could not read",
}


def print_restore_preview(report: RestoreReport) -> None:
    console.print()
    console.print(f"[bold]Rollback preview for {report.deployment_id}:[/bold]")
    for item in report.results:
        detail = f" [muted]({item.error})[/muted]" if item.error else ""
        console.print(f"  {format_key(item.key)} {PREVIEW_VERB[item.action]}{detail}")
    console.print()
    if report.failed:
        warning("Some items could not be read; the rollback may be incomplete")
    info("Dry run: nothing was changed")


def rollback_command(
    deployment_id: str, yes: bool = False, backend: str = "graph", dry_run: bool = False
) -> int:
    """
    Restore the tenant to the state captured before a deployment.

    Without ``--yes`` the operator is asked to confirm; non-interactive
    sessions must pass ``--yes``. ``--dry-run`` only compares the restore
    point with the tenant and needs no confirmation.
    """
    settings = get_settings()

    if dry_run:
        orchestrator = build_orchestrator(settings, backend)
        print_restore_preview(orchestrator.preview_rollback(deployment_id))
        return ExitCode.SUCCESS

    if not yes:
        if not is_interactive():
            raise ConfigurationError(
                "Rollback changes the tenant; pass --yes to confirm in non-interactive mode",
                {"deployment_id": deployment_id},
            )
        if not confirm(f"Restore the tenant to its state before {deployment_id}?"):
            info("Rollback cancelled")
            return ExitCode.SUCCESS

    orchestrator = build_orchestrator(settings, backend)
    record = orchestrator.rollback(deployment_id)
    print_deployment_summary(record)

    record.raise_for_outcome()
    return record.exit_code
