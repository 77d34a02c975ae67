"""tenantops command line entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from tenantops import __version__
from tenantops.cli.apply import apply_command
from tenantops.cli.backends import BACKENDS
from tenantops.cli.plan import plan_command
from tenantops.cli.rollback import rollback_command
from tenantops.core.environments import ENVIRONMENT_NAMES
from tenantops.core.errors import main_with_error_handling
from tenantops.logging import configure_logging


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-e",
        "--environment",
        help=f"Target environment ({', '.join(ENVIRONMENT_NAMES)}); defaults to TENANTOPS_ENVIRONMENT",
    )
    parser.add_argument(
        "-c",
        "--config-path",
        default="config",
        help="Config file or directory of YAML/JSON items (default: config)",
    )
    parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenantops", description="Deploy identity and access configuration to a tenant"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Validate and show the deployment plan (dry-run)")
    _add_config_arguments(plan_parser)
    plan_parser.add_argument(
        "--dry-run", action="store_true", help="Accepted for symmetry; plan never changes the tenant"
    )

    apply_parser = subparsers.add_parser("apply", help="Deploy the configuration to the tenant")
    _add_config_arguments(apply_parser)
    apply_parser.add_argument(
        "--approver",
        dest="approvers",
        action="append",
        default=[],
        metavar="ID",
        help="Authenticated approver identity (repeatable)",
    )
    apply_parser.add_argument(
        "--dry-run", action="store_true", help="Plan only; nothing is sent to the tenant"
    )
    apply_parser.add_argument(
        "--backend", choices=BACKENDS, default="graph", help="Directory backend (default: graph)"
    )

    rollback_parser = subparsers.add_parser(
        "rollback", help="Restore the tenant from a deployment's restore point"
    )
    rollback_parser.add_argument("deployment_id", help="Deployment id to roll back")
    rollback_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")
    rollback_parser.add_argument(
        "--dry-run", action="store_true", help="Show what would be restored; nothing is changed"
    )
    rollback_parser.add_argument(
        "--backend", choices=BACKENDS, default="graph", help="Directory backend (default: graph)"
    )

    return parser


@main_with_error_handling()
def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if args.command == "plan":
        return plan_command(
            args.config_path, environment=args.environment, output_format=args.output
        )
    if args.command == "apply":
        return apply_command(
            args.config_path,
            environment=args.environment,
            approvers=args.approvers,
            dry_run=args.dry_run,
            backend=args.backend,
            output_format=args.output,
        )
    if args.command == "rollback":
        return rollback_command(
            args.deployment_id, yes=args.yes, backend=args.backend, dry_run=args.dry_run
        )

    parser.print_help()
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
