"""
CLI commands for tenantops.
"""

from tenantops.cli.apply import apply_command
from tenantops.cli.plan import plan_command
from tenantops.cli.rollback import rollback_command

__all__ = [
    "apply_command",
    "plan_command",
    "rollback_command",
]
