"""
Centralized environment definitions for tenantops.

This module is the single source of truth for per-environment deployment
policy: how many distinct approvers a deployment needs and whether
access policies must start in report-only mode.

Environments:
- dev: Auto-approved, policies may be enforced immediately
- staging: One approver
- prod: Two approvers, new access policies must start report-only
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Environment(StrEnum):
    """Deployment target environments."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


ENVIRONMENT_NAMES: tuple[str, ...] = ("dev", "staging", "prod")


@dataclass(frozen=True)
class EnvironmentPolicy:
    """Deployment policy for an environment.

    Attributes:
        name: Environment name
        required_approvals: Distinct approver identities needed before apply
        require_report_only: New access policies must be report-only
    """

    name: str
    required_approvals: int
    require_report_only: bool


ENVIRONMENT_POLICIES: dict[str, EnvironmentPolicy] = {
    "dev": EnvironmentPolicy(name="dev", required_approvals=0, require_report_only=False),
    "staging": EnvironmentPolicy(name="staging", required_approvals=1, require_report_only=False),
    "prod": EnvironmentPolicy(name="prod", required_approvals=2, require_report_only=True),
}

# Common long-form names
_ENVIRONMENT_ALIASES: dict[str, str] = {
    "development": "dev",
    "stage": "staging",
    "production": "prod",
}


def normalize_environment(environment: str | Environment) -> Environment:
    """Normalize an environment name to its canonical enum member.

    Raises:
        ValueError: If the environment name is invalid
    """
    name = str(environment).lower()
    name = _ENVIRONMENT_ALIASES.get(name, name)
    if name not in ENVIRONMENT_POLICIES:
        raise ValueError(
            f"Invalid environment: {environment}. Must be one of: {', '.join(ENVIRONMENT_NAMES)}"
        )
    return Environment(name)


def get_environment_policy(environment: str | Environment) -> EnvironmentPolicy:
    """Get deployment policy for an environment (aliases accepted)."""
    return ENVIRONMENT_POLICIES[normalize_environment(environment).value]
