"""
Validation rules.

Each rule takes the full item list and returns findings; rules never
raise and never depend on each other, so one run reports every problem.

Rules:
    schema            Structural check per kind (error)
    break_glass       Denying access policies must exclude a break-glass group (error)
    policy_conflict   Overlapping policies with contradictory effects (warning)
    prod_report_only  Access policies must start report-only in prod (error)
    name_collision    One name used across several kinds (error)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from itertools import combinations
from typing import Any

from tenantops.core.environments import EnvironmentPolicy
from tenantops.store.models import ConfigurationItem, ItemKey, ItemKind
from tenantops.store.references import extract_references, find_placeholders
from tenantops.validation.models import Severity, ValidationFinding
from tenantops.validation.schemas import schema_errors

REPORT_ONLY_STATE = "enabledForReportingButNotEnforced"
ALL = "All"


def _users(body: dict[str, Any]) -> dict[str, Any]:
    conditions = body.get("conditions") or {}
    return conditions.get("users") or {}


def _controls(body: dict[str, Any]) -> list[str]:
    grant = body.get("grantControls") or {}
    return list(grant.get("builtInControls") or [])


def enforcement_state(body: dict[str, Any]) -> str | None:
    """Declared enforcement state (``state`` wins over ``enforcementState``)."""
    return body.get("state") or body.get("enforcementState")


def is_report_only(body: dict[str, Any]) -> bool:
    return body.get("reportOnly") is True or enforcement_state(body) == REPORT_ONLY_STATE


def can_deny_sign_in(body: dict[str, Any]) -> bool:
    """Any built-in grant control can deny a sign-in that fails it."""
    return len(_controls(body)) > 0


def policy_effect(body: dict[str, Any]) -> str | None:
    controls = _controls(body)
    if "block" in controls:
        return "block"
    if controls:
        return "grant"
    return None


def check_schema(items: Sequence[ConfigurationItem]) -> list[ValidationFinding]:
    findings = []
    for item in items:
        for message in schema_errors(item):
            findings.append(ValidationFinding("schema", Severity.ERROR, message, item.key))
        # the item name is the natural key the tenant is searched by
        display_name = item.body.get("displayName")
        if display_name is not None and display_name != item.name:
            findings.append(
                ValidationFinding(
                    "schema",
                    Severity.ERROR,
                    f"displayName {display_name!r} must match the item name",
                    item.key,
                )
            )
    return findings


class BreakGlassRule:
    """Denying access policies must exclude a designated break-glass group."""

    name = "break_glass"

    def __init__(self, designated_names: Iterable[str] = (), designated_ids: Iterable[str] = ()):
        self.designated_names = set(designated_names)
        self.designated_ids = set(designated_ids)

    def break_glass_groups(self, items: Iterable[ConfigurationItem]) -> set[ItemKey]:
        groups = set()
        for item in items:
            if item.kind is not ItemKind.GROUP:
                continue
            if item.body.get("breakGlass") is True or item.name in self.designated_names:
                groups.add(item.key)
        return groups

    def check_item(
        self, item: ConfigurationItem, break_glass: set[ItemKey]
    ) -> ValidationFinding | None:
        if item.kind is not ItemKind.ACCESS_POLICY or not can_deny_sign_in(item.body):
            return None

        excluded = _users(item.body).get("excludeGroups") or []
        for entry in excluded:
            if not isinstance(entry, str):
                continue
            if entry in self.designated_ids:
                return None
            try:
                refs = extract_references(entry)
            except ValueError:
                continue
            if refs & break_glass:
                return None

        return ValidationFinding(
            self.name,
            Severity.ERROR,
            "Access policy can deny sign-in but excludes no break-glass group "
            "(add one to conditions.users.excludeGroups)",
            item.key,
        )

    def __call__(self, items: Sequence[ConfigurationItem]) -> list[ValidationFinding]:
        break_glass = self.break_glass_groups(items)
        findings = []
        for item in items:
            finding = self.check_item(item, break_glass)
            if finding is not None:
                findings.append(finding)
        return findings


def _overlaps(left: set[str], right: set[str]) -> bool:
    if not left or not right:
        return False
    if ALL in left or ALL in right:
        return True
    return bool(left & right)


def _targets(body: dict[str, Any]) -> tuple[set[str], set[str]]:
    users = _users(body)
    principals = set(users.get("includeUsers") or []) | set(users.get("includeGroups") or [])
    conditions = body.get("conditions") or {}
    apps = set((conditions.get("applications") or {}).get("includeApplications") or [])
    return principals, apps


def check_policy_conflicts(items: Sequence[ConfigurationItem]) -> list[ValidationFinding]:
    policies = sorted(
        (
            item
            for item in items
            if item.kind is ItemKind.ACCESS_POLICY
            and enforcement_state(item.body) != "disabled"
            and policy_effect(item.body) is not None
        ),
        key=lambda item: item.name,
    )

    findings = []
    for left, right in combinations(policies, 2):
        if policy_effect(left.body) == policy_effect(right.body):
            continue
        left_principals, left_apps = _targets(left.body)
        right_principals, right_apps = _targets(right.body)
        if _overlaps(left_principals, right_principals) and _overlaps(left_apps, right_apps):
            findings.append(
                ValidationFinding(
                    "policy_conflict",
                    Severity.WARNING,
                    f"Overlaps with AccessPolicy:{right.name} but has the opposite effect "
                    f"({policy_effect(left.body)} vs {policy_effect(right.body)})",
                    left.key,
                )
            )
    return findings


def check_prod_report_only(
    items: Sequence[ConfigurationItem], policy: EnvironmentPolicy
) -> list[ValidationFinding]:
    if not policy.require_report_only:
        return []

    findings = []
    for item in items:
        if item.kind is not ItemKind.ACCESS_POLICY:
            continue
        if enforcement_state(item.body) == "enabled" and not is_report_only(item.body):
            findings.append(
                ValidationFinding(
                    "prod_report_only",
                    Severity.ERROR,
                    f"Access policies must be deployed report-only in {policy.name} "
                    f"(declared state is 'enabled'); set state to "
                    f"'{REPORT_ONLY_STATE}'",
                    item.key,
                )
            )
    return findings


def check_name_collisions(items: Sequence[ConfigurationItem]) -> list[ValidationFinding]:
    kinds_by_name: dict[str, list[ConfigurationItem]] = defaultdict(list)
    for item in items:
        kinds_by_name[item.name].append(item)

    findings = []
    for name in sorted(kinds_by_name):
        owners = kinds_by_name[name]
        if len({item.kind for item in owners}) < 2:
            continue
        kinds = ", ".join(sorted(item.kind.value for item in owners))
        findings.append(
            ValidationFinding(
                "name_collision",
                Severity.ERROR,
                f"Name '{name}' is used by several kinds ({kinds}); rename one of them",
                owners[0].key,
            )
        )
    return findings


def check_placeholder_syntax(items: Sequence[ConfigurationItem]) -> list[ValidationFinding]:
    """Placeholders naming an unknown kind."""
    findings = []
    for item in items:
        for kind, name in find_placeholders(item.body):
            try:
                ItemKind.parse(kind)
            except ValueError:
                findings.append(
                    ValidationFinding(
                        "schema",
                        Severity.ERROR,
                        f"Placeholder {{{{{kind}:{name}}}}} names an unknown kind",
                        item.key,
                    )
                )
    return findings
