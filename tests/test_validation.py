"""
Tests for the validation engine and its rules.
"""

import pytest
from tenantops.core.errors import ValidationError
from tenantops.orchestration.engine import DeploymentOrchestrator
from tenantops.store.models import ItemKind
from tenantops.validation.engine import ValidationEngine
from tenantops.validation.models import Severity, ValidationFinding, ValidationReport
from tenantops.validation.rules import policy_effect

from factories import access_policy, group, item, named_location

P = ItemKind.ACCESS_POLICY
BREAK_GLASS_ID = "6f1c1e9a-0000-4000-8000-00000000b6b6"


@pytest.fixture
def engine(settings):
    return ValidationEngine(settings)


@pytest.fixture
def designated_engine(settings):
    configured = settings.model_copy(update={"break_glass_group_ids": [BREAK_GLASS_ID]})
    return ValidationEngine(configured)


class TestProdReportOnly:
    def test_enabled_policy_in_prod_is_exactly_one_error(self, designated_engine):
        policy = access_policy(
            "require-mfa", state=None, exclude_groups=[BREAK_GLASS_ID], enforcementState="enabled"
        )
        del policy["spec"]["state"]

        report = designated_engine.validate([item(policy)], "prod")

        assert len(report.errors) == 1
        assert report.errors[0].rule == "prod_report_only"
        assert report.errors[0].item == (P, "require-mfa")
        assert not report.passed

    def test_same_policy_passes_outside_prod(self, designated_engine):
        policy = item(access_policy("require-mfa", state="enabled", exclude_groups=[BREAK_GLASS_ID]))

        assert designated_engine.validate([policy], "staging").passed
        assert designated_engine.validate([policy], "dev").passed

    @pytest.mark.parametrize(
        "spec_update",
        [
            {"state": "enabledForReportingButNotEnforced"},
            {"state": "enabled", "reportOnly": True},
            {"state": "disabled"},
        ],
    )
    def test_report_only_or_disabled_passes_in_prod(self, designated_engine, spec_update):
        policy = access_policy("require-mfa", exclude_groups=[BREAK_GLASS_ID], **spec_update)

        report = designated_engine.validate([item(policy)], "production")

        assert report.errors_for("prod_report_only") == []


class TestBreakGlass:
    def test_missing_exclusion_is_an_error(self, engine):
        items = [item(group("break-glass", breakGlass=True)), item(access_policy("mfa", exclude_groups=[]))]

        report = engine.validate(items, "dev")

        [finding] = report.errors_for("break_glass")
        assert finding.item == (P, "mfa")
        assert finding.severity is Severity.ERROR

    def test_adding_exclusion_clears_it(self, engine):
        bg = item(group("break-glass", breakGlass=True))
        without = engine.validate([bg, item(access_policy("mfa", exclude_groups=[]))], "dev")
        with_exclusion = engine.validate([bg, item(access_policy("mfa"))], "dev")
        again = engine.validate([bg, item(access_policy("mfa"))], "dev")

        assert without.errors_for("break_glass")
        assert with_exclusion.errors_for("break_glass") == []
        assert again.to_dict() == with_exclusion.to_dict()

    def test_excluding_a_non_break_glass_group_does_not_count(self, engine):
        items = [
            item(group("break-glass", breakGlass=True)),
            item(group("contractors")),
            item(access_policy("mfa", exclude_groups=["{{Group:contractors}}"])),
        ]

        assert engine.validate(items, "dev").errors_for("break_glass")

    def test_designated_by_name_in_settings(self, settings):
        engine = ValidationEngine(settings.model_copy(update={"break_glass_groups": ["emergency"]}))
        items = [
            item(group("emergency")),
            item(access_policy("mfa", exclude_groups=["{{Group:emergency}}"])),
        ]

        assert engine.validate(items, "dev").errors_for("break_glass") == []

    def test_designated_by_object_id(self, designated_engine):
        policy = item(access_policy("mfa", exclude_groups=[BREAK_GLASS_ID]))

        assert designated_engine.validate([policy], "dev").errors_for("break_glass") == []

    def test_policy_without_grant_controls_is_exempt(self, engine):
        policy = access_policy("session-only", exclude_groups=[], controls=())
        del policy["spec"]["grantControls"]
        policy["spec"]["sessionControls"] = {"signInFrequency": {"value": 8, "type": "hours"}}

        assert engine.validate([item(policy)], "dev").errors_for("break_glass") == []

    def test_disabled_policy_still_needs_exclusion(self, engine):
        policy = item(access_policy("mfa", state="disabled", exclude_groups=[]))

        assert engine.validate([policy], "dev").errors_for("break_glass")

    def test_single_item_guard(self, engine):
        bg = item(group("break-glass", breakGlass=True))
        safe = item(access_policy("mfa"))
        unsafe = item(access_policy("block", exclude_groups=[], controls=["block"]))

        assert engine.check_break_glass(safe, [bg, safe, unsafe]) is None
        finding = engine.check_break_glass(unsafe, [bg, safe, unsafe])
        assert finding.rule == "break_glass"
        assert finding.item == (P, "block")


class TestOtherRules:
    def test_conflicting_policies_warn(self, engine):
        items = [
            item(group("break-glass", breakGlass=True)),
            item(access_policy("block-all", controls=["block"])),
            item(access_policy("require-mfa", controls=["mfa"])),
        ]

        report = engine.validate(items, "dev")

        assert report.passed
        [warning] = report.warnings
        assert warning.rule == "policy_conflict"
        assert warning.item == (P, "block-all")
        assert "AccessPolicy:require-mfa" in warning.message

    def test_disjoint_policies_do_not_conflict(self, engine):
        block = access_policy("block-legacy", controls=["block"])
        block["spec"]["conditions"]["users"]["includeUsers"] = ["guest-user"]
        mfa = access_policy("require-mfa", controls=["mfa"])
        mfa["spec"]["conditions"]["users"]["includeUsers"] = ["staff-user"]
        items = [item(group("break-glass", breakGlass=True)), item(block), item(mfa)]

        assert engine.validate(items, "dev").warnings == []

    def test_name_collision_across_kinds(self, engine):
        items = [item(group("office")), item(named_location("office"))]

        [finding] = engine.validate(items, "dev").errors_for("name_collision")
        assert "Group, NamedLocation" in finding.message

    def test_schema_errors(self, engine):
        bad_location = named_location("office", ranges=["10.0.0.0/33"])
        renamed = group("ops", displayName="Operations")
        sp = {"kind": "ServicePrincipal", "name": "payroll-sp", "spec": {}}

        report = engine.validate([item(bad_location), item(renamed), item(sp)], "dev")

        messages = [str(f) for f in report.errors_for("schema")]
        assert any("invalid CIDR range" in m for m in messages)
        assert any("must match the item name" in m for m in messages)
        assert any("appId" in m for m in messages)

    def test_every_rule_runs(self, engine):
        items = [
            item(named_location("office", ranges=["not-a-cidr"])),
            item(group("office")),
            item(access_policy("mfa", exclude_groups=[])),
        ]

        rules = {finding.rule for finding in engine.validate(items, "dev").errors}

        assert rules == {"schema", "name_collision", "break_glass"}

    def test_policy_effect(self):
        assert policy_effect({"grantControls": {"builtInControls": ["block"]}}) == "block"
        assert policy_effect({"grantControls": {"builtInControls": ["mfa"]}}) == "grant"
        assert policy_effect({}) is None


class TestReportModel:
    def test_findings_split_by_severity(self):
        report = ValidationReport(environment="dev")
        report.extend(
            [
                ValidationFinding("schema", Severity.ERROR, "bad", (P, "x")),
                ValidationFinding("policy_conflict", Severity.WARNING, "meh"),
            ]
        )

        assert report.has_errors
        assert str(report.errors[0]) == "[schema] AccessPolicy:x: bad"
        assert report.to_dict()["warnings"][0]["item"] is None


class TestPlanGate:
    def test_prod_plan_never_reaches_approval_gate(
        self, client, settings, gate, write_config
    ):
        configured = settings.model_copy(update={"break_glass_group_ids": [BREAK_GLASS_ID]})
        orchestrator = DeploymentOrchestrator(client, settings=configured, gate=gate)
        path = write_config(
            [access_policy("require-mfa", state="enabled", exclude_groups=[BREAK_GLASS_ID])]
        )

        plan_result = orchestrator.plan(path, "prod")

        assert plan_result.plan is not None
        assert len(plan_result.all_errors) == 1
        with pytest.raises(ValidationError):
            orchestrator.request_approval(plan_result)
        assert gate.store.get(plan_result.deployment_id) is None
        assert client.calls == []
