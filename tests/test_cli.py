"""Tests for the tenantops command line.

Commands run end-to-end through ``run`` against the in-memory backend, so
the exit code mapping is exercised exactly as a shell would see it.
"""

import json

import pytest
from tenantops.cli.main import build_parser, run
from tenantops.config.settings import get_settings
from tenantops.core.errors import ExitCode

BASELINE = """
resources:
  - kind: Group
    name: break-glass
    spec:
      breakGlass: true
  - kind: NamedLocation
    name: office
    spec:
      ipRanges: ["10.0.0.0/8"]
  - kind: AccessPolicy
    name: require-mfa
    spec:
      state: enabledForReportingButNotEnforced
      conditions:
        users:
          includeUsers: [All]
          excludeGroups: ["{{Group:break-glass}}"]
        applications:
          includeApplications: [All]
        locations:
          includeLocations: [All]
          excludeLocations: ["{{NamedLocation:office}}"]
      grantControls:
        operator: OR
        builtInControls: [mfa]
"""


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temporary state directory."""
    monkeypatch.setenv("TENANTOPS_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("TENANTOPS_ENVIRONMENT", "dev")
    monkeypatch.setenv("TENANTOPS_MAX_RETRIES", "1")
    monkeypatch.delenv("TENANTOPS_GRAPH_TOKEN", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "tenant.yaml"
    path.write_text(BASELINE)
    return str(path)


def _write(tmp_path, text):
    path = tmp_path / "custom.yaml"
    path.write_text(text)
    return str(path)


class TestParser:
    def test_apply_arguments(self):
        args = build_parser().parse_args(
            ["apply", "-e", "prod", "-c", "cfg", "--approver", "a", "--approver", "b", "--backend", "memory"]
        )

        assert args.environment == "prod"
        assert args.config_path == "cfg"
        assert args.approvers == ["a", "b"]
        assert args.backend == "memory"
        assert not args.dry_run

    def test_defaults(self):
        args = build_parser().parse_args(["plan"])

        assert args.config_path == "config"
        assert args.environment is None
        assert args.output == "text"

    def test_rollback_dry_run(self):
        args = build_parser().parse_args(["rollback", "d1", "--dry-run"])

        assert args.dry_run
        assert not args.yes

    def test_no_command_prints_help(self, capsys):
        assert run([]) == ExitCode.SUCCESS
        assert "tenantops" in capsys.readouterr().out


class TestPlan:
    def test_clean_plan(self, config_file):
        assert run(["plan", "-c", config_file]) == ExitCode.SUCCESS

    def test_json_output(self, config_file, capsys):
        run(["plan", "-c", config_file, "--output", "json"])

        data = json.loads(capsys.readouterr().out)
        assert data["environment"] == "dev"
        assert data["errors"] == []
        assert data["items"][2]["references"] == ["Group:break-glass", "NamedLocation:office"]
        assert data["plan"]["order"] == [
            "Group:break-glass",
            "NamedLocation:office",
            "AccessPolicy:require-mfa",
        ]

    def test_validation_error(self, tmp_path):
        path = _write(tmp_path, BASELINE.replace('excludeGroups: ["{{Group:break-glass}}"]', "excludeGroups: []"))

        assert run(["plan", "-c", path]) == ExitCode.VALIDATION_ERROR

    def test_enabled_policy_fails_in_prod_only(self, tmp_path):
        path = _write(tmp_path, BASELINE.replace("enabledForReportingButNotEnforced", "enabled"))

        assert run(["plan", "-c", path, "-e", "staging"]) == ExitCode.SUCCESS
        assert run(["plan", "-c", path, "-e", "prod"]) == ExitCode.VALIDATION_ERROR

    def test_cycle_is_config_error(self, tmp_path):
        path = _write(
            tmp_path,
            """
resources:
  - kind: Group
    name: a
    spec: {description: "{{Group:b}}"}
  - kind: Group
    name: b
    spec: {description: "{{Group:a}}"}
""",
        )

        assert run(["plan", "-c", path]) == ExitCode.CONFIG_ERROR

    def test_unknown_environment(self, config_file):
        assert run(["plan", "-c", config_file, "-e", "qa"]) == ExitCode.CONFIG_ERROR


class TestApply:
    def test_dev_apply(self, config_file, capsys):
        code = run(["apply", "-c", config_file, "--backend", "memory", "--output", "json"])

        data = json.loads(capsys.readouterr().out)
        assert code == ExitCode.SUCCESS
        assert data["outcome"] == "Success"
        assert [r["status"] for r in data["item_results"]] == ["applied"] * 3

    def test_dry_run_touches_nothing(self, config_file, tmp_path):
        assert run(["apply", "-c", config_file, "--dry-run"]) == ExitCode.SUCCESS
        assert not (tmp_path / "state" / "restore-points").exists()

    def test_staging_without_approver_is_pending(self, config_file):
        code = run(["apply", "-c", config_file, "-e", "staging", "--backend", "memory"])

        assert code == ExitCode.APPROVAL_PENDING

    def test_staging_with_approver(self, config_file):
        code = run(
            ["apply", "-c", config_file, "-e", "staging", "--backend", "memory", "--approver", "alice"]
        )

        assert code == ExitCode.SUCCESS

    def test_graph_backend_needs_token(self, config_file):
        assert run(["apply", "-c", config_file]) == ExitCode.CONFIG_ERROR


class TestRollback:
    def test_requires_yes_when_not_interactive(self):
        assert run(["rollback", "some-deployment"]) == ExitCode.CONFIG_ERROR

    def test_missing_restore_point(self):
        assert run(["rollback", "missing", "--yes", "--backend", "memory"]) == ExitCode.CONFIG_ERROR

    def test_rollback_after_apply(self, config_file, capsys):
        run(["apply", "-c", config_file, "--backend", "memory", "--output", "json"])
        deployment_id = json.loads(capsys.readouterr().out)["deployment_id"]

        code = run(["rollback", deployment_id, "--yes", "--backend", "memory"])

        assert code == ExitCode.SUCCESS
        assert "restored" in capsys.readouterr().out

    def test_dry_run_needs_no_confirmation(self, config_file, capsys):
        run(["apply", "-c", config_file, "--backend", "memory", "--output", "json"])
        deployment_id = json.loads(capsys.readouterr().out)["deployment_id"]

        code = run(["rollback", deployment_id, "--dry-run", "--backend", "memory"])

        out = capsys.readouterr().out
        assert code == ExitCode.SUCCESS
        assert "Dry run" in out
        assert "already matches" in out

    def test_dry_run_missing_restore_point(self):
        assert run(["rollback", "missing", "--dry-run", "--backend", "memory"]) == ExitCode.CONFIG_ERROR
