"""Root test configuration."""

import logging

import pytest
import structlog
import yaml
from tenantops.approvals.gate import ApprovalGate
from tenantops.clients.memory import InMemoryDirectoryClient
from tenantops.config.settings import Settings
from tenantops.orchestration.engine import DeploymentOrchestrator


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment, with no retry delays."""
    return Settings(
        _env_file=None,
        environment="dev",
        state_dir=tmp_path / "state",
        max_retries=3,
        retry_backoff_factor=0,
        retry_max_wait=0,
        max_workers=1,
        break_glass_groups=[],
        break_glass_group_ids=[],
    )


@pytest.fixture
def client():
    return InMemoryDirectoryClient()


@pytest.fixture
def gate():
    return ApprovalGate()


@pytest.fixture
def orchestrator(client, settings, gate):
    return DeploymentOrchestrator(client, settings=settings, gate=gate)


@pytest.fixture
def write_config(tmp_path):
    """Write a resources manifest and return its path."""

    def _write(resources, filename="tenant.yaml"):
        config_dir = tmp_path / "config"
        config_dir.mkdir(exist_ok=True)
        path = config_dir / filename
        path.write_text(yaml.safe_dump({"resources": resources}, sort_keys=False))
        return path

    return _write
