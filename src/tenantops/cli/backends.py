"""Directory backend selection for CLI commands."""

from __future__ import annotations

from tenantops.clients.base import RemoteDirectoryClient
from tenantops.clients.graph import GraphDirectoryClient
from tenantops.clients.memory import InMemoryDirectoryClient
from tenantops.config.settings import Settings
from tenantops.core.errors import ConfigurationError
from tenantops.orchestration.engine import DeploymentOrchestrator

BACKENDS = ("graph", "memory")


def build_client(settings: Settings, backend: str = "graph") -> RemoteDirectoryClient:
    """
    Create the directory client for a backend.

    ``memory`` is an empty local tenant for rehearsing a deployment.

    Raises:
        ConfigurationError: Unknown backend or missing Graph token
    """
    if backend == "memory":
        return InMemoryDirectoryClient()
    if backend != "graph":
        raise ConfigurationError(f"Unknown backend: {backend}. Valid: {', '.join(BACKENDS)}")
    if not settings.graph_token:
        raise ConfigurationError(
            "TENANTOPS_GRAPH_TOKEN is not set; obtain a token and export it first",
            {"backend": backend},
        )
    return GraphDirectoryClient(
        settings.graph_base_url, settings.graph_token, timeout=settings.http_timeout
    )


def build_orchestrator(settings: Settings, backend: str = "graph") -> DeploymentOrchestrator:
    return DeploymentOrchestrator(build_client(settings, backend), settings=settings)
