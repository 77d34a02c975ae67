"""Directory service clients."""

from tenantops.clients.base import RemoteDirectoryClient, is_retryable_status
from tenantops.clients.graph import GraphDirectoryClient
from tenantops.clients.memory import InMemoryDirectoryClient
from tenantops.clients.payload import drift_fields, matches, render_payload, same_state, writable
from tenantops.clients.retry import NO_RETRY, RetryPolicy

__all__ = [
    "GraphDirectoryClient",
    "InMemoryDirectoryClient",
    "RemoteDirectoryClient",
    "NO_RETRY",
    "RetryPolicy",
    "drift_fields",
    "is_retryable_status",
    "matches",
    "render_payload",
    "same_state",
    "writable",
]
