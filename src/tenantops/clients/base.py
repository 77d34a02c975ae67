"""
Directory service client boundary.

The engine talks to the tenant only through this protocol. Every call is
a synchronous RPC keyed by the item's natural key ``(kind, name)``;
``create_or_update`` is idempotent at that key, so retrying a transient
failure is always safe.

Implementations raise:
    TransientRemoteError  timeouts, throttling, 5xx (retried by the caller)
    TerminalRemoteError   authorization failures, rejected payloads (not retried)
    NotFoundError         the object does not exist
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from tenantops.core.errors import (
    NotFoundError,
    RemoteError,
    TerminalRemoteError,
    TransientRemoteError,
)
from tenantops.store.models import ItemKind


@runtime_checkable
class RemoteDirectoryClient(Protocol):
    """Protocol for directory service clients."""

    def create_or_update(self, kind: ItemKind, name: str, body: dict[str, Any]) -> str:
        """Create or update the object and return its remote id."""
        ...

    def get(self, kind: ItemKind, name: str) -> dict[str, Any]:
        """Return the current document (raises NotFoundError)."""
        ...

    def delete(self, kind: ItemKind, name: str) -> None:
        """Delete the object (raises NotFoundError)."""
        ...


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 500, 502, 503, 504)


__all__ = [
    "NotFoundError",
    "RemoteDirectoryClient",
    "RemoteError",
    "TerminalRemoteError",
    "TransientRemoteError",
    "is_retryable_status",
]
