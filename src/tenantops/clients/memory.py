"""
In-memory directory tenant.

Behaves like the remote service at the protocol level: natural-key
upserts, generated object ids, NotFound on missing objects. Used for
local rehearsals (``--backend memory``) and throughout the test suite;
failures can be injected per item and per operation.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections import defaultdict
from typing import Any

import structlog

from tenantops.core.errors import NotFoundError
from tenantops.store.models import ItemKey, ItemKind, format_key

logger = structlog.get_logger()


class InMemoryDirectoryClient:
    """Thread-safe in-memory implementation of RemoteDirectoryClient."""

    def __init__(self, objects: dict[ItemKey, dict[str, Any]] | None = None) -> None:
        self._objects: dict[ItemKey, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._failures: dict[tuple[str, ItemKey], list[Exception]] = defaultdict(list)
        self.calls: list[tuple[str, ItemKey]] = []
        for key, document in (objects or {}).items():
            self.seed(key[0], key[1], document)

    def seed(self, kind: ItemKind, name: str, document: dict[str, Any]) -> str:
        """Place an object in the tenant without recording a call."""
        with self._lock:
            stored = copy.deepcopy(document)
            stored.setdefault("id", str(uuid.uuid4()))
            self._objects[(kind, name)] = stored
            return stored["id"]

    def fail(self, operation: str, kind: ItemKind, name: str, *errors: Exception) -> None:
        """Queue errors to raise on the next calls of ``operation`` for an item."""
        self._failures[(operation, (kind, name))].extend(errors)

    def state(self) -> dict[ItemKey, dict[str, Any]]:
        """Deep copy of every stored object."""
        with self._lock:
            return copy.deepcopy(self._objects)

    def create_or_update(self, kind: ItemKind, name: str, body: dict[str, Any]) -> str:
        self._enter("create_or_update", kind, name)
        with self._lock:
            existing = self._objects.get((kind, name))
            remote_id = existing["id"] if existing else str(uuid.uuid4())
            stored = copy.deepcopy(body)
            stored["id"] = remote_id
            self._objects[(kind, name)] = stored
        logger.debug(
            "memory_upsert", item=format_key((kind, name)), created=existing is None
        )
        return remote_id

    def get(self, kind: ItemKind, name: str) -> dict[str, Any]:
        self._enter("get", kind, name)
        with self._lock:
            document = self._objects.get((kind, name))
            if document is None:
                raise NotFoundError(f"{format_key((kind, name))} not found")
            return copy.deepcopy(document)

    def delete(self, kind: ItemKind, name: str) -> None:
        self._enter("delete", kind, name)
        with self._lock:
            if (kind, name) not in self._objects:
                raise NotFoundError(f"{format_key((kind, name))} not found")
            del self._objects[(kind, name)]

    def _enter(self, operation: str, kind: ItemKind, name: str) -> None:
        key = (kind, name)
        with self._lock:
            self.calls.append((operation, key))
            queued = self._failures.get((operation, key))
            error = queued.pop(0) if queued else None
        if error is not None:
            raise error
