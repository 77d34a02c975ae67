"""Exclusive logical lock per deployment id."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from tenantops.core.errors import DeploymentLockedError


class DeploymentLocks:
    """Apply and restore for the same deployment never overlap.

    Locks are re-entrant so the orchestrator can run the automatic
    rollback while it still holds the lock taken for apply. An entry lives
    only while some thread holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, deployment_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(deployment_id)
            if lock is None:
                lock = self._locks[deployment_id] = threading.RLock()
            self._users[deployment_id] = self._users.get(deployment_id, 0) + 1
            return lock

    def _checkin(self, deployment_id: str) -> None:
        with self._registry_lock:
            self._users[deployment_id] -= 1
            if not self._users[deployment_id]:
                del self._users[deployment_id]
                del self._locks[deployment_id]

    @contextmanager
    def hold(self, deployment_id: str, timeout: float = -1) -> Iterator[None]:
        """Hold the deployment lock; a negative timeout waits forever."""
        lock = self._checkout(deployment_id)
        try:
            if not lock.acquire(timeout=timeout):
                raise DeploymentLockedError(
                    f"Deployment {deployment_id} is locked by another apply or restore",
                    {"deployment_id": deployment_id},
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(deployment_id)
