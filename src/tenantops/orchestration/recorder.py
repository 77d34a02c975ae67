"""
Deployment log recorder.

Appends one JSON line per deployment phase to
``<state_dir>/deployments.jsonl``. Writes are fail-open: a log that cannot
be written is reported through structlog but never blocks a deployment or
its rollback.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Iterator

import structlog

from tenantops.orchestration.results import DeploymentRecord

logger = structlog.get_logger()

LOG_FILENAME = "deployments.jsonl"


class DeploymentLog:
    """Append-only history of deployments."""

    def __init__(self, state_dir: Path | str) -> None:
        self.path = Path(state_dir) / LOG_FILENAME
        self._lock = threading.Lock()

    def append(self, record: DeploymentRecord, phase: str) -> bool:
        """Append a record; returns False if the write failed."""
        line = json.dumps(record.to_dict(phase=phase), sort_keys=True)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.warning(
                "deployment_log_write_failed",
                deployment_id=record.deployment_id,
                phase=phase,
                error=str(e),
            )
            return False
        return True

    def entries(self) -> Iterator[dict[str, Any]]:
        if not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            for number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("deployment_log_line_corrupt", path=str(self.path), line=number)

    def history(self, deployment_id: str) -> list[dict[str, Any]]:
        return [entry for entry in self.entries() if entry.get("deployment_id") == deployment_id]

    def latest(self, deployment_id: str) -> dict[str, Any] | None:
        history = self.history(deployment_id)
        return history[-1] if history else None
