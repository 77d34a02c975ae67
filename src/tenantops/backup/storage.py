"""
Restore point persistence.

Each restore point is one JSON file under ``<state_dir>/restore-points``,
created exclusively so an existing point is never overwritten. Points older
than the retention window are pruned after every save.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import structlog

from tenantops.core.errors import BackupError
from tenantops.store.models import ItemKey, format_key, parse_key

logger = structlog.get_logger()

RESTORE_POINT_DIR = "restore-points"


def _frozen(snapshots: Mapping[ItemKey, Optional[dict[str, Any]]]) -> Mapping:
    return MappingProxyType(dict(snapshots))


@dataclass(frozen=True)
class RestorePoint:
    """Remote state of every planned item captured before the first mutation.

    A snapshot of ``None`` means the item did not exist.
    """

    deployment_id: str
    created_at: datetime
    order: tuple[ItemKey, ...]
    snapshots: Mapping[ItemKey, Optional[dict[str, Any]]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "order", tuple(self.order))
        object.__setattr__(self, "snapshots", _frozen(self.snapshots))

    def was_absent(self, key: ItemKey) -> bool:
        return self.snapshots.get(key) is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "created_at": self.created_at.isoformat(),
            "order": [format_key(key) for key in self.order],
            "snapshots": {format_key(key): doc for key, doc in self.snapshots.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RestorePoint:
        return cls(
            deployment_id=data["deployment_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            order=tuple(parse_key(key) for key in data["order"]),
            snapshots={parse_key(key): doc for key, doc in data["snapshots"].items()},
        )


class RestorePointStorage:
    """File-backed store of restore points."""

    def __init__(self, state_dir: Path | str, retention_days: int = 30):
        self.root = Path(state_dir) / RESTORE_POINT_DIR
        self.retention = timedelta(days=retention_days)

    def path_for(self, deployment_id: str) -> Path:
        return self.root / f"{deployment_id}.json"

    def save(self, restore_point: RestorePoint) -> Path:
        """Write a restore point; refuses to replace an existing one."""
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(restore_point.deployment_id)
        try:
            with open(path, "x", encoding="utf-8") as f:
                json.dump(restore_point.to_dict(), f, indent=2, sort_keys=True)
        except FileExistsError as e:
            raise BackupError(
                f"Restore point for {restore_point.deployment_id} already exists",
                {"path": str(path)},
            ) from e
        except OSError as e:
            raise BackupError(f"Cannot write restore point: {e}", {"path": str(path)}) from e

        logger.info(
            "restore_point_saved",
            deployment_id=restore_point.deployment_id,
            items=len(restore_point.order),
            path=str(path),
        )
        self.prune()
        return path

    def load(self, deployment_id: str) -> RestorePoint:
        path = self.path_for(deployment_id)
        if not path.exists():
            raise BackupError(
                f"No restore point for deployment {deployment_id}", {"path": str(path)}
            )
        try:
            return RestorePoint.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise BackupError(f"Corrupt restore point: {e}", {"path": str(path)}) from e

    def list_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(path.stem for path in self.root.glob("*.json"))

    def prune(self, now: datetime | None = None) -> list[str]:
        """Delete restore points older than the retention window."""
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        pruned = []
        for deployment_id in self.list_ids():
            path = self.path_for(deployment_id)
            try:
                created_at = datetime.fromisoformat(
                    json.loads(path.read_text(encoding="utf-8"))["created_at"]
                )
            except (json.JSONDecodeError, KeyError, ValueError):
                logger.warning("restore_point_unreadable", path=str(path))
                continue
            if created_at < cutoff:
                path.unlink()
                pruned.append(deployment_id)

        if pruned:
            logger.info("restore_points_pruned", count=len(pruned), deployment_ids=pruned)
        return pruned
