"""
Configuration item models.

A configuration item is one declarative directory object (group, named
location, access policy, ...) loaded from the config source. Items are
keyed by ``(kind, name)``; names are unique within a kind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ItemKind(Enum):
    """Kinds of directory objects tenantops can deploy."""

    GROUP = "Group"
    NAMED_LOCATION = "NamedLocation"
    ACCESS_POLICY = "AccessPolicy"
    SERVICE_PRINCIPAL = "ServicePrincipal"
    SSO_APP = "SSOApp"
    AUTH_METHOD_POLICY = "AuthMethodPolicy"

    @property
    def rank(self) -> int:
        """Deployment precedence; lower ranks deploy first."""
        return KIND_PRECEDENCE[self]

    @classmethod
    def parse(cls, value: str) -> ItemKind:
        """Parse a kind name case-insensitively.

        Raises:
            ValueError: If the kind is unknown
        """
        lowered = value.strip().lower()
        for kind in cls:
            if kind.value.lower() == lowered:
                return kind
        valid = ", ".join(k.value for k in cls)
        raise ValueError(f"Unknown kind: {value}. Valid kinds: {valid}")


KIND_PRECEDENCE: dict[ItemKind, int] = {
    ItemKind.GROUP: 0,
    ItemKind.NAMED_LOCATION: 1,
    ItemKind.ACCESS_POLICY: 2,
    ItemKind.SERVICE_PRINCIPAL: 3,
    ItemKind.SSO_APP: 3,
    ItemKind.AUTH_METHOD_POLICY: 4,
}


class ItemState(Enum):
    """Lifecycle of an item within one deployment."""

    PENDING = "pending"
    RESOLVED = "resolved"
    APPLIED = "applied"
    FAILED = "failed"


ItemKey = tuple[ItemKind, str]


def format_key(key: ItemKey) -> str:
    """Render a key as ``Kind:Name``."""
    kind, name = key
    return f"{kind.value}:{name}"


def parse_key(value: str) -> ItemKey:
    """Parse a ``Kind:Name`` string back into a key."""
    kind, _, name = value.partition(":")
    if not name:
        raise ValueError(f"Invalid item key: {value}")
    return ItemKind.parse(kind), name


@dataclass
class ConfigurationItem:
    """A single declarative directory object."""

    kind: ItemKind
    name: str
    body: dict[str, Any]
    raw_references: frozenset[ItemKey] = frozenset()
    source: Path | None = None
    remote_id: str | None = None
    state: ItemState = ItemState.PENDING

    @property
    def key(self) -> ItemKey:
        return (self.kind, self.name)

    @property
    def display(self) -> str:
        return format_key(self.key)

    def mark_resolved(self) -> None:
        self.state = ItemState.RESOLVED

    def mark_applied(self, remote_id: str) -> None:
        """Record a successful apply; the only place remote_id is set."""
        self.remote_id = remote_id
        self.state = ItemState.APPLIED

    def mark_failed(self) -> None:
        self.state = ItemState.FAILED

    def mark_reverted(self) -> None:
        """The remote object was returned to its pre-deployment state."""
        self.remote_id = None
        self.state = ItemState.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "kind": self.kind.value,
            "name": self.name,
            "state": self.state.value,
            "remote_id": self.remote_id,
            "references": sorted(format_key(ref) for ref in self.raw_references),
            "source": str(self.source) if self.source else None,
        }


@dataclass
class LoadResult:
    """Items loaded from a config source plus per-item load errors."""

    items: list[ConfigurationItem] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0
