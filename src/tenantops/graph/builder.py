"""
Dependency graph over configuration items.

An edge ``A -> B`` means item A carries a ``{{Kind:Name}}`` placeholder for
item B, so B must be applied (and have a remote id) before A can be sent.
The graph must be acyclic.

Ordering is Kahn's algorithm with a fixed tie-break: among ready items,
lowest kind precedence first, then name. Identical inputs always produce
the identical order.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from tenantops.core.errors import (
    ConfigurationError,
    CycleError,
    MalformedConfigError,
    UnresolvedReferenceError,
)
from tenantops.store.models import ConfigurationItem, ItemKey, format_key
from tenantops.store.references import extract_references

logger = structlog.get_logger()

_WHITE, _GRAY, _BLACK = 0, 1, 2


def order_key(key: ItemKey) -> tuple[int, str, str]:
    """Deterministic sort key: (kind precedence, name, kind)."""
    kind, name = key
    return (kind.rank, name, kind.value)


@dataclass
class DependencyGraph:
    """Directed acyclic graph of configuration items."""

    items: dict[ItemKey, ConfigurationItem] = field(default_factory=dict)
    edges: dict[ItemKey, frozenset[ItemKey]] = field(default_factory=dict)

    @classmethod
    def build(cls, items: Iterable[ConfigurationItem]) -> DependencyGraph:
        """
        Build the graph from item placeholders.

        Raises:
            UnresolvedReferenceError: A placeholder names an item that does not exist
            CycleError: The references form a cycle (full path attached)
        """
        by_key: dict[ItemKey, ConfigurationItem] = {}
        for item in items:
            if item.key in by_key:
                raise ConfigurationError(f"Duplicate item {item.display}")
            by_key[item.key] = item

        edges: dict[ItemKey, frozenset[ItemKey]] = {}
        for key in sorted(by_key, key=order_key):
            item = by_key[key]
            try:
                references = extract_references(item.body)
            except ValueError as e:
                raise MalformedConfigError(f"{item.display}: {e}", str(item.source)) from e
            for ref in sorted(references, key=order_key):
                if ref not in by_key:
                    raise UnresolvedReferenceError(key, ref, "no such item in configuration")
            edges[key] = references

        graph = cls(items=by_key, edges=edges)
        cycle = graph.find_cycle()
        if cycle is not None:
            logger.error("dependency_cycle", cycle=[format_key(k) for k in cycle])
            raise CycleError(cycle)

        logger.debug("graph_built", items=len(by_key), edges=graph.edge_count)
        return graph

    @property
    def edge_count(self) -> int:
        return sum(len(deps) for deps in self.edges.values())

    def dependencies_of(self, key: ItemKey) -> frozenset[ItemKey]:
        """Items that ``key`` references."""
        return self.edges.get(key, frozenset())

    def dependents_of(self, key: ItemKey) -> set[ItemKey]:
        """Items that reference ``key``."""
        return {source for source, deps in self.edges.items() if key in deps}

    def find_cycle(self) -> list[ItemKey] | None:
        """Return one cycle as a path (first node repeated last), or None."""
        color = {key: _WHITE for key in self.items}

        for start in sorted(self.items, key=order_key):
            if color[start] != _WHITE:
                continue
            color[start] = _GRAY
            path = [start]
            stack = [iter(sorted(self.edges[start], key=order_key))]

            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    color[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if color[nxt] == _GRAY:
                    return path[path.index(nxt) :] + [nxt]
                if color[nxt] == _WHITE:
                    color[nxt] = _GRAY
                    path.append(nxt)
                    stack.append(iter(sorted(self.edges[nxt], key=order_key)))

        return None

    def topological_order(self) -> list[ItemKey]:
        """Dependencies first; ties broken by (kind precedence, name)."""
        remaining = {key: len(deps) for key, deps in self.edges.items()}
        dependents: dict[ItemKey, list[ItemKey]] = {key: [] for key in self.items}
        for source, deps in self.edges.items():
            for target in deps:
                dependents[target].append(source)

        ready: list[tuple[Any, ...]] = [
            (*order_key(key), key) for key, count in remaining.items() if count == 0
        ]
        heapq.heapify(ready)

        order: list[ItemKey] = []
        while ready:
            key = heapq.heappop(ready)[-1]
            order.append(key)
            for source in dependents[key]:
                remaining[source] -= 1
                if remaining[source] == 0:
                    heapq.heappush(ready, (*order_key(source), source))

        if len(order) != len(self.items):
            # build() rejects cycles, so this only trips on hand-assembled graphs
            raise CycleError(self.find_cycle() or [])
        return order

    def waves(self, order: list[ItemKey] | None = None) -> list[list[ItemKey]]:
        """
        Partition the topological order into waves.

        A new wave starts whenever kind precedence changes or an item depends
        on a member of the current wave, so no wave contains an edge.
        """
        order = order if order is not None else self.topological_order()
        waves: list[list[ItemKey]] = []
        current: list[ItemKey] = []
        members: set[ItemKey] = set()
        rank: int | None = None

        for key in order:
            if current and (key[0].rank != rank or self.dependencies_of(key) & members):
                waves.append(current)
                current, members = [], set()
            current.append(key)
            members.add(key)
            rank = key[0].rank

        if current:
            waves.append(current)
        return waves
