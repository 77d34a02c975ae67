"""
Placeholder resolution.

Substitutes ``{{Kind:Name}}`` tokens with the remote object id of the
referenced item. A referent must already be ``Applied`` in the current
deployment; resolution is where dependency order becomes a hard
precondition rather than an optimization.
"""

from __future__ import annotations

import dataclasses
import threading

from tenantops.core.errors import UnresolvedReferenceError
from tenantops.graph.builder import DependencyGraph
from tenantops.store.models import ConfigurationItem, ItemKey, ItemState
from tenantops.store.references import extract_references, substitute


class ResolutionContext:
    """Remote ids of items applied during one deployment.

    One context is created per deployment and passed explicitly through
    the apply pipeline; it is safe to share between apply workers.
    """

    def __init__(self, remote_ids: dict[ItemKey, str] | None = None) -> None:
        self._remote_ids: dict[ItemKey, str] = dict(remote_ids or {})
        self._lock = threading.Lock()

    def record(self, key: ItemKey, remote_id: str) -> None:
        with self._lock:
            self._remote_ids[key] = remote_id

    def lookup(self, key: ItemKey) -> str | None:
        with self._lock:
            return self._remote_ids.get(key)


class PlaceholderResolver:
    """Resolves item placeholders against applied referents."""

    def __init__(self, graph: DependencyGraph) -> None:
        self._graph = graph

    def resolve(self, item: ConfigurationItem, context: ResolutionContext) -> ConfigurationItem:
        """
        Return a copy of ``item`` with every placeholder replaced.

        The copy is in ``Resolved`` state. Resolving a body that has no
        placeholders left returns an equal body, so retrying after a
        partial failure is safe.

        Raises:
            UnresolvedReferenceError: A referent is unknown, undeclared or not applied
        """
        declared = self._graph.dependencies_of(item.key)
        for ref in extract_references(item.body):
            if ref not in declared:
                raise UnresolvedReferenceError(item.key, ref, "not a declared dependency")
            self._remote_id_for(item.key, ref, context)

        body = substitute(item.body, lambda ref: self._remote_id_for(item.key, ref, context))
        return dataclasses.replace(item, body=body, state=ItemState.RESOLVED)

    def _remote_id_for(
        self, source: ItemKey, ref: ItemKey, context: ResolutionContext
    ) -> str:
        referent = self._graph.items.get(ref)
        if referent is None:
            raise UnresolvedReferenceError(source, ref, "no such item in configuration")
        if referent.state is not ItemState.APPLIED:
            raise UnresolvedReferenceError(
                source, ref, f"referent is {referent.state.value}, not applied"
            )
        remote_id = context.lookup(ref)
        if remote_id is None:
            raise UnresolvedReferenceError(source, ref, "no remote id recorded")
        return remote_id
