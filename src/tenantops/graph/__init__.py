"""Dependency graph and placeholder resolution."""

from tenantops.graph.builder import DependencyGraph, order_key
from tenantops.graph.resolver import PlaceholderResolver, ResolutionContext

__all__ = [
    "DependencyGraph",
    "PlaceholderResolver",
    "ResolutionContext",
    "order_key",
]
