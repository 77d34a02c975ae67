"""Configuration store: typed items loaded from YAML/JSON documents."""

from tenantops.store.loader import ConfigStore, decode_document
from tenantops.store.models import (
    KIND_PRECEDENCE,
    ConfigurationItem,
    ItemKey,
    ItemKind,
    ItemState,
    LoadResult,
    format_key,
    parse_key,
)
from tenantops.store.references import extract_references, find_placeholders, placeholder_for

__all__ = [
    "ConfigStore",
    "ConfigurationItem",
    "ItemKey",
    "ItemKind",
    "ItemState",
    "KIND_PRECEDENCE",
    "LoadResult",
    "decode_document",
    "extract_references",
    "find_placeholders",
    "format_key",
    "parse_key",
    "placeholder_for",
]
