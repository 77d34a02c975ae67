"""
Placeholder token scanning.

Configuration documents reference other items with ``{{Kind:Name}}``
tokens. Tokens are found in any string value, at any depth.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterator

from tenantops.store.models import ItemKey, ItemKind

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z]+)\s*:\s*([^{}]+?)\s*\}\}")


def iter_strings(value: Any) -> Iterator[str]:
    """Yield every string contained in a nested document."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for child in value.values():
            yield from iter_strings(child)
    elif isinstance(value, (list, tuple)):
        for child in value:
            yield from iter_strings(child)


def find_placeholders(body: Any) -> list[tuple[str, str]]:
    """Return raw ``(kind, name)`` pairs for every token in the document."""
    found: list[tuple[str, str]] = []
    for text in iter_strings(body):
        for match in PLACEHOLDER_PATTERN.finditer(text):
            found.append((match.group(1), match.group(2)))
    return found


def extract_references(body: Any) -> frozenset[ItemKey]:
    """Parse every token into an item key.

    Raises:
        ValueError: If a token names an unknown kind
    """
    return frozenset((ItemKind.parse(kind), name) for kind, name in find_placeholders(body))


def placeholder_for(key: ItemKey) -> str:
    kind, name = key
    return "{{" + f"{kind.value}:{name}" + "}}"


def substitute(body: Any, replace: Callable[[ItemKey], str]) -> Any:
    """Return a copy of the document with every token replaced.

    A string that is exactly one token becomes the replacement value;
    tokens embedded in longer strings are replaced in place. Documents
    without tokens come back equal to the input.
    """
    if isinstance(body, str):
        return PLACEHOLDER_PATTERN.sub(
            lambda m: replace((ItemKind.parse(m.group(1)), m.group(2))), body
        )
    if isinstance(body, dict):
        return {key: substitute(value, replace) for key, value in body.items()}
    if isinstance(body, list):
        return [substitute(value, replace) for value in body]
    if isinstance(body, tuple):
        return tuple(substitute(value, replace) for value in body)
    return body
