"""
Configuration store.

Loads configuration items from a file or a directory tree. Two document
shapes are accepted:

Single item::

    kind: Group
    name: break-glass
    spec:
      displayName: Break Glass Accounts

Manifest::

    resources:
      - kind: Group
        name: break-glass
        spec: {...}
      - kind: AccessPolicy
        name: require-mfa
        spec: {...}

Exported documents frequently carry a byte-order mark (UTF-8, UTF-16 or
UTF-32); raw bytes are normalized before parsing.
"""

from __future__ import annotations

import codecs
import json
from pathlib import Path
from typing import Any

import structlog
import yaml

from tenantops.core.errors import ConfigurationError, MalformedConfigError
from tenantops.store.models import ConfigurationItem, ItemKey, ItemKind, LoadResult, format_key
from tenantops.store.references import extract_references

logger = structlog.get_logger()

CONFIG_SUFFIXES = (".yaml", ".yml", ".json")

# UTF-32 must be checked before UTF-16: the UTF-32-LE BOM starts with the UTF-16-LE one
_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


def decode_document(raw: bytes) -> str:
    """Decode raw bytes, dropping any byte-order mark.

    Raises:
        UnicodeDecodeError: If the bytes are not valid for the detected encoding
    """
    for bom, encoding in _BOMS:
        if raw.startswith(bom):
            text = raw[len(bom) :].decode(encoding)
            break
    else:
        text = raw.decode("utf-8")
    return text.lstrip("\ufeff")


class ConfigStore:
    """Loads configuration items into typed in-memory records."""

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict
        self.errors: list[MalformedConfigError] = []
        self._items: dict[ItemKey, ConfigurationItem] = {}

    @property
    def items(self) -> list[ConfigurationItem]:
        """Loaded items in load order."""
        return list(self._items.values())

    def get(self, key: ItemKey) -> ConfigurationItem | None:
        return self._items.get(key)

    def load_all(self, path: str | Path) -> list[ConfigurationItem]:
        """
        Load every item found at ``path``.

        Malformed files or items are skipped and collected in ``errors``
        (or raised immediately in strict mode); the remaining items still
        load.

        Raises:
            ConfigurationError: If the path does not exist
            MalformedConfigError: In strict mode, on the first bad document
        """
        root = Path(path)
        if not root.exists():
            raise ConfigurationError(f"Config path not found: {path}", {"path": str(path)})

        for file_path in self._discover(root):
            try:
                documents = self._read(file_path)
            except MalformedConfigError as e:
                self._record(e)
                continue
            for index, document in enumerate(documents):
                try:
                    self._add(self._parse_item(document, file_path, index))
                except MalformedConfigError as e:
                    self._record(e)

        logger.info(
            "config_loaded",
            path=str(root),
            items=len(self._items),
            errors=len(self.errors),
        )
        return self.items

    def load(self, path: str | Path) -> LoadResult:
        """Load and return items together with collected errors."""
        items = self.load_all(path)
        return LoadResult(items=items, errors=list(self.errors))

    def _discover(self, root: Path) -> list[Path]:
        if root.is_file():
            return [root]
        return sorted(
            p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in CONFIG_SUFFIXES
        )

    def _read(self, file_path: Path) -> list[Any]:
        source = str(file_path)
        try:
            text = decode_document(file_path.read_bytes())
        except UnicodeDecodeError as e:
            raise MalformedConfigError(f"Cannot decode {file_path.name}: {e}", source) from e

        try:
            if file_path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise MalformedConfigError(f"Cannot parse {file_path.name}: {e}", source) from e

        if isinstance(data, dict) and "resources" in data:
            resources = data["resources"]
            if not isinstance(resources, list):
                raise MalformedConfigError(f"'resources' must be a list in {file_path.name}", source)
            return resources
        if isinstance(data, dict) and "kind" in data:
            return [data]
        raise MalformedConfigError(
            f"Expected an item (kind/name/spec) or a resources list in {file_path.name}", source
        )

    def _parse_item(self, document: Any, file_path: Path, index: int) -> ConfigurationItem:
        source = f"{file_path}#{index}"
        if not isinstance(document, dict):
            raise MalformedConfigError("Item must be a mapping", source)

        raw_kind = document.get("kind")
        name = document.get("name")
        spec = document.get("spec", {})

        if not isinstance(raw_kind, str):
            raise MalformedConfigError("Item is missing 'kind'", source)
        if not isinstance(name, str) or not name.strip():
            raise MalformedConfigError("Item is missing 'name'", source)
        if not isinstance(spec, dict):
            raise MalformedConfigError(f"'spec' of {raw_kind}:{name} must be a mapping", source)

        try:
            kind = ItemKind.parse(raw_kind)
            references = extract_references(spec)
        except ValueError as e:
            raise MalformedConfigError(f"{raw_kind}:{name}: {e}", source) from e

        return ConfigurationItem(
            kind=kind,
            name=name.strip(),
            body=spec,
            raw_references=references,
            source=file_path,
        )

    def _add(self, item: ConfigurationItem) -> None:
        existing = self._items.get(item.key)
        if existing is not None:
            raise MalformedConfigError(
                f"Duplicate item {format_key(item.key)} (first defined in {existing.source})",
                str(item.source),
            )
        self._items[item.key] = item

    def _record(self, error: MalformedConfigError) -> None:
        if self.strict:
            raise error
        logger.warning("config_item_skipped", error=error.message, source=error.source)
        self.errors.append(error)
