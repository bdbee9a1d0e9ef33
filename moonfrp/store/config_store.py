"""
FRP config file store.

Resolves target filters to config files, reads them, and writes staged
copies. Originals are only replaced by the transaction commit phase.
"""

from __future__ import annotations

import fnmatch
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from moonfrp.engine.models import FilterKind, TargetFilter

if TYPE_CHECKING:
    from moonfrp.store.index import ConfigIndex

CONFIG_TYPES = ("server", "client", "visitor")


def config_type_for(path: Path) -> str:
    """Derive the config type from the file name."""
    name = Path(path).name
    if name.startswith("frps"):
        return "server"
    if name.startswith("frpc"):
        return "client"
    if name.startswith("visitor"):
        return "visitor"
    return "unknown"


def load_document(body: str) -> dict[str, Any]:
    """Parse a TOML body; raises ``tomllib.TOMLDecodeError``."""
    return tomllib.loads(body)


def get_field(document: dict[str, Any], field_path: str) -> Any:
    """Return the value at a dotted path, or None when absent."""
    node: Any = document
    for part in field_path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def set_field(document: dict[str, Any], field_path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate tables as needed."""
    parts = field_path.split(".")
    if not all(parts):
        raise ValueError(f"Invalid field path '{field_path}'")
    node = document
    for depth, part in enumerate(parts[:-1]):
        if part not in node:
            node[part] = {}
        # Re-read: tomlkit documents wrap the assigned dict in a Table
        child = node[part]
        if not isinstance(child, dict):
            prefix = ".".join(parts[: depth + 1])
            raise ValueError(f"Cannot set '{field_path}': '{prefix}' is not a table")
        node = child
    node[parts[-1]] = value


def parse_value(text: str) -> Any:
    """Interpret a command-line value as a TOML literal, else as a string.

    ``7000`` becomes an int, ``true`` a bool, ``"x"`` the string ``x``,
    and anything unparseable (``1.2.3.4``) stays a plain string.
    """
    try:
        return tomllib.loads(f"v = {text}")["v"]
    except tomllib.TOMLDecodeError:
        return text


class ConfigStore:
    """Reads and stages FRP TOML configs under one directory."""

    def __init__(self, config_dir: Path, index: "ConfigIndex | None" = None):
        self.config_dir = Path(config_dir)
        self.index = index

    def list_configs(self) -> list[Path]:
        if not self.config_dir.is_dir():
            return []
        return sorted(p for p in self.config_dir.glob("*.toml") if p.is_file())

    def config_type(self, path: Path) -> str:
        return config_type_for(path)

    def resolve_by_filter(self, target: TargetFilter) -> list[Path]:
        """Return the sorted config paths a filter selects."""
        configs = self.list_configs()
        if target.kind is FilterKind.ALL:
            return configs
        if target.kind is FilterKind.TYPE:
            return [p for p in configs if config_type_for(p) == target.value]
        if target.kind is FilterKind.NAME:
            pattern = target.value or ""
            if any(ch in pattern for ch in "*?["):
                return [p for p in configs if fnmatch.fnmatch(p.name, pattern)]
            return [p for p in configs if pattern in p.name]
        if target.kind is FilterKind.TAG:
            if self.index is None:
                raise ValueError("Tag filters need the config index")
            tagged = set(self.index.query_by_tag(target.value or "", target.tag_value))
            return [p for p in configs if p.resolve() in tagged]
        raise ValueError(f"Filter '{target}' does not apply to config files")

    def read(self, path: Path) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write(self, path: Path, body: str) -> None:
        """Write a staged body. Never called on an original during a transaction."""
        Path(path).write_text(body, encoding="utf-8")
