"""
Config storage.

File access, validation rules, backups and the SQLite metadata index for
FRP config files.
"""

from moonfrp.store.backup import BackupManager
from moonfrp.store.config_store import (
    ConfigStore,
    config_type_for,
    get_field,
    parse_value,
    set_field,
)
from moonfrp.store.index import ConfigIndex, IndexedConfig
from moonfrp.store.validator import ConfigValidator, ValidationOutcome

__all__ = [
    "BackupManager",
    "ConfigIndex",
    "ConfigStore",
    "ConfigValidator",
    "IndexedConfig",
    "ValidationOutcome",
    "config_type_for",
    "get_field",
    "parse_value",
    "set_field",
]
