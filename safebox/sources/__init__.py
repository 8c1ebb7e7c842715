"""Pluggable storage sources.

Usage:
    from safebox.sources import SourceFactory, LocalSourceConfig

    source = SourceFactory.create(LocalSourceConfig(name="disk", encryption="main"))
    await source.write("notes/today.txt", ciphertext.encode())
"""

from .base import (
    FileInfo,
    LocalSourceConfig,
    RemoteApiSourceConfig,
    Source,
    SourceConfig,
)
from .factory import SourceFactory, source_config_from_dict
from .local import (
    JsonFileKeyValueStore,
    KeyValueStore,
    LocalSource,
    MemoryKeyValueStore,
    get_default_kv_store,
)
from .remote import RemoteApiSource

__all__ = [
    # Configs
    "SourceConfig",
    "LocalSourceConfig",
    "RemoteApiSourceConfig",
    "FileInfo",
    # Variants
    "Source",
    "LocalSource",
    "RemoteApiSource",
    # Key-value collaborators
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "get_default_kv_store",
    # Registry
    "SourceFactory",
    "source_config_from_dict",
]
