"""Local source backed by a persistent key-value store.

Layout inside the store:
    local-file-<path>  -> base64 payload
    local-dir-<path>   -> "" (folder marker)
"""

import json
import os
import threading
from pathlib import Path
from typing import Iterable, Optional, Protocol

from ..utils.logging import get_logger
from ..vault.crypto import b64decode_chunked, b64encode_chunked
from ..vault.exceptions import SourceFileNotFoundError, VaultError
from .base import FileInfo, LocalSourceConfig, Source, join_path, split_path

logger = get_logger(__name__)

FILE_PREFIX = "local-file-"
DIR_PREFIX = "local-dir-"


class KeyValueStore(Protocol):
    """Persistent string key-value capability supplied by the host."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> Iterable[str]: ...


class MemoryKeyValueStore:
    """In-process key-value store."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._data)


class JsonFileKeyValueStore:
    """
    Key-value store persisted as a single JSON object on disk.

    Every write rewrites the file through a temporary file and an atomic
    rename, so a crash never leaves a half-written store.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Optional[dict[str, str]] = None
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if self._data is None:
            if self.path.exists():
                try:
                    self._data = json.loads(self.path.read_text(encoding="utf-8"))
                except json.JSONDecodeError as e:
                    raise VaultError(f"Key-value store is corrupted: {self.path}: {e}")
            else:
                self._data = {}
        return self._data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._load()[key] = value
            self._flush()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._load().pop(key, None) is not None:
                self._flush()

    def keys(self) -> Iterable[str]:
        with self._lock:
            return list(self._load())


_default_store: Optional[MemoryKeyValueStore] = None


def get_default_kv_store() -> MemoryKeyValueStore:
    """Process-wide store used when no collaborator is supplied."""
    global _default_store
    if _default_store is None:
        _default_store = MemoryKeyValueStore()
    return _default_store


class LocalSource(Source):
    """Synchronous local storage exposed through the async source contract."""

    type = "local"
    label = "Local Storage"
    config_class = LocalSourceConfig

    def __init__(self, config: LocalSourceConfig, kv_store: Optional[KeyValueStore] = None):
        super().__init__(config)
        self.kv_store = kv_store if kv_store is not None else get_default_kv_store()

    def _children(self, path: str) -> tuple[set[str], dict[str, str]]:
        """Direct child folder names and file name -> key for a folder path."""
        prefix = join_path(path)
        prefix = prefix + "/" if prefix else ""
        folders: set[str] = set()
        files: dict[str, str] = {}

        for key in self.kv_store.keys():
            if key.startswith(FILE_PREFIX):
                rel, is_file = key[len(FILE_PREFIX):], True
            elif key.startswith(DIR_PREFIX):
                rel, is_file = key[len(DIR_PREFIX):], False
            else:
                continue
            if not rel.startswith(prefix):
                continue
            rest = rel[len(prefix):]
            if not rest:
                continue
            head, sep, _ = rest.partition("/")
            if sep or not is_file:
                folders.add(head)
            else:
                files[head] = key
        return folders, files

    async def read(self, path: str) -> bytes:
        key = FILE_PREFIX + join_path(path)
        data = self.kv_store.get(key)
        if data is None:
            raise SourceFileNotFoundError(path)
        return b64decode_chunked(data)

    async def write(self, path: str, data: bytes) -> None:
        if not split_path(path):
            raise SourceFileNotFoundError(path)
        self.kv_store.set(FILE_PREFIX + join_path(path), b64encode_chunked(bytes(data)))
        logger.debug("Local source %r wrote %d bytes", self.name, len(data))

    async def create_folder(self, path: str) -> None:
        self.kv_store.set(DIR_PREFIX + join_path(path), "")

    async def list(self, path: str = "") -> list[FileInfo]:
        folders, files = self._children(path)
        base = join_path(path)

        items = [
            FileInfo(name=name, type="folder", path=join_path(base, name))
            for name in sorted(folders)
        ]
        for name in sorted(files):
            encoded = self.kv_store.get(files[name]) or ""
            size = len(encoded) * 3 // 4 - encoded[-2:].count("=")
            items.append(FileInfo(name=name, type="file", path=join_path(base, name), size=size))
        return items
