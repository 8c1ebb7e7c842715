"""In-memory vault entry store.

Holds one ordered tuple of FileEntry per source index. Every mutation
builds a new tuple and swaps it in, so a reader holding a snapshot never
sees a half-applied change.

Folders are linked by integer handles allocated per source; a folder's
``folder_id`` never changes, so renaming a folder cannot orphan its
children.
"""

import asyncio
import json
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence, Union

from ..config.service import ConfigEvent, ConfigEventKind, ConfigService
from ..config.settings import get_settings
from ..methods import EncryptionMethod
from ..models.entry import EntryKind, FileEntry
from ..sources.local import KeyValueStore
from ..utils.logging import get_logger
from ..vault.exceptions import (
    DuplicateFolderError,
    EntryIndexError,
    FolderNotEmptyError,
    FolderNotFoundError,
    OperationCancelledError,
    VaultError,
)

logger = get_logger(__name__)

STORE_KEY = "vault"

# Sentinel for "any parent" in search()
ANY_PARENT = object()


@dataclass
class BulkItemResult:
    """Outcome of one item in a bulk operation."""

    index: int
    ok: bool
    error: Optional[str] = None
    skipped: bool = False
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)


@dataclass
class BulkResult:
    """Outcome of a bulk operation. Failed items never abort the batch."""

    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok and not r.skipped)

    @property
    def failed_indices(self) -> list[int]:
        return [r.index for r in self.results if not r.ok]


class VaultEntryStore:
    """
    Ordered file/folder collections for every source of a vault.

    Usage:
        store = VaultEntryStore(config_service)
        docs = store.add_folder(0, "Docs")
        index = await store.add_file(0, "note.txt", EntryKind.TEXT, b"hello", parent=docs.folder_id)
        entry = await store.decrypt(0, index)
        store.lock(0, index)
    """

    def __init__(self, config: Optional[ConfigService] = None):
        """
        Initialize the store.

        Args:
            config: Configuration service used to resolve each source's
                encryption method. Source removals are tracked through its
                notifications.
        """
        self.config = config
        self._sources: dict[int, tuple[FileEntry, ...]] = {}
        self._next_folder_id: dict[int, int] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        if config is not None:
            self._unsubscribe = config.subscribe(self._on_config_event)

    def close(self) -> None:
        """Stop listening to configuration changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Snapshots

    def entries(self, source: int) -> tuple[FileEntry, ...]:
        """Current snapshot of a source's entries."""
        return self._sources.get(source, ())

    def source_indices(self) -> list[int]:
        """Source indices that hold entries."""
        return sorted(self._sources)

    def snapshot(self) -> dict[int, tuple[FileEntry, ...]]:
        """Snapshot of every source."""
        return dict(self._sources)

    def entry(self, source: int, index: int) -> FileEntry:
        """Entry at an index."""
        entries = self.entries(source)
        if not 0 <= index < len(entries):
            raise EntryIndexError(source, index)
        return entries[index]

    def _replace(self, source: int, entries: Iterable[FileEntry]) -> None:
        self._sources[source] = tuple(entries)
        highest = max((e.folder_id for e in self._sources[source] if e.folder_id is not None), default=-1)
        self._next_folder_id[source] = max(self._next_folder_id.get(source, 0), highest + 1)

    def _swap(self, source: int, old: FileEntry, new: FileEntry) -> None:
        """Replace ``old`` (by identity) after an await, if it is still present."""
        entries = list(self.entries(source))
        for i, current in enumerate(entries):
            if current is old:
                entries[i] = new
                self._replace(source, entries)
                return
        raise VaultError(f'Entry "{old.name}" changed while it was being processed')

    # Folder table

    def _allocate_folder_id(self, source: int) -> int:
        folder_id = self._next_folder_id.get(source, 0)
        self._next_folder_id[source] = folder_id + 1
        return folder_id

    def folders(self, source: int) -> list[FileEntry]:
        """All folder entries of a source."""
        return [e for e in self.entries(source) if e.is_folder]

    def folder(self, source: int, folder_id: int) -> FileEntry:
        """Folder entry for a handle."""
        for entry in self.entries(source):
            if entry.is_folder and entry.folder_id == folder_id:
                return entry
        raise FolderNotFoundError(str(folder_id))

    def folder_name(self, source: int, folder_id: Optional[int]) -> Optional[str]:
        """Name of a folder handle (None for root)."""
        if folder_id is None:
            return None
        return self.folder(source, folder_id).name

    def find_folder(self, source: int, name: str, parent: Optional[int] = None) -> Optional[FileEntry]:
        """Folder with a name inside one parent scope."""
        for entry in self.entries(source):
            if entry.is_folder and entry.parent == parent and entry.name == name:
                return entry
        return None

    def path_of(self, source: int, folder_id: Optional[int]) -> str:
        """Slash-separated path of a folder, "" for root."""
        parts: list[str] = []
        seen: set[int] = set()
        while folder_id is not None:
            if folder_id in seen:
                raise VaultError(f"Folder cycle detected at handle {folder_id}")
            seen.add(folder_id)
            folder = self.folder(source, folder_id)
            parts.append(folder.name)
            folder_id = folder.parent
        return "/".join(reversed(parts))

    def resolve_path(self, source: int, path: str) -> Optional[int]:
        """
        Folder handle for a slash-separated folder path.

        Raises:
            FolderNotFoundError: At the first segment with no matching folder
        """
        folder_id: Optional[int] = None
        for segment in [p for p in path.split("/") if p]:
            folder = self.find_folder(source, segment, folder_id)
            if folder is None:
                raise FolderNotFoundError(segment)
            folder_id = folder.folder_id
        return folder_id

    def _check_parent(self, source: int, parent: Optional[int]) -> None:
        if parent is not None:
            self.folder(source, parent)

    def _check_folder_name(self, source: int, entry: FileEntry, skip: Optional[FileEntry] = None) -> None:
        existing = self.find_folder(source, entry.name, entry.parent)
        if existing is not None and existing is not skip:
            raise DuplicateFolderError(entry.name)

    # Containment

    def children_of(self, source: int, parent: Optional[int] = None) -> list[FileEntry]:
        """Entries whose parent is the given folder handle (None for root)."""
        return [e for e in self.entries(source) if e.parent == parent]

    def indexed_children(self, source: int, parent: Optional[int] = None) -> list[tuple[int, FileEntry]]:
        """Like children_of, paired with each entry's index."""
        return [(i, e) for i, e in enumerate(self.entries(source)) if e.parent == parent]

    def _descendant_indices(self, source: int, folder_id: int) -> set[int]:
        entries = self.entries(source)
        found: set[int] = set()
        pending = [folder_id]
        while pending:
            current = pending.pop()
            for i, entry in enumerate(entries):
                if entry.parent == current and i not in found:
                    found.add(i)
                    if entry.is_folder and entry.folder_id is not None:
                        pending.append(entry.folder_id)
        return found

    # Structural mutations

    def add(self, source: int, entry: FileEntry) -> int:
        """
        Append an entry. Transient caches are dropped.

        Returns:
            Index of the new entry

        Raises:
            DuplicateFolderError: A folder with that name exists in the same scope
            FolderNotFoundError: The parent handle does not exist
            ValueError: A non-folder entry without ciphertext
        """
        self._check_parent(source, entry.parent)
        if entry.is_folder:
            self._check_folder_name(source, entry)
            if entry.folder_id is None:
                entry = replace(entry, folder_id=self._allocate_folder_id(source), ciphertext="")
            elif any(e.folder_id == entry.folder_id for e in self.folders(source)):
                raise DuplicateFolderError(entry.name)
        elif not entry.ciphertext:
            raise ValueError(f'Entry "{entry.name}" has no ciphertext')

        self._replace(source, self.entries(source) + (entry.locked(),))
        return len(self.entries(source)) - 1

    def add_folder(self, source: int, name: str, parent: Optional[int] = None) -> FileEntry:
        """Create a folder and return its entry (with its new handle)."""
        name = name.strip()
        if not name or "/" in name:
            raise ValueError(f"Invalid folder name: {name!r}")
        index = self.add(source, FileEntry(name=name, kind=EntryKind.FOLDER, parent=parent))
        return self.entries(source)[index]

    def update(self, source: int, index: int, entry: FileEntry) -> None:
        """Replace the entry at an index."""
        current = self.entry(source, index)
        self._check_parent(source, entry.parent)
        if entry.is_folder:
            self._check_folder_name(source, entry, skip=current)
            if entry.folder_id != current.folder_id and entry.folder_id in {
                f.folder_id for f in self.folders(source)
            }:
                raise DuplicateFolderError(entry.name)

        entries = list(self.entries(source))
        entries[index] = entry
        self._replace(source, entries)

    def rename_folder(self, source: int, folder_id: int, new_name: str) -> FileEntry:
        """Rename a folder. Children keep their handle link."""
        folder = self.folder(source, folder_id)
        renamed = replace(folder, name=new_name.strip())
        if not renamed.name or "/" in renamed.name:
            raise ValueError(f"Invalid folder name: {new_name!r}")
        self._check_folder_name(source, renamed, skip=folder)
        self._swap(source, folder, renamed)
        return renamed

    def delete(self, source: int, index: int, cascade: bool = False) -> list[FileEntry]:
        """
        Delete an entry.

        Args:
            source: Source index
            index: Entry index
            cascade: Also delete everything inside a folder

        Returns:
            Removed entries

        Raises:
            FolderNotEmptyError: Deleting a non-empty folder without cascade
        """
        target = self.entry(source, index)
        doomed = {index}
        if target.is_folder and target.folder_id is not None:
            descendants = self._descendant_indices(source, target.folder_id)
            if descendants and not cascade:
                raise FolderNotEmptyError(target.name)
            doomed |= descendants

        entries = self.entries(source)
        self._replace(source, (e for i, e in enumerate(entries) if i not in doomed))
        return [entries[i] for i in sorted(doomed)]

    def move(self, source: int, indices: Sequence[int], target_folder: Optional[int]) -> int:
        """
        Move entries into a folder (None for root). Folders are left in place.

        Returns:
            Number of entries moved
        """
        self._check_parent(source, target_folder)
        entries = list(self.entries(source))
        for index in indices:
            self.entry(source, index)

        moved = 0
        for index in indices:
            if entries[index].is_folder:
                continue
            entries[index] = replace(entries[index], parent=target_folder)
            moved += 1
        self._replace(source, entries)
        return moved

    def replace_sources(self, mapping: Mapping[int, Sequence[FileEntry]]) -> None:
        """Overwrite the given source indices, leaving every other source untouched."""
        for source, entries in mapping.items():
            self._next_folder_id.pop(source, None)
            self._replace(source, (e.locked() for e in entries))

    # Search

    def search(
        self,
        source: int,
        term: str = "",
        parent: Any = ANY_PARENT,
        tags: Optional[Iterable[str]] = None,
    ) -> list[tuple[int, FileEntry]]:
        """
        Filter entries by name, folder and clear-text tags.

        Args:
            source: Source index
            term: Case-insensitive substring of the name
            parent: Folder handle to search in (default: anywhere)
            tags: Tags every match must carry
        """
        needle = term.strip().casefold()
        wanted = set(tags or ())
        matches = []
        for i, entry in enumerate(self.entries(source)):
            if parent is not ANY_PARENT and entry.parent != parent:
                continue
            if needle and needle not in entry.name.casefold():
                continue
            if wanted and not wanted.issubset(entry.tags):
                continue
            matches.append((i, entry))
        return matches

    # Cryptographic operations

    def _method(self, source: int) -> EncryptionMethod:
        if self.config is None:
            raise VaultError("No configuration service attached to the entry store")
        return self.config.method_for_source(source)

    async def add_file(
        self,
        source: int,
        name: str,
        kind: EntryKind,
        data: Union[bytes, str],
        parent: Optional[int] = None,
    ) -> int:
        """Encrypt content with the source's method and add it as a new entry."""
        if kind is EntryKind.FOLDER:
            raise ValueError("Use add_folder() for folders")
        self._check_parent(source, parent)
        ciphertext = await self._method(source).encrypt(data)
        return self.add(source, FileEntry(name=name, kind=kind, ciphertext=ciphertext, parent=parent))

    async def _decrypt_entry(self, source: int, entry: FileEntry, method: EncryptionMethod) -> FileEntry:
        plaintext = await method.decrypt(entry.ciphertext)
        cache: Union[str, bytes] = plaintext
        if entry.kind is EntryKind.TEXT:
            try:
                cache = plaintext.decode("utf-8")
            except UnicodeDecodeError:
                cache = plaintext
        unlocked = replace(entry, plaintext_cache=cache)
        self._swap(source, entry, unlocked)
        return unlocked

    async def _encrypt_entry(self, source: int, entry: FileEntry, method: EncryptionMethod) -> FileEntry:
        if entry.plaintext_cache is None:
            raise VaultError(f'"{entry.name}" has no decrypted content to encrypt')
        ciphertext = await method.encrypt(entry.plaintext_cache)
        sealed = replace(entry, ciphertext=ciphertext, plaintext_cache=None, thumbnail=None)
        self._swap(source, entry, sealed)
        return sealed

    async def decrypt(self, source: int, index: int) -> FileEntry:
        """Decrypt an entry into its plaintext cache."""
        entry = self.entry(source, index)
        if entry.is_folder:
            raise ValueError("Folders have no content to decrypt")
        return await self._decrypt_entry(source, entry, self._method(source))

    async def encrypt(self, source: int, index: int) -> FileEntry:
        """Re-encrypt an entry from its plaintext cache and clear the cache."""
        entry = self.entry(source, index)
        return await self._encrypt_entry(source, entry, self._method(source))

    async def _bulk(
        self,
        source: int,
        indices: Sequence[int],
        operation: Callable[[FileEntry, EncryptionMethod], Awaitable[FileEntry]],
        concurrency: Optional[int],
        cancel: Optional[asyncio.Event],
    ) -> BulkResult:
        method = self._method(source)
        concurrency = max(1, concurrency or get_settings().bulk.concurrency)
        targets = {i: self.entries(source)[i] for i in indices if 0 <= i < len(self.entries(source))}
        cancelled = False

        async def run(index: int) -> BulkItemResult:
            nonlocal cancelled
            if cancel is not None and cancel.is_set():
                cancelled = True
                return BulkItemResult(index, ok=False, error="cancelled")
            entry = targets.get(index)
            if entry is None:
                return BulkItemResult(index, ok=False, error=str(EntryIndexError(source, index)))
            if entry.is_folder:
                return BulkItemResult(index, ok=True, skipped=True)
            try:
                await operation(entry, method)
            except Exception as e:
                logger.warning("Bulk item %d in source %d failed: %s", index, source, e)
                return BulkItemResult(index, ok=False, error=str(e), exception=e)
            return BulkItemResult(index, ok=True)

        if concurrency == 1:
            results = [await run(i) for i in indices]
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded(index: int) -> BulkItemResult:
                async with semaphore:
                    return await run(index)

            results = list(await asyncio.gather(*(bounded(i) for i in indices)))

        result = BulkResult(results)
        if cancelled:
            error = OperationCancelledError(
                f"Cancelled after {len(indices) - sum(r.error == 'cancelled' for r in results)} "
                f"of {len(indices)} items"
            )
            error.result = result
            raise error
        return result

    async def bulk_decrypt(
        self,
        source: int,
        indices: Sequence[int],
        concurrency: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """
        Decrypt several entries, isolating per-item failures.

        Args:
            source: Source index
            indices: Entry indices
            concurrency: Items in flight at once (default from settings; 1 = sequential)
            cancel: Event that stops new items from starting

        Raises:
            OperationCancelledError: If cancelled; the partial BulkResult is on ``.result``
        """
        return await self._bulk(
            source,
            indices,
            lambda entry, method: self._decrypt_entry(source, entry, method),
            concurrency,
            cancel,
        )

    async def bulk_encrypt(
        self,
        source: int,
        indices: Sequence[int],
        concurrency: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> BulkResult:
        """Re-encrypt several entries from their caches, isolating per-item failures."""
        return await self._bulk(
            source,
            indices,
            lambda entry, method: self._encrypt_entry(source, entry, method),
            concurrency,
            cancel,
        )

    def bulk_delete(self, source: int, indices: Sequence[int], cascade: bool = False) -> BulkResult:
        """Delete several entries (highest index first), isolating per-item failures."""
        targets = [(i, self.entries(source)[i]) for i in set(indices) if 0 <= i < len(self.entries(source))]
        results = [
            BulkItemResult(i, ok=False, error=str(EntryIndexError(source, i)))
            for i in sorted(set(indices))
            if not 0 <= i < len(self.entries(source))
        ]

        for index, entry in sorted(targets, key=lambda t: t[0], reverse=True):
            current = self.entries(source)
            position = next((p for p, e in enumerate(current) if e is entry), None)
            if position is None:
                # Already removed by an earlier cascade
                results.append(BulkItemResult(index, ok=True, skipped=True))
                continue
            try:
                self.delete(source, position, cascade=cascade)
            except VaultError as e:
                results.append(BulkItemResult(index, ok=False, error=str(e), exception=e))
                continue
            results.append(BulkItemResult(index, ok=True))

        results.sort(key=lambda r: r.index)
        return BulkResult(results)

    # Lock

    def lock(self, source: int, index: int) -> FileEntry:
        """Erase an entry's plaintext cache and thumbnail. Ciphertext is untouched."""
        entry = self.entry(source, index)
        locked = entry.locked()
        if locked is not entry:
            entries = list(self.entries(source))
            entries[index] = locked
            self._replace(source, entries)
        return locked

    def lock_all(self, source: Optional[int] = None) -> int:
        """Lock every entry (of one source, or all). Returns how many were unlocked."""
        count = 0
        for idx in [source] if source is not None else self.source_indices():
            entries = self.entries(idx)
            count += sum(1 for e in entries if e.is_unlocked or e.thumbnail is not None)
            self._replace(idx, (e.locked() for e in entries))
        return count

    def set_thumbnail(self, source: int, index: int, thumbnail: bytes) -> FileEntry:
        """Attach a derived preview to an entry (transient, like the plaintext cache)."""
        entry = replace(self.entry(source, index), thumbnail=thumbnail)
        self.update(source, index, entry)
        return entry

    # Tags and notes

    async def set_metadata(
        self,
        source: int,
        index: int,
        tags: Iterable[str] = (),
        notes: str = "",
        encrypt: bool = True,
    ) -> FileEntry:
        """
        Store tags and notes on an entry.

        With ``encrypt`` the metadata goes into ``encrypted_metadata`` and the
        clear-text fields are emptied; otherwise it is stored in the clear.
        """
        entry = self.entry(source, index)
        tags = tuple(dict.fromkeys(t.strip() for t in tags if t.strip()))

        if encrypt:
            payload = json.dumps({"tags": list(tags), "notes": notes}, ensure_ascii=False)
            ciphertext = await self._method(source).encrypt(payload)
            updated = replace(entry, encrypted_metadata=ciphertext, tags=(), notes="")
        else:
            updated = replace(entry, encrypted_metadata=None, tags=tags, notes=notes)

        self._swap(source, entry, updated)
        return updated

    async def get_metadata(self, source: int, index: int) -> tuple[tuple[str, ...], str]:
        """Tags and notes of an entry, decrypting them if they are encrypted."""
        entry = self.entry(source, index)
        if not entry.encrypted_metadata:
            return entry.tags, entry.notes

        plaintext = await self._method(source).decrypt(entry.encrypted_metadata)
        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise VaultError(f'Metadata of "{entry.name}" is corrupted: {e}')
        return tuple(data.get("tags", ())), data.get("notes", "")

    # Persistence

    def to_dict(self) -> dict[str, Any]:
        """Durable form of every source (no plaintext caches)."""
        return {str(idx): [e.to_dict() for e in entries] for idx, entries in self._sources.items()}

    def save(self, kv_store: KeyValueStore, key: str = STORE_KEY) -> None:
        """Persist the durable form to a key-value store."""
        kv_store.set(key, json.dumps(self.to_dict()))
        logger.debug("Saved %d sources to key %r", len(self._sources), key)

    def load(self, kv_store: KeyValueStore, key: str = STORE_KEY) -> bool:
        """
        Restore every source from a key-value store.

        Returns:
            False if nothing was stored under the key
        """
        raw = kv_store.get(key)
        if raw is None:
            return False
        try:
            data = json.loads(raw)
            restored = {int(idx): [FileEntry.from_dict(e) for e in entries] for idx, entries in data.items()}
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            raise VaultError(f"Stored vault is corrupted: {e}")
        self._sources.clear()
        self._next_folder_id.clear()
        self.replace_sources(restored)
        return True

    # Config tracking

    def _on_config_event(self, event: ConfigEvent) -> None:
        if event.kind is not ConfigEventKind.SOURCE_REMOVED or event.index is None:
            return
        removed = event.index
        shifted: dict[int, tuple[FileEntry, ...]] = {}
        counters: dict[int, int] = {}
        for idx, entries in self._sources.items():
            if idx == removed:
                continue
            new_idx = idx - 1 if idx > removed else idx
            shifted[new_idx] = entries
            counters[new_idx] = self._next_folder_id.get(idx, 0)
        self._sources = shifted
        self._next_folder_id = counters
