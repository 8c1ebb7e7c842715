"""Vault export/import archive codec.

Archive layout (deflate-compressed zip):

    vault.meta                          clear JSON: format, kdf, iterations, salt
    source-<idx>/vault-index.json.enc   encrypted JSON index of the source
    source-<idx>/file-<pos>             ciphertext of the entry at <pos>

The index is encrypted with the archive passphrase and the vault salt. Entry
payloads are stored exactly as they sit in the vault, so their own encryption
method is preserved and never re-encrypted.
"""

import asyncio
import io
import json
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from ..config.service import ConfigService
from ..config.settings import get_settings
from ..models.entry import EntryKind, FileEntry
from ..store.entry_store import VaultEntryStore
from ..utils.logging import get_logger
from ..vault.config import get_vault_config
from ..vault.crypto import CipherEngine
from ..vault.exceptions import (
    ArchiveImportError,
    CipherError,
    ConfigValidationError,
    OperationCancelledError,
)
from ..vault.profile import VaultProfile

logger = get_logger(__name__)

FORMAT_VERSION = 1


@dataclass
class ImportedVault:
    """Result of decoding an archive."""

    sources: dict[int, tuple[FileEntry, ...]] = field(default_factory=dict)
    salt: bytes = b""
    iterations: int = 100_000
    missing: list[tuple[int, str]] = field(default_factory=list)

    @property
    def profile(self) -> VaultProfile:
        return VaultProfile(salt=self.salt, iterations=self.iterations)

    @property
    def entry_count(self) -> int:
        return sum(len(entries) for entries in self.sources.values())


def _check_cancel(cancel: Optional[asyncio.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError()


def _source_dir(index: int) -> str:
    return f"{get_vault_config().source_prefix}{index}"


def _index_pattern() -> re.Pattern:
    config = get_vault_config()
    return re.compile(rf"^{re.escape(config.source_prefix)}(\d+)/{re.escape(config.index_file)}$")


def _index_record(position: int, entry: FileEntry) -> dict[str, Any]:
    record: dict[str, Any] = {
        "genericId": f"{get_vault_config().payload_prefix}{position}",
        "name": entry.name,
        "kind": entry.kind.value,
        "parent": entry.parent,
    }
    if entry.folder_id is not None:
        record["folderId"] = entry.folder_id
    if entry.tags:
        record["tags"] = list(entry.tags)
    if entry.notes:
        record["notes"] = entry.notes
    if entry.encrypted_metadata:
        record["encryptedMetadata"] = entry.encrypted_metadata
    return record


# Export


def _build_archive(
    entries_per_source: Mapping[int, Sequence[FileEntry]],
    engine: CipherEngine,
    profile: VaultProfile,
    cancel: Optional[asyncio.Event],
) -> bytes:
    config = get_vault_config()
    buffer = io.BytesIO()

    with zipfile.ZipFile(
        buffer,
        "w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=get_settings().archive.compress_level,
    ) as zf:
        meta = {"format": FORMAT_VERSION, **profile.to_dict()}
        zf.writestr(config.metadata_file, json.dumps(meta, indent=2))

        for source_idx in sorted(entries_per_source):
            entries = entries_per_source[source_idx]
            if not entries:
                continue
            _check_cancel(cancel)

            base = _source_dir(source_idx)
            records = []
            for position, entry in enumerate(entries):
                record = _index_record(position, entry)
                records.append(record)
                if not entry.is_folder:
                    zf.writestr(f"{base}/{record['genericId']}", entry.ciphertext)

            encrypted_index = engine.encrypt(json.dumps(records, ensure_ascii=False))
            zf.writestr(f"{base}/{config.index_file}", encrypted_index)
            logger.debug("Exported source %d with %d entries", source_idx, len(entries))

    return buffer.getvalue()


async def export_vault(
    entries_per_source: Mapping[int, Sequence[FileEntry]],
    passphrase: str,
    profile: VaultProfile,
    cancel: Optional[asyncio.Event] = None,
) -> bytes:
    """
    Serialize every source into one archive.

    Args:
        entries_per_source: Entries keyed by source index (empty sources are skipped)
        passphrase: Passphrase protecting the per-source indexes
        profile: Vault profile whose salt and iterations key the indexes
        cancel: Event that aborts the export between sources

    Returns:
        Zip archive bytes

    Raises:
        OperationCancelledError: If the cancel event was set
    """
    if not passphrase:
        raise ConfigValidationError("An archive passphrase is required")
    _check_cancel(cancel)

    engine = CipherEngine(passphrase, profile.salt, profile.iterations)
    data = await asyncio.to_thread(_build_archive, entries_per_source, engine, profile, cancel)
    logger.info(
        "Exported %d entries from %d sources (%d bytes)",
        sum(len(e) for e in entries_per_source.values()),
        sum(1 for e in entries_per_source.values() if e),
        len(data),
    )
    return data


# Import


def _read_member(zf: zipfile.ZipFile, name: str) -> bytes:
    """Read one member, turning container damage into ArchiveImportError."""
    try:
        return zf.read(name)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise ArchiveImportError(f"Archive member {name} is damaged: {e}") from e


def _check_name(source_idx: int, name: Any) -> str:
    """Entry names must be a single path component."""
    if (
        not isinstance(name, str)
        or name in ("", ".", "..")
        or "/" in name
        or "\\" in name
        or "\x00" in name
    ):
        raise ArchiveImportError(f"Source {source_idx} has an invalid entry name {name!r}")
    return name


def _check_tags(source_idx: int, record: dict[str, Any]) -> tuple[str, ...]:
    tags = record.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ArchiveImportError(f"Source {source_idx}: invalid tags on {record['name']!r}")
    return tuple(tags)


def _read_profile(zf: zipfile.ZipFile) -> VaultProfile:
    name = get_vault_config().metadata_file
    if name not in zf.namelist():
        logger.info("Archive has no %s; reading with the legacy salt", name)
        return VaultProfile.legacy()
    raw = _read_member(zf, name)
    try:
        meta = json.loads(raw.decode("utf-8"))
        if not isinstance(meta, dict):
            raise ValueError("not a JSON object")
        if int(meta.get("format", FORMAT_VERSION)) > FORMAT_VERSION:
            raise ValueError(f"unsupported archive format {meta['format']}")
        return VaultProfile.from_dict(meta)
    except (UnicodeDecodeError, TypeError, ValueError, ConfigValidationError) as e:
        raise ArchiveImportError(f"Archive header is corrupt: {e}") from e


def _decode_records(
    source_idx: int,
    records: list[Any],
    zf: zipfile.ZipFile,
    allow_missing: bool,
    missing: list[tuple[int, str]],
) -> tuple[FileEntry, ...]:
    base = _source_dir(source_idx)
    names = set(zf.namelist())

    # Folder handles; legacy records have none and link children by name
    handles: list[Optional[int]] = []
    by_name: dict[str, int] = {}
    next_handle = max(
        (r["folderId"] for r in records if isinstance(r, dict) and isinstance(r.get("folderId"), int)),
        default=-1,
    ) + 1
    for record in records:
        if not isinstance(record, dict) or "name" not in record:
            raise ArchiveImportError(f"Source {source_idx} has an invalid index record")
        _check_name(source_idx, record["name"])
        kind = record.get("kind", record.get("type"))
        if kind == EntryKind.FOLDER.value:
            handle = record.get("folderId")
            if not isinstance(handle, int):
                handle = next_handle
                next_handle += 1
            handles.append(handle)
            by_name.setdefault(record["name"], handle)
        else:
            handles.append(None)

    folder_ids = {h for h in handles if h is not None}
    entries = []
    for record, handle in zip(records, handles):
        try:
            kind = EntryKind(record.get("kind", record.get("type")))
        except ValueError as e:
            raise ArchiveImportError(f"Source {source_idx}: {e}") from e

        parent = record.get("parent")
        if isinstance(parent, str):
            if parent not in by_name:
                logger.warning(
                    "Source %d: parent folder %r of %r not found; placing it at the root",
                    source_idx,
                    parent,
                    record["name"],
                )
            parent = by_name.get(parent)
        elif parent is not None and parent not in folder_ids:
            raise ArchiveImportError(
                f"Source {source_idx}: {record['name']!r} refers to unknown folder {parent}"
            )

        ciphertext = ""
        if kind is not EntryKind.FOLDER:
            generic_id = record.get("genericId", record.get("generic"))
            member = f"{base}/{generic_id}"
            if generic_id and member in names:
                try:
                    ciphertext = _read_member(zf, member).decode("utf-8")
                except UnicodeDecodeError as e:
                    raise ArchiveImportError(f"Payload {member} is corrupt: {e}") from e
            elif allow_missing:
                logger.warning("Payload %s is missing; keeping %r without content", member, record["name"])
                missing.append((source_idx, record["name"]))
            else:
                raise ArchiveImportError(f"Payload {member} for {record['name']!r} is missing")

        entries.append(
            FileEntry(
                name=record["name"],
                kind=kind,
                ciphertext=ciphertext,
                parent=parent,
                folder_id=handle,
                tags=_check_tags(source_idx, record),
                notes=record.get("notes", ""),
                encrypted_metadata=record.get("encryptedMetadata"),
            )
        )
    return tuple(entries)


def _read_archive(
    data: bytes,
    passphrase: str,
    allow_missing: bool,
    cancel: Optional[asyncio.Event],
) -> ImportedVault:
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ArchiveImportError(f"Not a vault archive: {e}") from e

    with zf:
        profile = _read_profile(zf)
        engine = CipherEngine(passphrase, profile.salt, profile.iterations)
        pattern = _index_pattern()
        indexes = sorted(
            (int(m.group(1)), name) for name in zf.namelist() if (m := pattern.match(name))
        )
        if not indexes:
            raise ArchiveImportError("Archive contains no vault index")

        imported = ImportedVault(salt=profile.salt, iterations=profile.iterations)
        for source_idx, index_name in indexes:
            _check_cancel(cancel)
            raw = _read_member(zf, index_name)
            try:
                plaintext = engine.decrypt(raw.decode("utf-8"))
                records = json.loads(plaintext.decode("utf-8"))
            except CipherError as e:
                raise ArchiveImportError(f"Could not decrypt the index of source {source_idx}: {e}") from e
            except (UnicodeDecodeError, ValueError) as e:
                raise ArchiveImportError(f"Index of source {source_idx} is corrupt: {e}") from e
            if not isinstance(records, list):
                raise ArchiveImportError(f"Index of source {source_idx} is not a list")

            imported.sources[source_idx] = _decode_records(
                source_idx, records, zf, allow_missing, imported.missing
            )
    return imported


async def import_vault(
    data: bytes,
    passphrase: str,
    allow_missing_payloads: bool = False,
    cancel: Optional[asyncio.Event] = None,
) -> ImportedVault:
    """
    Decode an archive produced by export_vault (or by older releases).

    Args:
        data: Archive bytes
        passphrase: Passphrase the indexes were encrypted with
        allow_missing_payloads: Keep entries whose payload is absent with
            empty ciphertext instead of failing
        cancel: Event that aborts the import between sources

    Returns:
        ImportedVault with entries per source and the archive's KDF profile

    Raises:
        ArchiveImportError: Not a zip, corrupt header or index, wrong
            passphrase, or a missing payload
        OperationCancelledError: If the cancel event was set
    """
    _check_cancel(cancel)
    imported = await asyncio.to_thread(_read_archive, data, passphrase, allow_missing_payloads, cancel)
    logger.info(
        "Imported %d entries from %d sources (%d missing payloads)",
        imported.entry_count,
        len(imported.sources),
        len(imported.missing),
    )
    return imported


def merge_into(store: VaultEntryStore, imported: ImportedVault, config: ConfigService) -> None:
    """
    Apply an imported vault: overwrite the archive's source indices only.

    The archive's salt replaces the vault profile when it differs, provided
    no other populated source still depends on the current salt.

    Raises:
        ArchiveImportError: The salt differs and another source would be orphaned
    """
    archive_profile = imported.profile
    if archive_profile != config.profile:
        dependents = [
            idx
            for idx in store.source_indices()
            if idx not in imported.sources and any(not e.is_folder for e in store.entries(idx))
        ]
        if dependents:
            raise ArchiveImportError(
                "Archive uses a different vault salt and sources "
                f"{', '.join(map(str, dependents))} still depend on the current one"
            )
        config.set_profile(archive_profile)
        logger.info("Adopted the archive's vault profile")

    store.replace_sources(imported.sources)
