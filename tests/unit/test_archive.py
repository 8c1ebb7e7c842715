"""Unit tests for the vault archive codec and delivery."""

import asyncio
import io
import json
import zipfile

import pytest


def members(data: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


class TestExport:
    """Tests for export_vault."""

    async def test_layout(self, entry_store, config_service):
        """One text entry plus one folder yields an index and one payload."""
        from safebox.archive import export_vault
        from safebox.models import EntryKind

        docs = entry_store.add_folder(0, "Docs")
        await entry_store.add_file(0, "note.txt", EntryKind.TEXT, "hello", parent=docs.folder_id)

        data = await export_vault(entry_store.snapshot(), "archive-pass", config_service.profile)
        contents = members(data)

        assert "source-0/vault-index.json.enc" in contents
        assert [n for n in contents if n.startswith("source-0/file-")] == ["source-0/file-1"]
        assert contents["source-0/file-1"].decode() == entry_store.entries(0)[1].ciphertext

    async def test_header(self, populated_store, config_service):
        """vault.meta carries the profile in the clear."""
        from safebox.archive import export_vault

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)
        meta = json.loads(members(data)["vault.meta"])

        assert meta["format"] == 1
        assert meta["kdf"] == "PBKDF2-HMAC-SHA256"
        assert meta == {"format": 1, **config_service.profile.to_dict()}

    async def test_index_is_encrypted(self, populated_store, config_service):
        """Entry names never appear in the clear."""
        from safebox.archive import export_vault

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)

        assert b"note.txt" not in members(data)["source-0/vault-index.json.enc"]

    async def test_empty_sources_skipped(self, populated_store, config_service):
        """Sources without entries are left out."""
        from safebox.archive import export_vault

        data = await export_vault({**populated_store.snapshot(), 1: ()}, "pass", config_service.profile)

        assert not any(name.startswith("source-1/") for name in members(data))

    async def test_passphrase_required(self, populated_store, config_service):
        """An empty archive passphrase is rejected."""
        from safebox.archive import export_vault
        from safebox.vault.exceptions import ConfigValidationError

        with pytest.raises(ConfigValidationError):
            await export_vault(populated_store.snapshot(), "", config_service.profile)

    async def test_cancelled(self, populated_store, config_service):
        """A set cancel token aborts the export."""
        from safebox.archive import export_vault
        from safebox.vault.exceptions import OperationCancelledError

        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await export_vault(populated_store.snapshot(), "pass", config_service.profile, cancel=cancel)


class TestImport:
    """Tests for import_vault."""

    async def test_roundtrip(self, populated_store, config_service):
        """Import after export preserves every durable field."""
        from safebox.archive import export_vault, import_vault

        await populated_store.set_metadata(0, 1, tags=["t"], notes="n")
        await populated_store.decrypt(0, 3)
        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)

        imported = await import_vault(data, "pass")

        assert imported.sources[0] == populated_store.entries(0)
        assert imported.profile == config_service.profile
        assert imported.missing == []
        assert not any(e.is_unlocked for e in imported.sources[0])

    async def test_wrong_passphrase(self, populated_store, config_service):
        """A wrong archive passphrase fails with ArchiveImportError."""
        from safebox.archive import export_vault, import_vault
        from safebox.vault.exceptions import ArchiveImportError, AuthenticationFailureError

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)

        with pytest.raises(ArchiveImportError) as exc_info:
            await import_vault(data, "wrong")
        assert isinstance(exc_info.value.__cause__, AuthenticationFailureError)

    async def test_not_a_zip(self):
        """Random bytes are rejected."""
        from safebox.archive import import_vault
        from safebox.vault.exceptions import ArchiveImportError

        with pytest.raises(ArchiveImportError):
            await import_vault(b"definitely not a zip", "pass")

    async def test_no_index(self, make_archive):
        """A zip without any source index is rejected."""
        from safebox.archive import import_vault
        from safebox.vault.exceptions import ArchiveImportError

        with pytest.raises(ArchiveImportError):
            await import_vault(make_archive({"readme.txt": b"hi"}), "pass")

    async def test_missing_payload_fails(self, populated_store, config_service, make_archive):
        """By default a missing payload fails the whole import."""
        from safebox.archive import export_vault, import_vault
        from safebox.vault.exceptions import ArchiveImportError

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)
        contents = members(data)
        del contents["source-0/file-1"]

        with pytest.raises(ArchiveImportError) as exc_info:
            await import_vault(make_archive(contents), "pass")
        assert "note.txt" in str(exc_info.value)

    async def test_missing_payload_allowed(self, populated_store, config_service, make_archive):
        """With allow_missing_payloads the entry is kept empty and reported."""
        from safebox.archive import export_vault, import_vault

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)
        contents = members(data)
        del contents["source-0/file-1"]

        imported = await import_vault(make_archive(contents), "pass", allow_missing_payloads=True)

        assert imported.missing == [(0, "note.txt")]
        assert imported.sources[0][1].ciphertext == ""
        assert imported.sources[0][3].ciphertext == populated_store.entries(0)[3].ciphertext

    async def test_legacy_archive(self, make_archive):
        """Header-less archives use the legacy salt and name-linked records."""
        from safebox.archive import import_vault
        from safebox.models import EntryKind
        from safebox.vault.crypto import LEGACY_SALT, CipherEngine

        records = [
            {"generic": "file-0", "name": "Docs", "type": "folder", "parent": None},
            {"generic": "file-1", "name": "a.txt", "type": "text", "parent": "Docs"},
            {"generic": "file-2", "name": "b.png", "type": "image", "parent": None},
        ]
        index = CipherEngine("vault-password", LEGACY_SALT, 100_000).encrypt(json.dumps(records))
        data = make_archive(
            {
                "source-0/vault-index.json.enc": index.encode(),
                "source-0/file-1": b"AAAA:BBBB",
                "source-0/file-2": b"CCCC:DDDD",
            }
        )

        imported = await import_vault(data, "vault-password")
        docs, note, image = imported.sources[0]

        assert imported.profile.is_legacy
        assert docs.kind is EntryKind.FOLDER and docs.folder_id == 0
        assert note.parent == docs.folder_id
        assert note.ciphertext == "AAAA:BBBB"
        assert image.parent is None

    async def test_unknown_parent_handle(self, profile, make_archive):
        """Links to folders that are not in the index are rejected."""
        from safebox.archive import import_vault
        from safebox.vault.crypto import CipherEngine
        from safebox.vault.exceptions import ArchiveImportError

        records = [{"genericId": "file-0", "name": "a.txt", "kind": "text", "parent": 7}]
        index = CipherEngine("pass", profile.salt, profile.iterations).encrypt(json.dumps(records))
        data = make_archive(
            {
                "vault.meta": json.dumps(profile.to_dict()).encode(),
                "source-0/vault-index.json.enc": index.encode(),
                "source-0/file-0": b"AAAA:BBBB",
            }
        )

        with pytest.raises(ArchiveImportError):
            await import_vault(data, "pass")

    async def test_corrupt_header(self, make_archive):
        """An unreadable vault.meta is rejected."""
        from safebox.archive import import_vault
        from safebox.vault.exceptions import ArchiveImportError

        data = make_archive({"vault.meta": b"{not json", "source-0/vault-index.json.enc": b"x"})

        with pytest.raises(ArchiveImportError):
            await import_vault(data, "pass")

    async def test_damaged_payload(self, populated_store, config_service):
        """A payload whose compressed bytes were altered fails with ArchiveImportError."""
        import struct

        from safebox.archive import export_vault, import_vault
        from safebox.vault.exceptions import ArchiveImportError

        data = bytearray(await export_vault(populated_store.snapshot(), "pass", config_service.profile))
        with zipfile.ZipFile(io.BytesIO(bytes(data))) as zf:
            info = zf.getinfo("source-0/file-1")
        name_len, extra_len = struct.unpack("<HH", data[info.header_offset + 26 : info.header_offset + 30])
        start = info.header_offset + 30 + name_len + extra_len
        data[start + info.compress_size // 2] ^= 0xFF

        with pytest.raises(ArchiveImportError):
            await import_vault(bytes(data), "pass")

    async def test_header_with_null_format(self, populated_store, config_service, make_archive):
        """A vault.meta whose format is not a number is rejected."""
        from safebox.archive import export_vault, import_vault
        from safebox.vault.exceptions import ArchiveImportError

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)
        contents = members(data)
        meta = json.loads(contents["vault.meta"])
        meta["format"] = None
        contents["vault.meta"] = json.dumps(meta).encode()

        with pytest.raises(ArchiveImportError):
            await import_vault(make_archive(contents), "pass")

    @pytest.mark.parametrize("tags", [7, "urgent", [1, 2]])
    async def test_invalid_tags(self, profile, make_archive, tags):
        """Tags must be a list of strings."""
        from safebox.archive import import_vault
        from safebox.vault.crypto import CipherEngine
        from safebox.vault.exceptions import ArchiveImportError

        records = [{"genericId": "file-0", "name": "a.txt", "kind": "text", "tags": tags}]
        index = CipherEngine("pass", profile.salt, profile.iterations).encrypt(json.dumps(records))
        data = make_archive(
            {
                "vault.meta": json.dumps(profile.to_dict()).encode(),
                "source-0/vault-index.json.enc": index.encode(),
                "source-0/file-0": b"AAAA:BBBB",
            }
        )

        with pytest.raises(ArchiveImportError):
            await import_vault(data, "pass")

    @pytest.mark.parametrize("name", ["../escaped.txt", "/etc/passwd", "..", "a\\b", ""])
    async def test_unsafe_entry_names(self, profile, make_archive, name):
        """Names that are not a single path component are rejected."""
        from safebox.archive import import_vault
        from safebox.vault.crypto import CipherEngine
        from safebox.vault.exceptions import ArchiveImportError

        records = [{"genericId": "file-0", "name": name, "kind": "text"}]
        index = CipherEngine("pass", profile.salt, profile.iterations).encrypt(json.dumps(records))
        data = make_archive(
            {
                "vault.meta": json.dumps(profile.to_dict()).encode(),
                "source-0/vault-index.json.enc": index.encode(),
                "source-0/file-0": b"AAAA:BBBB",
            }
        )

        with pytest.raises(ArchiveImportError) as exc_info:
            await import_vault(data, "pass")
        assert "invalid entry name" in str(exc_info.value)


class TestMerge:
    """Tests for merge_into."""

    async def test_merge_same_profile(self, populated_store, config_service):
        """Only the archive's sources are overwritten."""
        from safebox.archive import export_vault, import_vault, merge_into
        from safebox.models import EntryKind

        data = await export_vault(populated_store.snapshot(), "pass", config_service.profile)
        imported = await import_vault(data, "pass")
        await populated_store.add_file(0, "extra.txt", EntryKind.TEXT, "x")
        populated_store.replace_sources({1: populated_store.entries(0)[:1]})

        merge_into(populated_store, imported, config_service)

        assert len(populated_store.entries(0)) == 4
        assert len(populated_store.entries(1)) == 1

    async def test_merge_adopts_salt(self, populated_store, config_service):
        """A different salt is adopted when nothing else depends on the old one."""
        from safebox.archive import ImportedVault, merge_into

        imported = ImportedVault(sources={0: ()}, salt=b"n" * 32, iterations=1_000)

        merge_into(populated_store, imported, config_service)

        assert config_service.profile.salt == b"n" * 32
        assert populated_store.entries(0) == ()

    async def test_merge_rejects_orphaning_salt(self, populated_store, config_service):
        """A different salt is refused while another source still needs the old one."""
        from safebox.archive import ImportedVault, merge_into
        from safebox.vault.exceptions import ArchiveImportError

        old_profile = config_service.profile
        imported = ImportedVault(sources={1: ()}, salt=b"n" * 32, iterations=1_000)

        with pytest.raises(ArchiveImportError):
            merge_into(populated_store, imported, config_service)
        assert config_service.profile == old_profile
        assert populated_store.source_indices() == [0]


class TestDelivery:
    """Tests for archive delivery."""

    def test_file_saver_never_overwrites(self, temp_dir):
        """A second save with the same name gets a numbered file."""
        from safebox.archive import FileSaver

        saver = FileSaver(temp_dir)
        first = saver.save(b"one", "vault.zip")
        second = saver.save(b"two", "vault.zip")

        assert first.endswith("vault.zip")
        assert second.endswith("vault (1).zip")

    def test_primary_used(self, temp_dir):
        """The primary saver is used when it works."""
        from safebox.archive import FileSaver, deliver_archive

        result = deliver_archive(b"data", FileSaver(temp_dir / "a"), FileSaver(temp_dir / "b"))

        assert not result.used_fallback
        assert (temp_dir / "a" / "safebox-vault.zip").read_bytes() == b"data"

    def test_fallback_on_failure(self, temp_dir):
        """A failing primary saver falls back."""
        from safebox.archive import FileSaver, deliver_archive

        class CancelledPicker:
            def save(self, data, suggested_name):
                raise RuntimeError("user cancelled the picker")

        result = deliver_archive(b"data", CancelledPicker(), FileSaver(temp_dir), "backup.zip")

        assert result.used_fallback
        assert (temp_dir / "backup.zip").read_bytes() == b"data"
