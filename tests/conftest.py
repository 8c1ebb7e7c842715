"""Shared pytest fixtures for Safebox tests."""

import json
from pathlib import Path
from typing import Callable

import httpx
import pytest


@pytest.fixture(autouse=True)
def fast_kdf():
    """Use a cheap PBKDF2 iteration count so tests stay fast."""
    from safebox.vault.config import VaultConfig, get_vault_config, set_vault_config

    previous = get_vault_config()
    set_vault_config(VaultConfig(kdf_iterations=1_000))
    yield
    set_vault_config(previous)


@pytest.fixture(autouse=True)
def default_settings():
    """Reset global settings between tests."""
    from safebox.config.settings import Settings, configure, get_settings

    previous = get_settings()
    configure(Settings())
    yield
    configure(previous)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a clean temporary directory for each test."""
    return tmp_path


@pytest.fixture
def profile():
    """A fresh vault profile."""
    from safebox.vault import VaultProfile

    return VaultProfile.create()


@pytest.fixture
def kv_store():
    """An empty in-memory key-value store."""
    from safebox.sources import MemoryKeyValueStore

    return MemoryKeyValueStore()


@pytest.fixture
async def config_service(profile, kv_store):
    """ConfigService with one symmetric method and one local source."""
    from safebox.config.service import ConfigService
    from safebox.methods import SymmetricConfig
    from safebox.sources import LocalSourceConfig

    service = ConfigService(profile=profile, kv_store=kv_store)
    service.add_method(SymmetricConfig(name="main", passphrase="vault-password"))
    await service.add_source(LocalSourceConfig(name="disk", encryption="main"))
    return service


@pytest.fixture
def entry_store(config_service):
    """VaultEntryStore bound to the config service."""
    from safebox.store import VaultEntryStore

    store = VaultEntryStore(config_service)
    yield store
    store.close()


@pytest.fixture
async def populated_store(entry_store):
    """
    Store with source 0 laid out as:

        Docs/
            note.txt   ("hello")
            Archive/
        photo.png      (b"\\x89PNG")
    """
    from safebox.models import EntryKind

    docs = entry_store.add_folder(0, "Docs")
    await entry_store.add_file(0, "note.txt", EntryKind.TEXT, "hello", parent=docs.folder_id)
    entry_store.add_folder(0, "Archive", parent=docs.folder_id)
    await entry_store.add_file(0, "photo.png", EntryKind.IMAGE, b"\x89PNG")
    return entry_store


class FakeRemoteApi:
    """
    In-memory OpenDrive-style backend for httpx.MockTransport.

    Folders are dicts of {"folders": {name: id}, "files": {name: id}};
    file contents are base64 strings keyed by file id.
    """

    def __init__(self, username: str = "alice", password: str = "secret"):
        self.username = username
        self.password = password
        self.folders: dict[str, dict] = {"0": {"folders": {}, "files": {}}}
        self.contents: dict[str, str] = {}
        self.requests: list[tuple[str, dict]] = []
        self._next_id = 1

    def _new_id(self) -> str:
        value = str(self._next_id)
        self._next_id += 1
        return value

    def add_folder(self, parent_id: str, name: str) -> str:
        folder_id = self._new_id()
        self.folders[parent_id]["folders"][name] = folder_id
        self.folders[folder_id] = {"folders": {}, "files": {}}
        return folder_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        endpoint = request.url.path.lstrip("/")
        self.requests.append((endpoint, body))

        if body.get("username") != self.username or body.get("passwd") != self.password:
            return httpx.Response(200, json={"Error": "Invalid username or password", "Code": 401})

        if endpoint == "folder/list.json":
            folder = self.folders.get(str(body["folder_id"]))
            if folder is None:
                return httpx.Response(200, json={"Error": "Folder not found", "Code": 404})
            return httpx.Response(
                200,
                json={
                    "Folders": [{"Name": n, "FolderID": i} for n, i in folder["folders"].items()],
                    "Files": [
                        {
                            "Name": n,
                            "FileId": i,
                            "Size": len(self.contents[i]) * 3 // 4,
                            "DateModified": 1700000000,
                        }
                        for n, i in folder["files"].items()
                    ],
                },
            )
        if endpoint == "folder/create.json":
            folder_id = self.add_folder(str(body["folder_id"]), body["folder_name"])
            return httpx.Response(200, json={"FolderID": folder_id})
        if endpoint == "file/upload.json":
            folder = self.folders[str(body["folder_id"])]
            file_id = folder["files"].get(body["file_name"]) or self._new_id()
            folder["files"][body["file_name"]] = file_id
            self.contents[file_id] = body["content"]
            return httpx.Response(200, json={"FileId": file_id})
        if endpoint == "file/download.json":
            return httpx.Response(200, json={"Content": self.contents[str(body["file_id"])]})

        return httpx.Response(404, json={"Error": "Unknown endpoint"})


@pytest.fixture
def fake_remote() -> FakeRemoteApi:
    """A fake remote backend with credentials alice/secret."""
    return FakeRemoteApi()


@pytest.fixture
async def remote_client(fake_remote: FakeRemoteApi):
    """httpx.AsyncClient routed to the fake remote backend."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_remote.handler)) as client:
        yield client


@pytest.fixture
def make_archive() -> Callable[[dict[str, bytes]], bytes]:
    """Build a zip archive from a {member: bytes} mapping."""
    import io
    import zipfile

    def build(members: dict[str, bytes]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in members.items():
                zf.writestr(name, data)
        return buffer.getvalue()

    return build
