"""Remote-API source.

Talks to an OpenDrive-style JSON API. Every call is a POST carrying the
account credentials:

    folder/list.json     {folder_id}                        -> {Folders, Files}
    folder/create.json   {folder_id, folder_name}           -> {FolderID}
    file/download.json   {file_id}                          -> {Content}
    file/upload.json     {folder_id, file_name, content}    -> {FileId}

Folder paths are resolved by listing one segment at a time from the root
folder and matching by name.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ..config.settings import get_settings
from ..utils.logging import get_logger
from ..vault.crypto import b64decode_chunked, b64encode_chunked
from ..vault.exceptions import (
    AuthorizationError,
    ConnectivityError,
    FolderNotFoundError,
    SourceFileNotFoundError,
)
from .base import FileInfo, RemoteApiSourceConfig, Source, config_as_dict, join_path, split_path

logger = get_logger(__name__)

ROOT_FOLDER_ID = "0"
AUTH_HINTS = ("password", "credential", "unauthori", "login", "username", "auth")


def _parse_modified(value: Any) -> Optional[datetime]:
    """Parse DateModified as epoch seconds or ISO 8601."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        pass
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _is_auth_failure(status: int, message: str = "") -> bool:
    if status in (401, 403):
        return True
    lowered = message.lower()
    return any(hint in lowered for hint in AUTH_HINTS)


class RemoteApiSource(Source):
    """Source stored in a remote account reached over HTTP."""

    type = "remote-api"
    label = "Remote API"
    config_class = RemoteApiSourceConfig

    def __init__(
        self,
        config: RemoteApiSourceConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
    ):
        """
        Initialize the source.

        Args:
            config: Remote source config (credentials and root folder)
            http_client: Shared async HTTP client (created if not provided)
            base_url: API base URL (default from settings)
        """
        super().__init__(config)
        settings = get_settings()

        self.base_url = (base_url or settings.remote.base_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=settings.remote.timeout)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteApiSource":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST an authenticated request and return the decoded JSON body."""
        body = {
            "username": self.config.username,
            "passwd": self.config.password,
            **payload,
        }
        url = f"{self.base_url}/{endpoint}"

        try:
            response = await self._client.post(url, json=body)
        except httpx.TransportError as e:
            raise ConnectivityError(f"Could not reach {self.base_url}: {e}") from e

        if _is_auth_failure(response.status_code):
            raise AuthorizationError(
                f"Remote storage rejected the credentials for {self.config.username!r} "
                f"(HTTP {response.status_code})"
            )
        if response.status_code >= 400:
            raise ConnectivityError(
                f"Remote storage returned HTTP {response.status_code}: {response.reason_phrase}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ConnectivityError(f"Remote storage returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConnectivityError("Remote storage returned an unexpected response")

        if error := data.get("Error"):
            message = str(error)
            code = data.get("Code")
            status = int(code) if str(code).isdigit() else 0
            if _is_auth_failure(status, message):
                raise AuthorizationError(f"Remote storage rejected the credentials: {message}")
            raise ConnectivityError(f"Remote storage error: {message}")

        return data

    async def _list_folder(self, folder_id: str) -> dict[str, Any]:
        return await self._post("folder/list.json", {"folder_id": folder_id})

    async def root_folder_id(self) -> str:
        """Folder id of the configured root ("/" and "" map to the account root)."""
        root = self.config.root_folder.strip()
        if root in ("", "/"):
            return ROOT_FOLDER_ID
        if root.startswith("/"):
            return await self._descend(ROOT_FOLDER_ID, split_path(root))
        return root

    async def _descend(self, folder_id: str, segments: list[str]) -> str:
        for segment in segments:
            data = await self._list_folder(folder_id)
            match = next(
                (f for f in data.get("Folders") or [] if f.get("Name") == segment),
                None,
            )
            if match is None:
                raise FolderNotFoundError(segment)
            folder_id = str(match["FolderID"])
        return folder_id

    async def resolve_folder(self, path: str) -> str:
        """
        Resolve a slash-separated path to a backend folder id.

        Raises:
            FolderNotFoundError: At the first segment with no matching folder
        """
        return await self._descend(await self.root_folder_id(), split_path(path))

    async def _file_id(self, path: str) -> tuple[str, str]:
        """(parent folder id, file id) for a file path."""
        segments = split_path(path)
        if not segments:
            raise SourceFileNotFoundError(path)
        folder_id = await self.resolve_folder("/".join(segments[:-1]))
        data = await self._list_folder(folder_id)
        match = next(
            (f for f in data.get("Files") or [] if f.get("Name") == segments[-1]),
            None,
        )
        if match is None:
            raise SourceFileNotFoundError(path)
        return folder_id, str(match["FileId"])

    async def read(self, path: str) -> bytes:
        _, file_id = await self._file_id(path)
        data = await self._post("file/download.json", {"file_id": file_id})
        try:
            return b64decode_chunked(data.get("Content") or "")
        except ValueError as e:
            raise ConnectivityError(f"Remote storage returned a corrupt payload for {path}: {e}") from e

    async def write(self, path: str, data: bytes) -> None:
        segments = split_path(path)
        if not segments:
            raise SourceFileNotFoundError(path)
        folder_id = await self.resolve_folder("/".join(segments[:-1]))
        await self._post(
            "file/upload.json",
            {
                "folder_id": folder_id,
                "file_name": segments[-1],
                "content": b64encode_chunked(bytes(data)),
            },
        )
        logger.debug("Remote source %r uploaded %d bytes", self.name, len(data))

    async def create_folder(self, path: str) -> None:
        segments = split_path(path)
        if not segments:
            return
        parent_id = await self.resolve_folder("/".join(segments[:-1]))
        await self._post(
            "folder/create.json",
            {"folder_id": parent_id, "folder_name": segments[-1]},
        )

    @classmethod
    async def validate_config(cls, config, http_client: Optional[httpx.AsyncClient] = None, **collaborators) -> Optional[str]:
        """
        Check required fields, then check the backend with a root listing.

        Connectivity problems and rejected credentials produce different
        messages so the caller can tell the user which one to fix.
        """
        error = await super().validate_config(config)
        if error:
            return error

        source = cls(RemoteApiSourceConfig.from_dict(config_as_dict(config)), http_client=http_client)
        try:
            await source._list_folder(await source.root_folder_id())
        except AuthorizationError as e:
            return f"Authentication failed: {e}"
        except FolderNotFoundError as e:
            return f"Root folder could not be resolved: {e}"
        except ConnectivityError as e:
            return f"Could not connect to remote storage: {e}"
        finally:
            await source.aclose()
        return None

    async def list(self, path: str = "") -> list[FileInfo]:
        folder_id = await self.resolve_folder(path)
        data = await self._list_folder(folder_id)
        base = join_path(path)

        items = [
            FileInfo(name=f["Name"], type="folder", path=join_path(base, f["Name"]))
            for f in data.get("Folders") or []
        ]
        items.extend(
            FileInfo(
                name=f["Name"],
                type="file",
                path=join_path(base, f["Name"]),
                size=f.get("Size"),
                last_modified=_parse_modified(f.get("DateModified")),
            )
            for f in data.get("Files") or []
        )
        return items
