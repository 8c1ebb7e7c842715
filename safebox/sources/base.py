"""Storage source contract and config shapes.

Sources move raw bytes only. Encryption happens before bytes reach them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional, Union

# Type names used by earlier releases
LEGACY_TYPES = {
    "opendrive": "remote-api",
}


@dataclass
class FileInfo:
    """One item returned by Source.list()."""

    name: str
    type: str  # "file" or "folder"
    path: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"


@dataclass
class SourceConfig:
    """Fields shared by every source config."""

    name: str = ""
    encryption: str = ""  # Name of an encryption method config

    type: ClassVar[str] = ""
    # Wire names of fields that must be non-empty
    required_fields: ClassVar[tuple[str, ...]] = ("name", "encryption")

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire shape."""
        return {"name": self.name, "type": self.type, "encryption": self.encryption}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceConfig":
        """Create from the wire shape."""
        return cls(name=data.get("name", ""), encryption=data.get("encryption", ""))


@dataclass
class LocalSourceConfig(SourceConfig):
    """Source backed by a local key-value store."""

    type: ClassVar[str] = "local"


@dataclass
class RemoteApiSourceConfig(SourceConfig):
    """Source backed by a remote storage API."""

    username: str = ""
    password: str = ""
    root_folder: str = "/"

    type: ClassVar[str] = "remote-api"
    required_fields: ClassVar[tuple[str, ...]] = (
        "name",
        "encryption",
        "username",
        "password",
        "rootFolder",
    )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "username": self.username,
                "password": self.password,
                "rootFolder": self.root_folder,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteApiSourceConfig":
        return cls(
            name=data.get("name", ""),
            encryption=data.get("encryption", ""),
            username=data.get("username", ""),
            password=data.get("password", ""),
            root_folder=data.get("rootFolder", ""),
        )


def config_as_dict(config: Union[SourceConfig, dict[str, Any]]) -> dict[str, Any]:
    """Normalize a config dataclass or wire dict to a wire dict."""
    return config.to_dict() if isinstance(config, SourceConfig) else dict(config)


def missing_fields(config_class: type[SourceConfig], data: dict[str, Any]) -> list[str]:
    """Required wire fields that are absent or empty."""
    return [f for f in config_class.required_fields if not data.get(f)]


def split_path(path: str) -> list[str]:
    """Split a slash-separated path into non-empty segments."""
    return [part for part in (path or "").split("/") if part]


def join_path(*parts: str) -> str:
    """Join path parts with single slashes, dropping empty segments."""
    return "/".join(seg for part in parts for seg in split_path(part))


class Source(ABC):
    """Base class for storage source variants."""

    type: ClassVar[str]
    label: ClassVar[str]
    config_class: ClassVar[type[SourceConfig]]

    def __init__(self, config: SourceConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @classmethod
    def default_config(cls) -> SourceConfig:
        """Canonical empty config for this variant."""
        return cls.config_class()

    @classmethod
    async def validate_config(cls, config: Union[SourceConfig, dict[str, Any]], **collaborators) -> Optional[str]:
        """
        Check a config for this variant.

        Returns:
            Error message, or None if the config is usable
        """
        data = config_as_dict(config)
        type_name = data.get("type", cls.type)
        if LEGACY_TYPES.get(type_name, type_name) != cls.type:
            return f"Config type '{type_name}' does not match {cls.label} source"
        missing = missing_fields(cls.config_class, data)
        if missing:
            return f"Missing required fields for {cls.label} source: {', '.join(missing)}"
        return None

    @abstractmethod
    async def list(self, path: str = "") -> list[FileInfo]:
        """List the direct children of a folder path."""

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read the bytes stored at a path."""

    @abstractmethod
    async def write(self, path: str, data: bytes) -> None:
        """Write bytes to a path, replacing any existing content."""

    @abstractmethod
    async def create_folder(self, path: str) -> None:
        """Create a folder at a path."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
