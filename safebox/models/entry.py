"""Vault entry model.

A FileEntry is one file or folder inside a source. Entries are immutable;
mutations produce a new entry via ``dataclasses.replace``.
"""

import mimetypes
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional, Union

CacheValue = Union[str, bytes]


class EntryKind(Enum):
    """Kinds of vault entries."""

    IMAGE = "image"
    TEXT = "text"
    VIDEO = "video"
    FOLDER = "folder"


# Extensions that are text even though mimetypes says otherwise
TEXT_EXTENSIONS = {".md", ".json", ".csv", ".yaml", ".yml", ".log"}


def kind_for_filename(filename: str) -> EntryKind:
    """Guess the entry kind from a filename."""
    suffix = PurePath(filename).suffix.lower()
    if suffix in TEXT_EXTENSIONS:
        return EntryKind.TEXT
    mime, _ = mimetypes.guess_type(filename)
    if mime:
        if mime.startswith("image/"):
            return EntryKind.IMAGE
        if mime.startswith("video/"):
            return EntryKind.VIDEO
    return EntryKind.TEXT


@dataclass(frozen=True)
class FileEntry:
    """One file or folder.

    Attributes:
        name: Display name, unique among sibling folders
        kind: Entry kind
        ciphertext: "<b64 nonce>:<b64 ct||tag>" (empty for folders)
        parent: Folder handle of the containing folder, None for root
        folder_id: Stable folder handle (folders only)
        tags: Clear-text tags
        notes: Clear-text notes
        encrypted_metadata: Ciphertext of {"tags", "notes"}; authoritative when set
        plaintext_cache: Decoded content, in memory only
        thumbnail: Derived preview bytes, in memory only
    """

    name: str
    kind: EntryKind
    ciphertext: str = ""
    parent: Optional[int] = None
    folder_id: Optional[int] = None
    tags: tuple[str, ...] = ()
    notes: str = ""
    encrypted_metadata: Optional[str] = None
    plaintext_cache: Optional[CacheValue] = field(default=None, repr=False, compare=False)
    thumbnail: Optional[bytes] = field(default=None, repr=False, compare=False)

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER

    @property
    def is_unlocked(self) -> bool:
        """True while decoded content is cached."""
        return self.plaintext_cache is not None

    def locked(self) -> "FileEntry":
        """Copy with the transient caches cleared."""
        if self.plaintext_cache is None and self.thumbnail is None:
            return self
        return replace(self, plaintext_cache=None, thumbnail=None)

    def to_dict(self) -> dict[str, Any]:
        """Durable form. Transient caches are never included."""
        result: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "ciphertext": self.ciphertext,
            "parent": self.parent,
        }
        if self.folder_id is not None:
            result["folderId"] = self.folder_id
        if self.tags:
            result["tags"] = list(self.tags)
        if self.notes:
            result["notes"] = self.notes
        if self.encrypted_metadata:
            result["encryptedMetadata"] = self.encrypted_metadata
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileEntry":
        """Create from the durable form."""
        return cls(
            name=data["name"],
            kind=EntryKind(data.get("kind", data.get("type"))),
            ciphertext=data.get("ciphertext", ""),
            parent=data.get("parent"),
            folder_id=data.get("folderId"),
            tags=tuple(data.get("tags", ())),
            notes=data.get("notes", ""),
            encrypted_metadata=data.get("encryptedMetadata"),
        )
