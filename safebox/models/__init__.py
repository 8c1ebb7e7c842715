"""Data models for Safebox."""

from .entry import (
    EntryKind,
    FileEntry,
    kind_for_filename,
)

__all__ = [
    "EntryKind",
    "FileEntry",
    "kind_for_filename",
]
