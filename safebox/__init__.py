"""Safebox - client-side encrypted file vault."""

__version__ = "0.1.0"

from .models import EntryKind, FileEntry
from .vault import VaultError, VaultProfile

__all__ = [
    "__version__",
    "EntryKind",
    "FileEntry",
    "VaultError",
    "VaultProfile",
]
