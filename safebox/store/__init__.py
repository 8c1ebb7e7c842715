"""Vault entry store."""

from .entry_store import ANY_PARENT, STORE_KEY, BulkItemResult, BulkResult, VaultEntryStore

__all__ = [
    "ANY_PARENT",
    "STORE_KEY",
    "BulkItemResult",
    "BulkResult",
    "VaultEntryStore",
]
