"""Portable vault archives."""

from .codec import FORMAT_VERSION, ImportedVault, export_vault, import_vault, merge_into
from .delivery import ArchiveSaver, DeliveryResult, FileSaver, deliver_archive

__all__ = [
    "FORMAT_VERSION",
    "ImportedVault",
    "export_vault",
    "import_vault",
    "merge_into",
    "ArchiveSaver",
    "DeliveryResult",
    "FileSaver",
    "deliver_archive",
]
