"""Archive delivery with fallback."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..config.settings import get_settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ArchiveSaver(Protocol):
    """Something that can persist archive bytes and report where they went."""

    def save(self, data: bytes, suggested_name: str) -> str: ...


class FileSaver:
    """Writes the archive into a directory, never overwriting an existing file."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _free_path(self, suggested_name: str) -> Path:
        target = self.directory / suggested_name
        counter = 1
        while target.exists():
            target = self.directory / f"{Path(suggested_name).stem} ({counter}){Path(suggested_name).suffix}"
            counter += 1
        return target

    def save(self, data: bytes, suggested_name: str) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._free_path(suggested_name)
        target.write_bytes(data)
        return str(target)


@dataclass
class DeliveryResult:
    """Where an archive ended up."""

    location: str
    used_fallback: bool = False


def deliver_archive(
    data: bytes,
    primary: Optional[ArchiveSaver],
    fallback: ArchiveSaver,
    suggested_name: Optional[str] = None,
) -> DeliveryResult:
    """
    Hand the archive to the primary saver, falling back on any failure.

    Args:
        data: Archive bytes
        primary: Preferred saver (skipped if None)
        fallback: Saver used when the primary is absent or fails
        suggested_name: File name hint (default from settings)
    """
    name = suggested_name or get_settings().archive.default_name

    if primary is not None:
        try:
            return DeliveryResult(primary.save(data, name))
        except Exception as e:
            logger.warning("Primary archive saver failed (%s); falling back", e)

    return DeliveryResult(fallback.save(data, name), used_fallback=True)
