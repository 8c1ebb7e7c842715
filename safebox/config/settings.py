"""Configuration settings for Safebox."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class RemoteApiConfig:
    """Configuration for the remote-API storage backend."""

    base_url: str = "https://dev.opendrive.com"
    timeout: float = 30.0  # Seconds


@dataclass
class BulkConfig:
    """Configuration for bulk entry operations."""

    concurrency: int = 1  # 1 = strictly sequential


@dataclass
class ArchiveConfig:
    """Configuration for vault export."""

    default_name: str = "safebox-vault.zip"
    compress_level: int = 6


@dataclass
class Settings:
    """Main settings container."""

    remote: RemoteApiConfig = field(default_factory=RemoteApiConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        settings = cls()

        if url := os.getenv("SAFEBOX_REMOTE_BASE_URL"):
            settings.remote.base_url = url.rstrip("/")

        if timeout := os.getenv("SAFEBOX_REMOTE_TIMEOUT"):
            settings.remote.timeout = float(timeout)

        if concurrency := os.getenv("SAFEBOX_BULK_CONCURRENCY"):
            settings.bulk.concurrency = max(1, int(concurrency))

        if name := os.getenv("SAFEBOX_ARCHIVE_NAME"):
            settings.archive.default_name = name

        if log_level := os.getenv("SAFEBOX_LOG_LEVEL"):
            settings.log_level = log_level

        if log_file := os.getenv("SAFEBOX_LOG_FILE"):
            settings.log_file = Path(log_file)

        return settings


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(settings: Settings) -> None:
    """Set the global settings instance."""
    global _settings
    _settings = settings
