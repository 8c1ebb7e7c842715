"""Configuration for Safebox.

- ``settings``: process settings loaded from the environment
- ``service``: observable source/method configuration for one vault
  (import from ``safebox.config.service``)
"""

from .settings import (
    ArchiveConfig,
    BulkConfig,
    RemoteApiConfig,
    Settings,
    configure,
    get_settings,
)

__all__ = [
    "Settings",
    "RemoteApiConfig",
    "BulkConfig",
    "ArchiveConfig",
    "get_settings",
    "configure",
]
