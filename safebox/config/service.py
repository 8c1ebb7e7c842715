"""Observable configuration for sources, encryption methods and the vault profile.

The service is an explicit object passed by reference to whatever needs
configuration. Changes are announced through subscribe/notify instead of
ambient storage events.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from ..methods import EncryptionMethod, MethodConfig, MethodFactory, method_config_from_dict
from ..sources import (
    KeyValueStore,
    RemoteApiSourceConfig,
    Source,
    SourceConfig,
    SourceFactory,
    source_config_from_dict,
)
from ..utils.logging import get_logger
from ..vault.exceptions import ConfigValidationError
from ..vault.profile import VaultProfile
from .settings import get_settings

logger = get_logger(__name__)


class ConfigEventKind(Enum):
    """Kinds of configuration change."""

    METHOD_ADDED = "method_added"
    METHOD_UPDATED = "method_updated"
    METHOD_REMOVED = "method_removed"
    SOURCE_ADDED = "source_added"
    SOURCE_UPDATED = "source_updated"
    SOURCE_REMOVED = "source_removed"
    PROFILE_CHANGED = "profile_changed"


@dataclass(frozen=True)
class ConfigEvent:
    """A change notification delivered to subscribers."""

    kind: ConfigEventKind
    index: Optional[int] = None


Subscriber = Callable[[ConfigEvent], None]


class ConfigService:
    """
    Holds source configs, encryption method configs and the vault profile.

    Usage:
        service = ConfigService()
        service.add_method(SymmetricConfig(name="main", passphrase="..."))
        await service.add_source(LocalSourceConfig(name="disk", encryption="main"))

        unsubscribe = service.subscribe(lambda event: print(event.kind))
        method = service.method_for_source(0)
    """

    def __init__(
        self,
        profile: Optional[VaultProfile] = None,
        kv_store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the service.

        Args:
            profile: Vault profile (a fresh random one if not provided)
            kv_store: Key-value collaborator handed to local sources
            http_client: HTTP collaborator handed to remote sources. When
                omitted, one client is created on first remote use and
                shared by every remote source; close it with aclose()
        """
        self._profile = profile or VaultProfile.create()
        self._methods: tuple[MethodConfig, ...] = ()
        self._sources: tuple[SourceConfig, ...] = ()
        self._subscribers: list[Subscriber] = []
        self.kv_store = kv_store
        self.http_client = http_client
        self._owns_http_client = False

    async def aclose(self) -> None:
        """Close the shared HTTP client if this service created it."""
        if self._owns_http_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
            self._owns_http_client = False

    async def __aenter__(self) -> "ConfigService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _client_for(self, config: SourceConfig) -> Optional[httpx.AsyncClient]:
        if self.http_client is None and isinstance(config, RemoteApiSourceConfig):
            self.http_client = httpx.AsyncClient(timeout=get_settings().remote.timeout)
            self._owns_http_client = True
        return self.http_client

    # Snapshots

    @property
    def methods(self) -> tuple[MethodConfig, ...]:
        return self._methods

    @property
    def sources(self) -> tuple[SourceConfig, ...]:
        return self._sources

    @property
    def profile(self) -> VaultProfile:
        return self._profile

    def set_profile(self, profile: VaultProfile) -> None:
        """Replace the vault profile."""
        self._profile = profile
        self._notify(ConfigEvent(ConfigEventKind.PROFILE_CHANGED))

    # Subscriptions

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a change callback.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: ConfigEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Config subscriber failed on %s", event.kind.value)

    # Encryption methods

    def _check_method(self, config: MethodConfig, skip_index: Optional[int] = None) -> None:
        error = MethodFactory.method_class(config.type).validate_config(config)
        if error:
            raise ConfigValidationError(error)
        for i, existing in enumerate(self._methods):
            if i != skip_index and existing.name == config.name:
                raise ConfigValidationError(f"An encryption method named '{config.name}' already exists")

    def _method_index(self, index: int) -> MethodConfig:
        if not 0 <= index < len(self._methods):
            raise ConfigValidationError(f"No encryption method at index {index}")
        return self._methods[index]

    def _method_in_use(self, name: str) -> bool:
        return any(source.encryption == name for source in self._sources)

    def add_method(self, config: MethodConfig) -> int:
        """Validate and append a method config. Returns its index."""
        self._check_method(config)
        self._methods = self._methods + (config,)
        index = len(self._methods) - 1
        self._notify(ConfigEvent(ConfigEventKind.METHOD_ADDED, index))
        return index

    def update_method(self, index: int, config: MethodConfig) -> None:
        """Validate and replace a method config."""
        current = self._method_index(index)
        self._check_method(config, skip_index=index)
        if config.name != current.name and self._method_in_use(current.name):
            raise ConfigValidationError(
                f"Encryption method '{current.name}' is used by a source and cannot be renamed"
            )
        methods = list(self._methods)
        methods[index] = config
        self._methods = tuple(methods)
        self._notify(ConfigEvent(ConfigEventKind.METHOD_UPDATED, index))

    def remove_method(self, index: int) -> None:
        """Remove a method config that no source references."""
        current = self._method_index(index)
        if self._method_in_use(current.name):
            raise ConfigValidationError(
                f"Encryption method '{current.name}' is used by a source and cannot be removed"
            )
        self._methods = self._methods[:index] + self._methods[index + 1 :]
        self._notify(ConfigEvent(ConfigEventKind.METHOD_REMOVED, index))

    def method_by_name(self, name: str) -> MethodConfig:
        """Look up a method config by name."""
        for config in self._methods:
            if config.name == name:
                return config
        raise ConfigValidationError(f"No encryption method named '{name}'")

    # Sources

    async def _check_source(self, config: SourceConfig) -> None:
        error = await SourceFactory.validate(config, http_client=self._client_for(config))
        if error:
            raise ConfigValidationError(error)
        self.method_by_name(config.encryption)

    def source(self, index: int) -> SourceConfig:
        """Source config at an index."""
        if not 0 <= index < len(self._sources):
            raise ConfigValidationError(f"No source at index {index}")
        return self._sources[index]

    async def add_source(self, config: SourceConfig) -> int:
        """Validate (including any live connection check) and append a source. Returns its index."""
        await self._check_source(config)
        self._sources = self._sources + (config,)
        index = len(self._sources) - 1
        self._notify(ConfigEvent(ConfigEventKind.SOURCE_ADDED, index))
        return index

    async def update_source(self, index: int, config: SourceConfig) -> None:
        """Validate and replace a source config."""
        self.source(index)
        await self._check_source(config)
        sources = list(self._sources)
        sources[index] = config
        self._sources = tuple(sources)
        self._notify(ConfigEvent(ConfigEventKind.SOURCE_UPDATED, index))

    def remove_source(self, index: int) -> None:
        """Remove a source. Subscribers shift their per-source state."""
        self.source(index)
        self._sources = self._sources[:index] + self._sources[index + 1 :]
        self._notify(ConfigEvent(ConfigEventKind.SOURCE_REMOVED, index))

    def method_for_source(self, index: int) -> EncryptionMethod:
        """Build the encryption method a source's payloads use."""
        config = self.method_by_name(self.source(index).encryption)
        return MethodFactory.create(config, self._profile)

    def open_source(self, index: int) -> Source:
        """
        Build a fresh source instance from the current config snapshot.

        Remote sources share the service's HTTP client, so the instance
        needs no closing of its own.
        """
        config = self.source(index)
        return SourceFactory.create(
            config,
            kv_store=self.kv_store,
            http_client=self._client_for(config),
        )

    # Serialization

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "profile": self._profile.to_dict(),
            "methods": [m.to_dict() for m in self._methods],
            "sources": [s.to_dict() for s in self._sources],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        kv_store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ConfigService":
        """Restore a service. No live validation is performed."""
        profile = VaultProfile.from_dict(data["profile"]) if data.get("profile") else None
        service = cls(profile=profile, kv_store=kv_store, http_client=http_client)
        service._methods = tuple(method_config_from_dict(m) for m in data.get("methods", []))
        service._sources = tuple(source_config_from_dict(s) for s in data.get("sources", []))
        return service
