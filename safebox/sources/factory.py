"""Registry mapping source config ``type`` discriminants to variants."""

from typing import Any, Optional, Union

import httpx

from ..vault.exceptions import ConfigValidationError
from .base import LEGACY_TYPES, Source, SourceConfig, config_as_dict, missing_fields
from .local import KeyValueStore, LocalSource
from .remote import RemoteApiSource


class SourceFactory:
    """
    Builds source instances from config snapshots.

    Instances are cheap and hold no state beyond their config and
    collaborators, so callers create one per operation rather than keeping
    long-lived singletons.
    """

    _registry: dict[str, type[Source]] = {}

    @classmethod
    def register(cls, source_class: type[Source]) -> type[Source]:
        """Register a variant under its ``type``. Usable as a class decorator."""
        cls._registry[source_class.type] = source_class
        return source_class

    @classmethod
    def types(cls) -> list[str]:
        """Registered type discriminants."""
        return list(cls._registry)

    @classmethod
    def source_class(cls, type_name: str) -> type[Source]:
        """Look up a variant class by type discriminant."""
        type_name = LEGACY_TYPES.get(type_name, type_name)
        try:
            return cls._registry[type_name]
        except KeyError:
            raise ConfigValidationError(f"Unknown source type: {type_name}") from None

    @classmethod
    def create(
        cls,
        config: SourceConfig,
        kv_store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> Source:
        """
        Build the variant instance for a config.

        Args:
            config: Source config
            kv_store: Key-value collaborator for local sources
            http_client: HTTP collaborator for remote sources. Without one a
                remote source creates its own client, and the caller must
                close it with ``async with`` or ``aclose()``

        Returns:
            Source instance

        Raises:
            ConfigValidationError: Unknown type, or a remote config missing credentials
        """
        source_class = cls.source_class(config.type)

        if source_class is RemoteApiSource:
            missing = missing_fields(RemoteApiSource.config_class, config.to_dict())
            if missing:
                raise ConfigValidationError(
                    f"Remote source requires {', '.join(missing)}"
                )
            return RemoteApiSource(config, http_client=http_client)
        if source_class is LocalSource:
            return LocalSource(config, kv_store=kv_store)
        return source_class(config)

    @classmethod
    async def validate(
        cls,
        config: Union[SourceConfig, dict[str, Any]],
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> Optional[str]:
        """Run the variant's validate_config for a config."""
        data = config_as_dict(config)
        try:
            source_class = cls.source_class(data.get("type", ""))
        except ConfigValidationError as e:
            return str(e)
        return await source_class.validate_config(data, http_client=http_client)

    @classmethod
    def config_from_dict(cls, data: dict[str, Any]) -> SourceConfig:
        """Parse a wire dict into the matching config dataclass."""
        if not isinstance(data, dict) or "type" not in data:
            raise ConfigValidationError("Source config must have a 'type'")
        return cls.source_class(data["type"]).config_class.from_dict(data)


for _source_class in (LocalSource, RemoteApiSource):
    SourceFactory.register(_source_class)


def source_config_from_dict(data: dict[str, Any]) -> SourceConfig:
    """Parse a source config from its wire dict."""
    return SourceFactory.config_from_dict(data)
