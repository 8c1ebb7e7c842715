"""Registry mapping config ``type`` discriminants to method variants."""

from typing import Any, Optional

from ..vault.exceptions import ConfigValidationError
from ..vault.profile import VaultProfile
from .base import LEGACY_TYPES, EncryptionMethod, MethodConfig
from .placeholders import AlternativeMethod, AsymmetricKeyMethod
from .symmetric import SymmetricMethod


class MethodFactory:
    """Resolves encryption method configs to variant instances."""

    _registry: dict[str, type[EncryptionMethod]] = {}

    @classmethod
    def register(cls, method_class: type[EncryptionMethod]) -> type[EncryptionMethod]:
        """Register a variant under its ``type``. Usable as a class decorator."""
        cls._registry[method_class.type] = method_class
        return method_class

    @classmethod
    def types(cls) -> list[str]:
        """Registered type discriminants."""
        return list(cls._registry)

    @classmethod
    def method_class(cls, type_name: str) -> type[EncryptionMethod]:
        """Look up a variant class by type discriminant."""
        type_name = LEGACY_TYPES.get(type_name, type_name)
        try:
            return cls._registry[type_name]
        except KeyError:
            raise ConfigValidationError(f"Unknown encryption method type: {type_name}") from None

    @classmethod
    def create(cls, config: MethodConfig, profile: Optional[VaultProfile] = None) -> EncryptionMethod:
        """
        Build the variant instance for a config.

        Args:
            config: Encryption method config
            profile: Vault profile supplying salt and iteration count

        Returns:
            EncryptionMethod instance
        """
        method_class = cls.method_class(config.type)
        return method_class(config, profile)

    @classmethod
    def config_from_dict(cls, data: dict[str, Any]) -> MethodConfig:
        """Parse a wire dict into the matching config dataclass."""
        if not isinstance(data, dict) or "type" not in data:
            raise ConfigValidationError("Encryption method config must have a 'type'")
        return cls.method_class(data["type"]).config_class.from_dict(data)


for _method_class in (SymmetricMethod, AsymmetricKeyMethod, AlternativeMethod):
    MethodFactory.register(_method_class)


def method_config_from_dict(data: dict[str, Any]) -> MethodConfig:
    """Parse an encryption method config from its wire dict."""
    return MethodFactory.config_from_dict(data)
