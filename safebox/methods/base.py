"""Encryption method contract and config shapes.

Each method variant is keyed by its ``type`` discriminant and exposes the
same encrypt/decrypt/validate surface, so call sites never branch on the
variant.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

from ..vault.profile import VaultProfile

MethodData = Union[bytes, str]

# Type names used by earlier releases
LEGACY_TYPES = {
    "aes-256": "symmetric",
    "gpg": "asymmetric-key",
    "age": "alternative",
}


@dataclass
class MethodConfig:
    """Fields shared by every encryption method config."""

    name: str = ""
    passphrase: str = ""

    type: ClassVar[str] = ""
    # Wire names of fields that must be non-empty
    required_fields: ClassVar[tuple[str, ...]] = ("name", "passphrase")

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase wire shape."""
        return {"name": self.name, "type": self.type, "passphrase": self.passphrase}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MethodConfig":
        """Create from the wire shape (older configs used ``password``)."""
        return cls(
            name=data.get("name", ""),
            passphrase=data.get("passphrase", data.get("password", "")),
        )


@dataclass
class SymmetricConfig(MethodConfig):
    """Passphrase-based AES-256-GCM."""

    type: ClassVar[str] = "symmetric"


@dataclass
class AsymmetricKeyConfig(MethodConfig):
    """Private-key scheme (GPG style)."""

    private_key: str = ""

    type: ClassVar[str] = "asymmetric-key"
    required_fields: ClassVar[tuple[str, ...]] = ("name", "privateKey", "passphrase")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["privateKey"] = self.private_key
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AsymmetricKeyConfig":
        return cls(
            name=data.get("name", ""),
            passphrase=data.get("passphrase", data.get("password", "")),
            private_key=data.get("privateKey", ""),
        )


@dataclass
class AlternativeConfig(MethodConfig):
    """Alternative passphrase scheme (age style)."""

    type: ClassVar[str] = "alternative"


class EncryptionMethod(ABC):
    """Base class for encryption method variants."""

    type: ClassVar[str]
    label: ClassVar[str]
    config_class: ClassVar[type[MethodConfig]]

    def __init__(self, config: MethodConfig, profile: Optional[VaultProfile] = None):
        self.config = config
        self.profile = profile

    @property
    def name(self) -> str:
        return self.config.name

    @classmethod
    def default_config(cls) -> MethodConfig:
        """Canonical empty config for this variant."""
        return cls.config_class()

    @classmethod
    def validate_config(cls, config: Union[MethodConfig, dict[str, Any]]) -> Optional[str]:
        """
        Check a config for this variant.

        Args:
            config: Config dataclass or wire dict

        Returns:
            Error message, or None if the config is usable
        """
        data = config.to_dict() if isinstance(config, MethodConfig) else dict(config)

        type_name = data.get("type", cls.type)
        if LEGACY_TYPES.get(type_name, type_name) != cls.type:
            return f"Config type '{data.get('type')}' does not match {cls.label} method"
        data = cls.config_class.from_dict(data).to_dict()

        missing = [f for f in cls.config_class.required_fields if not data.get(f)]
        if missing:
            return f"Missing required fields for {cls.label} method: {', '.join(missing)}"
        return None

    @abstractmethod
    async def encrypt(self, data: MethodData) -> str:
        """Encrypt bytes or UTF-8 text into a ciphertext string."""

    @abstractmethod
    async def decrypt(self, ciphertext: str) -> bytes:
        """Decrypt a ciphertext string into bytes."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
