"""Per-vault key derivation profile."""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any

from .config import get_vault_config
from .crypto import LEGACY_SALT, KeyDerivation
from .exceptions import ConfigValidationError


@dataclass(frozen=True)
class VaultProfile:
    """
    Key derivation parameters shared by every symmetric method in a vault.

    The salt is not secret. It is written in the clear to the archive
    header so an exported vault can be reopened on another installation.
    """

    salt: bytes = field(default_factory=KeyDerivation.generate_salt)
    iterations: int = field(default_factory=lambda: get_vault_config().kdf_iterations)

    @classmethod
    def create(cls) -> "VaultProfile":
        """Create a profile with a fresh random salt."""
        return cls()

    @classmethod
    def legacy(cls) -> "VaultProfile":
        """Profile used by archives written before vault.meta existed."""
        return cls(salt=LEGACY_SALT, iterations=100_000)

    @property
    def is_legacy(self) -> bool:
        return self.salt == LEGACY_SALT

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kdf": "PBKDF2-HMAC-SHA256",
            "iterations": self.iterations,
            "salt": base64.b64encode(self.salt).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VaultProfile":
        """Create from dictionary."""
        try:
            salt = base64.b64decode(data["salt"], validate=True)
            iterations = int(data.get("iterations", 100_000))
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise ConfigValidationError(f"Invalid vault profile: {e}")
        if not salt or iterations < 1:
            raise ConfigValidationError("Invalid vault profile: empty salt or iteration count")
        return cls(salt=salt, iterations=iterations)
