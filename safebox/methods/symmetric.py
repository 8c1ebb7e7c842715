"""Passphrase-based AES-256-GCM encryption method."""

from typing import Optional

from ..vault.crypto import CipherEngine
from ..vault.exceptions import ConfigValidationError
from ..vault.profile import VaultProfile
from .base import EncryptionMethod, MethodData, SymmetricConfig


class SymmetricMethod(EncryptionMethod):
    """Delegates to a CipherEngine keyed by the method passphrase and vault salt."""

    type = "symmetric"
    label = "AES-256"
    config_class = SymmetricConfig

    def __init__(self, config: SymmetricConfig, profile: Optional[VaultProfile] = None):
        super().__init__(config, profile)
        if profile is None:
            raise ConfigValidationError("Symmetric method requires a vault profile (salt)")
        self._engine = CipherEngine(config.passphrase, profile.salt, profile.iterations)

    async def encrypt(self, data: MethodData) -> str:
        return await self._engine.encrypt_async(data)

    async def decrypt(self, ciphertext: str) -> bytes:
        return await self._engine.decrypt_async(ciphertext)
