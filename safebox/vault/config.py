"""Vault configuration for Safebox encryption."""

import os
from dataclasses import dataclass


@dataclass
class VaultConfig:
    """Configuration for vault encryption operations."""

    # Key derivation
    kdf_iterations: int = 100_000
    salt_size: int = 32  # 256 bits

    # Base64 windows; encode window must be a multiple of 3
    b64_window: int = 3 * 16 * 1024  # 48KB

    # Archive layout
    metadata_file: str = "vault.meta"
    index_file: str = "vault-index.json.enc"
    source_prefix: str = "source-"
    payload_prefix: str = "file-"

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """
        Load configuration from environment variables.

        Environment variables:
            SAFEBOX_KDF_ITERATIONS: PBKDF2 iterations for new vaults (default: 100000)
            SAFEBOX_B64_WINDOW: Base64 encode window in bytes, rounded down to a multiple of 3
        """
        config = cls()

        if iterations := os.getenv("SAFEBOX_KDF_ITERATIONS"):
            config.kdf_iterations = int(iterations)

        if window := os.getenv("SAFEBOX_B64_WINDOW"):
            config.b64_window = max(3, int(window) // 3 * 3)

        return config


# Global configuration instance
_config: VaultConfig | None = None


def get_vault_config() -> VaultConfig:
    """Get the global vault configuration."""
    global _config
    if _config is None:
        _config = VaultConfig.from_env()
    return _config


def set_vault_config(config: VaultConfig) -> None:
    """Set the global vault configuration."""
    global _config
    _config = config
