"""Cryptographic core for Safebox.

Provides AES-256-GCM encryption keyed by PBKDF2-HMAC-SHA256 for vault
payloads and archive indexes.

Usage:
    from safebox.vault import CipherEngine, VaultProfile

    profile = VaultProfile.create()
    engine = CipherEngine("passphrase", profile.salt, profile.iterations)
    ciphertext = engine.encrypt(b"secret")
    assert engine.decrypt(ciphertext) == b"secret"
"""

# Exceptions
from .exceptions import (
    ArchiveImportError,
    AuthenticationFailureError,
    AuthorizationError,
    CipherError,
    ConfigValidationError,
    ConnectivityError,
    DuplicateFolderError,
    EntryIndexError,
    FolderNotEmptyError,
    FolderNotFoundError,
    MalformedCiphertextError,
    MethodNotImplementedError,
    OperationCancelledError,
    SourceFileNotFoundError,
    VaultError,
)

# Configuration
from .config import (
    VaultConfig,
    get_vault_config,
    set_vault_config,
)

# Primitives
from .crypto import (
    LEGACY_SALT,
    CipherEngine,
    KeyDerivation,
    b64decode_chunked,
    b64encode_chunked,
    decrypt,
    encrypt,
    split_ciphertext,
)
from .profile import VaultProfile

__all__ = [
    # Exceptions
    "VaultError",
    "ConfigValidationError",
    "ConnectivityError",
    "AuthorizationError",
    "CipherError",
    "MalformedCiphertextError",
    "AuthenticationFailureError",
    "MethodNotImplementedError",
    "ArchiveImportError",
    "FolderNotFoundError",
    "DuplicateFolderError",
    "FolderNotEmptyError",
    "SourceFileNotFoundError",
    "EntryIndexError",
    "OperationCancelledError",
    # Configuration
    "VaultConfig",
    "get_vault_config",
    "set_vault_config",
    # Primitives
    "LEGACY_SALT",
    "KeyDerivation",
    "CipherEngine",
    "encrypt",
    "decrypt",
    "split_ciphertext",
    "b64encode_chunked",
    "b64decode_chunked",
    "VaultProfile",
]
