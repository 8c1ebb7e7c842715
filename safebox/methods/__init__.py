"""Pluggable encryption methods.

Usage:
    from safebox.methods import MethodFactory, SymmetricConfig

    method = MethodFactory.create(SymmetricConfig(name="main", passphrase="..."), profile)
    ciphertext = await method.encrypt(b"data")
"""

from .base import (
    AlternativeConfig,
    AsymmetricKeyConfig,
    EncryptionMethod,
    MethodConfig,
    SymmetricConfig,
)
from .factory import LEGACY_TYPES, MethodFactory, method_config_from_dict
from .placeholders import AlternativeMethod, AsymmetricKeyMethod
from .symmetric import SymmetricMethod

__all__ = [
    # Configs
    "MethodConfig",
    "SymmetricConfig",
    "AsymmetricKeyConfig",
    "AlternativeConfig",
    # Variants
    "EncryptionMethod",
    "SymmetricMethod",
    "AsymmetricKeyMethod",
    "AlternativeMethod",
    # Registry
    "MethodFactory",
    "method_config_from_dict",
    "LEGACY_TYPES",
]
