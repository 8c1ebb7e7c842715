"""Core cryptographic primitives for Safebox.

Uses the cryptography library for:
- PBKDF2-HMAC-SHA256 key derivation (100,000 iterations, per-vault salt)
- AES-256-GCM authenticated encryption of whole payloads

Ciphertext text format:
    <base64 nonce>:<base64 ciphertext||tag>
"""

import asyncio
import base64
import binascii
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import get_vault_config
from .exceptions import AuthenticationFailureError, MalformedCiphertextError

# Fixed salt written by releases that predate vault.meta. Only used to read
# header-less archives; new vaults always get a random salt.
LEGACY_SALT = b"filevault-static-salt"

SEPARATOR = ":"
NONCE_SIZE = 12  # 96 bits for AES-GCM
KEY_SIZE = 32  # 256 bits for AES-256

Plaintext = Union[bytes, str]


def b64encode_chunked(data: bytes, window: Optional[int] = None) -> str:
    """
    Base64-encode a buffer in fixed-size windows.

    Args:
        data: Bytes to encode
        window: Window size in bytes (rounded down to a multiple of 3)

    Returns:
        Standard base64 text, identical to encoding the buffer in one call
    """
    window = window or get_vault_config().b64_window
    window = max(3, window // 3 * 3)
    view = memoryview(data)
    parts = [
        base64.b64encode(view[i : i + window]).decode("ascii")
        for i in range(0, len(view), window)
    ]
    return "".join(parts)


def b64decode_chunked(text: str, window: Optional[int] = None) -> bytes:
    """
    Strictly decode base64 text in fixed-size windows.

    Args:
        text: Base64 text
        window: Encode window in bytes; decode windows are 4/3 of it

    Returns:
        Decoded bytes

    Raises:
        ValueError: If the text is not valid padded base64
    """
    window = window or get_vault_config().b64_window
    char_window = max(3, window // 3 * 3) // 3 * 4

    if len(text) % 4 != 0:
        raise ValueError("base64 text length is not a multiple of 4")
    if "=" in text.rstrip("="):
        raise ValueError("base64 padding in the middle of the text")

    out = bytearray()
    try:
        for i in range(0, len(text), char_window):
            out += base64.b64decode(text[i : i + char_window], validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64: {e}") from e
    return bytes(out)


class KeyDerivation:
    """Derives encryption keys from passphrases using PBKDF2."""

    @staticmethod
    def generate_salt(size: Optional[int] = None) -> bytes:
        """Generate cryptographically secure random salt."""
        return os.urandom(size or get_vault_config().salt_size)

    @staticmethod
    def derive_key(passphrase: str, salt: bytes, iterations: Optional[int] = None) -> bytes:
        """
        Derive a 256-bit AES key from a passphrase using PBKDF2-HMAC-SHA256.

        Args:
            passphrase: Vault or method passphrase
            salt: Per-vault salt (stored in the vault profile and archive header)
            iterations: PBKDF2 iteration count

        Returns:
            32-byte derived key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=iterations or get_vault_config().kdf_iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))


def split_ciphertext(ciphertext: str) -> tuple[bytes, bytes]:
    """
    Parse the nonce:ciphertext framing.

    Returns:
        (nonce, ciphertext||tag)

    Raises:
        MalformedCiphertextError: On any framing or encoding violation
    """
    if not isinstance(ciphertext, str):
        raise MalformedCiphertextError("Ciphertext must be a string")
    if SEPARATOR not in ciphertext:
        raise MalformedCiphertextError("Ciphertext is missing the ':' separator")

    nonce_b64, _, body_b64 = ciphertext.partition(SEPARATOR)
    if not nonce_b64 or not body_b64:
        raise MalformedCiphertextError("Ciphertext has an empty nonce or body")

    try:
        nonce = b64decode_chunked(nonce_b64)
        body = b64decode_chunked(body_b64)
    except ValueError as e:
        raise MalformedCiphertextError(f"Ciphertext is not valid base64: {e}") from e

    if len(nonce) != NONCE_SIZE:
        raise MalformedCiphertextError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    return nonce, body


class CipherEngine:
    """
    AES-256-GCM engine bound to one passphrase and salt.

    The key is derived once, on first use. Every encrypt call draws a fresh
    random nonce.
    """

    def __init__(self, passphrase: str, salt: bytes, iterations: Optional[int] = None):
        """
        Initialize the engine.

        Args:
            passphrase: Passphrase to derive the key from
            salt: Per-vault salt
            iterations: PBKDF2 iteration count (default from config)
        """
        self.salt = salt
        self.iterations = iterations or get_vault_config().kdf_iterations
        self._passphrase = passphrase
        self._aesgcm: Optional[AESGCM] = None

    def _cipher(self) -> AESGCM:
        if self._aesgcm is None:
            key = KeyDerivation.derive_key(self._passphrase, self.salt, self.iterations)
            self._aesgcm = AESGCM(key)
        return self._aesgcm

    def encrypt(self, plaintext: Plaintext) -> str:
        """
        Encrypt data.

        Args:
            plaintext: Bytes, or text encoded as UTF-8

        Returns:
            "<b64 nonce>:<b64 ciphertext||tag>"
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        nonce = os.urandom(NONCE_SIZE)
        body = self._cipher().encrypt(nonce, bytes(plaintext), None)
        return b64encode_chunked(nonce) + SEPARATOR + b64encode_chunked(body)

    def decrypt(self, ciphertext: str) -> bytes:
        """
        Decrypt data.

        Args:
            ciphertext: Framed ciphertext string

        Returns:
            Decrypted plaintext

        Raises:
            MalformedCiphertextError: Framing or base64 violation
            AuthenticationFailureError: Tag did not verify
        """
        nonce, body = split_ciphertext(ciphertext)
        try:
            return self._cipher().decrypt(nonce, body, None)
        except InvalidTag:
            raise AuthenticationFailureError() from None

    async def encrypt_async(self, plaintext: Plaintext) -> str:
        """Encrypt in a worker thread."""
        return await asyncio.to_thread(self.encrypt, plaintext)

    async def decrypt_async(self, ciphertext: str) -> bytes:
        """Decrypt in a worker thread."""
        return await asyncio.to_thread(self.decrypt, ciphertext)


def encrypt(plaintext: Plaintext, passphrase: str, salt: bytes, iterations: Optional[int] = None) -> str:
    """Encrypt with a one-off engine."""
    return CipherEngine(passphrase, salt, iterations).encrypt(plaintext)


def decrypt(ciphertext: str, passphrase: str, salt: bytes, iterations: Optional[int] = None) -> bytes:
    """Decrypt with a one-off engine."""
    return CipherEngine(passphrase, salt, iterations).decrypt(ciphertext)
