"""Vault exceptions for Safebox."""


class VaultError(Exception):
    """Base exception for vault operations."""

    pass


class ConfigValidationError(VaultError):
    """Raised when a source or encryption method config is missing required fields."""

    def __init__(self, message: str = "Invalid configuration."):
        super().__init__(message)


class ConnectivityError(VaultError):
    """Raised when a remote source cannot be reached."""

    def __init__(self, message: str = "Could not connect to remote storage."):
        super().__init__(message)


class AuthorizationError(ConnectivityError):
    """Raised when a remote source rejects the configured credentials."""

    def __init__(self, message: str = "Remote storage rejected the credentials."):
        super().__init__(message)


class CipherError(VaultError):
    """Base class for ciphertext failures."""

    pass


class MalformedCiphertextError(CipherError):
    """Raised when a ciphertext string violates the nonce:ciphertext framing."""

    def __init__(self, message: str = "Malformed ciphertext."):
        super().__init__(message)


class AuthenticationFailureError(CipherError):
    """Raised when the GCM tag does not verify (tampering or wrong passphrase)."""

    def __init__(self, message: str = "Authentication failed: wrong passphrase or tampered data."):
        super().__init__(message)


class MethodNotImplementedError(VaultError, NotImplementedError):
    """Raised by placeholder encryption methods."""

    def __init__(self, method_type: str = ""):
        message = (
            f"Encryption method '{method_type}' is not implemented yet."
            if method_type
            else "Encryption method is not implemented yet."
        )
        super().__init__(message)


class ArchiveImportError(VaultError):
    """Raised when an archive is corrupt or its index cannot be decrypted."""

    def __init__(self, message: str = "Failed to import vault archive."):
        super().__init__(message)


class FolderNotFoundError(VaultError):
    """Raised when a folder path segment or folder handle cannot be resolved."""

    def __init__(self, folder: str = ""):
        message = f'Folder "{folder}" not found' if folder else "Folder not found."
        super().__init__(message)


class DuplicateFolderError(VaultError):
    """Raised when a folder name already exists in the same scope."""

    def __init__(self, name: str = ""):
        message = f'A folder named "{name}" already exists here.' if name else "Folder already exists."
        super().__init__(message)


class FolderNotEmptyError(VaultError):
    """Raised when deleting a folder that still has children without cascading."""

    def __init__(self, name: str = ""):
        message = f'Folder "{name}" is not empty.' if name else "Folder is not empty."
        super().__init__(message)


class SourceFileNotFoundError(VaultError):
    """Raised when a source has no file at the requested path."""

    def __init__(self, path: str = ""):
        message = f"File not found: {path}" if path else "File not found."
        super().__init__(message)


class EntryIndexError(VaultError, IndexError):
    """Raised when an entry index is out of range for a source."""

    def __init__(self, source: int, index: int):
        super().__init__(f"No entry at index {index} in source {source}.")
        self.source = source
        self.index = index


class OperationCancelledError(VaultError):
    """Raised when a long-running operation is cancelled through its token."""

    def __init__(self, message: str = "Operation cancelled."):
        super().__init__(message)
