"""
Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class WrongPassword(VaultError):
    """Raised when the master password does not unlock the vault key"""
    pass


class AuthenticationFailed(VaultError):
    """Raised when a container fails GCM authentication (tampered or wrong key)"""
    pass


class NotFound(VaultError):
    """Raised when a collection, document or thumbnail does not exist"""
    pass


class LegacyUnavailable(VaultError):
    """Raised when a filename-only legacy reference has no recoverable bytes"""

    def __init__(self, filename: str):
        super().__init__(f"Document data unavailable for legacy attachment: {filename}")
        self.filename = filename


class VaultIOError(VaultError):
    """Raised when the underlying storage medium fails"""
    pass


class VaultLocked(VaultError):
    """Raised when a locked session is used"""
    pass


class VaultAlreadyExists(VaultError):
    """Raised when initializing a vault that already has a salt record"""
    pass


class InvalidName(VaultError):
    """Raised when a collection, category or document id is not a safe path component"""
    pass


class InvalidDataUrl(VaultError):
    """Raised when a document payload is not a base64 data URL"""
    pass


class CorruptCollection(VaultError):
    """Raised when a collection decrypts but its payload is not a record list"""
    pass


class ThumbnailGenerationFailed(VaultError):
    """Raised when an attachment cannot be rasterized"""
    pass


class MigrationFailed(VaultError):
    """Raised when a collection schema migration fails"""
    pass


class DocumentTooLarge(VaultError):
    """Raised when an attachment exceeds the configured size limit"""
    pass
