# Vault Module - Encrypted Storage Engine
#
# Password-derived AES-256-GCM encryption over named record collections
# and document attachments, with cascade delete and thumbnails.

from .exceptions import (
    AuthenticationFailed,
    LegacyUnavailable,
    NotFound,
    VaultError,
    VaultIOError,
    DocumentTooLarge,
    VaultLocked,
    WrongPassword,
)
from .key_manager import KeyManager, VaultSession
from .records import CollectionSchema, DocumentReference, LegacyDocumentReference
from .migrations import Migration
from .vault import Vault

__all__ = [
    "Vault",
    "VaultSession",
    "KeyManager",
    "CollectionSchema",
    "DocumentReference",
    "LegacyDocumentReference",
    "Migration",
    "VaultError",
    "WrongPassword",
    "AuthenticationFailed",
    "NotFound",
    "LegacyUnavailable",
    "VaultIOError",
    "VaultLocked",
    "DocumentTooLarge",
]
