# Personal Vault - Main Package
#
# Local, password-protected storage for personal records and the documents
# attached to them. Everything at rest is encrypted; nothing leaves the disk.

__version__ = "0.3.0"
__author__ = "Personal Vault Team"
__description__ = "Encrypted personal vault storage engine"

from .config import VaultSettings
from .vault import (
    CollectionSchema,
    DocumentReference,
    Vault,
    VaultError,
)

__all__ = [
    "__version__",
    "Vault",
    "VaultSettings",
    "CollectionSchema",
    "DocumentReference",
    "VaultError",
]
