# Configuration
#
# Settings come from the environment (optionally a .env file) with defaults
# suitable for a single-user desktop vault.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_ROOT = Path.home() / "Documents" / "PersonalVault"


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class VaultSettings:
    """Runtime settings for one vault."""

    root: Path = DEFAULT_ROOT
    audit_dir: Optional[Path] = None  # None → <root>/audit_logs
    scrypt_n: int = 2 ** 15
    scrypt_r: int = 8
    scrypt_p: int = 1
    thumbnail_size: int = 200  # max edge in pixels
    thumbnail_quality: int = 70  # JPEG quality
    max_document_bytes: int = 100 * 1024 * 1024  # 100 MB per attachment

    def __post_init__(self):
        self.root = Path(self.root).expanduser()
        if self.audit_dir is not None:
            self.audit_dir = Path(self.audit_dir)
        if self.scrypt_n < 2 or self.scrypt_n & (self.scrypt_n - 1):
            raise ValueError("scrypt_n must be a power of two greater than 1")
        if self.thumbnail_size < 16:
            raise ValueError("thumbnail_size must be at least 16 pixels")

    @property
    def effective_audit_dir(self) -> Path:
        return self.audit_dir or self.root / "audit_logs"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "VaultSettings":
        """
        Build settings from PERSONAL_VAULT_* environment variables.

        A .env file (``env_file`` or the nearest one found) is loaded first;
        variables already set in the environment take precedence.
        """
        load_dotenv(env_file, override=False)

        audit_dir = os.environ.get("PERSONAL_VAULT_AUDIT_DIR")
        return cls(
            root=Path(os.environ.get("PERSONAL_VAULT_ROOT") or DEFAULT_ROOT).expanduser(),
            audit_dir=Path(audit_dir).expanduser() if audit_dir else None,
            scrypt_n=_env_int("PERSONAL_VAULT_SCRYPT_N", 2 ** 15),
            scrypt_r=_env_int("PERSONAL_VAULT_SCRYPT_R", 8),
            scrypt_p=_env_int("PERSONAL_VAULT_SCRYPT_P", 1),
            thumbnail_size=_env_int("PERSONAL_VAULT_THUMBNAIL_SIZE", 200),
            max_document_bytes=_env_int(
                "PERSONAL_VAULT_MAX_DOCUMENT_BYTES", 100 * 1024 * 1024
            ),
        )
