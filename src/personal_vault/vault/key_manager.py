# Vault - Key Manager
#
# The vault is encrypted under a random data key (DEK). vault.json holds the
# DEK sealed under a key-encryption key (KEK) that scrypt derives from the
# master password and the stored salt. The salt is not secret.
#
# Changing the password re-wraps the DEK and rewrites vault.json in one
# atomic replace; no container is touched.
#
# Records without a wrapped key predate wrapping: the password-derived key
# is the data key itself, checked by an optional sealed canary. They still
# unlock, and are upgraded on the next password change.
#
# Key lives only in a VaultSession and is zeroed on lock

import asyncio
import hmac
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from ..config import VaultSettings
from .encryption import EncryptionService
from .exceptions import (
    AuthenticationFailed,
    NotFound,
    VaultAlreadyExists,
    VaultError,
    VaultLocked,
    WrongPassword,
)
from .storage import FileStorage

logger = logging.getLogger(__name__)

SALT_RECORD_VERSION = 3
DATA_KEY_BYTES = 32


class VaultSession:
    """
    Explicit handle for one unlocked vault.

    Every engine call takes the session instead of reading a global key, so
    several vaults can be open in one process. After lock() the key buffer
    is zeroed in place and any further use raises VaultLocked.
    """

    def __init__(self, key: bytearray):
        self._key: Optional[bytearray] = key
        self.session_id = uuid4().hex
        self.unlocked_at = datetime.now(timezone.utc).isoformat()

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    @property
    def key(self) -> bytearray:
        if self._key is None:
            raise VaultLocked("Vault is locked. Unlock vault first.")
        return self._key

    def lock(self) -> None:
        """Zero the key material. Safe to call more than once."""
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
            self._key = None

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f"<VaultSession {self.session_id[:8]} {state}>"


def _wipe(key: bytearray) -> None:
    VaultSession(key).lock()


@dataclass
class SaltRecord:
    """Unencrypted key record stored as vault.json."""
    salt: bytes
    kdf_params: Dict[str, int]
    wrapped_key: Optional[bytes] = None  # DEK sealed under the KEK; absent on legacy vaults
    verifier: Optional[bytes] = None  # legacy sealed canary
    version: int = SALT_RECORD_VERSION
    kdf: str = "scrypt"
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_wrapped(self) -> bool:
        return self.wrapped_key is not None

    def to_json(self) -> bytes:
        data: Dict[str, Any] = {
            "version": self.version,
            "kdf": self.kdf,
            "kdf_params": self.kdf_params,
            "salt": EncryptionService.encode_for_storage(self.salt),
            "created_at": self.created_at,
        }
        if self.wrapped_key is not None:
            data["wrapped_key"] = EncryptionService.encode_for_storage(self.wrapped_key)
        if self.verifier is not None:
            data["verifier"] = EncryptionService.encode_for_storage(self.verifier)
        return json.dumps(data, indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "SaltRecord":
        try:
            data = json.loads(raw.decode("utf-8"))
            if data.get("kdf", "scrypt") != "scrypt":
                raise VaultError(f"Unsupported key derivation: {data['kdf']}")
            wrapped_key = data.get("wrapped_key")
            verifier = data.get("verifier")
            return cls(
                salt=EncryptionService.decode_from_storage(data["salt"]),
                kdf_params={k: int(v) for k, v in data.get("kdf_params", {}).items()},
                wrapped_key=EncryptionService.decode_from_storage(wrapped_key) if wrapped_key else None,
                verifier=EncryptionService.decode_from_storage(verifier) if verifier else None,
                version=int(data.get("version", 1)),
                created_at=data.get("created_at", ""),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise VaultError(f"Corrupted vault: unreadable salt record ({e})") from e


class KeyManager:
    """
    Derives, wraps and checks vault keys for one vault root.

    Flow:
    1. initialize(): random DEK, scrypt(password, salt) → KEK, wrap → vault.json
    2. unlock(): scrypt(password, salt) → KEK → unwrap DEK → VaultSession
    3. change_password(): re-wrap the session's DEK under a new salt
    4. lock(): zero the session key
    """

    CANARY_PLAINTEXT = b"PERSONAL_VAULT_OK"

    def __init__(self, storage: FileStorage, settings: Optional[VaultSettings] = None):
        self.storage = storage
        self.settings = settings or VaultSettings(root=storage.root)

    def exists(self) -> bool:
        """True if a salt record has been written for this vault."""
        path = self.storage.salt_record_path
        return path.is_file() and path.stat().st_size > 0

    def read_salt_record(self) -> SaltRecord:
        if not self.exists():
            raise NotFound("Vault does not exist. Initialize vault first.")
        return SaltRecord.from_json(self.storage.read(self.storage.salt_record_path))

    def write_salt_record(self, record: SaltRecord) -> None:
        self.storage.write_atomic(self.storage.salt_record_path, record.to_json())

    async def derive(self, password: str, record: SaltRecord) -> bytearray:
        """Run scrypt off the event loop (it is deliberately slow)."""
        params = record.kdf_params
        return await asyncio.to_thread(
            EncryptionService.derive_key,
            password,
            record.salt,
            params.get("n", EncryptionService.SCRYPT_N),
            params.get("r", EncryptionService.SCRYPT_R),
            params.get("p", EncryptionService.SCRYPT_P),
        )

    async def wrap(self, data_key: bytearray, password: str) -> SaltRecord:
        """Seal ``data_key`` under a fresh salt for ``password``. Nothing is written."""
        record = SaltRecord(
            salt=EncryptionService.generate_salt(),
            kdf_params={
                "n": self.settings.scrypt_n,
                "r": self.settings.scrypt_r,
                "p": self.settings.scrypt_p,
            },
        )
        kek = await self.derive(password, record)
        try:
            record.wrapped_key = EncryptionService.seal_bytes(bytes(data_key), kek)
        finally:
            _wipe(kek)
        return record

    async def open_record(self, password: str, record: SaltRecord) -> bytearray:
        """
        Data key that ``password`` opens in ``record``.

        Raises:
            WrongPassword: The wrapped key or the canary does not open.
        """
        key = await self.derive(password, record)

        if record.is_wrapped:
            try:
                data_key = EncryptionService.open_bytes(record.wrapped_key, key)
            except AuthenticationFailed:
                raise WrongPassword("Incorrect master password") from None
            finally:
                _wipe(key)
            return bytearray(data_key)

        if record.verifier is None:
            # Legacy vault without a verifier; a wrong key surfaces as
            # AuthenticationFailed on the first container open.
            logger.warning("Salt record has no password verifier; unlocking unchecked")
            return key

        try:
            canary = EncryptionService.open_bytes(record.verifier, key)
        except AuthenticationFailed:
            canary = None
        if canary is None or not hmac.compare_digest(canary, self.CANARY_PLAINTEXT):
            _wipe(key)
            raise WrongPassword("Incorrect master password")
        return key

    async def initialize(self, password: str) -> VaultSession:
        """
        Create the key record for a new vault and return an open session.

        Raises:
            VaultAlreadyExists: A salt record is already present.
        """
        if self.exists():
            raise VaultAlreadyExists("Vault already exists. Use unlock() instead.")

        data_key = bytearray(os.urandom(DATA_KEY_BYTES))
        record = await self.wrap(data_key, password)
        self.write_salt_record(record)
        logger.info("Vault initialized at %s", self.storage.root)
        return VaultSession(data_key)

    async def unlock(self, password: str) -> VaultSession:
        """
        Open the data key for ``password``.

        Raises:
            NotFound: No salt record.
            WrongPassword: Password does not open the wrapped key or verifier.
        """
        record = self.read_salt_record()
        return VaultSession(await self.open_record(password, record))

    async def verify(self, session: VaultSession, password: str) -> bool:
        """Check ``password`` against an open session without unlocking again."""
        try:
            key = await self.open_record(password, self.read_salt_record())
        except WrongPassword:
            return False
        try:
            return hmac.compare_digest(bytes(key), bytes(session.key))
        finally:
            _wipe(key)

    async def change_password(
        self, session: VaultSession, old_password: str, new_password: str
    ) -> SaltRecord:
        """
        Re-wrap the session's data key under ``new_password``.

        The only write is the atomic replace of vault.json, so a failure
        leaves the old password in force. Legacy records are upgraded: their
        password-derived key becomes the wrapped data key.

        Raises:
            WrongPassword: ``old_password`` does not open this vault.
            VaultIOError: vault.json could not be replaced.
        """
        if not await self.verify(session, old_password):
            raise WrongPassword("Incorrect master password")

        record = await self.wrap(session.key, new_password)
        self.write_salt_record(record)
        logger.info("Vault key re-wrapped at %s", self.storage.root)
        return record

    def lock(self, session: VaultSession) -> None:
        session.lock()
