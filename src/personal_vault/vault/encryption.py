# Vault - Encryption Service
#
# Master password → encryption key (scrypt, memory-hard)
# Payload encryption (AES-256-GCM) with a fresh nonce per seal
# On-disk container format: MAGIC | nonce | ciphertext | tag

import base64
import binascii
import os
import re
from dataclasses import dataclass
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .exceptions import AuthenticationFailed, InvalidDataUrl

KeyBytes = Union[bytes, bytearray]

_DATA_URL_RE = re.compile(r"^data:([^;,]+)(?:;[^,;]+=[^,;]*)*;base64,(.*)$", re.DOTALL)


@dataclass(frozen=True)
class EncryptedContainer:
    """
    At-rest form of a collection, blob or thumbnail.

    Self-contained: the nonce travels with the ciphertext, and the GCM tag
    makes any modification (or a wrong key) detectable on open.
    """

    nonce: bytes
    ciphertext: bytes
    tag: bytes

    MAGIC = b"PVC1"

    def to_bytes(self) -> bytes:
        return self.MAGIC + self.nonce + self.ciphertext + self.tag

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedContainer":
        """
        Parse a serialized container.

        Raises:
            AuthenticationFailed: Bad magic or too short to hold nonce + tag.
                A truncated store is treated the same as a tampered one.
        """
        header = len(cls.MAGIC) + EncryptionService.NONCE_LENGTH
        if len(data) < header + EncryptionService.TAG_LENGTH:
            raise AuthenticationFailed("Encrypted container is truncated")
        if data[: len(cls.MAGIC)] != cls.MAGIC:
            raise AuthenticationFailed("Not a vault container (bad header)")

        nonce = data[len(cls.MAGIC) : header]
        body = data[header:]
        return cls(
            nonce=nonce,
            ciphertext=body[: -EncryptionService.TAG_LENGTH],
            tag=body[-EncryptionService.TAG_LENGTH :],
        )


class EncryptionService:
    """
    Handles key derivation and authenticated encryption for the vault.

    Flow:
    1. User enters master password
    2. scrypt derives a 256-bit key from password + salt
    3. AES-256-GCM seals/opens collections, blobs and thumbnails
    4. Every seal draws its own random nonce
    """

    # scrypt parameters (RFC 7914 interactive-login range)
    SCRYPT_N = 2 ** 15
    SCRYPT_R = 8
    SCRYPT_P = 1
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 32  # 256-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16  # 128-bit GCM tag

    @staticmethod
    def derive_key(
        master_password: str,
        salt: bytes,
        n: int = SCRYPT_N,
        r: int = SCRYPT_R,
        p: int = SCRYPT_P,
    ) -> bytearray:
        """
        Derive encryption key from master password using scrypt.

        Args:
            master_password: User's master password
            salt: Random salt (stored unencrypted with the vault)
            n, r, p: scrypt cost parameters (stored with the salt)

        Returns:
            256-bit key as a mutable buffer so it can be zeroed on lock
        """
        kdf = Scrypt(
            salt=salt,
            length=EncryptionService.KEY_LENGTH,
            n=n,
            r=r,
            p=p,
            backend=default_backend(),
        )
        return bytearray(kdf.derive(master_password.encode("utf-8")))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def seal(plaintext: bytes, key: KeyBytes) -> EncryptedContainer:
        """
        Encrypt a payload with AES-256-GCM.

        The nonce is generated here on every call and never cached.
        """
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
        return EncryptedContainer(
            nonce=nonce,
            ciphertext=sealed[: -EncryptionService.TAG_LENGTH],
            tag=sealed[-EncryptionService.TAG_LENGTH :],
        )

    @staticmethod
    def open(container: EncryptedContainer, key: KeyBytes) -> bytes:
        """
        Decrypt a container.

        Raises:
            AuthenticationFailed: Tag mismatch (tampered data or wrong key).
                Corrupted bytes are never returned.
        """
        try:
            return AESGCM(key).decrypt(
                container.nonce, container.ciphertext + container.tag, None
            )
        except (InvalidTag, ValueError) as e:
            raise AuthenticationFailed(
                "Cannot decrypt: wrong password or corrupted store"
            ) from e

    @staticmethod
    def seal_bytes(plaintext: bytes, key: KeyBytes) -> bytes:
        """Seal and serialize in one step."""
        return EncryptionService.seal(plaintext, key).to_bytes()

    @staticmethod
    def open_bytes(data: bytes, key: KeyBytes) -> bytes:
        """Parse and open a serialized container."""
        return EncryptionService.open(EncryptedContainer.from_bytes(data), key)

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data for JSON storage (base64)."""
        return base64.b64encode(data).decode("utf-8")

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64-encoded data from JSON storage."""
        return base64.b64decode(data.encode("utf-8"))


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split a ``data:<mime>;base64,<payload>`` URL into (mime_type, raw bytes).

    Whitespace inside the payload is ignored.

    Raises:
        InvalidDataUrl: Not a base64 data URL.
    """
    match = _DATA_URL_RE.match(data_url.strip()) if isinstance(data_url, str) else None
    if not match:
        raise InvalidDataUrl("Invalid data URL format")

    payload = re.sub(r"\s", "", match.group(2))
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidDataUrl(f"Invalid base64 payload: {e}") from e
    return match.group(1), raw


def build_data_url(mime_type: str, raw: bytes) -> str:
    """Inverse of parse_data_url()."""
    return f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}"
