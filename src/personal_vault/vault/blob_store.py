# Vault - Blob Store
#
# One encrypted container per attachment, addressed by (category, id).
# Blobs are read only when a caller asks for one; loading a collection never
# touches them. Deletes are idempotent and take the thumbnail along.
#
# Blob plaintext: header_len(4, big-endian) | JSON header | raw bytes
# The header keeps the mime type with the bytes it describes.

import asyncio
import json
import logging
import struct
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional
from uuid import uuid4

from .encryption import EncryptionService
from .exceptions import AuthenticationFailed, DocumentTooLarge, LegacyUnavailable, NotFound
from .key_manager import VaultSession
from .records import DocumentReference, LegacyDocumentReference, parse_reference, utc_now_iso
from .storage import BLOB_SUFFIX, FileStorage, validate_name

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_DOCUMENT_BYTES = 100 * 1024 * 1024  # 100 MB per attachment
_HEADER_LEN = struct.Struct(">I")


def thumbnail_id_for(doc_id: str) -> str:
    """Thumbnail ids are derived from the document id, so regeneration overwrites."""
    return f"{doc_id}_thumb"


@dataclass
class Blob:
    """Decrypted attachment."""
    raw: bytes
    mime_type: str
    filename: str


def _pack(raw: bytes, mime_type: str, filename: str) -> bytes:
    header = json.dumps({"mimeType": mime_type, "filename": filename}).encode("utf-8")
    return _HEADER_LEN.pack(len(header)) + header + raw


def _unpack(plaintext: bytes) -> Blob:
    if len(plaintext) < _HEADER_LEN.size:
        raise AuthenticationFailed("Blob payload truncated")
    (header_len,) = _HEADER_LEN.unpack_from(plaintext)
    start = _HEADER_LEN.size
    try:
        header = json.loads(plaintext[start : start + header_len].decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise AuthenticationFailed("Blob header unreadable") from e
    return Blob(
        raw=plaintext[start + header_len :],
        mime_type=header.get("mimeType") or DEFAULT_MIME_TYPE,
        filename=header.get("filename", ""),
    )


class BlobStore:
    """
    Encrypted attachment files.

    Usage::

        blobs = BlobStore(storage)
        ref = await blobs.save_document(session, "education", "cert.pdf", data,
                                        "application/pdf")
        data = await blobs.load_document(session, "education", ref)
        await blobs.delete_document("education", ref)
    """

    def __init__(self, storage: FileStorage, max_document_bytes: int = MAX_DOCUMENT_BYTES):
        self.storage = storage
        self.max_document_bytes = max_document_bytes

    async def save_document(
        self,
        session: VaultSession,
        category: str,
        filename: str,
        raw: bytes,
        mime_type: Optional[str] = None,
        uploaded_at: Optional[str] = None,
    ) -> DocumentReference:
        """
        Encrypt and store an attachment under a fresh id.

        Returns:
            DocumentReference to embed in a record (carries no bytes)

        Raises:
            DocumentTooLarge: Attachment exceeds max_document_bytes.
        """
        validate_name(category, "category")
        if len(raw) > self.max_document_bytes:
            raise DocumentTooLarge(
                f"File too large: {len(raw)} bytes (max {self.max_document_bytes})"
            )

        mime_type = mime_type or DEFAULT_MIME_TYPE
        doc_id = uuid4().hex
        sealed = EncryptionService.seal_bytes(_pack(raw, mime_type, filename), session.key)
        self.storage.write_atomic(self.storage.blob_path(category, doc_id), sealed)

        ref = DocumentReference(
            id=doc_id,
            filename=filename,
            upload_date=uploaded_at or utc_now_iso(),
            mime_type=mime_type,
            size=len(raw),
        )
        logger.info(
            "Saved document: %s (%.1f KB) -> %s/%s",
            filename, len(raw) / 1024, category, doc_id[:8],
        )
        return ref

    async def load_blob(self, session: VaultSession, category: str, ref: Any) -> Blob:
        """
        Fetch and decrypt one attachment.

        Raises:
            LegacyUnavailable: Filename-only reference; there is nothing to decrypt.
            NotFound: No blob stored for this id.
            AuthenticationFailed: Blob tampered or sealed under another key.
        """
        ref = parse_reference(ref)
        if isinstance(ref, LegacyDocumentReference):
            raise LegacyUnavailable(ref.filename)

        path = self.storage.blob_path(category, ref.id)
        key = session.key

        def _read_and_open() -> Blob:
            data = self.storage.read(path)
            return _unpack(EncryptionService.open_bytes(data, key))

        try:
            # Large payloads: decrypt off the event loop. Read-only, so
            # abandoning the await leaves nothing behind.
            return await asyncio.to_thread(_read_and_open)
        except NotFound:
            raise NotFound(f"Document file not found: {ref.filename}") from None
        except AuthenticationFailed as e:
            logger.error("Failed to decrypt document %s/%s", category, ref.id[:8])
            raise AuthenticationFailed(
                f"Cannot decrypt document '{ref.filename}': wrong password or corrupted store"
            ) from e

    async def load_document(self, session: VaultSession, category: str, ref: Any) -> bytes:
        """Raw bytes of one attachment. See load_blob() for errors."""
        blob = await self.load_blob(session, category, ref)
        return blob.raw

    async def delete_document(self, category: str, ref: Any) -> bool:
        """
        Delete an attachment and its thumbnail. Idempotent.

        No key is needed to destroy ciphertext, so this works on a locked
        session too.

        Returns:
            True if a blob file was removed
        """
        ref = parse_reference(ref)
        if isinstance(ref, LegacyDocumentReference):
            return False

        removed = self.storage.remove(self.storage.blob_path(category, ref.id))

        thumbnail_ids = {thumbnail_id_for(ref.id)}
        if ref.thumbnail_id:
            thumbnail_ids.add(ref.thumbnail_id)
        for thumbnail_id in thumbnail_ids:
            self.storage.remove(self.storage.thumbnail_path(category, thumbnail_id))

        if removed:
            logger.info("Deleted document: %s (%s/%s)", ref.filename, category, ref.id[:8])
        return removed

    async def delete_documents(self, category: str, refs: Iterable[Any]) -> int:
        """Delete several attachments. Returns how many blob files were removed."""
        count = 0
        for ref in refs:
            if await self.delete_document(category, ref):
                count += 1
        return count

    def exists(self, category: str, doc_id: str) -> bool:
        return self.storage.exists(self.storage.blob_path(category, doc_id))

    def list_documents(self, category: str) -> List[str]:
        """Ids of all blobs stored in a category."""
        return [
            f.name[: -len(BLOB_SUFFIX)]
            for f in self.storage.list_files(category, suffix=BLOB_SUFFIX)
        ]

    def list_categories(self) -> List[str]:
        return self.storage.list_categories()

    def locate(self, doc_id: str, preferred: Optional[str] = None) -> Optional[str]:
        """
        Category holding the blob for ``doc_id``, or None.

        ``preferred`` is checked first; the remaining categories are scanned
        because records may reference attachments filed under another category.
        """
        if preferred is not None and self.exists(preferred, doc_id):
            return preferred
        for category in self.list_categories():
            if category != preferred and self.exists(category, doc_id):
                return category
        return None
