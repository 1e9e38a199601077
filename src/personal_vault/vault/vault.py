# Vault - Facade
#
# One object per vault root, composing the key manager, collection store,
# blob store and thumbnail cache behind the two contracts the application
# uses: collections of records, and encrypted document attachments.
#
# Security:
# - Key held only by the current VaultSession, zeroed on lock()
# - Every container is AES-256-GCM sealed; tampering surfaces as an error
# - Deleting a record deletes the attachments it references
# - Audit logging for unlock, lock, document access and deletes

import logging
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..config import VaultSettings
from ..core import AuditLogger, EventSeverity, EventType
from .blob_store import BlobStore
from .collection_store import CollectionStore, Record
from .encryption import build_data_url, parse_data_url
from .exceptions import VaultError, VaultLocked, WrongPassword
from .integrity import ORPHAN_GRACE_PERIOD, IntegrityReport, check_integrity, purge_orphans
from .key_manager import KeyManager, VaultSession
from .records import (
    CollectionSchema,
    DocumentReference,
    SchemaRegistry,
    extract_document_references,
    parse_reference,
)
from .storage import FileStorage
from .thumbnails import THUMBNAIL_MIME_TYPE, ThumbnailCache

logger = logging.getLogger(__name__)


class Vault:
    """
    Encrypted personal vault.

    Usage::

        vault = Vault(settings=VaultSettings(root=Path("~/PersonalVault")))
        await vault.unlock("correct horse battery staple")

        ref = await vault.save_document("education", "diploma.pdf", data_url)
        await vault.add("education", {"id": "e1", "school": "MIT",
                                      "documents": [ref.to_dict()]})
        await vault.delete("education", "e1")  # diploma.pdf goes too

        vault.lock()
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        settings: Optional[VaultSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        schemas: Iterable[CollectionSchema] = (),
    ):
        """
        Args:
            root: Vault directory. Overrides settings.root when both are given.
            settings: Runtime settings (default: VaultSettings.from_env())
            audit_logger: Audit trail (default: one under settings' audit dir)
            schemas: Collection schemas to register up front
        """
        if settings is None:
            settings = VaultSettings(root=root) if root is not None else VaultSettings.from_env()
        elif root is not None:
            settings = replace(settings, root=Path(root))
        self.settings = settings

        self.storage = FileStorage(settings.root)
        self.schemas = SchemaRegistry(list(schemas))
        self.keys = KeyManager(self.storage, settings)
        self.collections = CollectionStore(self.storage, self.schemas)
        self.blobs = BlobStore(self.storage, settings.max_document_bytes)
        self.thumbnails = ThumbnailCache(
            self.storage,
            self.blobs,
            max_size=settings.thumbnail_size,
            quality=settings.thumbnail_quality,
        )

        self._owns_audit = audit_logger is None
        self.audit = audit_logger or AuditLogger(settings.effective_audit_dir)
        self._session: Optional[VaultSession] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def root(self) -> Path:
        return self.storage.root

    @property
    def is_unlocked(self) -> bool:
        return self._session is not None and self._session.is_unlocked

    @property
    def session(self) -> VaultSession:
        if not self.is_unlocked:
            raise VaultLocked("Vault is locked. Unlock vault first.")
        return self._session

    def exists(self) -> bool:
        return self.keys.exists()

    async def create(self, password: str) -> None:
        """
        Initialize a new vault at root and leave it unlocked.

        Raises:
            VaultAlreadyExists: root already holds a vault.
        """
        session = await self.keys.initialize(password)
        self._replace_session(session)

        self.audit.log_event(
            EventType.VAULT_CREATED,
            EventSeverity.INFO,
            "Vault created",
            details={"root": str(self.root)},
        )

    async def unlock(self, password: str) -> None:
        """
        Derive the key for ``password`` and open a session.

        Raises:
            NotFound: No vault at root.
            WrongPassword: Password does not open the vault key.
        """
        try:
            session = await self.keys.unlock(password)
        except WrongPassword:
            self.audit.log_event(
                EventType.VAULT_UNLOCK_FAILED,
                EventSeverity.ALERT,
                "Failed vault unlock attempt",
                details={"root": str(self.root)},
            )
            raise

        self._replace_session(session)
        self.audit.log_event(
            EventType.VAULT_UNLOCKED,
            EventSeverity.INFO,
            "Vault unlocked",
            details={"session_id": session.session_id},
        )

    def lock(self) -> None:
        """Zero the session key. Safe to call when already locked."""
        if self._session is None:
            return

        session_id = self._session.session_id
        self.keys.lock(self._session)
        self._session = None

        self.audit.log_event(
            EventType.VAULT_LOCKED,
            EventSeverity.INFO,
            "Vault locked",
            details={"session_id": session_id},
        )

    def close(self) -> None:
        """Lock and release the audit log file."""
        self.lock()
        if self._owns_audit:
            self.audit.close()

    def _replace_session(self, session: VaultSession) -> None:
        if self._session is not None:
            self._session.lock()
        self._session = session

    def register_schema(self, schema: CollectionSchema) -> None:
        self.schemas.register(schema)

    # ── Collection Store contract ────────────────────────────────────

    async def get(self, name: str) -> List[Record]:
        return await self.collections.get(self.session, name)

    async def add(self, name: str, item: Record) -> None:
        await self.collections.add(self.session, name, item)

    async def update(self, name: str, item_id: str, item: Record) -> bool:
        return await self.collections.update(self.session, name, item_id, item)

    async def delete(self, name: str, item_id: str) -> bool:
        """
        Delete a record and every attachment it references, at any depth.

        Attachments are removed before the record, from the schema category
        or wherever the blob is actually filed. A failed attachment
        delete is logged and does not stop the record delete; the leftover
        blob shows up as an orphan in check_integrity().

        Returns:
            True if a record was removed
        """
        session = self.session
        schema = self.schemas.get(name)
        deleted_documents: List[str] = []

        async def _cascade(record: Record) -> None:
            for ref in extract_document_references(record, schema):
                try:
                    category = self.blobs.locate(ref.id, preferred=schema.category)
                    if category is None:
                        logger.warning(
                            "No stored document %s (%s) for %s/%s; nothing to delete",
                            ref.id[:8], ref.filename, name, item_id,
                        )
                        continue
                    if await self.blobs.delete_document(category, ref):
                        deleted_documents.append(ref.id)
                except VaultError as e:
                    logger.error(
                        "Failed to delete document %s for %s/%s: %s",
                        ref.id[:8], name, item_id, e,
                    )

        removed = await self.collections.delete(session, name, item_id, before_remove=_cascade)
        if not removed:
            return False

        self.audit.log_event(
            EventType.RECORD_DELETED,
            EventSeverity.INFO,
            f"Record deleted from {name}",
            details={
                "collection": name,
                "record_id": item_id,
                "documents_deleted": len(deleted_documents),
            },
        )
        return True

    # ── Document Service contract ────────────────────────────────────

    async def save_document(
        self,
        category: str,
        filename: str,
        data_url: str,
        uploaded_at: Optional[str] = None,
    ) -> DocumentReference:
        """
        Store an attachment given as a base64 data URL.

        Returns:
            DocumentReference to embed in a record (``ref.to_dict()``)

        Raises:
            InvalidDataUrl: ``data_url`` is not a base64 data URL.
        """
        mime_type, raw = parse_data_url(data_url)
        ref = await self.blobs.save_document(
            self.session, category, filename, raw, mime_type, uploaded_at
        )

        self.audit.log_event(
            EventType.DOCUMENT_SAVED,
            EventSeverity.INFO,
            f"Document saved: {filename}",
            details={"category": category, "document_id": ref.id, "size": ref.size},
        )
        return ref

    async def load_document(self, category: str, ref: Any) -> str:
        """
        Decrypt an attachment and return it as a data URL.

        Raises:
            LegacyUnavailable: Filename-only reference.
            NotFound: Blob missing.
            AuthenticationFailed: Blob tampered or sealed under another key.
        """
        ref = parse_reference(ref)
        blob = await self.blobs.load_blob(self.session, category, ref)
        self._audit_access(category, ref)
        return build_data_url(ref.mime_type or blob.mime_type, blob.raw)

    async def load_document_bytes(self, category: str, ref: Any) -> bytes:
        ref = parse_reference(ref)
        raw = await self.blobs.load_document(self.session, category, ref)
        self._audit_access(category, ref)
        return raw

    def _audit_access(self, category: str, ref: DocumentReference) -> None:
        self.audit.log_event(
            EventType.DOCUMENT_ACCESSED,
            EventSeverity.INFO,
            f"Document accessed: {ref.filename}",
            details={"category": category, "document_id": ref.id},
        )

    async def delete_document(self, category: str, ref: Any) -> bool:
        """Delete one attachment and its thumbnail. Idempotent."""
        ref = parse_reference(ref)
        removed = await self.blobs.delete_document(category, ref)
        if removed:
            self.audit.log_event(
                EventType.DOCUMENT_DELETED,
                EventSeverity.INFO,
                f"Document deleted: {ref.filename}",
                details={"category": category, "document_id": ref.id},
            )
        return removed

    async def delete_documents(self, category: str, refs: Iterable[Any]) -> int:
        count = 0
        for ref in refs:
            if await self.delete_document(category, ref):
                count += 1
        return count

    async def load_thumbnail(self, category: str, thumbnail_id: Optional[str]) -> Optional[str]:
        """JPEG preview as a data URL, or None when there is none to show."""
        preview = await self.thumbnails.load_thumbnail(self.session, category, thumbnail_id)
        if preview is None:
            return None
        return build_data_url(THUMBNAIL_MIME_TYPE, preview)

    async def regenerate_thumbnail(self, category: str, ref: Any) -> DocumentReference:
        """
        Rebuild the preview for ``ref``.

        Returns the reference with ``thumbnail_id`` set (or cleared for
        non-image types). The caller writes it back into its record.
        """
        updated = await self.thumbnails.regenerate_thumbnail(self.session, category, ref)
        self.audit.log_event(
            EventType.THUMBNAIL_REGENERATED,
            EventSeverity.INFO,
            f"Thumbnail regenerated: {updated.filename}",
            details={
                "category": category,
                "document_id": updated.id,
                "thumbnail_id": updated.thumbnail_id,
            },
        )
        return updated

    # ── Maintenance ──────────────────────────────────────────────────

    async def check_integrity(self) -> IntegrityReport:
        report = await check_integrity(self.session, self.collections, self.blobs)
        self.audit.log_event(
            EventType.INTEGRITY_CHECKED,
            EventSeverity.INFO if report.is_clean else EventSeverity.ALERT,
            "Integrity check completed",
            details={
                "matched": len(report.matched),
                "missing": len(report.missing),
                "orphaned_blobs": len(report.orphaned_blobs),
                "orphaned_thumbnails": len(report.orphaned_thumbnails),
                "unreadable_collections": report.unreadable_collections,
            },
        )
        return report

    async def purge_orphans(self, grace_period: timedelta = ORPHAN_GRACE_PERIOD) -> int:
        """Delete unreferenced blobs and thumbnails older than ``grace_period``."""
        report = await self.check_integrity()
        purged = purge_orphans(report, self.blobs, grace_period)
        if purged:
            self.audit.log_event(
                EventType.ORPHANS_PURGED,
                EventSeverity.INFO,
                f"Purged {purged} orphaned files",
                details={"count": purged},
            )
        return purged

    async def change_password(self, old_password: str, new_password: str) -> None:
        """
        Re-wrap the vault key under ``new_password``.

        Containers stay sealed under the same data key; only vault.json is
        replaced, atomically. If that write fails the old password keeps
        working and nothing else has changed.

        Raises:
            WrongPassword: ``old_password`` does not match this vault.
            VaultIOError: vault.json could not be replaced.
        """
        session = self.session
        was_wrapped = self.keys.read_salt_record().is_wrapped
        try:
            await self.keys.change_password(session, old_password, new_password)
        except WrongPassword:
            self.audit.log_event(
                EventType.VAULT_UNLOCK_FAILED,
                EventSeverity.ALERT,
                "Password change rejected: wrong current password",
            )
            raise

        self.audit.log_event(
            EventType.VAULT_PASSWORD_CHANGED,
            EventSeverity.ALERT,
            "Master password changed",
            details={"session_id": session.session_id, "upgraded": not was_wrapped},
        )

    def stats(self) -> Dict[str, Any]:
        """Counts of containers on disk. Needs no key."""
        categories = self.storage.list_categories()
        return {
            "root": str(self.root),
            "unlocked": self.is_unlocked,
            "collections": len(self.collections.list_collections()),
            "categories": len(categories),
            "documents": sum(len(self.blobs.list_documents(c)) for c in categories),
        }
