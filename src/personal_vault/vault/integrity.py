"""Cross-reference live DocumentReferences against attachment files on disk.

Reports matched references, references whose blob is missing, and blobs or
thumbnails that no live record points to (orphans). Orphans can be purged,
but only once they are older than a grace period: a document saved moments
ago may not be embedded in its record yet.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Set

from .blob_store import BlobStore
from .collection_store import CollectionStore
from .exceptions import AuthenticationFailed, CorruptCollection, MigrationFailed, VaultError
from .key_manager import VaultSession
from .records import extract_document_references, extract_legacy_references
from .storage import BLOB_SUFFIX, THUMBNAIL_SUFFIX, StoredFile

logger = logging.getLogger(__name__)

ORPHAN_GRACE_PERIOD = timedelta(hours=1)


@dataclass
class IntegrityReport:
    timestamp: str
    total_records: int = 0
    matched: List[Dict[str, str]] = field(default_factory=list)
    missing: List[Dict[str, str]] = field(default_factory=list)
    legacy: List[Dict[str, str]] = field(default_factory=list)
    orphaned_blobs: List[Dict[str, Any]] = field(default_factory=list)
    orphaned_thumbnails: List[Dict[str, Any]] = field(default_factory=list)
    unreadable_collections: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.missing
            or self.orphaned_blobs
            or self.orphaned_thumbnails
            or self.unreadable_collections
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "total_records": self.total_records,
            "matched": self.matched,
            "missing": self.missing,
            "legacy": self.legacy,
            "orphaned_blobs": self.orphaned_blobs,
            "orphaned_thumbnails": self.orphaned_thumbnails,
            "unreadable_collections": self.unreadable_collections,
            "is_clean": self.is_clean,
        }


def _file_entry(category: str, stored: StoredFile) -> Dict[str, Any]:
    return {
        "category": category,
        "file": stored.name,
        "size": stored.size,
        "modified_at": stored.modified_at,
    }


def _stored_blobs(blobs: BlobStore) -> Dict[str, str]:
    """Document id -> category for every blob on disk."""
    located: Dict[str, str] = {}
    for category in blobs.list_categories():
        for doc_id in blobs.list_documents(category):
            located.setdefault(doc_id, category)
    return located


async def check_integrity(
    session: VaultSession,
    collections: CollectionStore,
    blobs: BlobStore,
) -> IntegrityReport:
    """
    Scan every collection and every category directory.

    Blobs are matched by document id in whatever category they are filed
    under; the schema category is only the expected location.
    """
    report = IntegrityReport(timestamp=datetime.now(timezone.utc).isoformat())
    stored = _stored_blobs(blobs)
    referenced: Set[str] = set()
    referenced_thumbnails: Set[str] = set()

    for name in collections.list_collections():
        schema = collections.schemas.get(name)
        try:
            records = await collections.get(session, name)
        except (AuthenticationFailed, CorruptCollection, MigrationFailed) as e:
            logger.error("Integrity check: cannot read collection %s: %s", name, e)
            report.unreadable_collections.append(name)
            continue

        report.total_records += len(records)
        for record in records:
            record_id = str(record.get("id", "")) if isinstance(record, dict) else ""
            for ref in extract_document_references(record, schema):
                referenced.add(ref.id)
                if ref.thumbnail_id:
                    referenced_thumbnails.add(ref.thumbnail_id)
                entry = {
                    "collection": name,
                    "record_id": record_id,
                    "category": stored.get(ref.id, schema.category),
                    "document_id": ref.id,
                    "filename": ref.filename,
                }
                if ref.id in stored:
                    report.matched.append(entry)
                else:
                    report.missing.append(entry)
            for legacy in extract_legacy_references(record, schema):
                report.legacy.append({
                    "collection": name,
                    "record_id": record_id,
                    "filename": legacy.filename,
                })

    storage = blobs.storage
    for category in storage.list_categories():
        for stored_file in storage.list_files(category, suffix=BLOB_SUFFIX):
            doc_id = stored_file.name[: -len(BLOB_SUFFIX)]
            if doc_id not in referenced:
                report.orphaned_blobs.append(_file_entry(category, stored_file))

        for stored_file in storage.list_files(category, suffix=THUMBNAIL_SUFFIX):
            thumbnail_id = stored_file.name[: -len(THUMBNAIL_SUFFIX)]
            owner_id = thumbnail_id[: -len("_thumb")] if thumbnail_id.endswith("_thumb") else None
            if thumbnail_id in referenced_thumbnails:
                continue
            if owner_id and owner_id in referenced:
                # Regenerated but not yet written back into the record
                continue
            report.orphaned_thumbnails.append(_file_entry(category, stored_file))

    logger.info(
        "Integrity check: %d matched, %d missing, %d orphaned blobs, %d orphaned thumbnails",
        len(report.matched), len(report.missing),
        len(report.orphaned_blobs), len(report.orphaned_thumbnails),
    )
    return report


def purge_orphans(
    report: IntegrityReport,
    blobs: BlobStore,
    grace_period: timedelta = ORPHAN_GRACE_PERIOD,
) -> int:
    """
    Delete orphaned blobs and thumbnails older than ``grace_period``.

    Raises:
        VaultError: Some collection could not be read, or some reference
            has no blob. Either way the reference set is not trustworthy
            and nothing is deleted.
    """
    if report.unreadable_collections:
        raise VaultError(
            "Refusing to purge: unreadable collections "
            + ", ".join(report.unreadable_collections)
        )
    if report.missing:
        raise VaultError(
            f"Refusing to purge: {len(report.missing)} referenced documents are missing"
        )

    cutoff = datetime.now(timezone.utc) - grace_period
    storage = blobs.storage
    purged = 0
    for entry in report.orphaned_blobs + report.orphaned_thumbnails:
        if datetime.fromisoformat(entry["modified_at"]) > cutoff:
            continue
        if storage.remove(storage.category_dir(entry["category"]) / entry["file"]):
            purged += 1
    logger.info("Purged %d orphaned files", purged)
    return purged
