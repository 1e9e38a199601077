# Vault - Collection Store
#
# One encrypted container per named collection. Every mutation is a full
# load → modify → seal → atomic replace cycle, serialized per collection by
# an asyncio.Lock so two concurrent writers cannot lose each other's update.

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .encryption import EncryptionService
from .exceptions import AuthenticationFailed, CorruptCollection, NotFound
from .key_manager import VaultSession
from .migrations import migrate, unwrap_payload, wrap_with_version
from .records import SchemaRegistry
from .storage import FileStorage, validate_name

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
RemoveHook = Callable[[Record], Awaitable[None]]


class CollectionStore:
    """
    CRUD over named record collections.

    Usage::

        store = CollectionStore(storage, SchemaRegistry())
        await store.add(session, "budget_items", {"id": "1", "name": "Rent"})
        items = await store.get(session, "budget_items")
    """

    def __init__(self, storage: FileStorage, schemas: Optional[SchemaRegistry] = None):
        self.storage = storage
        self.schemas = schemas or SchemaRegistry()
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, name: str) -> asyncio.Lock:
        """The writer lock for ``name``."""
        validate_name(name, "collection name")
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    # ── Container I/O (call with the collection lock held) ───────────

    def _load(self, session: VaultSession, name: str) -> List[Record]:
        key = session.key
        try:
            data = self.storage.read(self.storage.collection_path(name))
        except NotFound:
            # A never-written collection is empty, not an error
            return []

        try:
            plaintext = EncryptionService.open_bytes(data, key)
        except AuthenticationFailed as e:
            logger.error("Failed to decrypt collection %s", name)
            raise AuthenticationFailed(
                f"Cannot decrypt collection '{name}': wrong password or corrupted store"
            ) from e

        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise CorruptCollection(f"Collection '{name}' is not valid JSON") from e

        records, stored_version = unwrap_payload(payload)
        schema = self.schemas.get(name)
        if stored_version < schema.schema_version:
            records, _ = migrate(
                name, records, stored_version, schema.schema_version, schema.migrations
            )
        elif stored_version > schema.schema_version:
            logger.warning(
                "Collection %s is at schema v%d, newer than known v%d",
                name, stored_version, schema.schema_version,
            )
        return records

    def _save(self, session: VaultSession, name: str, records: List[Record]) -> None:
        schema = self.schemas.get(name)
        plaintext = json.dumps(
            wrap_with_version(records, schema.schema_version),
            ensure_ascii=False,
        ).encode("utf-8")
        sealed = EncryptionService.seal_bytes(plaintext, session.key)
        self.storage.write_atomic(self.storage.collection_path(name), sealed)

    @staticmethod
    def _check_record(record: Record) -> Record:
        if not isinstance(record, dict) or not isinstance(record.get("id"), str):
            raise TypeError("Record must be a dict with a string 'id'")
        # Round-trip to detach from the caller's object and reject non-JSON values
        return json.loads(json.dumps(record, ensure_ascii=False))

    # ── Contract ─────────────────────────────────────────────────────

    async def get(self, session: VaultSession, name: str) -> List[Record]:
        """
        All records of a collection, in insertion order.

        Raises:
            AuthenticationFailed: Wrong key or tampered container. Partial
                data is never returned.
        """
        async with self.lock_for(name):
            return self._load(session, name)

    async def add(self, session: VaultSession, name: str, record: Record) -> None:
        record = self._check_record(record)
        async with self.lock_for(name):
            records = self._load(session, name)
            records.append(record)
            self._save(session, name, records)

    async def update(
        self, session: VaultSession, name: str, record_id: str, record: Record
    ) -> bool:
        """Replace the entry with ``record_id``. Unknown id is a no-op (False)."""
        record = self._check_record(record)
        async with self.lock_for(name):
            records = self._load(session, name)
            for index, existing in enumerate(records):
                if isinstance(existing, dict) and existing.get("id") == record_id:
                    records[index] = record
                    self._save(session, name, records)
                    return True

        logger.debug("update: no record %s in %s", record_id, name)
        return False

    async def delete(
        self,
        session: VaultSession,
        name: str,
        record_id: str,
        before_remove: Optional[RemoveHook] = None,
    ) -> List[Record]:
        """
        Remove every entry with ``record_id``. Unknown id is a no-op.

        ``before_remove`` is awaited for each matching record while the
        collection lock is held, before the container is rewritten. The
        vault uses it to delete the record's attachments.

        Returns:
            The removed records (empty if none matched)
        """
        async with self.lock_for(name):
            records = self._load(session, name)
            removed = [r for r in records if isinstance(r, dict) and r.get("id") == record_id]
            if not removed:
                logger.debug("delete: no record %s in %s", record_id, name)
                return []

            if before_remove is not None:
                for record in removed:
                    await before_remove(record)

            kept = [r for r in records if not (isinstance(r, dict) and r.get("id") == record_id)]
            self._save(session, name, kept)
            return removed

    async def replace_all(self, session: VaultSession, name: str, records: List[Record]) -> None:
        """Overwrite a collection with ``records`` (bulk import)."""
        checked = [self._check_record(r) for r in records]
        async with self.lock_for(name):
            self._save(session, name, checked)

    async def clear(self, name: str) -> bool:
        """Remove a collection's container. Returns False if it did not exist."""
        async with self.lock_for(name):
            return self.storage.remove(self.storage.collection_path(name))

    def list_collections(self) -> List[str]:
        return self.storage.list_collections()
