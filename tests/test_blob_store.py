# Tests for the blob store
# Covers: save/load, references carry no bytes, legacy references,
#         missing and tampered blobs, idempotent deletes, size limit

import json
import os

import pytest

from personal_vault.vault.blob_store import BlobStore, thumbnail_id_for
from personal_vault.vault.exceptions import (
    AuthenticationFailed,
    DocumentTooLarge,
    InvalidName,
    LegacyUnavailable,
    NotFound,
)
from personal_vault.vault.key_manager import VaultSession
from personal_vault.vault.records import DocumentReference


@pytest.fixture
def blobs(storage):
    return BlobStore(storage)


PDF = b"%PDF-1.7\n" + os.urandom(2048)


class TestSaveLoad:
    @pytest.mark.asyncio
    async def test_roundtrip(self, blobs, session):
        ref = await blobs.save_document(session, "education", "diploma.pdf", PDF, "application/pdf")
        assert await blobs.load_document(session, "education", ref) == PDF

    @pytest.mark.asyncio
    async def test_reference_shape(self, blobs, session):
        ref = await blobs.save_document(
            session, "education", "diploma.pdf", PDF, "application/pdf",
            uploaded_at="2024-05-01T10:00:00+00:00",
        )
        assert len(ref.id) == 32
        assert ref.filename == "diploma.pdf"
        assert ref.mime_type == "application/pdf"
        assert ref.upload_date == "2024-05-01T10:00:00+00:00"
        assert ref.size == len(PDF)
        assert ref.thumbnail_id is None

        # Reference is small and serializable; bytes never travel with it
        encoded = json.dumps(ref.to_dict())
        assert len(encoded) < 300

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, blobs, session):
        a = await blobs.save_document(session, "education", "a.pdf", PDF)
        b = await blobs.save_document(session, "education", "a.pdf", PDF)
        assert a.id != b.id
        assert sorted(blobs.list_documents("education")) == sorted([a.id, b.id])

    @pytest.mark.asyncio
    async def test_load_accepts_dict_form(self, blobs, session):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        assert await blobs.load_document(session, "education", ref.to_dict()) == PDF

    @pytest.mark.asyncio
    async def test_mime_type_kept_with_blob(self, blobs, session):
        ref = await blobs.save_document(session, "employment", "cv.txt", b"hello", "text/plain")
        blob = await blobs.load_blob(session, "employment", DocumentReference(
            id=ref.id, filename="cv.txt", upload_date=ref.upload_date,
        ))
        assert blob.mime_type == "text/plain"
        assert blob.filename == "cv.txt"

    @pytest.mark.asyncio
    async def test_default_mime_type(self, blobs, session):
        ref = await blobs.save_document(session, "misc", "data.bin", b"\x00\x01")
        assert ref.mime_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_plaintext_not_on_disk(self, blobs, session, storage):
        ref = await blobs.save_document(session, "misc", "note.txt", b"top secret note")
        assert b"top secret" not in storage.read(storage.blob_path("misc", ref.id))

    @pytest.mark.asyncio
    async def test_too_large_rejected(self, storage, session):
        small = BlobStore(storage, max_document_bytes=10)
        with pytest.raises(DocumentTooLarge, match="File too large"):
            await small.save_document(session, "misc", "big.bin", b"x" * 11)
        assert small.list_categories() == []

    @pytest.mark.asyncio
    async def test_unsafe_category_rejected(self, blobs, session):
        with pytest.raises(InvalidName):
            await blobs.save_document(session, "../outside", "x.txt", b"x")


class TestLoadErrors:
    @pytest.mark.asyncio
    async def test_missing_blob(self, blobs, session):
        ref = DocumentReference(id="deadbeef", filename="gone.pdf", upload_date="")
        with pytest.raises(NotFound, match="Document file not found: gone.pdf"):
            await blobs.load_document(session, "education", ref)

    @pytest.mark.asyncio
    async def test_wrong_key(self, blobs, session):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        other = VaultSession(bytearray(os.urandom(32)))
        with pytest.raises(AuthenticationFailed, match="wrong password or corrupted store"):
            await blobs.load_document(other, "education", ref)

    @pytest.mark.asyncio
    async def test_tampered_blob(self, blobs, session, storage):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        path = storage.blob_path("education", ref.id)
        data = bytearray(path.read_bytes())
        data[100] ^= 0x01
        path.write_bytes(bytes(data))

        with pytest.raises(AuthenticationFailed):
            await blobs.load_document(session, "education", ref)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("legacy", ["old-scan.pdf", {"filename": "old-scan.pdf"}])
    async def test_legacy_reference_unavailable(self, blobs, session, legacy):
        with pytest.raises(LegacyUnavailable) as exc:
            await blobs.load_document(session, "education", legacy)
        assert exc.value.filename == "old-scan.pdf"
        assert "legacy attachment" in str(exc.value)


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_blob_and_thumbnail(self, blobs, session, storage):
        ref = await blobs.save_document(session, "education", "a.png", b"img", "image/png")
        thumb = storage.thumbnail_path("education", thumbnail_id_for(ref.id))
        storage.write_atomic(thumb, b"sealed preview")

        assert await blobs.delete_document("education", ref) is True
        assert not blobs.exists("education", ref.id)
        assert not thumb.exists()

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, blobs, session):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        assert await blobs.delete_document("education", ref) is True
        assert await blobs.delete_document("education", ref) is False

    @pytest.mark.asyncio
    async def test_delete_works_after_lock(self, blobs, session):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        session.lock()
        assert await blobs.delete_document("education", ref) is True

    @pytest.mark.asyncio
    async def test_delete_legacy_is_noop(self, blobs):
        assert await blobs.delete_document("education", "old-scan.pdf") is False

    @pytest.mark.asyncio
    async def test_delete_documents_counts(self, blobs, session):
        refs = [await blobs.save_document(session, "misc", f"{i}.txt", b"x") for i in range(3)]
        assert await blobs.delete_documents("misc", refs + ["legacy.txt"]) == 3
        assert blobs.list_documents("misc") == []


class TestLocate:
    @pytest.mark.asyncio
    async def test_prefers_given_category(self, blobs, session):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        assert blobs.locate(ref.id, preferred="education") == "education"

    @pytest.mark.asyncio
    async def test_falls_back_to_other_categories(self, blobs, session):
        ref = await blobs.save_document(session, "education", "a.pdf", PDF)
        assert blobs.locate(ref.id, preferred="education_records") == "education"

    def test_unknown_id(self, blobs):
        assert blobs.locate("0" * 32, preferred="misc") is None
