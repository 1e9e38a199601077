# Vault - Thumbnail Cache
#
# Small JPEG previews for image attachments, sealed like any other container.
# Generation is explicit (regenerate_thumbnail), never a side effect of save.
# Loading is advisory: a missing or unreadable thumbnail yields None.
#
# Per reference: no thumbnail → regenerate → thumbnail ready; regenerate again
# overwrites the same artifact.

import asyncio
import io
import logging
from typing import Any, Optional

from PIL import Image

from .blob_store import BlobStore, thumbnail_id_for
from .encryption import EncryptionService
from .exceptions import (
    LegacyUnavailable,
    ThumbnailGenerationFailed,
    VaultError,
)
from .key_manager import VaultSession
from .records import DocumentReference, LegacyDocumentReference, parse_reference
from .storage import FileStorage

logger = logging.getLogger(__name__)

THUMBNAIL_MIME_TYPE = "image/jpeg"

# Types Pillow rasterizes cheaply. Multi-page TIFF/GIF render their first frame.
SUPPORTED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/webp",
    "image/tiff",
})


def supports_thumbnail(mime_type: Optional[str]) -> bool:
    return bool(mime_type) and mime_type.lower() in SUPPORTED_MIME_TYPES


def render_thumbnail(raw: bytes, max_size: int = 200, quality: int = 70) -> bytes:
    """
    Rasterize an image into a JPEG no larger than max_size on either edge.

    Raises:
        ThumbnailGenerationFailed: Bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.seek(0)
            frame = img.copy()
    except (OSError, ValueError, EOFError, Image.DecompressionBombError) as e:
        raise ThumbnailGenerationFailed(f"Cannot decode image: {e}") from e

    # Flatten transparency onto white; JPEG has no alpha
    if frame.mode in ("RGBA", "LA") or (frame.mode == "P" and "transparency" in frame.info):
        rgba = frame.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        frame = background
    elif frame.mode != "RGB":
        frame = frame.convert("RGB")

    frame.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    out = io.BytesIO()
    frame.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


class ThumbnailCache:
    """Derives, stores and serves encrypted previews for attachments."""

    def __init__(
        self,
        storage: FileStorage,
        blobs: BlobStore,
        max_size: int = 200,
        quality: int = 70,
    ):
        self.storage = storage
        self.blobs = blobs
        self.max_size = max_size
        self.quality = quality

    async def regenerate_thumbnail(
        self, session: VaultSession, category: str, ref: Any
    ) -> DocumentReference:
        """
        (Re)build the thumbnail for ``ref`` and return the updated reference.

        Unsupported types get ``thumbnail_id=None`` and any stale artifact is
        removed. On ThumbnailGenerationFailed the previous artifact is left
        as it was, so the caller can retry.

        Raises:
            LegacyUnavailable: Filename-only reference.
            NotFound / AuthenticationFailed: Source blob missing or unreadable.
            ThumbnailGenerationFailed: Source is not a decodable image.
        """
        ref = parse_reference(ref)
        if isinstance(ref, LegacyDocumentReference):
            raise LegacyUnavailable(ref.filename)

        blob = await self.blobs.load_blob(session, category, ref)
        mime_type = ref.mime_type or blob.mime_type
        thumbnail_id = thumbnail_id_for(ref.id)
        path = self.storage.thumbnail_path(category, thumbnail_id)

        if not supports_thumbnail(mime_type):
            self.storage.remove(path)
            logger.debug("No thumbnail for %s (%s)", ref.filename, mime_type)
            return ref.with_thumbnail(None)

        preview = await asyncio.to_thread(
            render_thumbnail, blob.raw, self.max_size, self.quality
        )
        sealed = EncryptionService.seal_bytes(preview, session.key)
        self.storage.write_atomic(path, sealed)

        logger.info("Regenerated thumbnail for %s -> %s", ref.filename, thumbnail_id[:8])
        return ref.with_thumbnail(thumbnail_id)

    async def load_thumbnail(
        self, session: VaultSession, category: str, thumbnail_id: Optional[str]
    ) -> Optional[bytes]:
        """Decrypted JPEG preview, or None if there is none to show."""
        if not thumbnail_id:
            return None
        try:
            data = self.storage.read(self.storage.thumbnail_path(category, thumbnail_id))
            return EncryptionService.open_bytes(data, session.key)
        except VaultError as e:
            logger.warning("Failed to load thumbnail %s/%s: %s", category, thumbnail_id, e)
            return None

    async def delete_thumbnail(self, category: str, thumbnail_id: str) -> bool:
        """Remove a thumbnail artifact. Idempotent."""
        return self.storage.remove(self.storage.thumbnail_path(category, thumbnail_id))

    def exists(self, category: str, thumbnail_id: str) -> bool:
        return self.storage.exists(self.storage.thumbnail_path(category, thumbnail_id))
