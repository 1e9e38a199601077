# Vault - Storage Medium
#
# Filesystem layout for one vault root:
#   vault.json                                unencrypted salt record
#   data/<collection>.vault                   one container per collection
#   documents/<category>/<docId>.blob         one container per attachment
#   documents/<category>/<thumbnailId>.thumb  one container per thumbnail
#
# Writes are all-or-nothing: stage in a temp file beside the target, fsync,
# then os.replace(). A partially written container is never visible.

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .exceptions import InvalidName, NotFound, VaultIOError

logger = logging.getLogger(__name__)

SALT_RECORD_NAME = "vault.json"
DATA_DIR = "data"
DOCUMENTS_DIR = "documents"
COLLECTION_SUFFIX = ".vault"
BLOB_SUFFIX = ".blob"
THUMBNAIL_SUFFIX = ".thumb"

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def validate_name(value: str, kind: str = "name") -> str:
    """Reject anything that is not a single safe path component."""
    if not isinstance(value, str) or not _SAFE_NAME_RE.match(value) or ".." in value:
        raise InvalidName(f"Invalid {kind}: {value!r}")
    return value


@dataclass
class StoredFile:
    """A file found on disk during a directory scan."""
    name: str
    size: int
    modified_at: str  # ISO 8601 UTC


class FileStorage:
    """
    Raw byte storage for one vault root.

    Knows nothing about encryption; stores and returns opaque container
    bytes. OSError is translated to VaultIOError, missing files to NotFound.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    # ── Layout ───────────────────────────────────────────────────────

    @property
    def salt_record_path(self) -> Path:
        return self.root / SALT_RECORD_NAME

    @property
    def data_dir(self) -> Path:
        return self.root / DATA_DIR

    @property
    def documents_dir(self) -> Path:
        return self.root / DOCUMENTS_DIR

    def collection_path(self, name: str) -> Path:
        validate_name(name, "collection name")
        return self.data_dir / f"{name}{COLLECTION_SUFFIX}"

    def category_dir(self, category: str) -> Path:
        validate_name(category, "category")
        return self.documents_dir / category

    def blob_path(self, category: str, doc_id: str) -> Path:
        validate_name(doc_id, "document id")
        return self.category_dir(category) / f"{doc_id}{BLOB_SUFFIX}"

    def thumbnail_path(self, category: str, thumbnail_id: str) -> Path:
        validate_name(thumbnail_id, "thumbnail id")
        return self.category_dir(category) / f"{thumbnail_id}{THUMBNAIL_SUFFIX}"

    # ── Byte I/O ─────────────────────────────────────────────────────

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def read(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(f"Not found: {path.name}") from e
        except OSError as e:
            raise VaultIOError(f"Failed to read {path.name}: {e}") from e

    def write_atomic(self, path: Path, data: bytes) -> None:
        """Stage ``data`` in a temp file beside ``path`` and swap it in."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise VaultIOError(f"Failed to stage {path.name}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException as e:
            # Clean up temp file on failure or cancellation
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            if isinstance(e, OSError):
                raise VaultIOError(f"Failed to write {path.name}: {e}") from e
            raise

    def remove(self, path: Path) -> bool:
        """Delete a file. Returns False if it was already gone."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise VaultIOError(f"Failed to delete {path.name}: {e}") from e

    # ── Discovery ────────────────────────────────────────────────────

    def list_collections(self) -> List[str]:
        """Names of all collections that have a container on disk."""
        if not self.data_dir.is_dir():
            return []
        return sorted(
            p.name[: -len(COLLECTION_SUFFIX)]
            for p in self.data_dir.iterdir()
            if p.is_file() and not p.name.startswith(".") and p.name.endswith(COLLECTION_SUFFIX)
        )

    def list_categories(self) -> List[str]:
        if not self.documents_dir.is_dir():
            return []
        # Foreign directories dropped into documents/ are not categories
        return sorted(
            p.name for p in self.documents_dir.iterdir()
            if p.is_dir() and _SAFE_NAME_RE.match(p.name) and ".." not in p.name
        )

    def list_files(self, category: str, suffix: Optional[str] = None) -> List[StoredFile]:
        """Files in a category directory, optionally filtered by suffix."""
        directory = self.category_dir(category)
        if not directory.is_dir():
            return []

        files = []
        for p in sorted(directory.iterdir()):
            if not p.is_file() or p.name.startswith("."):
                continue
            if suffix and not p.name.endswith(suffix):
                continue
            stat = p.stat()
            files.append(StoredFile(
                name=p.name,
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            ))
        return files
