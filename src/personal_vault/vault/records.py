# Vault - Records and Document References
#
# The engine treats records as opaque JSON objects. The one thing it reads
# inside them is DocumentReference-shaped values, for cascade delete and
# integrity checks. Which fields hold references is declared per collection
# via CollectionSchema; undeclared collections are scanned at every depth.

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .migrations import Migration


@dataclass(frozen=True)
class DocumentReference:
    """
    Lightweight pointer to an encrypted attachment.

    Embedded in a record instead of the attachment bytes. Only
    ``thumbnail_id`` ever changes after issue (via with_thumbnail()).
    """
    id: str
    filename: str
    upload_date: str
    mime_type: Optional[str] = None
    thumbnail_id: Optional[str] = None
    size: Optional[int] = None

    def with_thumbnail(self, thumbnail_id: Optional[str]) -> "DocumentReference":
        return replace(self, thumbnail_id=thumbnail_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "filename": self.filename,
            "uploadDate": self.upload_date,
        }
        if self.mime_type is not None:
            data["mimeType"] = self.mime_type
        if self.thumbnail_id is not None:
            data["thumbnailId"] = self.thumbnail_id
        if self.size is not None:
            data["size"] = self.size
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentReference":
        return cls(
            id=data["id"],
            filename=data["filename"],
            upload_date=data.get("uploadDate") or "",
            mime_type=data.get("mimeType"),
            thumbnail_id=data.get("thumbnailId"),
            size=data.get("size"),
        )


@dataclass(frozen=True)
class LegacyDocumentReference:
    """Filename-only attachment from older records. Its bytes were never stored."""
    filename: str


AnyReference = Union[DocumentReference, LegacyDocumentReference]


def is_document_reference(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("id"), str)
        and bool(value["id"])
        and isinstance(value.get("filename"), str)
        and "uploadDate" in value
    )


def is_legacy_reference(value: Any) -> bool:
    """A dict with a filename but no id. Bare strings are judged by field, not here."""
    return (
        isinstance(value, dict)
        and isinstance(value.get("filename"), str)
        and not value.get("id")
    )


def parse_reference(value: Any) -> AnyReference:
    """
    Interpret a caller-supplied reference.

    Accepts a DocumentReference, its dict form, a legacy dict or a bare
    filename string.
    """
    if isinstance(value, (DocumentReference, LegacyDocumentReference)):
        return value
    if isinstance(value, str):
        return LegacyDocumentReference(filename=value)
    if is_document_reference(value):
        return DocumentReference.from_dict(value)
    if is_legacy_reference(value):
        return LegacyDocumentReference(filename=value["filename"])
    raise TypeError(f"Not a document reference: {type(value).__name__}")


@dataclass
class CollectionSchema:
    """
    Per-collection description used by the engine.

    Attributes:
        name: Collection name (storage key)
        category: Document category its attachments live in
        reference_fields: Fields (dotted paths allowed) that hold references. None → scan the whole record.
        legacy_fields: Fields (dotted paths allowed) that hold filename-only attachments
        schema_version: Current payload version
        migrations: Upgrades from older payload versions
    """
    name: str
    category: Optional[str] = None
    reference_fields: Optional[Tuple[str, ...]] = None
    legacy_fields: Tuple[str, ...] = ()
    schema_version: int = 1
    migrations: Sequence[Migration] = field(default_factory=tuple)

    def __post_init__(self):
        if self.category is None:
            self.category = self.name
        if self.reference_fields is not None:
            self.reference_fields = tuple(self.reference_fields)
        self.legacy_fields = tuple(self.legacy_fields)


class SchemaRegistry:
    """Lookup of CollectionSchema by collection name, with a scanning default."""

    def __init__(self, schemas: Sequence[CollectionSchema] = ()):
        self._schemas: Dict[str, CollectionSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: CollectionSchema) -> None:
        self._schemas[schema.name] = schema

    def get(self, name: str) -> CollectionSchema:
        return self._schemas.get(name) or CollectionSchema(name=name)

    def names(self) -> List[str]:
        return sorted(self._schemas)


def _resolve(record: Dict[str, Any], path: str) -> List[Any]:
    """Values at a dotted path. Lists met along the way are walked item by item."""
    current: List[Any] = [record]
    for part in path.split("."):
        found: List[Any] = []
        for value in current:
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, dict) and part in item:
                    found.append(item[part])
        current = found
    return current


def _field_values(record: Dict[str, Any], fields: Optional[Sequence[str]]) -> List[Any]:
    if fields is None:
        return list(record.values())
    values: List[Any] = []
    for path in fields:
        values.extend(_resolve(record, path))
    return values


def _nested_objects(values: List[Any]) -> Iterator[Dict[str, Any]]:
    """
    Every dict inside ``values`` at any depth, in document order.

    Reference-shaped dicts are yielded but not descended into.
    """
    stack = list(reversed(values))
    while stack:
        value = stack.pop()
        if isinstance(value, list):
            stack.extend(reversed(value))
        elif isinstance(value, dict):
            yield value
            if not (is_document_reference(value) or is_legacy_reference(value)):
                stack.extend(reversed(list(value.values())))


def extract_document_references(
    record: Any,
    schema: Optional[CollectionSchema] = None,
) -> List[DocumentReference]:
    """
    DocumentReferences held by a record, in document order, de-duplicated by id.

    References are found at any depth, e.g. ``accommodation[].documents[]``.
    When the schema names reference fields (dotted paths allowed), only the
    values under those fields are searched.
    """
    if not isinstance(record, dict):
        return []

    fields = schema.reference_fields if schema else None
    refs: List[DocumentReference] = []
    seen = set()
    for item in _nested_objects(_field_values(record, fields)):
        if is_document_reference(item) and item["id"] not in seen:
            seen.add(item["id"])
            refs.append(DocumentReference.from_dict(item))
    return refs


def extract_legacy_references(
    record: Any,
    schema: Optional[CollectionSchema] = None,
) -> List[LegacyDocumentReference]:
    """Filename-only attachments held by a record, at any depth."""
    if not isinstance(record, dict):
        return []

    legacy: List[LegacyDocumentReference] = []
    for path in schema.legacy_fields if schema else ():
        for value in _resolve(record, path):
            for item in value if isinstance(value, list) else [value]:
                if isinstance(item, str) and item:
                    legacy.append(LegacyDocumentReference(filename=item))

    fields = schema.reference_fields if schema else None
    for item in _nested_objects(_field_values(record, fields)):
        if is_legacy_reference(item):
            legacy.append(LegacyDocumentReference(filename=item["filename"]))
    return legacy


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
