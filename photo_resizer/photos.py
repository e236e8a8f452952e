"""
Photo metadata accessor backed by a GridFS bucket.

`PhotoStore` is the only code path that reads or mutates a photo's metadata
document. Each stored blob lives in `<bucket>.files` with a `metadata`
sub-document shaped like::

    {"contentType": ..., "businessId": ..., "caption": ...,
     "orig": <id>, "1024": <id>, "640": <id>, "256": <id>, "128": <id>}

Size keys are optional and only appear once the matching variant exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from io import BytesIO
import logging
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Union
import uuid

from bson import ObjectId
from gridfs import GridFSBucket
from gridfs.errors import NoFile
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .errors import PhotoNotFound, StoreError

logger = logging.getLogger(__name__)

IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
}


class VariantSize(str, Enum):
    ORIG = "orig"
    EDGE_1024 = "1024"
    EDGE_640 = "640"
    EDGE_256 = "256"
    EDGE_128 = "128"

    @property
    def edge(self) -> Optional[int]:
        """Square edge length in pixels, or None for the canonical re-encode."""
        if self is VariantSize.ORIG:
            return None
        return int(self.value)


# Largest first, matching the order variants are rendered in.
DOWNSCALE_SIZES = (
    VariantSize.EDGE_1024,
    VariantSize.EDGE_640,
    VariantSize.EDGE_256,
    VariantSize.EDGE_128,
)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for `value`, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


@dataclass
class Photo:
    id: ObjectId
    filename: str
    length: int
    upload_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Photo":
        return cls(
            id=doc["_id"],
            filename=doc.get("filename", ""),
            length=doc.get("length", 0),
            upload_date=doc.get("uploadDate"),
            metadata=dict(doc.get("metadata") or {}),
        )

    @property
    def content_type(self) -> Optional[str]:
        return self.metadata.get("contentType")

    @property
    def business_id(self) -> Optional[str]:
        return self.metadata.get("businessId")

    @property
    def caption(self) -> Optional[str]:
        return self.metadata.get("caption")

    def variant_id(self, size: Union[VariantSize, str]) -> Optional[ObjectId]:
        return self.metadata.get(VariantSize(size).value)

    def available_sizes(self) -> List[VariantSize]:
        return [size for size in VariantSize if size.value in self.metadata]


@dataclass
class StoredFile:
    """A fully buffered blob read back from the store."""

    id: ObjectId
    data: bytes
    content_type: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


class PhotoStore:
    """Data-access layer over one GridFS bucket."""

    def __init__(self, db: Database, bucket_name: str = "images"):
        self._bucket = GridFSBucket(db, bucket_name=bucket_name)
        self._files = db[f"{bucket_name}.files"]

    def fetch_by_id(self, photo_id: Any) -> Optional[Photo]:
        """Return the photo for `photo_id`; malformed or unknown ids give None."""
        oid = parse_object_id(photo_id)
        if oid is None:
            return None
        doc = self._files.find_one({"_id": oid})
        if doc is None:
            return None
        return Photo.from_document(doc)

    def fetch_by_owner(self, business_id: Any) -> List[Photo]:
        cursor = self._files.find({"metadata.businessId": str(business_id)})
        return [Photo.from_document(doc) for doc in cursor]

    def create(
        self,
        source: Union[bytes, BinaryIO],
        content_type: str,
        business_id: Any,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> ObjectId:
        """
        Store an original upload and return its id.

        The id is only returned after GridFS has written every chunk and the
        files document, so callers never publish a half-written blob.
        """
        if filename is None:
            extension = IMAGE_TYPES.get(content_type, "bin")
            filename = f"{uuid.uuid4().hex}.{extension}"
        metadata = {
            "contentType": content_type,
            "businessId": str(business_id),
            "caption": caption,
        }
        return self._upload(filename, source, metadata)

    def save_file(self, path: Path, content_type: str, filename: Optional[str] = None) -> ObjectId:
        """Store a local file (a rendered variant) and return the new blob id."""
        path = Path(path)
        with path.open("rb") as fh:
            return self._upload(filename or path.name, fh, {"contentType": content_type})

    def read_file(self, file_id: Any) -> StoredFile:
        """
        Buffer the complete content of a stored blob.

        Raises:
            PhotoNotFound: the id is malformed or no such blob exists.
            StoreError: any other failure while opening or streaming.
        """
        oid = parse_object_id(file_id)
        if oid is None:
            raise PhotoNotFound(file_id)
        try:
            with self._bucket.open_download_stream(oid) as stream:
                data = stream.read()
                metadata = dict(stream.metadata or {})
        except NoFile as exc:
            raise PhotoNotFound(file_id) from exc
        except PyMongoError as exc:
            raise StoreError(f"Failed to read blob {file_id}: {exc}") from exc
        return StoredFile(id=oid, data=data, content_type=metadata.get("contentType"), metadata=metadata)

    def set_variant_reference(
        self, photo_id: Any, size: Union[VariantSize, str], variant_id: Any
    ) -> bool:
        """
        Point one size key of the photo's metadata at `variant_id`.

        Only `metadata.<size>` is touched, so concurrent updates for different
        sizes of the same photo cannot overwrite each other. Returns whether a
        matching photo was found.
        """
        size = VariantSize(size)
        oid = parse_object_id(photo_id)
        if oid is None:
            return False
        variant_oid = parse_object_id(variant_id) or variant_id
        try:
            result = self._files.update_one(
                {"_id": oid},
                {"$set": {f"metadata.{size.value}": variant_oid}},
            )
        except PyMongoError as exc:
            raise StoreError(f"Failed to update metadata.{size.value} on {photo_id}: {exc}") from exc
        logger.debug("Set metadata.%s=%s on photo %s (matched=%s)", size.value, variant_oid, oid, result.matched_count)
        return result.matched_count > 0

    def _upload(self, filename: str, source: Union[bytes, BinaryIO], metadata: Dict[str, Any]) -> ObjectId:
        if isinstance(source, (bytes, bytearray)):
            source = BytesIO(source)
        try:
            return self._bucket.upload_from_stream(filename, source, metadata=metadata)
        except PyMongoError as exc:
            raise StoreError(f"Failed to store {filename}: {exc}") from exc
