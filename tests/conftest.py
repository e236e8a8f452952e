from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

from bson import ObjectId
from PIL import Image
import pytest

from photo_resizer.config import Settings
from photo_resizer.errors import PhotoNotFound, StoreError
from photo_resizer.photos import Photo, StoredFile, VariantSize, parse_object_id


def make_image_bytes(width: int, height: int, fmt: str = "JPEG", color=(200, 30, 30)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = color + (255,) if mode == "RGBA" else color
    buf = BytesIO()
    Image.new(mode, (width, height), fill).save(buf, format=fmt)
    return buf.getvalue()


def make_mpo_bytes(width: int, height: int) -> bytes:
    """Multi-picture JPEG, the container most phone cameras write."""
    frames = [Image.new("RGB", (width, height), (90, 120, 200)), Image.new("RGB", (width, height), (20, 20, 20))]
    buf = BytesIO()
    frames[0].save(buf, format="MPO", save_all=True, append_images=frames[1:])
    return buf.getvalue()


class FakePhotoStore:
    """In-memory stand-in for PhotoStore with the same method contract."""

    def __init__(self):
        self.files: Dict[ObjectId, Dict[str, Any]] = {}
        self.fail_save_for: List[str] = []
        self.fail_reference_for: List[str] = []

    def add_original(
        self,
        data: bytes,
        content_type: str = "image/jpeg",
        business_id: str = "biz-1",
        caption: Optional[str] = None,
    ) -> ObjectId:
        oid = ObjectId()
        self.files[oid] = {
            "_id": oid,
            "filename": f"{oid}.upload",
            "length": len(data),
            "data": data,
            "metadata": {"contentType": content_type, "businessId": business_id, "caption": caption},
        }
        return oid

    def metadata(self, oid: ObjectId) -> Dict[str, Any]:
        return self.files[oid]["metadata"]

    def fetch_by_id(self, photo_id):
        oid = parse_object_id(photo_id)
        if oid is None or oid not in self.files:
            return None
        return Photo.from_document(self.files[oid])

    def fetch_by_owner(self, business_id):
        return [
            Photo.from_document(doc)
            for doc in self.files.values()
            if doc["metadata"].get("businessId") == str(business_id)
        ]

    def create(self, source, content_type, business_id, caption=None, filename=None):
        data = source if isinstance(source, bytes) else source.read()
        return self.add_original(data, content_type, str(business_id), caption)

    def save_file(self, path: Path, content_type: str, filename: Optional[str] = None) -> ObjectId:
        name = filename or Path(path).name
        if any(marker in name for marker in self.fail_save_for):
            raise StoreError(f"simulated write failure for {name}")
        data = Path(path).read_bytes()
        oid = ObjectId()
        self.files[oid] = {
            "_id": oid,
            "filename": name,
            "length": len(data),
            "data": data,
            "metadata": {"contentType": content_type},
        }
        return oid

    def read_file(self, file_id) -> StoredFile:
        oid = parse_object_id(file_id)
        if oid is None or oid not in self.files:
            raise PhotoNotFound(file_id)
        doc = self.files[oid]
        return StoredFile(id=oid, data=doc["data"], content_type=doc["metadata"].get("contentType"), metadata=doc["metadata"])

    def set_variant_reference(self, photo_id, size, variant_id) -> bool:
        size = VariantSize(size)
        if size.value in self.fail_reference_for:
            raise StoreError(f"simulated metadata failure for {size.value}")
        oid = parse_object_id(photo_id)
        if oid is None or oid not in self.files:
            return False
        self.files[oid]["metadata"][size.value] = variant_id
        return True


class FakeChannel:
    def __init__(self):
        self.acked: List[int] = []
        self.nacked: List[tuple] = []

    def basic_ack(self, delivery_tag):
        self.acked.append(delivery_tag)

    def basic_nack(self, delivery_tag, requeue=True):
        self.nacked.append((delivery_tag, requeue))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(scratch_dir=tmp_path / "scratch", failure_policy="drop")


@pytest.fixture
def store() -> FakePhotoStore:
    return FakePhotoStore()
