from io import BytesIO
from unittest.mock import MagicMock, patch

from bson import ObjectId
from gridfs.errors import NoFile
from pymongo.errors import ServerSelectionTimeoutError
import pytest

from photo_resizer.errors import PhotoNotFound, StoreError
from photo_resizer.photos import Photo, PhotoStore, VariantSize, parse_object_id


@pytest.fixture
def backend():
    db = MagicMock(name="db")
    files = MagicMock(name="images.files")
    db.__getitem__.return_value = files
    with patch("photo_resizer.photos.GridFSBucket") as bucket_cls:
        store = PhotoStore(db, bucket_name="images")
        yield store, bucket_cls.return_value, files
    db.__getitem__.assert_called_with("images.files")


def test_parse_object_id():
    oid = ObjectId()
    assert parse_object_id(oid) is oid
    assert parse_object_id(str(oid)) == oid
    assert parse_object_id("nope") is None
    assert parse_object_id(None) is None


def test_variant_size_edges():
    assert VariantSize.ORIG.edge is None
    assert VariantSize("640").edge == 640
    with pytest.raises(ValueError):
        VariantSize("512")


def test_fetch_by_id_rejects_malformed_id_without_querying(backend):
    store, _, files = backend

    assert store.fetch_by_id("zzz") is None
    files.find_one.assert_not_called()


def test_fetch_by_id_returns_photo(backend):
    store, _, files = backend
    oid, variant = ObjectId(), ObjectId()
    files.find_one.return_value = {
        "_id": oid,
        "filename": "a.jpg",
        "length": 10,
        "metadata": {"contentType": "image/jpeg", "businessId": "b1", "caption": "hi", "128": variant},
    }

    photo = store.fetch_by_id(str(oid))

    files.find_one.assert_called_once_with({"_id": oid})
    assert photo.business_id == "b1"
    assert photo.variant_id("128") == variant
    assert photo.variant_id(VariantSize.EDGE_256) is None
    assert photo.available_sizes() == [VariantSize.EDGE_128]


def test_fetch_by_id_unknown(backend):
    store, _, files = backend
    files.find_one.return_value = None
    assert store.fetch_by_id(ObjectId()) is None


def test_fetch_by_owner_queries_metadata_business_id(backend):
    store, _, files = backend
    files.find.return_value = [{"_id": ObjectId(), "metadata": {"businessId": "42"}}]

    photos = store.fetch_by_owner(42)

    files.find.assert_called_once_with({"metadata.businessId": "42"})
    assert [p.business_id for p in photos] == ["42"]


def test_create_uploads_with_metadata(backend):
    store, bucket, _ = backend
    new_id = ObjectId()
    bucket.upload_from_stream.return_value = new_id

    result = store.create(b"\x89PNG...", "image/png", "b1", caption="storefront")

    assert result == new_id
    filename, source = bucket.upload_from_stream.call_args[0]
    assert filename.endswith(".png")
    assert source.read() == b"\x89PNG..."
    assert bucket.upload_from_stream.call_args.kwargs["metadata"] == {
        "contentType": "image/png",
        "businessId": "b1",
        "caption": "storefront",
    }


def test_create_wraps_driver_errors(backend):
    store, bucket, _ = backend
    bucket.upload_from_stream.side_effect = ServerSelectionTimeoutError("down")

    with pytest.raises(StoreError):
        store.create(BytesIO(b"x"), "image/jpeg", "b1")


def test_save_file_stores_local_file(backend, tmp_path):
    store, bucket, _ = backend
    path = tmp_path / "abc_128.jpg"
    path.write_bytes(b"jpeg-bytes")

    store.save_file(path, "image/jpeg")

    filename, _ = bucket.upload_from_stream.call_args[0]
    assert filename == "abc_128.jpg"
    assert bucket.upload_from_stream.call_args.kwargs["metadata"] == {"contentType": "image/jpeg"}


def test_read_file_buffers_stream_and_content_type(backend):
    store, bucket, _ = backend
    stream = MagicMock()
    stream.read.return_value = b"data"
    stream.metadata = {"contentType": "image/png"}
    stream.__enter__.return_value = stream
    stream.__exit__.return_value = False
    bucket.open_download_stream.return_value = stream
    oid = ObjectId()

    stored = store.read_file(str(oid))

    bucket.open_download_stream.assert_called_once_with(oid)
    assert stored.data == b"data"
    assert stored.content_type == "image/png"
    stream.__exit__.assert_called_once()


def test_read_file_closes_stream_when_read_fails(backend):
    store, bucket, _ = backend
    stream = MagicMock()
    stream.__enter__.return_value = stream
    stream.__exit__.return_value = False
    stream.read.side_effect = ServerSelectionTimeoutError("lost")
    bucket.open_download_stream.return_value = stream

    with pytest.raises(StoreError):
        store.read_file(ObjectId())
    stream.__exit__.assert_called_once()


def test_read_file_missing_and_malformed(backend):
    store, bucket, _ = backend
    bucket.open_download_stream.side_effect = NoFile("no file")

    with pytest.raises(PhotoNotFound):
        store.read_file(ObjectId())
    with pytest.raises(PhotoNotFound):
        store.read_file("not-an-id")


def test_read_file_other_errors_are_store_errors(backend):
    store, bucket, _ = backend
    bucket.open_download_stream.side_effect = ServerSelectionTimeoutError("down")

    with pytest.raises(StoreError) as excinfo:
        store.read_file(ObjectId())
    assert not isinstance(excinfo.value, PhotoNotFound)


def test_set_variant_reference_targets_single_key(backend):
    store, _, files = backend
    files.update_one.return_value = MagicMock(matched_count=1)
    oid, variant = ObjectId(), ObjectId()

    assert store.set_variant_reference(str(oid), "640", str(variant)) is True

    files.update_one.assert_called_once_with({"_id": oid}, {"$set": {"metadata.640": variant}})


def test_set_variant_reference_reports_unmatched(backend):
    store, _, files = backend
    files.update_one.return_value = MagicMock(matched_count=0)
    assert store.set_variant_reference(ObjectId(), VariantSize.ORIG, ObjectId()) is False


def test_set_variant_reference_invalid_id_and_size(backend):
    store, _, files = backend

    assert store.set_variant_reference("bad", "128", ObjectId()) is False
    files.update_one.assert_not_called()
    with pytest.raises(ValueError):
        store.set_variant_reference(ObjectId(), "300", ObjectId())


def test_photo_from_document_defaults():
    oid = ObjectId()
    photo = Photo.from_document({"_id": oid})
    assert photo.metadata == {}
    assert photo.content_type is None
    assert photo.available_sizes() == []
