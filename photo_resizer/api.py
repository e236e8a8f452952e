"""
FastAPI layer for photo ingestion and retrieval.

Endpoints:
 - GET /health
 - POST /photos
 - GET /photos/{photo_id}
 - GET /photos/media/images/{photo_id}-{size}.jpg
 - GET /businesses/{business_id}/photos
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Response, UploadFile
from pydantic import BaseModel, ConfigDict, Field
import uvicorn

from . import config
from .broker import QueuePublisher
from .errors import PhotoNotFound, StoreError
from .mongo import get_photo_store
from .photos import IMAGE_TYPES, Photo, PhotoStore, VariantSize

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Photo Variant Service", version="0.1.0")

MEDIA_PREFIX = "/photos/media/images"


class CreatePhotoResponse(BaseModel):
    id: str


class PhotoInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    contentType: Optional[str] = None
    businessId: Optional[str] = None
    caption: Optional[str] = None
    variants: Dict[str, str] = Field(default_factory=dict)


class BusinessPhotosResponse(BaseModel):
    photos: List[PhotoInfo]


def get_store() -> PhotoStore:
    return get_photo_store()


def get_publisher() -> QueuePublisher:
    return QueuePublisher(settings)


def _media_path(photo_id: str, size: VariantSize) -> str:
    return f"{MEDIA_PREFIX}/{photo_id}-{size.value}.jpg"


def _photo_info(photo: Photo) -> PhotoInfo:
    photo_id = str(photo.id)
    return PhotoInfo(
        _id=photo_id,
        contentType=photo.content_type,
        businessId=photo.business_id,
        caption=photo.caption,
        variants={size.value: _media_path(photo_id, size) for size in photo.available_sizes()},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/photos", response_model=CreatePhotoResponse)
def create_photo(
    image: UploadFile = File(...),
    businessId: Optional[str] = Form(None),
    caption: Optional[str] = Form(None),
    store: PhotoStore = Depends(get_store),
    publisher: QueuePublisher = Depends(get_publisher),
):
    if not businessId or image.content_type not in IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Request body was invalid")

    try:
        photo_id = store.create(image.file, image.content_type, businessId, caption)
    except StoreError as exc:
        logger.exception("Failed to store upload: %s", exc)
        raise HTTPException(status_code=500, detail="Could not store photo") from exc

    try:
        publisher.publish(photo_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to queue photo %s for resizing: %s", photo_id, exc)
        raise HTTPException(status_code=500, detail="Could not queue photo for resizing") from exc

    return CreatePhotoResponse(id=str(photo_id))


@app.get(MEDIA_PREFIX + "/{filename}")
def download_variant(filename: str, store: PhotoStore = Depends(get_store)):
    stem, _, extension = filename.rpartition(".")
    photo_id, _, size_key = stem.partition("-")
    if extension != "jpg" or size_key not in {size.value for size in VariantSize}:
        raise HTTPException(status_code=404, detail="Not found")

    photo = store.fetch_by_id(photo_id)
    if photo is None:
        raise HTTPException(status_code=404, detail="Not found")
    variant_id = photo.variant_id(size_key)
    if variant_id is None:
        raise HTTPException(status_code=404, detail="Image size not available to download")

    try:
        stored = store.read_file(variant_id)
    except PhotoNotFound as exc:
        raise HTTPException(status_code=404, detail="Not found") from exc
    except StoreError as exc:
        logger.exception("Failed to read variant %s of photo %s: %s", size_key, photo_id, exc)
        raise HTTPException(status_code=500, detail="Could not read image") from exc

    return Response(content=stored.data, media_type=stored.content_type or "image/jpeg")


@app.get("/photos/{photo_id}", response_model=PhotoInfo, response_model_by_alias=True)
def get_photo(photo_id: str, store: PhotoStore = Depends(get_store)):
    photo = store.fetch_by_id(photo_id)
    if photo is None:
        raise HTTPException(status_code=404, detail="Not found")
    return _photo_info(photo)


@app.get("/businesses/{business_id}/photos", response_model=BusinessPhotosResponse, response_model_by_alias=True)
def list_business_photos(business_id: str, store: PhotoStore = Depends(get_store)):
    photos = store.fetch_by_owner(business_id)
    return BusinessPhotosResponse(photos=[_photo_info(photo) for photo in photos])


def main() -> None:
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
