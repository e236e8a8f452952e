"""
MongoDB connection utilities.

The loader:
 - builds a `MongoClient` from `MONGO_URL`,
 - keeps a single shared client per process,
 - exposes `get_photo_store()` for the API and the queue worker.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Optional

from pymongo import MongoClient

from . import config
from .photos import PhotoStore

logger = logging.getLogger(__name__)

_CLIENT: Optional[MongoClient] = None
_LOCK = Lock()


def get_client() -> MongoClient:
    """
    Return the process-wide MongoClient.

    The client maintains its own connection pool, so one instance is shared
    across requests and queue deliveries.
    """
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT

    with _LOCK:
        if _CLIENT is None:
            settings = config.get_settings()
            _CLIENT = MongoClient(settings.mongo_url)
            logger.info("MongoDB client created for database %s", settings.mongo_db_name)
    return _CLIENT


def get_photo_store() -> PhotoStore:
    settings = config.get_settings()
    db = get_client()[settings.mongo_db_name]
    return PhotoStore(db, bucket_name=settings.gridfs_bucket)


def close_client() -> None:
    global _CLIENT
    with _LOCK:
        if _CLIENT is not None:
            _CLIENT.close()
            _CLIENT = None
