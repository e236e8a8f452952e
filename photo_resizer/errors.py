"""Exceptions shared by the store, codec and worker layers."""


class PhotoResizerError(Exception):
    """Base class for errors raised by this package."""


class StoreError(PhotoResizerError):
    """The content store could not complete a read or write."""


class PhotoNotFound(StoreError):
    """No blob exists for the requested id (or the id is malformed)."""

    def __init__(self, photo_id: object):
        super().__init__(f"No stored photo with id {photo_id!r}")
        self.photo_id = photo_id


class ImageDecodeError(PhotoResizerError, ValueError):
    """Raised when image bytes cannot be probed or decoded."""
