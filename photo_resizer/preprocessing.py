"""
Image probing and decoding.

Probing only parses the header to learn the declared dimensions and format;
decoding loads the full pixel buffer. The two are kept separate because a
header can parse for a file the decoder later rejects (truncated data,
unsupported compression).
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image

from .errors import ImageDecodeError

# Pillow format names -> short type names recorded for the original.
FORMAT_TYPES = {
    "JPEG": "jpg",
    # Multi-picture JPEG (most phone cameras); still a baseline JPEG stream.
    "MPO": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "WEBP": "webp",
    "BMP": "bmp",
    "TIFF": "tiff",
}


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int
    type: str  # short format name, e.g. "jpg" or "png"

    def exceeds(self, edge: int) -> bool:
        """True when both sides are strictly larger than `edge`."""
        return self.width > edge and self.height > edge


def probe_dimensions(image_bytes: bytes) -> Dimensions:
    """Read width, height and format from the image header without decoding pixels."""
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            width, height = image.size
            fmt = image.format or ""
    except Exception as exc:  # noqa: BLE001
        raise ImageDecodeError("Unrecognised image header") from exc
    return Dimensions(width=width, height=height, type=FORMAT_TYPES.get(fmt, fmt.lower()))


def decode_image(image_bytes: bytes) -> Image.Image:
    """Decode the full pixel buffer; raises ImageDecodeError for unreadable data."""
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise ImageDecodeError("Invalid image data") from exc
    return image
