"""Greyscale JPEG rendering for photo variants."""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path
from typing import Tuple

from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 60
VARIANT_CONTENT_TYPE = "image/jpeg"


def render_greyscale(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """
    Resize to exactly `size` (width, height) and drop colour.

    The resize always runs, even when `size` equals the current size or is
    larger, so every variant goes through the same resample + encode path.
    """
    resized = image.resize(size, Image.BILINEAR)
    return resized.convert("L")


def encode_jpeg(image: Image.Image, quality: int = DEFAULT_QUALITY) -> bytes:
    buf = BytesIO()
    image.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def write_variant(
    image: Image.Image,
    size: Tuple[int, int],
    path: Path,
    quality: int = DEFAULT_QUALITY,
) -> Path:
    """Render a greyscale JPEG variant of `image` to a scratch file at `path`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    variant = render_greyscale(image, size)
    path.write_bytes(encode_jpeg(variant, quality=quality))
    logger.debug("postprocess: wrote %sx%s variant to %s", size[0], size[1], path)
    return path


def remove_scratch_file(path: Path) -> None:
    """Delete a scratch file; a file that is already gone is not an error."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("postprocess: failed to remove scratch file %s: %s", path, exc)
