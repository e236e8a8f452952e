"""
Variant derivation pipeline.

`derive_variants` is the unit of work the queue worker runs for every
delivered photo id. It keeps orchestration simple:
download -> probe + decode -> canonical "orig" re-encode -> square
downscales -> per-size store + metadata reference.

Each size is handled in isolation: a failure storing or referencing one
variant is logged and recorded in the report, and the remaining sizes still
run. Only a failed download or decode drops the whole message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from PIL import Image

from . import config
from .errors import ImageDecodeError, StoreError
from .photos import DOWNSCALE_SIZES, PhotoStore, StoredFile, VariantSize
from .postprocessing import VARIANT_CONTENT_TYPE, remove_scratch_file, write_variant
from .preprocessing import Dimensions, decode_image, probe_dimensions

logger = logging.getLogger(__name__)


class DerivationState(str, Enum):
    RECEIVED = "received"
    DOWNLOADED = "downloaded"
    DECODED = "decoded"
    ACKNOWLEDGED = "acknowledged"
    DROPPED = "dropped"


class VariantOutcome(str, Enum):
    PENDING = "pending"
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


def _pending_outcomes() -> Dict[VariantSize, VariantOutcome]:
    return {size: VariantOutcome.PENDING for size in VariantSize}


@dataclass
class DerivationReport:
    photo_id: str
    state: DerivationState = DerivationState.RECEIVED
    dimensions: Optional[Dimensions] = None
    outcomes: Dict[VariantSize, VariantOutcome] = field(default_factory=_pending_outcomes)
    variant_ids: Dict[VariantSize, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def dropped(self) -> bool:
        return self.state is DerivationState.DROPPED

    def sizes_with(self, outcome: VariantOutcome) -> list:
        return [size.value for size, value in self.outcomes.items() if value is outcome]


def scratch_path(scratch_dir: Path, photo_id: str, size: VariantSize) -> Path:
    """Scratch files are keyed by photo id and size so deliveries never collide."""
    return Path(scratch_dir) / f"{photo_id}_{size.value}.jpg"


def _drop(report: DerivationReport, reason: str, exc: Exception) -> DerivationReport:
    logger.error("Dropping photo %s: %s (%s)", report.photo_id, reason, exc)
    report.state = DerivationState.DROPPED
    report.error = f"{reason}: {exc}"
    return report


def _record_reference(
    store: PhotoStore, report: DerivationReport, size: VariantSize, variant_id: Any
) -> None:
    matched = store.set_variant_reference(report.photo_id, size, variant_id)
    if not matched:
        logger.warning("Photo %s disappeared before metadata.%s could be set", report.photo_id, size.value)
        report.outcomes[size] = VariantOutcome.FAILED
        return
    report.variant_ids[size] = variant_id
    report.outcomes[size] = VariantOutcome.WRITTEN


def _derive_orig(
    store: PhotoStore,
    report: DerivationReport,
    original: StoredFile,
    image: Image.Image,
    dimensions: Dimensions,
    settings: config.Settings,
) -> None:
    path = scratch_path(settings.scratch_dir, report.photo_id, VariantSize.ORIG)
    try:
        write_variant(image, (dimensions.width, dimensions.height), path, quality=settings.jpeg_quality)
        if dimensions.type == "jpg":
            # Already a JPEG: the original doubles as its canonical rendition.
            variant_id = original.id
        else:
            variant_id = store.save_file(path, VARIANT_CONTENT_TYPE, filename=path.name)
        _record_reference(store, report, VariantSize.ORIG, variant_id)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to derive orig variant for photo %s", report.photo_id)
        report.outcomes[VariantSize.ORIG] = VariantOutcome.FAILED
    finally:
        remove_scratch_file(path)


def _derive_downscaled(
    store: PhotoStore,
    report: DerivationReport,
    image: Image.Image,
    dimensions: Dimensions,
    size: VariantSize,
    settings: config.Settings,
) -> None:
    edge = size.edge
    path = scratch_path(settings.scratch_dir, report.photo_id, size)
    try:
        write_variant(image, (edge, edge), path, quality=settings.jpeg_quality)
        if not dimensions.exceeds(edge):
            # Never publish an upscaled rendition as a smaller variant.
            logger.debug(
                "Skipping %s variant for photo %s (%sx%s)",
                size.value,
                report.photo_id,
                dimensions.width,
                dimensions.height,
            )
            report.outcomes[size] = VariantOutcome.SKIPPED
            return
        variant_id = store.save_file(path, VARIANT_CONTENT_TYPE, filename=path.name)
        _record_reference(store, report, size, variant_id)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to derive %s variant for photo %s", size.value, report.photo_id)
        report.outcomes[size] = VariantOutcome.FAILED
    finally:
        remove_scratch_file(path)


def derive_variants(
    photo_id: str,
    store: PhotoStore,
    settings: Optional[config.Settings] = None,
) -> DerivationReport:
    """
    Produce and persist every variant for one stored photo.

    Never raises for store or codec failures: a failed download or decode
    yields a report in the `dropped` state, per-size failures are recorded in
    `report.outcomes`. The caller acknowledges the delivery afterwards.
    """
    settings = settings or config.get_settings()
    report = DerivationReport(photo_id=photo_id)

    try:
        original = store.read_file(photo_id)
    except StoreError as exc:
        return _drop(report, "download failed", exc)
    report.state = DerivationState.DOWNLOADED
    # The stored id is the canonical form of whatever string arrived.
    report.photo_id = str(original.id)

    try:
        dimensions = probe_dimensions(original.data)
        image = decode_image(original.data)
    except ImageDecodeError as exc:
        return _drop(report, "decode failed", exc)
    report.dimensions = dimensions
    report.state = DerivationState.DECODED
    logger.info(
        "Deriving variants for photo %s (%sx%s %s, %s bytes)",
        report.photo_id,
        dimensions.width,
        dimensions.height,
        dimensions.type,
        len(original.data),
    )

    _derive_orig(store, report, original, image, dimensions, settings)
    for size in DOWNSCALE_SIZES:
        _derive_downscaled(store, report, image, dimensions, size, settings)

    logger.info(
        "Photo %s variants: written=%s skipped=%s failed=%s",
        report.photo_id,
        report.sizes_with(VariantOutcome.WRITTEN),
        report.sizes_with(VariantOutcome.SKIPPED),
        report.sizes_with(VariantOutcome.FAILED),
    )
    return report
