"""Mask → freeform outline vectorizer for the segmentation service contract.

The segmentation service itself is external: it receives the source image and
a rough box and returns a per-pixel mask the size of the image. Everything
from the mask onward happens here: threshold, drop specks, trace contours
(marching squares), simplify, and normalize into [0, 1] image space.
"""

from __future__ import annotations

import logging
from typing import Protocol

import numpy as np
from numpy.typing import NDArray
from scipy import ndimage
from shapely.geometry import Polygon
from skimage.measure import approximate_polygon, find_contours

from rigforge.engine.config import PipelineConfig
from rigforge.engine.errors import ServiceError
from rigforge.engine.geometry import clamp_bbox
from rigforge.engine.outline import outline_bounds, outline_from_polylines
from rigforge.models.geometry import BoundingBox, FreeformOutline
from rigforge.models.parts import DiscoveryUnit, ExtractionResult

logger = logging.getLogger(__name__)


class SegmentationService(Protocol):
    async def segment(self, image: str, rough_bbox: BoundingBox) -> NDArray:
        """Return an (H, W) or (H, W, C) mask aligned with the source image."""
        ...


def binarize(mask: NDArray, alpha_threshold: int = 20) -> NDArray[np.bool_]:
    """Object pixels of a mask in any of the usual encodings.

    RGBA uses alpha, RGB its mean intensity, 2-D masks are taken as bool,
    0..1 values or 0..255 values.
    """
    arr = np.asarray(mask)
    if arr.ndim == 3:
        if arr.shape[2] == 4:
            return arr[:, :, 3] > alpha_threshold
        return arr[:, :, :3].mean(axis=2) > alpha_threshold
    if arr.ndim != 2:
        raise ValueError(f"Mask must be 2-D or 3-D, got shape {arr.shape}")
    if arr.dtype == np.bool_:
        return arr
    if float(arr.max(initial=0)) <= 1.0:
        return arr > 0.5
    return arr > alpha_threshold


def _drop_specks(binary: NDArray[np.bool_], min_area: float) -> NDArray[np.bool_]:
    labels, count = ndimage.label(binary)
    if count == 0:
        return binary
    sizes = ndimage.sum(binary, labels, index=np.arange(1, count + 1))
    keep = np.zeros(count + 1, dtype=bool)
    keep[1:] = sizes >= min_area
    return keep[labels]


def _is_frame(contour: NDArray[np.float64], height: int, width: int, tol: float) -> bool:
    """A contour within ``tol`` px of all four image edges traces the whole frame."""
    rows, cols = contour[:, 0], contour[:, 1]
    return bool(
        rows.min() <= tol
        and cols.min() <= tol
        and rows.max() >= height - 1 - tol
        and cols.max() >= width - 1 - tol
    )


def vectorize_mask(mask: NDArray, config: PipelineConfig | None = None) -> FreeformOutline | None:
    """Trace a mask into a normalized outline, or None if nothing usable remains."""
    config = config or PipelineConfig()
    binary = _drop_specks(binarize(mask, config.mask_alpha_threshold), config.min_contour_area)
    height, width = binary.shape
    if not binary.any():
        return None

    # One pixel of zero padding so contours touching the border still close
    padded = np.pad(binary.astype(float), 1)
    rings: list[list[tuple[float, float]]] = []
    for contour in find_contours(padded, level=0.5):
        contour = contour - 1.0
        if _is_frame(contour, height, width, config.border_tolerance):
            logger.debug("Discarding whole-frame contour (%d points)", len(contour))
            continue
        approx = approximate_polygon(contour, tolerance=config.contour_tolerance)
        if len(approx) > 1 and np.allclose(approx[0], approx[-1]):
            approx = approx[:-1]
        if len(approx) < 3:
            continue
        xy = [(float(c), float(r)) for r, c in approx]
        if Polygon(xy).area < config.min_contour_area:
            continue
        rings.append([(x / width, y / height) for x, y in xy])

    if not rings:
        return None
    return outline_from_polylines(rings)


def mask_coverage(mask: NDArray[np.bool_], rough_bbox: BoundingBox) -> float:
    """Fraction of object pixels that fall inside the rough box."""
    total = int(mask.sum())
    if total == 0:
        return 0.0
    height, width = mask.shape
    x0 = int(np.floor(rough_bbox.min_x * width))
    y0 = int(np.floor(rough_bbox.min_y * height))
    x1 = int(np.ceil(rough_bbox.max_x * width))
    y1 = int(np.ceil(rough_bbox.max_y * height))
    return float(mask[y0:y1, x0:x1].sum()) / total


def extraction_from_mask(
    unit: DiscoveryUnit,
    mask: NDArray,
    config: PipelineConfig | None = None,
) -> ExtractionResult:
    """Build a unit's extraction result from a segmentation mask."""
    config = config or PipelineConfig()
    outline = vectorize_mask(mask, config)
    if outline is None:
        raise ServiceError("Segmentation mask produced no usable contour", "extraction", unit.id)

    bounds = outline_bounds(outline)
    bbox = clamp_bbox(bounds) if bounds is not None else None
    if bbox is None or not bbox.is_well_formed:
        raise ServiceError("Segmentation outline has a degenerate bbox", "extraction", unit.id)

    confidence = mask_coverage(binarize(mask, config.mask_alpha_threshold), unit.rough_bbox)
    return ExtractionResult(
        id=unit.id,
        shape=outline,
        bbox=bbox,
        amodal_completed=False,
        confidence=confidence,
    )
