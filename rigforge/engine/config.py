"""Pipeline configuration — tunables for extraction and packing."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PipelineConfig:
    """Controls concurrency, refinement depth and atlas layout."""

    # Extraction worker pool
    batch_size: int = 8
    max_refinement_rounds: int = 3

    # Segmentation vectorizer
    mask_alpha_threshold: int = 20  # alpha > threshold = object pixel
    contour_tolerance: float = 1.0  # approximate_polygon tolerance, pixels
    border_tolerance: float = 4.0  # contour within this many px of all 4 edges = frame artifact
    min_contour_area: float = 8.0  # px²

    # Atlas packing
    atlas_padding: int = 16
    row_safety_margin: float = 0.85
    maxrects_safety_margin: float = 0.90
    maxrects_min_free: int = 20  # discard free remainders narrower/shorter than this
    shrink_factor: float = 0.9
    max_pack_attempts: int = 12

    @classmethod
    def from_settings(cls) -> PipelineConfig:
        from rigforge.config import settings

        return cls(
            batch_size=settings.extraction_batch_size,
            max_refinement_rounds=settings.max_refinement_rounds,
        )
