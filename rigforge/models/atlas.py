"""Atlas layout model — packed parts plus the canvas they were packed into."""

from __future__ import annotations

import enum

from pydantic import BaseModel, Field

from rigforge.models.parts import AtlasRect, PackedPart


class PackingAlgorithm(str, enum.Enum):
    ROW = "row"
    GRID = "grid"
    MAXRECTS = "maxrects"


ATLAS_SIZES = (1024, 2048)


class AtlasLayout(BaseModel):
    canvas_size: int
    algorithm: PackingAlgorithm
    padding: int
    scale: float | None = None  # uniform source-to-atlas scale; None for grid (per-cell fit)
    parts: list[PackedPart] = Field(default_factory=list)
    # Parts placed by the MaxRects origin fallback (may overlap)
    overflowed: list[str] = Field(default_factory=list)

    def mapping(self) -> dict[str, AtlasRect]:
        return {p.id: p.atlas_rect for p in self.parts}
