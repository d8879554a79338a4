"""rigforge pipeline engine — geometry, packing, validation and the stage state machine."""

from rigforge.engine.config import PipelineConfig
from rigforge.engine.errors import PackingOverflow, PipelineStateError, RigforgeError, ServiceError
from rigforge.engine.hierarchy import validate_hierarchy
from rigforge.engine.packing import find_out_of_bounds, find_overlaps, pack_items, pack_parts

__all__ = [
    "PipelineConfig",
    "RigforgeError",
    "ServiceError",
    "PipelineStateError",
    "PackingOverflow",
    "validate_hierarchy",
    "pack_items",
    "pack_parts",
    "find_overlaps",
    "find_out_of_bounds",
]
