"""上下文组装引擎。"""

from chronicle.engine.assembler import (
    ContextAssembler,
    finalize_unit,
    serialize,
    serialize_compact,
)
from chronicle.engine.pruning import (
    detect_scene_type,
    prune_world,
    urgent_breadcrumbs,
)

__all__ = [
    "ContextAssembler",
    "detect_scene_type",
    "finalize_unit",
    "prune_world",
    "serialize",
    "serialize_compact",
    "urgent_breadcrumbs",
]
