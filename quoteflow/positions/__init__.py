"""Position tree module for QuoteFlow."""

from .models import (
    DETAIL_FIELDS,
    EDITABLE_FIELDS,
    PositionNode,
    PositionRecord,
    PositionType,
    PositionUpdate,
    editable_fields,
)
from .tree import PositionTree, build_tree

__all__ = [
    "DETAIL_FIELDS",
    "EDITABLE_FIELDS",
    "PositionNode",
    "PositionRecord",
    "PositionType",
    "PositionUpdate",
    "PositionTree",
    "build_tree",
    "editable_fields",
]
