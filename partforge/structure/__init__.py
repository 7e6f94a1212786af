# Structure module - assembly graph with temporal validity
from .graph import StructureGraph
from .validity import edge_current_at, edge_in_effect_at, get_validity_params, is_current

__all__ = [
    "StructureGraph",
    "edge_current_at",
    "edge_in_effect_at",
    "get_validity_params",
    "is_current",
]
