"""Utility functions for celltype_tree.

Provides correlation statistics and the per-cell worker pool used across
modules.
"""

from .parallel import make_batches, map_cell_batches
from .stats import (
    apply_scale,
    best_index,
    correlate,
    correlate_columns,
    correlation_matrix,
    invert_scale,
)

__all__ = [
    "apply_scale",
    "best_index",
    "correlate",
    "correlate_columns",
    "correlation_matrix",
    "invert_scale",
    "make_batches",
    "map_cell_batches",
]
