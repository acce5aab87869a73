"""Flat Classifier: nearest reference profile by correlation, with fine-tuning."""

from .engine import (
    UNASSIGNED,
    FlatCellResult,
    FlatClassifier,
    FlatResult,
    classify_cell,
    classify_flat,
    classify_flat_multi,
    fine_tune,
)

__all__ = [
    "UNASSIGNED",
    "FlatCellResult",
    "FlatResult",
    "FlatClassifier",
    "classify_cell",
    "classify_flat",
    "classify_flat_multi",
    "fine_tune",
]
