"""Hierarchical Classifier and Threshold Controller.

Example Usage
-------------
>>> from celltype_tree.core.hierarchy import HierarchicalClassifier
>>> result = HierarchicalClassifier(taxonomy).classify(query)
>>> result.labels().value_counts()
>>> result.controller().sweep([0.0, 0.1, 0.2])
"""

from .engine import HierarchicalClassifier, HierarchicalResult, classify_tree
from .scoring import (
    NodePlan,
    NodeScore,
    confidence_score,
    descend,
    prepare_node_plans,
    score_node,
)
from .threshold import (
    SCORE_COLUMNS,
    STATUS_INTERMEDIATE,
    STATUS_LEAF,
    STATUS_UNASSIGNED,
    UNASSIGNED,
    ClassificationResult,
    ThresholdController,
    results_to_frame,
    walk,
)

__all__ = [
    # Engine
    "HierarchicalClassifier",
    "HierarchicalResult",
    "classify_tree",
    # Scoring
    "NodePlan",
    "NodeScore",
    "confidence_score",
    "descend",
    "prepare_node_plans",
    "score_node",
    # Threshold
    "SCORE_COLUMNS",
    "STATUS_LEAF",
    "STATUS_INTERMEDIATE",
    "STATUS_UNASSIGNED",
    "UNASSIGNED",
    "ClassificationResult",
    "ThresholdController",
    "results_to_frame",
    "walk",
]
