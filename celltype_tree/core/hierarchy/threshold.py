"""Threshold Controller: re-derive hierarchical labels from cached scores.

A cell's descent path and the scores along it do not depend on the
confidence threshold. Applying a threshold only decides how far down that
path the cell is allowed to go, so changing it never requires gene selection
or correlations to be recomputed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..taxonomy import Taxonomy

UNASSIGNED = "unassigned"

STATUS_LEAF = "leaf"
STATUS_INTERMEDIATE = "intermediate"
STATUS_UNASSIGNED = "unassigned"

SCORE_COLUMNS = [
    "cell_id",
    "step",
    "node_id",
    "confidence",
    "left",
    "right",
    "left_score",
    "right_score",
    "selected",
    "n_genes",
]


@dataclass(frozen=True)
class ClassificationResult:
    """Hierarchical classification of one cell.

    Attributes:
        cell_id: Query cell identifier
        label: Leaf cell-type name, internal node id (unresolved) or "unassigned"
        path: Visited node ids from the root to the stopping node
        confidence: Confidence at the last scored node of the path
        status: "leaf", "intermediate" or "unassigned"
        error: Error record when the cell could not be classified
    """

    cell_id: str
    label: str
    path: Tuple[str, ...]
    confidence: float
    status: str
    error: Optional[Dict[str, Any]] = None

    @property
    def is_final(self) -> bool:
        return self.status == STATUS_LEAF

    @property
    def depth(self) -> int:
        return max(len(self.path) - 1, 0)


def walk(
    cell_id: str,
    steps: Sequence[Tuple[str, float, str]],
    taxonomy: Taxonomy,
    threshold: float,
) -> ClassificationResult:
    """Apply a threshold to one cell's cached descent.

    Args:
        cell_id: Query cell identifier
        steps: (node_id, confidence, selected child) per scored node, root first
        taxonomy: Taxonomy the steps refer to
        threshold: Confidence threshold; 0 never stops

    Returns:
        ClassificationResult for this threshold
    """
    path: List[str] = []
    node_id = taxonomy.root_id
    confidence = float("nan")

    for step_node, step_conf, selected in steps:
        if step_node != node_id:
            raise ValueError(
                f"Cached path of cell {cell_id} is inconsistent at {step_node} (expected {node_id})"
            )
        path.append(step_node)
        confidence = float(step_conf)
        if threshold > 0 and abs(confidence) <= threshold:
            if step_node == taxonomy.root_id:
                return ClassificationResult(
                    cell_id, UNASSIGNED, tuple(path), confidence, STATUS_UNASSIGNED
                )
            return ClassificationResult(
                cell_id, step_node, tuple(path), confidence, STATUS_INTERMEDIATE
            )
        node_id = selected

    node = taxonomy.node(node_id)
    if not node.is_leaf:
        raise ValueError(f"Cached path of cell {cell_id} ends at internal node {node_id}")
    path.append(node_id)
    return ClassificationResult(cell_id, node.name, tuple(path), confidence, STATUS_LEAF)


def results_to_frame(results: Mapping[str, ClassificationResult]) -> pd.DataFrame:
    """One row per cell: label, status, confidence, depth and the visited path."""
    records = [
        {
            "cell_id": r.cell_id,
            "label": r.label,
            "status": r.status,
            "confidence": r.confidence,
            "depth": r.depth,
            "path": " > ".join(r.path),
            "error_code": r.error["error_code"] if r.error else None,
        }
        for r in results.values()
    ]
    columns = ["cell_id", "label", "status", "confidence", "depth", "path", "error_code"]
    return pd.DataFrame.from_records(records, columns=columns).set_index("cell_id")


class ThresholdController:
    """Re-threshold cached per-node scores without recomputation.

    Example:
        >>> controller = result.controller()
        >>> strict = controller.apply(0.3)
        >>> controller.sweep([0.0, 0.1, 0.2, 0.4])
    """

    def __init__(
        self,
        taxonomy: Taxonomy,
        scores: pd.DataFrame,
        errors: Optional[Mapping[str, Dict[str, Any]]] = None,
        cell_ids: Optional[Sequence[str]] = None,
    ):
        missing = [c for c in ("cell_id", "step", "node_id", "confidence", "selected") if c not in scores.columns]
        if missing:
            raise ValueError(f"Score table missing columns: {missing}")
        self.taxonomy = taxonomy
        self.errors = dict(errors or {})

        ordered = scores.sort_values(["cell_id", "step"], kind="mergesort")
        self._steps: Dict[str, List[Tuple[str, float, str]]] = {}
        for cell_id, node_id, conf, selected in zip(
            ordered["cell_id"].astype(str),
            ordered["node_id"].astype(str),
            ordered["confidence"].astype(float),
            ordered["selected"].astype(str),
        ):
            self._steps.setdefault(cell_id, []).append((node_id, conf, selected))

        if cell_ids is None:
            seen = list(dict.fromkeys(scores["cell_id"].astype(str)))
            cell_ids = seen + [c for c in self.errors if c not in self._steps]
        self.cell_ids = [str(c) for c in cell_ids]

    def result_for(self, cell_id: str, threshold: float) -> ClassificationResult:
        if threshold < 0 or math.isnan(threshold):
            raise ValueError("threshold must be >= 0")
        if cell_id in self.errors:
            return ClassificationResult(
                cell_id, UNASSIGNED, (), float("nan"), STATUS_UNASSIGNED, error=self.errors[cell_id]
            )
        return walk(cell_id, self._steps.get(cell_id, []), self.taxonomy, threshold)

    def apply(self, threshold: float) -> Dict[str, ClassificationResult]:
        """Cell id → ClassificationResult under the given threshold."""
        return {cell_id: self.result_for(cell_id, threshold) for cell_id in self.cell_ids}

    def labels(self, threshold: float) -> pd.Series:
        results = self.apply(threshold)
        return pd.Series(
            [r.label for r in results.values()],
            index=pd.Index(list(results), name="cell_id"),
            name="tree_label",
        )

    def label_counts(self, threshold: float) -> pd.Series:
        return self.labels(threshold).value_counts().sort_index()

    def sweep(self, thresholds: Iterable[float]) -> pd.DataFrame:
        """Counts of final, intermediate and unassigned labels per threshold."""
        records = []
        for threshold in thresholds:
            statuses = [r.status for r in self.apply(threshold).values()]
            records.append({
                "threshold": float(threshold),
                "n_leaf": statuses.count(STATUS_LEAF),
                "n_intermediate": statuses.count(STATUS_INTERMEDIATE),
                "n_unassigned": statuses.count(STATUS_UNASSIGNED),
            })
        return pd.DataFrame.from_records(records)
