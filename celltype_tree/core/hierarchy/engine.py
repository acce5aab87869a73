"""Hierarchical classification engine.

This module provides the HierarchicalClassifier that descends the reference
taxonomy for every query cell:

1. Select discriminating genes per internal node (once per run)
2. Score each cell along its profile-score path down to a leaf (per cell,
   parallel across cells)
3. Apply the confidence threshold to the cached scores to decide where each
   cell stops
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..config import ClassifierConfig
from ..errors import InsufficientOverlapError
from ..matrix import ExpressionMatrix
from ..taxonomy import Taxonomy
from ...utils.parallel import map_cell_batches
from ...utils.stats import apply_scale
from .scoring import NodePlan, descend, prepare_node_plans
from .threshold import (
    SCORE_COLUMNS,
    ClassificationResult,
    ThresholdController,
    results_to_frame,
)


@dataclass
class HierarchicalResult:
    """Result of a hierarchical classification run.

    Attributes:
        taxonomy: Taxonomy the cells were classified on
        threshold: Confidence threshold applied
        results: Cell id → ClassificationResult, in query order
        scores: Per-cell per-node score table (one row per scored node)
        gene_loss: Per-node discriminating genes missing from the query
        errors: Cell id → error record for cells that could not be classified
    """

    taxonomy: Taxonomy
    threshold: float
    results: Dict[str, ClassificationResult]
    scores: pd.DataFrame
    gene_loss: pd.DataFrame = field(default_factory=pd.DataFrame)
    errors: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def labels(self) -> pd.Series:
        """Cell id → label, ready to attach as an annotation column."""
        return pd.Series(
            [r.label for r in self.results.values()],
            index=pd.Index(list(self.results), name="cell_id"),
            name="tree_label",
        )

    def to_frame(self) -> pd.DataFrame:
        return results_to_frame(self.results)

    def errors_frame(self) -> pd.DataFrame:
        records = [
            {"cell_id": cell_id, "error_code": err["error_code"], "message": err["message"]}
            for cell_id, err in self.errors.items()
        ]
        return pd.DataFrame.from_records(records, columns=["cell_id", "error_code", "message"])

    def controller(self) -> ThresholdController:
        return ThresholdController(
            self.taxonomy, self.scores, errors=self.errors, cell_ids=list(self.results)
        )

    def rethreshold(self, threshold: float) -> "HierarchicalResult":
        """New result under another threshold, reusing the cached scores."""
        return HierarchicalResult(
            taxonomy=self.taxonomy,
            threshold=threshold,
            results=self.controller().apply(threshold),
            scores=self.scores,
            gene_loss=self.gene_loss,
            errors=self.errors,
        )


def _score_batch(
    batch: List[str],
    query: np.ndarray,
    cell_index: Dict[str, int],
    plans: Dict[str, NodePlan],
    root_id: str,
    method: str,
    min_shared_genes: int,
) -> List[Tuple[str, List[Dict[str, Any]], Optional[Dict[str, Any]]]]:
    """Score a batch of cells (worker function for parallel execution).

    Returns:
        List of (cell_id, score rows, error record or None)
    """
    out = []
    for cell_id in batch:
        values = query[:, cell_index[cell_id]]
        n_shared = int(np.isfinite(values).sum())
        if n_shared < min_shared_genes:
            error = InsufficientOverlapError(cell_id, n_shared, min_shared_genes)
            out.append((cell_id, [], error.to_dict()))
            continue
        rows = []
        for step, node_score in enumerate(descend(values, plans, root_id, method)):
            row = node_score.to_dict()
            row["cell_id"] = cell_id
            row["step"] = step
            rows.append(row)
        out.append((cell_id, rows, None))
    return out


class HierarchicalClassifier:
    """Descends the reference taxonomy to label query cells.

    Example:
        >>> classifier = HierarchicalClassifier(taxonomy)
        >>> result = classifier.classify(query)
        >>> result.labels().value_counts()
        >>> strict = result.rethreshold(0.3)
    """

    def __init__(
        self,
        taxonomy: Taxonomy,
        config: Optional[ClassifierConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.taxonomy = taxonomy
        self.config = config or ClassifierConfig()
        self.logger = logger or logging.getLogger(__name__)

    def classify(
        self,
        query,
        threshold: Optional[float] = None,
        layer: Optional[str] = None,
    ) -> HierarchicalResult:
        """Classify every cell of the query matrix.

        Args:
            query: Genes × cells query (ExpressionMatrix, DataFrame or AnnData)
            threshold: Confidence threshold (overrides config.tree.threshold)
            layer: AnnData layer to read

        Returns:
            HierarchicalResult with labels, paths, cached scores and gene loss
        """
        tree_cfg = self.config.tree
        threshold = tree_cfg.threshold if threshold is None else float(threshold)
        if threshold < 0:
            raise ValueError("threshold must be >= 0")

        matrix = ExpressionMatrix.coerce(query, layer=layer)
        shared = pd.Index(
            sorted(self.taxonomy.genes.intersection(matrix.genes, sort=False)), name="gene"
        )

        self.logger.info("=" * 60)
        self.logger.info("HIERARCHICAL CLASSIFICATION")
        self.logger.info("=" * 60)
        self.logger.info(
            "Cells: %d, leaves: %d, shared genes: %d, method: %s, threshold: %.3f",
            matrix.n_cells, len(self.taxonomy.leaves()), len(shared), tree_cfg.method, threshold,
        )

        plans, losses = prepare_node_plans(
            self.taxonomy,
            shared,
            n_genes=self.config.genes.n_genes,
            max_missing_frac=self.config.genes.max_missing_frac,
            logger=self.logger,
        )
        gene_loss = pd.DataFrame.from_records(
            [r.to_dict() for r in losses],
            columns=["node_id", "n_selected", "n_missing", "frac_missing", "flagged"],
        )
        n_flagged = int(gene_loss["flagged"].sum()) if len(gene_loss) else 0
        if n_flagged:
            self.logger.warning(
                "%d/%d nodes lost more than %.0f%% of their discriminating genes; "
                "interpret their confidence with care",
                n_flagged, len(gene_loss), 100 * self.config.genes.max_missing_frac,
            )

        query_values = apply_scale(matrix.values[matrix.genes.get_indexer(shared)], self.taxonomy.scale)
        par = self.config.parallel
        scored = map_cell_batches(
            _score_batch,
            list(matrix.cells),
            n_workers=par.n_workers,
            batch_size=par.batch_size,
            backend=par.backend,
            logger=self.logger,
            query=query_values,
            cell_index={cell: i for i, cell in enumerate(matrix.cells)},
            plans=plans,
            root_id=self.taxonomy.root_id,
            method=tree_cfg.method,
            min_shared_genes=tree_cfg.min_shared_genes,
        )

        rows: List[Dict[str, Any]] = []
        errors: Dict[str, Dict[str, Any]] = {}
        for cell_id, cell_rows, error in scored:
            rows.extend(cell_rows)
            if error is not None:
                errors[cell_id] = error
        scores = pd.DataFrame.from_records(rows, columns=SCORE_COLUMNS)

        controller = ThresholdController(
            self.taxonomy, scores, errors=errors, cell_ids=list(matrix.cells)
        )
        result = HierarchicalResult(
            taxonomy=self.taxonomy,
            threshold=threshold,
            results=controller.apply(threshold),
            scores=scores,
            gene_loss=gene_loss,
            errors=errors,
        )

        statuses = pd.Series([r.status for r in result.results.values()]).value_counts()
        self.logger.info(
            "Classified %d cells: %d leaf, %d intermediate, %d unassigned (%d errors)",
            len(result.results),
            int(statuses.get("leaf", 0)),
            int(statuses.get("intermediate", 0)),
            int(statuses.get("unassigned", 0)),
            len(errors),
        )
        return result


def classify_tree(
    query,
    taxonomy: Taxonomy,
    config: Optional[ClassifierConfig] = None,
    threshold: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> HierarchicalResult:
    """Convenience wrapper around HierarchicalClassifier.classify."""
    return HierarchicalClassifier(taxonomy, config=config, logger=logger).classify(
        query, threshold=threshold
    )
