"""Flat nearest-reference classifier.

Each query cell is correlated with every reference profile over the genes
both measure, and takes the label of the best-scoring profile. Optional
fine-tuning narrows close candidates by repeatedly dropping the weakest one
and re-scoring on the genes that best separate the remaining candidates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ..config import ClassifierConfig, FlatConfig
from ..errors import CellClassificationError, InsufficientOverlapError
from ..genes import select_spread_genes
from ..matrix import ExpressionMatrix
from ..profiles import ProfileStore
from ...utils.parallel import map_cell_batches
from ...utils.stats import apply_scale, best_index, correlate_columns

UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class FlatCellResult:
    """Flat classification of one cell.

    Attributes:
        cell_id: Query cell identifier
        label: Best-scoring reference type of the first pass
        score: Correlation of the best match
        fine_tuned_label: Label after fine-tuning (equals label when disabled)
        fine_tuned_score: Score of the fine-tuned label in the last round
        n_genes: Genes shared between the cell and the reference
        scores: First-pass correlation per reference type (store order)
        error: Error record when the cell could not be classified
    """

    cell_id: str
    label: str
    score: float
    fine_tuned_label: str
    fine_tuned_score: float
    n_genes: int
    scores: Tuple[float, ...] = ()
    error: Optional[Dict[str, Any]] = None


@dataclass
class FlatResult:
    """Result of a flat classification run.

    Attributes:
        reference_names: Reference types in score order
        cells: Per-cell results in query order
    """

    reference_names: List[str]
    cells: List[FlatCellResult] = field(default_factory=list)

    def labels(self, fine_tuned: bool = True) -> pd.Series:
        """Cell id → assigned label, ready to attach as an annotation column."""
        return pd.Series(
            [c.fine_tuned_label if fine_tuned else c.label for c in self.cells],
            index=pd.Index([c.cell_id for c in self.cells], name="cell_id"),
            name="flat_label",
        )

    def to_frame(self) -> pd.DataFrame:
        records = [
            {
                "cell_id": c.cell_id,
                "label": c.label,
                "score": c.score,
                "fine_tuned_label": c.fine_tuned_label,
                "fine_tuned_score": c.fine_tuned_score,
                "n_genes": c.n_genes,
                "error_code": c.error["error_code"] if c.error else None,
            }
            for c in self.cells
        ]
        return pd.DataFrame.from_records(records).set_index("cell_id")

    def score_frame(self) -> pd.DataFrame:
        """Cells × reference types first-pass correlation table."""
        rows = [
            c.scores if c.scores else (np.nan,) * len(self.reference_names)
            for c in self.cells
        ]
        return pd.DataFrame(
            rows,
            index=pd.Index([c.cell_id for c in self.cells], name="cell_id"),
            columns=self.reference_names,
        )

    def errors(self) -> pd.DataFrame:
        records = [
            {"cell_id": c.cell_id, "error_code": c.error["error_code"], "message": c.error["message"]}
            for c in self.cells
            if c.error
        ]
        return pd.DataFrame.from_records(records, columns=["cell_id", "error_code", "message"])


def fine_tune(
    query: np.ndarray,
    reference: np.ndarray,
    genes: np.ndarray,
    first_scores: np.ndarray,
    config: FlatConfig,
    n_genes: int = 200,
) -> Tuple[int, float]:
    """Narrow the candidates of the first pass down to one reference type.

    Candidates are the types scoring within config.fine_tune_delta of the
    top score. Each round re-scores them on the genes with the widest spread
    among the remaining candidates and drops the weakest, until one remains
    or the scores span less than config.fine_tune_epsilon.

    Args:
        query: Cell values over the shared genes
        reference: Shared genes × reference types
        genes: Gene identifiers of the rows
        first_scores: First-pass correlation per type
        config: Flat classifier configuration
        n_genes: Genes used per round

    Returns:
        Tuple of (column index of the chosen type, its last score)
    """
    top = best_index(first_scores)
    if top < 0:
        return top, float("nan")
    threshold = first_scores[top] - config.fine_tune_delta
    candidates = [
        i for i, s in enumerate(first_scores) if np.isfinite(s) and s >= threshold
    ]
    scores = np.asarray([first_scores[i] for i in candidates], dtype=float)

    while len(candidates) > 1:
        rows = select_spread_genes(reference[:, candidates], genes, n_genes)
        if rows.size < 2:
            break
        round_scores = correlate_columns(query[rows], reference[np.ix_(rows, candidates)], config.method)
        if not np.isfinite(round_scores).any():
            break
        scores = round_scores
        finite = scores[np.isfinite(scores)]
        if finite.size == len(scores) and finite.max() - finite.min() < config.fine_tune_epsilon:
            break
        masked = np.where(np.isfinite(scores), scores, -np.inf)
        # drop the weakest; among equal minima the later candidate goes
        worst = len(masked) - 1 - int(np.argmin(masked[::-1]))
        del candidates[worst]
        scores = np.delete(scores, worst)

    best = best_index(scores)
    if best < 0:
        return top, float(first_scores[top])
    return candidates[best], float(scores[best])


def classify_cell(
    cell_id: str,
    values: np.ndarray,
    reference: np.ndarray,
    genes: np.ndarray,
    names: List[str],
    config: FlatConfig,
    n_genes: int = 200,
) -> FlatCellResult:
    """Score one cell against all reference types.

    Args:
        cell_id: Query cell identifier
        values: Scaled cell values over the shared genes (NaN = unmeasured)
        reference: Shared genes × reference types
        genes: Gene identifiers of the rows
        names: Reference type names (columns of reference)
        config: Flat classifier configuration
        n_genes: Genes per fine-tuning round

    Raises:
        InsufficientOverlapError: if fewer than config.min_shared_genes genes
            are measured in both the cell and the reference
    """
    measured = np.isfinite(values)
    n_shared = int(measured.sum())
    if n_shared < config.min_shared_genes:
        raise InsufficientOverlapError(cell_id, n_shared, config.min_shared_genes)

    query = values[measured]
    ref = reference[measured]
    cell_genes = genes[measured]

    scores = correlate_columns(query, ref, config.method)
    top = best_index(scores)
    if top < 0:
        raise CellClassificationError(
            f"Cell '{cell_id}' has no informative genes (constant expression)",
            context={"cell_id": cell_id},
        )

    label = names[top]
    tuned_idx, tuned_score = top, float(scores[top])
    if config.fine_tune and len(names) > 1:
        tuned_idx, tuned_score = fine_tune(query, ref, cell_genes, scores, config, n_genes)

    return FlatCellResult(
        cell_id=cell_id,
        label=label,
        score=float(scores[top]),
        fine_tuned_label=names[tuned_idx],
        fine_tuned_score=tuned_score,
        n_genes=n_shared,
        scores=tuple(float(s) for s in scores),
    )


def _classify_batch(
    batch: List[str],
    query: np.ndarray,
    cell_index: Dict[str, int],
    reference: np.ndarray,
    genes: np.ndarray,
    names: List[str],
    config: FlatConfig,
    n_genes: int,
) -> List[FlatCellResult]:
    """Classify a batch of cells (worker function for parallel execution)."""
    results = []
    for cell_id in batch:
        try:
            result = classify_cell(
                cell_id, query[:, cell_index[cell_id]], reference, genes, names, config, n_genes
            )
        except CellClassificationError as e:
            result = FlatCellResult(
                cell_id=cell_id,
                label=UNASSIGNED,
                score=float("nan"),
                fine_tuned_label=UNASSIGNED,
                fine_tuned_score=float("nan"),
                n_genes=int(e.context.get("n_shared", 0)),
                error=e.to_dict(),
            )
        results.append(result)
    return results


class FlatClassifier:
    """Correlation-based nearest-reference classifier.

    Example:
        >>> classifier = FlatClassifier(store)
        >>> result = classifier.classify(query)
        >>> result.labels().value_counts()
    """

    def __init__(
        self,
        store: ProfileStore,
        config: Optional[ClassifierConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.config = config or ClassifierConfig()
        self.logger = logger or logging.getLogger(__name__)

    def classify(self, query, layer: Optional[str] = None) -> FlatResult:
        """Classify every cell of the query matrix.

        Args:
            query: Genes × cells query (ExpressionMatrix, DataFrame or AnnData)
            layer: AnnData layer to read

        Returns:
            FlatResult with one FlatCellResult per query cell, in query order
        """
        flat_cfg = self.config.flat
        matrix = ExpressionMatrix.coerce(query, layer=layer)

        shared = self.store.genes.intersection(matrix.genes, sort=False)
        shared = pd.Index(sorted(shared), name="gene")
        self.logger.info(
            "Flat classification: %d cells, %d reference types, %d shared genes (method=%s)",
            matrix.n_cells, len(self.store), len(shared), flat_cfg.method,
        )

        query_values = apply_scale(matrix.values[matrix.genes.get_indexer(shared)], self.store.scale)
        reference = self.store.values[self.store.genes.get_indexer(shared)]
        cell_index = {cell: i for i, cell in enumerate(matrix.cells)}

        par = self.config.parallel
        cells = map_cell_batches(
            _classify_batch,
            list(matrix.cells),
            n_workers=par.n_workers,
            batch_size=par.batch_size,
            backend=par.backend,
            logger=self.logger,
            query=query_values,
            cell_index=cell_index,
            reference=reference,
            genes=np.asarray(shared, dtype=str),
            names=self.store.names,
            config=flat_cfg,
            n_genes=self.config.genes.n_genes,
        )

        result = FlatResult(reference_names=self.store.names, cells=cells)
        n_failed = sum(1 for c in cells if c.error)
        if n_failed:
            self.logger.warning("%d/%d cells could not be classified", n_failed, len(cells))
        self.logger.info("Flat classification complete: %d cells", len(cells))
        return result


def classify_flat(
    query,
    store: ProfileStore,
    config: Optional[ClassifierConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> FlatResult:
    """Convenience wrapper around FlatClassifier.classify."""
    return FlatClassifier(store, config=config, logger=logger).classify(query)


def classify_flat_multi(
    query,
    stores: Mapping[str, ProfileStore],
    config: Optional[ClassifierConfig] = None,
    fine_tuned: bool = True,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Classify the query against several reference sets.

    Returns:
        DataFrame indexed by cell id with one label column per reference set
    """
    matrix = ExpressionMatrix.coerce(query)
    columns = {}
    for name, store in stores.items():
        result = classify_flat(matrix, store, config=config, logger=logger)
        columns[name] = result.labels(fine_tuned=fine_tuned)
    return pd.DataFrame(columns, index=pd.Index(matrix.cells, name="cell_id"))
