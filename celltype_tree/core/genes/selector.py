"""Discriminating gene selection.

Genes are ranked by the absolute difference between the mean expression of
two profile groups. Ties are broken by gene identifier so that the same
inputs always give the same ordered selection.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..profiles import Profile

ProfileGroup = Union[Profile, pd.Series, pd.DataFrame, Sequence[Profile]]


@dataclass(frozen=True)
class GeneSelection:
    """Ordered discriminating genes with their signed mean differences.

    Attributes:
        genes: Selected genes, most discriminating first
        differences: mean(left) - mean(right) for each selected gene
    """

    genes: Tuple[str, ...]
    differences: Tuple[float, ...]

    def __len__(self) -> int:
        return len(self.genes)


@dataclass(frozen=True)
class GeneLossRecord:
    """Selected genes dropped because the query does not measure them."""

    node_id: str
    n_selected: int
    n_missing: int
    frac_missing: float
    flagged: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _group_frame(group: ProfileGroup) -> pd.DataFrame:
    """Normalize a profile group into a genes × members DataFrame."""
    if isinstance(group, pd.DataFrame):
        return group
    if isinstance(group, pd.Series):
        return group.to_frame()
    if isinstance(group, Profile):
        return group.values.to_frame(group.name)
    members = list(group)
    if not members:
        raise ValueError("Profile group is empty")
    return pd.concat([m.values.rename(m.name) for m in members], axis=1)


def rank_genes(genes: Iterable[str], scores: np.ndarray, n_genes: int) -> np.ndarray:
    """Positions of the top n_genes scores, ties broken by gene identifier.

    Genes with a zero or non-finite score carry no evidence and are never
    selected.
    """
    genes = np.asarray([str(g) for g in genes], dtype=str)
    scores = np.asarray(scores, dtype=float)
    usable = np.flatnonzero(np.isfinite(scores) & (scores > 0))
    if usable.size == 0:
        return usable
    # last key is primary: descending score, then ascending gene id
    order = np.lexsort((genes[usable], -scores[usable]))
    return usable[order][:n_genes]


def select_discriminating_genes(
    left: ProfileGroup,
    right: ProfileGroup,
    n_genes: int = 200,
) -> GeneSelection:
    """Select up to n_genes maximizing |mean(left) - mean(right)|.

    Args:
        left: Profile(s) of the first group (or a genes × members DataFrame)
        right: Profile(s) of the second group
        n_genes: Maximum number of genes to return (K)

    Returns:
        GeneSelection ordered by decreasing absolute difference, then gene id
    """
    if n_genes < 1:
        raise ValueError("n_genes must be >= 1")
    left_frame = _group_frame(left)
    right_frame = _group_frame(right)
    genes = left_frame.index.union(right_frame.index)
    left_mean = left_frame.reindex(genes, fill_value=0.0).mean(axis=1).to_numpy()
    right_mean = right_frame.reindex(genes, fill_value=0.0).mean(axis=1).to_numpy()

    diff = left_mean - right_mean
    top = rank_genes(genes, np.abs(diff), n_genes)
    return GeneSelection(
        genes=tuple(str(genes[i]) for i in top),
        differences=tuple(float(diff[i]) for i in top),
    )


def select_spread_genes(
    values: np.ndarray,
    genes: Sequence[str],
    n_genes: int = 200,
) -> np.ndarray:
    """Positions of genes with the widest spread (max - min) across candidates.

    Args:
        values: genes × candidate profiles
        genes: Gene identifiers matching the rows of values
        n_genes: Maximum number of genes

    Returns:
        Row positions, most discriminating first
    """
    values = np.asarray(values, dtype=float)
    if values.ndim != 2 or values.shape[1] < 2:
        return np.zeros(0, dtype=int)
    spread = values.max(axis=1) - values.min(axis=1)
    return rank_genes(genes, spread, n_genes)


def restrict_to_query(
    selection: GeneSelection,
    query_genes: Iterable[str],
    node_id: str = "",
    max_missing_frac: float = 0.2,
    logger: Optional[logging.Logger] = None,
) -> Tuple[GeneSelection, GeneLossRecord]:
    """Drop selected genes the query does not measure.

    Missing genes are skipped rather than read as zero. A loss above
    max_missing_frac is logged as a warning; it never aborts the run.

    Returns:
        Tuple of (kept selection, loss record)
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    available = set(str(g) for g in query_genes)
    keep = [i for i, gene in enumerate(selection.genes) if gene in available]

    n_selected = len(selection)
    n_missing = n_selected - len(keep)
    frac = n_missing / n_selected if n_selected else 0.0
    flagged = frac > max_missing_frac
    record = GeneLossRecord(
        node_id=node_id,
        n_selected=n_selected,
        n_missing=n_missing,
        frac_missing=frac,
        flagged=flagged,
    )
    if flagged:
        logger.warning(
            "%.1f%% of discriminating genes at node %s were absent from the query (%d/%d)",
            100 * frac, node_id, n_missing, n_selected,
        )
    elif n_missing:
        logger.debug("Node %s: %d/%d selected genes absent from query", node_id, n_missing, n_selected)

    kept = GeneSelection(
        genes=tuple(selection.genes[i] for i in keep),
        differences=tuple(selection.differences[i] for i in keep),
    )
    return kept, record
