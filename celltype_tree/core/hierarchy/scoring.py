"""Per-node scoring for hierarchical classification.

At every internal node two numbers are computed for a query cell, both
restricted to the genes that discriminate the node's two children:

- confidence: signed evidence for continuing past the node. The query is
  centered and its component explained by the node's own profile is
  removed; the remainder is compared with the left-minus-right child
  contrast. Positive favours the left child, negative the right child, and
  the magnitude (at most 1) grows with how much of the query's spread the
  contrast accounts for. A query equal to the node profile scores 0.
- profile scores: correlation of the query with each child profile. The
  branch with the higher profile score is taken.

Neither depends on the confidence threshold, so the scores of a descent can
be cached and re-thresholded later.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..genes import GeneLossRecord, restrict_to_query, select_discriminating_genes
from ..taxonomy import Taxonomy
from ...utils.stats import correlate

# residuals smaller than this fraction of the query spread count as none
RESIDUAL_TOLERANCE = 1e-9


@dataclass(frozen=True)
class NodePlan:
    """Genes and reference values used at one internal node for a query run.

    Attributes:
        node_id: Internal node id
        left: Left child id
        right: Right child id
        rows: Positions of the selected genes in the aligned query gene axis
        node_profile: Node profile over the selected genes
        left_profile: Left child profile over the selected genes
        right_profile: Right child profile over the selected genes
    """

    node_id: str
    left: str
    right: str
    rows: np.ndarray
    node_profile: np.ndarray
    left_profile: np.ndarray
    right_profile: np.ndarray


@dataclass(frozen=True)
class NodeScore:
    """Scores of one query cell at one internal node."""

    node_id: str
    confidence: float
    left: str
    right: str
    left_score: float
    right_score: float
    selected: str
    n_genes: int

    def to_dict(self) -> Dict:
        return asdict(self)


def prepare_node_plans(
    taxonomy: Taxonomy,
    query_genes: pd.Index,
    n_genes: int = 200,
    max_missing_frac: float = 0.2,
    logger: Optional[logging.Logger] = None,
) -> Tuple[Dict[str, NodePlan], List[GeneLossRecord]]:
    """Select discriminating genes for every internal node of the taxonomy.

    Gene selection depends only on the node and on which genes the query
    measures, so it is done once per run rather than per cell.

    Args:
        taxonomy: Reference taxonomy
        query_genes: Aligned query gene axis (genes shared with the reference)
        n_genes: Maximum genes per node (K)
        max_missing_frac: Loss fraction above which a node is flagged
        logger: Logger instance

    Returns:
        Tuple of (node id → NodePlan, gene loss records)
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    plans: Dict[str, NodePlan] = {}
    losses: List[GeneLossRecord] = []
    for node in taxonomy.internal_nodes():
        left, right = node.children
        selection = select_discriminating_genes(
            taxonomy.member_profiles(left),
            taxonomy.member_profiles(right),
            n_genes=n_genes,
        )
        kept, record = restrict_to_query(
            selection, query_genes, node_id=node.node_id,
            max_missing_frac=max_missing_frac, logger=logger,
        )
        losses.append(record)
        genes = list(kept.genes)
        plans[node.node_id] = NodePlan(
            node_id=node.node_id,
            left=left,
            right=right,
            rows=query_genes.get_indexer(genes),
            node_profile=node.profile.reindex(genes).to_numpy(dtype=float),
            left_profile=taxonomy.node(left).profile.reindex(genes).to_numpy(dtype=float),
            right_profile=taxonomy.node(right).profile.reindex(genes).to_numpy(dtype=float),
        )
        logger.debug(
            "Node %s: %d/%d discriminating genes usable", node.node_id, len(genes), len(selection)
        )
    return plans, losses


def confidence_score(
    query: np.ndarray,
    node_profile: np.ndarray,
    left_profile: np.ndarray,
    right_profile: np.ndarray,
) -> float:
    """Signed confidence for descending past a node.

    Let q, n and d be the centered query, node profile and left-minus-right
    contrast. With e the part of q not explained by n (least squares),
    confidence = <e, d> / (|q| |d|), which lies in [-1, 1].

    Returns 0 when the query is constant, the children do not differ, or the
    node profile explains the query completely.
    """
    q = np.asarray(query, dtype=float)
    q = q - q.mean()
    n = np.asarray(node_profile, dtype=float)
    n = n - n.mean()
    d = np.asarray(left_profile, dtype=float) - np.asarray(right_profile, dtype=float)
    d = d - d.mean()

    q_norm = np.sqrt(np.sum(q * q))
    d_norm = np.sqrt(np.sum(d * d))
    if q_norm == 0 or d_norm == 0:
        return 0.0

    n_sq = np.sum(n * n)
    residual = q - (np.sum(q * n) / n_sq) * n if n_sq > 0 else q
    if np.sqrt(np.sum(residual * residual)) <= RESIDUAL_TOLERANCE * q_norm:
        return 0.0
    return float(np.clip(np.sum(residual * d) / (q_norm * d_norm), -1.0, 1.0))


def score_node(values: np.ndarray, plan: NodePlan, method: str = "spearman") -> NodeScore:
    """Score one cell at one node.

    Args:
        values: Scaled cell values over the aligned query gene axis (NaN = unmeasured)
        plan: Node plan of the current run
        method: Correlation method for the profile scores

    Returns:
        NodeScore; the left child is selected when profile scores tie or
        are undefined
    """
    query = values[plan.rows]
    measured = np.isfinite(query)
    n_genes = int(measured.sum())

    if n_genes < 2:
        confidence = 0.0
        left_score = right_score = float("nan")
    else:
        query = query[measured]
        node_p = plan.node_profile[measured]
        left_p = plan.left_profile[measured]
        right_p = plan.right_profile[measured]
        confidence = confidence_score(query, node_p, left_p, right_p)
        left_score = correlate(query, left_p, method)
        right_score = correlate(query, right_p, method)

    right_wins = np.isfinite(right_score) and (not np.isfinite(left_score) or right_score > left_score)
    return NodeScore(
        node_id=plan.node_id,
        confidence=confidence,
        left=plan.left,
        right=plan.right,
        left_score=left_score,
        right_score=right_score,
        selected=plan.right if right_wins else plan.left,
        n_genes=n_genes,
    )


def descend(
    values: np.ndarray,
    plans: Dict[str, NodePlan],
    root_id: str,
    method: str = "spearman",
) -> List[NodeScore]:
    """Follow the profile-score branch choices from the root down to a leaf.

    The whole path is scored regardless of confidence; stopping is decided
    afterwards from these cached scores.
    """
    steps = []
    node_id = root_id
    while node_id in plans:
        step = score_node(values, plans[node_id], method)
        steps.append(step)
        node_id = step.selected
    return steps
