"""Taxonomy building by agglomerative clustering of reference profiles.

Average linkage over 1 - correlation distance. Ties in linkage distance are
broken by the sorted member names of the two clusters, so the same reference
always yields the same tree.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..config import ProfileConfig, TreeConfig
from ..errors import ReferenceBuildError
from ..profiles import ProfileStore
from ...utils.stats import correlation_matrix
from .tree import INTERNAL_PREFIX, Taxonomy, TaxonomyNode

# distances are compared after rounding so that arithmetic noise cannot
# decide between tied merges
_DISTANCE_DECIMALS = 12

ClusterKey = Tuple[str, ...]


def profile_distances(store: ProfileStore, method: str = "spearman") -> pd.DataFrame:
    """Pairwise 1 - correlation distance between reference profiles."""
    corr = correlation_matrix(store.values, method)
    return pd.DataFrame(1.0 - corr, index=store.names, columns=store.names)


def _linkage(
    names: List[str],
    distances: np.ndarray,
) -> List[Tuple[ClusterKey, ClusterKey, float]]:
    """Average-linkage merge sequence as (left, right, height) triples."""
    clusters: Dict[ClusterKey, int] = {(name,): 1 for name in names}
    pair: Dict[Tuple[ClusterKey, ClusterKey], float] = {}
    for i, a in enumerate(names):
        for j in range(i + 1, len(names)):
            b = names[j]
            key = ((a,), (b,)) if (a,) < (b,) else ((b,), (a,))
            pair[key] = float(distances[i, j])

    merges = []
    while len(clusters) > 1:
        left, right = min(
            pair,
            key=lambda k: (round(pair[k], _DISTANCE_DECIMALS), k[0], k[1]),
        )
        height = pair[(left, right)]
        merged = tuple(sorted(left + right))
        n_left, n_right = clusters.pop(left), clusters.pop(right)

        for other in clusters:
            d_left = pair.pop((left, other) if left < other else (other, left))
            d_right = pair.pop((right, other) if right < other else (other, right))
            d_new = (n_left * d_left + n_right * d_right) / (n_left + n_right)
            pair[(merged, other) if merged < other else (other, merged)] = d_new
        del pair[(left, right)]

        clusters[merged] = n_left + n_right
        merges.append((left, right, height))
    return merges


def build_taxonomy(
    store: ProfileStore,
    config: Optional[TreeConfig] = None,
    profile_config: Optional[ProfileConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> Taxonomy:
    """Build the binary taxonomy over the reference profiles.

    Args:
        store: Reference profiles (one per cell type)
        config: Tree configuration (correlation method)
        profile_config: Profile configuration (weight_by_cells)
        logger: Logger instance

    Returns:
        Taxonomy whose internal nodes are numbered Node0 (root), Node1, ...
        in pre-order, left child first

    Raises:
        ReferenceBuildError: if a cell-type name collides with internal node ids
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    config = config or TreeConfig()
    profile_config = profile_config or ProfileConfig()

    names = store.names
    pattern = re.compile(rf"^{INTERNAL_PREFIX}\d+$")
    clashing = [name for name in names if pattern.match(name)]
    if clashing:
        raise ReferenceBuildError(
            f"Cell-type names collide with internal node identifiers: {clashing}",
            suggestion=f"Rename cell types matching '{INTERNAL_PREFIX}<number>'",
        )

    frame = store.to_frame()
    n_cells = store.n_cells
    distances = profile_distances(store, config.method).to_numpy()
    merges = _linkage(names, distances)

    children: Dict[ClusterKey, Tuple[ClusterKey, ClusterKey]] = {}
    heights: Dict[ClusterKey, float] = {}
    for left, right, height in merges:
        merged = tuple(sorted(left + right))
        children[merged] = (left, right)
        heights[merged] = height
    root_key = tuple(sorted(names))

    # assign ids in pre-order so that the root is Node0
    ids: Dict[ClusterKey, str] = {}
    counter = 0
    stack = [root_key]
    while stack:
        key = stack.pop()
        if key in children:
            ids[key] = f"{INTERNAL_PREFIX}{counter}"
            counter += 1
            stack.extend(reversed(children[key]))
        else:
            ids[key] = key[0]

    parents: Dict[ClusterKey, Optional[str]] = {root_key: None}
    for key, (left, right) in children.items():
        parents[left] = ids[key]
        parents[right] = ids[key]

    nodes = {}
    for key, node_id in ids.items():
        members = tuple(key)
        if key in children:
            weights = (
                np.asarray([n_cells[m] for m in members], dtype=float)
                if profile_config.weight_by_cells
                else np.ones(len(members))
            )
            profile = pd.Series(
                np.average(frame[list(members)].to_numpy(), axis=1, weights=weights),
                index=frame.index,
            )
            node = TaxonomyNode(
                node_id=node_id,
                parent=parents[key],
                children=(ids[children[key][0]], ids[children[key][1]]),
                members=members,
                height=float(heights[key]),
                profile=profile,
            )
        else:
            node = TaxonomyNode(
                node_id=node_id,
                parent=parents[key],
                children=(),
                members=members,
                name=key[0],
                profile=frame[key[0]].copy(),
            )
        nodes[node_id] = node

    taxonomy = Taxonomy(nodes, ids[root_key], scale=store.scale)
    logger.info(
        "Built taxonomy: %d leaves, %d internal nodes (method=%s)",
        len(names), len(merges), config.method,
    )
    for left, right, height in merges:
        logger.debug("  merge %s + %s at %.4f", list(left), list(right), height)
    return taxonomy
