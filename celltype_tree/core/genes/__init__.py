"""Gene Selector: discriminating genes between two profile groups."""

from .selector import (
    GeneLossRecord,
    GeneSelection,
    rank_genes,
    restrict_to_query,
    select_discriminating_genes,
    select_spread_genes,
)

__all__ = [
    "GeneSelection",
    "GeneLossRecord",
    "rank_genes",
    "select_discriminating_genes",
    "select_spread_genes",
    "restrict_to_query",
]
