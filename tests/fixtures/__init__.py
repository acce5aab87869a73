"""Test fixtures and synthetic data generators."""

from .synthetic import (
    create_exact_reference,
    create_mixture,
    create_profile_mixture,
    create_query,
    create_reference,
    create_type_means,
    gene_names,
    sample_cells,
)

__all__ = [
    "create_exact_reference",
    "create_mixture",
    "create_profile_mixture",
    "create_query",
    "create_reference",
    "create_type_means",
    "gene_names",
    "sample_cells",
]
