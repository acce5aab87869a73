"""celltype_tree: reference-based cell-type classification.

This package provides tools for:
- Aggregating labelled reference cells into one profile per cell type
- Flat classification of query cells by correlation with those profiles,
  with iterative fine-tuning among close candidates
- Building a binary taxonomy over the reference cell types
- Hierarchical classification that descends the taxonomy and stops at an
  intermediate node when the evidence for going further is weak
- Re-deriving hierarchical labels under a new threshold from cached scores

Example usage:
    >>> from celltype_tree.core.profiles import build_profile_store
    >>> from celltype_tree.core.taxonomy import build_taxonomy
    >>> from celltype_tree.core.hierarchy import HierarchicalClassifier
    >>>
    >>> store = build_profile_store(reference, labels)
    >>> taxonomy = build_taxonomy(store)
    >>> result = HierarchicalClassifier(taxonomy).classify(query)
    >>> result.rethreshold(0.3).labels().value_counts()
"""

__version__ = "0.1.0"
