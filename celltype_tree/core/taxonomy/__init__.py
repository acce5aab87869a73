"""Taxonomy Builder: binary tree over reference cell types.

Example Usage
-------------
>>> from celltype_tree.core.taxonomy import build_taxonomy
>>> taxonomy = build_taxonomy(store)
>>> print(taxonomy.render_ascii())
"""

from .builder import build_taxonomy, profile_distances
from .render import render_taxonomy_ascii
from .tree import INTERNAL_PREFIX, Taxonomy, TaxonomyNode

__all__ = [
    "INTERNAL_PREFIX",
    "Taxonomy",
    "TaxonomyNode",
    "build_taxonomy",
    "profile_distances",
    "render_taxonomy_ascii",
]
