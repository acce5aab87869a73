"""Core computational modules for celltype_tree.

This package contains the classification engines:
- profiles: Profile Store (one aggregate profile per reference cell type)
- genes: discriminating gene selection between two profile groups
- flat: nearest-reference classifier with fine-tuning
- taxonomy: binary tree over the reference cell types
- hierarchy: taxonomy descent, confidence scoring and re-thresholding
"""
