"""Command-line interface for celltype_tree.

Example Usage
-------------
    # From command line:
    celltype-tree --help
    celltype-tree build-reference --matrix ref.csv --labels labels.csv --out ref.json
    celltype-tree classify --reference ref.json --query query.csv --out results/
    celltype-tree show-taxonomy --reference ref.json
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
