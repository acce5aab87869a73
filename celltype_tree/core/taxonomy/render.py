"""ASCII tree visualization for taxonomies.

Generates console-friendly tree representation of the decision tree.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from .tree import Taxonomy, TaxonomyNode


def render_taxonomy_ascii(
    taxonomy: "Taxonomy",
    *,
    show_height: bool = True,
    counts: Optional[dict] = None,
    title: str = "Cell Type Taxonomy",
    branch_chars: Tuple[str, str, str, str] = ("├── ", "└── ", "│   ", "    "),
) -> str:
    """
    Generate ASCII tree representation of a taxonomy for console output.

    Parameters
    ----------
    taxonomy : Taxonomy
        Taxonomy to render.
    show_height : bool
        Whether to show the merge distance of internal nodes.
    counts : dict, optional
        Node id → number of cells labelled at that node, appended as "(n)".
    title : str
        First line of the output.
    branch_chars : Tuple[str, str, str, str]
        Characters for tree branches: (branch, last_branch, pipe, space).

    Returns
    -------
    str
        ASCII tree representation.

    Example Output
    --------------
    Cell Type Taxonomy
    └── Node0 [h=0.612]
        ├── Node1 [h=0.083]
        │   ├── B cell
        │   └── T cell
        └── Fibroblast
    """
    branch, last_branch, pipe, space = branch_chars
    lines: List[str] = [title]

    def format_node_line(node: "TaxonomyNode") -> str:
        """Format a single node's display text."""
        parts = [node.name if node.is_leaf else node.node_id]
        if show_height and not node.is_leaf:
            parts.append(f"[h={node.height:.3f}]")
        if counts is not None and node.node_id in counts:
            parts.append(f"({counts[node.node_id]})")
        return " ".join(parts)

    def render_subtree(node_id: str, prefix: str, is_last: bool) -> None:
        """Recursively render subtree."""
        node = taxonomy.node(node_id)
        connector = last_branch if is_last else branch
        lines.append(f"{prefix}{connector}{format_node_line(node)}")
        child_prefix = prefix + (space if is_last else pipe)
        for i, child in enumerate(node.children):
            render_subtree(child, child_prefix, i == len(node.children) - 1)

    render_subtree(taxonomy.root_id, "", True)
    return "\n".join(lines)


__all__ = ["render_taxonomy_ascii"]
