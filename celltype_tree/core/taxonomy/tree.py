"""Taxonomy tree representation.

A binary tree whose leaves are reference cell types and whose internal
nodes represent groups of cell types. Built once per reference set and
read-only thereafter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

INTERNAL_PREFIX = "Node"


@dataclass(frozen=True)
class TaxonomyNode:
    """A node in the taxonomy.

    Attributes:
        node_id: Unique identifier (the cell-type name for leaves, NodeN otherwise)
        parent: Parent node id, None for the root
        children: Ordered pair of child ids, empty for leaves
        members: Cell-type names of the leaves below this node
        name: Cell-type name, leaves only
        height: Linkage distance at which the node was formed (0 for leaves)
        profile: Aggregate profile (gene → value)
    """

    node_id: str
    parent: Optional[str]
    children: Tuple[str, ...]
    members: Tuple[str, ...]
    name: Optional[str] = None
    height: float = 0.0
    profile: pd.Series = field(default=None, compare=False, repr=False)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_root(self) -> bool:
        return self.parent is None


class Taxonomy:
    """Read-only binary tree over reference cell types.

    Example:
        >>> taxonomy = build_taxonomy(store)
        >>> taxonomy.root.children
        ('Node1', 'Fibroblast')
        >>> taxonomy.path_to("T cell")
        ['Node0', 'Node1', 'Node2', 'T cell']
    """

    def __init__(self, nodes: Dict[str, TaxonomyNode], root_id: str, scale: str = "log1p"):
        self._nodes = dict(nodes)
        self.root_id = root_id
        self.scale = scale
        self.validate()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def root(self) -> TaxonomyNode:
        return self._nodes[self.root_id]

    def node(self, node_id: str) -> TaxonomyNode:
        if node_id not in self._nodes:
            raise KeyError(f"Node not found in taxonomy: {node_id}")
        return self._nodes[node_id]

    def __getitem__(self, node_id: str) -> TaxonomyNode:
        return self.node(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[TaxonomyNode]:
        """Nodes in pre-order, left child first."""
        stack = [self.root_id]
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> List[TaxonomyNode]:
        return [n for n in self if n.is_leaf]

    def leaf_names(self) -> List[str]:
        return [n.name for n in self.leaves()]

    def internal_nodes(self) -> List[TaxonomyNode]:
        return [n for n in self if not n.is_leaf]

    def path_to(self, node_id: str) -> List[str]:
        """Node ids from the root down to node_id (inclusive)."""
        path = [self.node(node_id).node_id]
        while self._nodes[path[-1]].parent is not None:
            path.append(self._nodes[path[-1]].parent)
        return path[::-1]

    def depth(self, node_id: str) -> int:
        return len(self.path_to(node_id)) - 1

    def member_profiles(self, node_id: str) -> pd.DataFrame:
        """Genes × member leaves profile table of a node."""
        members = self.node(node_id).members
        return pd.concat([self._nodes[m].profile.rename(m) for m in members], axis=1)

    @property
    def genes(self) -> pd.Index:
        return self.root.profile.index

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the tree invariants.

        Raises:
            ValueError: if there is not exactly one root, parent and child
                links disagree, an internal node does not have two children,
                or some node is unreachable from the root.
        """
        roots = [n.node_id for n in self._nodes.values() if n.parent is None]
        if roots != [self.root_id]:
            raise ValueError(f"Taxonomy must have exactly one root, found {roots}")

        for node in self._nodes.values():
            if node.children and len(node.children) != 2:
                raise ValueError(f"Node {node.node_id} has {len(node.children)} children")
            if node.is_leaf and not node.name:
                raise ValueError(f"Leaf {node.node_id} has no cell-type name")
            for child in node.children:
                if child not in self._nodes:
                    raise ValueError(f"Node {node.node_id} references unknown child {child}")
                if self._nodes[child].parent != node.node_id:
                    raise ValueError(f"Child {child} does not point back to {node.node_id}")

        seen = set()
        stack = [self.root_id]
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                raise ValueError(f"Cycle detected at node {node_id}")
            seen.add(node_id)
            stack.extend(self._nodes[node_id].children)
        if len(seen) != len(self._nodes):
            unreachable = sorted(set(self._nodes) - seen)[:5]
            raise ValueError(f"Nodes unreachable from root: {unreachable}")

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_frame(self) -> pd.DataFrame:
        """Edge table for external rendering of the decision tree."""
        records = [
            {
                "node_id": n.node_id,
                "parent": n.parent,
                "left": n.children[0] if n.children else None,
                "right": n.children[1] if n.children else None,
                "is_leaf": n.is_leaf,
                "name": n.name,
                "depth": self.depth(n.node_id),
                "height": n.height,
                "n_leaves": len(n.members),
            }
            for n in self
        ]
        return pd.DataFrame.from_records(records)

    def render_ascii(self, **kwargs: Any) -> str:
        from .render import render_taxonomy_ascii

        return render_taxonomy_ascii(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        genes = list(self.genes)
        return {
            "root_id": self.root_id,
            "scale": self.scale,
            "genes": genes,
            "nodes": [
                {
                    "node_id": n.node_id,
                    "parent": n.parent,
                    "children": list(n.children),
                    "members": list(n.members),
                    "name": n.name,
                    "height": n.height,
                    "profile": n.profile.reindex(genes).tolist(),
                }
                for n in self
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Taxonomy":
        genes = pd.Index(data["genes"], name="gene")
        nodes = {}
        for item in data["nodes"]:
            nodes[item["node_id"]] = TaxonomyNode(
                node_id=item["node_id"],
                parent=item.get("parent"),
                children=tuple(item.get("children", [])),
                members=tuple(item.get("members", [])),
                name=item.get("name"),
                height=float(item.get("height", 0.0)),
                profile=pd.Series(np.asarray(item["profile"], dtype=float), index=genes),
            )
        return cls(nodes, data["root_id"], scale=data.get("scale", "log1p"))

    def __repr__(self) -> str:
        return f"Taxonomy(n_leaves={len(self.leaves())}, root={self.root_id!r})"
