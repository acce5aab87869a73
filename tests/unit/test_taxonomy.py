"""Unit tests for the taxonomy builder and tree."""

import numpy as np
import pandas as pd
import pytest

from celltype_tree.core.config import ProfileConfig, TreeConfig
from celltype_tree.core.errors import ReferenceBuildError
from celltype_tree.core.profiles import ProfileStore
from celltype_tree.core.taxonomy import Taxonomy, build_taxonomy, profile_distances


def _store(columns, n_cells=None, scale="identity"):
    frame = pd.DataFrame(columns, index=[f"g{i}" for i in range(len(next(iter(columns.values()))))])
    n_cells = n_cells or {name: 1 for name in columns}
    return ProfileStore(frame, n_cells, scale=scale)


class TestStructure:
    """Tests for the A/B/C reference."""

    def test_similar_types_merge_first(self, taxonomy):
        assert taxonomy.root_id == "Node0"
        assert taxonomy.root.children == ("Node1", "C")
        assert taxonomy.node("Node1").children == ("A", "B")
        assert taxonomy.node("Node1").height < taxonomy.root.height

    def test_paths(self, taxonomy):
        assert taxonomy.path_to("B") == ["Node0", "Node1", "B"]
        assert taxonomy.path_to("C") == ["Node0", "C"]
        assert taxonomy.depth("A") == 2

    def test_invariants(self, taxonomy):
        assert sorted(taxonomy.leaf_names()) == ["A", "B", "C"]
        assert len(taxonomy.internal_nodes()) == 2
        for node in taxonomy.internal_nodes():
            assert len(node.children) == 2
            left, right = node.children
            members = taxonomy.node(left).members + taxonomy.node(right).members
            assert sorted(members) == sorted(node.members)
        assert taxonomy.root.is_root
        assert taxonomy.node("A").is_leaf
        assert taxonomy.node("A").name == "A"

    def test_internal_profile_is_plain_mean(self, store, taxonomy):
        expected = (store.profile("A").values + store.profile("B").values) / 2
        np.testing.assert_allclose(taxonomy.node("Node1").profile.to_numpy(), expected.to_numpy())

    def test_preorder_iteration(self, taxonomy):
        assert [n.node_id for n in taxonomy] == ["Node0", "Node1", "A", "B", "C"]

    def test_unknown_node(self, taxonomy):
        with pytest.raises(KeyError):
            taxonomy.node("Node9")


class TestDeterminism:
    """The same reference always gives the same tree."""

    def test_rebuild_identical(self, store):
        first = build_taxonomy(store)
        second = build_taxonomy(store)
        assert first.to_dict() == second.to_dict()

    def test_profile_order_irrelevant(self, store):
        first = build_taxonomy(store)
        shuffled = build_taxonomy(store.subset(["C", "B", "A"]))
        pd.testing.assert_frame_equal(first.to_frame(), shuffled.to_frame())

    def test_tied_distances(self):
        store = _store({
            "Z": [0.0, 0.0, 1.0],
            "Y": [0.0, 1.0, 0.0],
            "X": [1.0, 0.0, 0.0],
        })
        distances = profile_distances(store, "pearson")
        assert distances.loc["X", "Y"] == pytest.approx(distances.loc["Y", "Z"])
        taxonomy = build_taxonomy(store, config=TreeConfig(method="pearson"))
        assert taxonomy.root.children == ("Node1", "Z")
        assert taxonomy.node("Node1").children == ("X", "Y")


class TestBuildOptions:
    """Tests for naming rules and profile weighting."""

    def test_reserved_names_rejected(self):
        store = _store({"Node3": [1.0, 0.0, 2.0], "T": [0.0, 1.0, 2.0]})
        with pytest.raises(ReferenceBuildError, match="internal node"):
            build_taxonomy(store)

    def test_weight_by_cells(self):
        store = _store(
            {"P": [4.0, 0.0, 1.0], "Q": [0.0, 4.0, 1.0]},
            n_cells={"P": 3, "Q": 1},
        )
        taxonomy = build_taxonomy(store, profile_config=ProfileConfig(weight_by_cells=True))
        np.testing.assert_allclose(taxonomy.root.profile.to_numpy(), [3.0, 1.0, 1.0])

    def test_single_type(self):
        store = _store({"Only": [1.0, 2.0, 3.0]})
        taxonomy = build_taxonomy(store)
        assert taxonomy.root_id == "Only"
        assert taxonomy.root.is_leaf
        assert taxonomy.internal_nodes() == []

    def test_scale_carried(self, store, taxonomy):
        assert taxonomy.scale == store.scale


class TestExport:
    """Tests for serialization and rendering."""

    def test_dict_round_trip(self, taxonomy):
        restored = Taxonomy.from_dict(taxonomy.to_dict())
        assert [n.node_id for n in restored] == [n.node_id for n in taxonomy]
        assert restored.root.height == pytest.approx(taxonomy.root.height)
        np.testing.assert_allclose(
            restored.node("Node1").profile.to_numpy(), taxonomy.node("Node1").profile.to_numpy()
        )

    def test_edge_table(self, taxonomy):
        frame = taxonomy.to_frame()
        assert list(frame["node_id"]) == ["Node0", "Node1", "A", "B", "C"]
        row = frame.set_index("node_id").loc["Node1"]
        assert row["parent"] == "Node0"
        assert row["left"] == "A"
        assert row["right"] == "B"
        assert row["n_leaves"] == 2

    def test_render_ascii(self, taxonomy):
        text = taxonomy.render_ascii()
        lines = text.splitlines()
        assert lines[0] == "Cell Type Taxonomy"
        assert "Node0 [h=" in lines[1]
        assert any(line.strip().endswith("C") for line in lines)

    def test_render_counts(self, taxonomy):
        text = taxonomy.render_ascii(show_height=False, counts={"Node1": 4, "C": 2})
        assert "Node1 (4)" in text
        assert "C (2)" in text
        assert "[h=" not in text

    def test_invalid_tree_rejected(self, taxonomy):
        nodes = {n.node_id: n for n in taxonomy}
        del nodes["B"]
        with pytest.raises(ValueError):
            Taxonomy(nodes, "Node0")
