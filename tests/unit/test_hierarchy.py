"""Unit tests for the hierarchical classifier."""

import logging

import numpy as np
import pandas as pd
import pytest

from celltype_tree.core.config import ClassifierConfig, ParallelConfig, TreeConfig
from celltype_tree.core.hierarchy import (
    SCORE_COLUMNS,
    STATUS_INTERMEDIATE,
    STATUS_LEAF,
    STATUS_UNASSIGNED,
    UNASSIGNED,
    HierarchicalClassifier,
    classify_tree,
    confidence_score,
    prepare_node_plans,
)
from celltype_tree.core.profiles import ProfileStore
from celltype_tree.core.taxonomy import build_taxonomy
from tests.fixtures import create_mixture, create_profile_mixture


class TestConfidenceScore:
    """Tests for the node confidence measure."""

    left = np.array([5.0, 1.0, 0.0, 2.0, 3.0])
    right = np.array([0.0, 2.0, 4.0, 1.0, 3.5])

    def _node(self):
        return (self.left + self.right) / 2

    def test_left_like_query_positive(self):
        assert confidence_score(self.left, self._node(), self.left, self.right) > 0

    def test_right_like_query_negative(self):
        assert confidence_score(self.right, self._node(), self.left, self.right) < 0

    def test_node_profile_query_zero(self):
        assert confidence_score(self._node(), self._node(), self.left, self.right) == 0.0

    def test_scale_invariant(self):
        a = confidence_score(self.left, self._node(), self.left, self.right)
        b = confidence_score(3 * self.left, self._node(), self.left, self.right)
        assert a == pytest.approx(b)

    def test_degenerate_inputs(self):
        node = self._node()
        assert confidence_score(np.ones(5), node, self.left, self.right) == 0.0
        assert confidence_score(self.left, node, self.left, self.left.copy()) == 0.0

    def test_bounded(self, rng):
        for _ in range(50):
            q, a, b = rng.uniform(0, 5, size=(3, 8))
            value = confidence_score(q, (a + b) / 2, a, b)
            assert -1.0 <= value <= 1.0


class TestExactReference:
    """Scenarios on the noise-free A/B/C reference."""

    def test_mixture_stops_at_parent(self, exact_taxonomy, type_means):
        query = create_mixture(type_means, {"A": 1, "B": 1})
        result = HierarchicalClassifier(exact_taxonomy).classify(query, threshold=0.1)
        cell = result.results["mix"]
        assert cell.label == "Node1"
        assert cell.status == STATUS_INTERMEDIATE
        assert cell.path == ("Node0", "Node1")
        assert cell.confidence == pytest.approx(0.0, abs=1e-12)
        root_row = result.scores[result.scores["node_id"] == "Node0"].iloc[0]
        assert root_row["confidence"] > 0.1

    def test_mixture_forced_to_leaf(self, exact_taxonomy, type_means):
        query = create_mixture(type_means, {"A": 1, "B": 1})
        result = HierarchicalClassifier(exact_taxonomy).classify(query, threshold=0.0)
        cell = result.results["mix"]
        assert cell.status == STATUS_LEAF
        assert cell.label in {"A", "B"}

    def test_distinct_type_reaches_leaf(self, exact_taxonomy, type_means):
        result = HierarchicalClassifier(exact_taxonomy).classify(type_means, threshold=0.1)
        assert result.results["C"].label == "C"
        assert result.results["C"].path == ("Node0", "C")
        assert result.results["C"].confidence < -0.1
        assert result.results["A"].label == "A"
        assert result.results["A"].path == ("Node0", "Node1", "A")
        assert result.results["B"].label == "B"

    def test_every_threshold_stops_at_root(self, exact_taxonomy, type_means):
        result = HierarchicalClassifier(exact_taxonomy).classify(type_means, threshold=1.0)
        for cell in result.results.values():
            assert cell.label == UNASSIGNED
            assert cell.status == STATUS_UNASSIGNED
            assert cell.path == ("Node0",)


class TestProfileScaleMixture:
    """A 50/50 mix of two profiles on the default log1p scale."""

    @pytest.mark.parametrize("threshold", [1e-6, 1e-4, 0.1])
    def test_mixture_stops_at_parent(self, store, taxonomy, threshold):
        assert store.scale == "log1p"
        query = create_profile_mixture(store, {"A": 1, "B": 1})
        result = HierarchicalClassifier(taxonomy).classify(query, threshold=threshold)
        cell = result.results["mix"]
        assert cell.label == "Node1"
        assert cell.status == STATUS_INTERMEDIATE
        assert cell.path == ("Node0", "Node1")
        assert cell.confidence == pytest.approx(0.0, abs=1e-12)

    def test_node_confidence_zero(self, store, taxonomy):
        query = create_profile_mixture(store, {"A": 1, "B": 1})
        scores = HierarchicalClassifier(taxonomy).classify(query, threshold=0.0).scores
        node1 = scores[scores["node_id"] == "Node1"].iloc[0]
        assert node1["confidence"] == pytest.approx(0.0, abs=1e-12)

    def test_uneven_mixture_descends(self, store, taxonomy):
        query = create_profile_mixture(store, {"A": 1})
        result = HierarchicalClassifier(taxonomy).classify(query, threshold=0.1)
        assert result.results["mix"].label == "A"


class TestHierarchicalClassifier:
    """Tests on the Poisson reference."""

    def test_threshold_zero_always_leaf(self, taxonomy, query):
        frame, _ = query
        result = classify_tree(frame, taxonomy, threshold=0.0)
        leaves = set(taxonomy.leaf_names())
        for cell in result.results.values():
            assert cell.status == STATUS_LEAF
            assert cell.label in leaves
            assert cell.path[-1] == cell.label

    def test_accuracy(self, taxonomy, query):
        frame, truth = query
        labels = classify_tree(frame, taxonomy).labels()
        accuracy = (labels == truth.reindex(labels.index)).mean()
        assert accuracy >= 0.9

    def test_leaf_labels_are_leaves(self, taxonomy, query):
        frame, _ = query
        result = classify_tree(frame, taxonomy, threshold=0.3)
        leaves = set(taxonomy.leaf_names())
        internal = {n.node_id for n in taxonomy.internal_nodes()}
        for cell in result.results.values():
            if cell.status == STATUS_LEAF:
                assert cell.label in leaves
            elif cell.status == STATUS_INTERMEDIATE:
                assert cell.label in internal
                assert cell.label != taxonomy.root_id
            else:
                assert cell.label == UNASSIGNED

    def test_score_table(self, taxonomy, query):
        frame, _ = query
        result = classify_tree(frame, taxonomy)
        assert list(result.scores.columns) == SCORE_COLUMNS
        first = result.scores[result.scores["step"] == 0]
        assert set(first["node_id"]) == {"Node0"}
        assert len(first) == frame.shape[1]

    def test_output_order(self, taxonomy, query):
        frame, _ = query
        result = classify_tree(frame, taxonomy)
        assert list(result.labels().index) == list(frame.columns)
        assert list(result.to_frame().index) == list(frame.columns)

    def test_negative_threshold(self, taxonomy, query):
        frame, _ = query
        with pytest.raises(ValueError):
            classify_tree(frame, taxonomy, threshold=-0.5)

    def test_config_threshold_used(self, taxonomy, query):
        frame, _ = query
        config = ClassifierConfig(tree=TreeConfig(threshold=0.25))
        assert classify_tree(frame, taxonomy, config=config).threshold == 0.25

    def test_parallel_matches_sequential(self, taxonomy, query):
        frame, _ = query
        sequential = classify_tree(frame, taxonomy)
        config = ClassifierConfig(parallel=ParallelConfig(n_workers=2, batch_size=4))
        parallel = classify_tree(frame, taxonomy, config=config)
        pd.testing.assert_frame_equal(sequential.to_frame(), parallel.to_frame())
        pd.testing.assert_frame_equal(sequential.scores, parallel.scores)


class TestPerCellErrors:
    """Cells without enough genes are reported, not fatal."""

    def test_insufficient_overlap(self, taxonomy, query):
        frame, _ = query
        frame = frame.copy()
        bad_cell = frame.columns[3]
        frame.iloc[4:, 3] = np.nan
        result = classify_tree(frame, taxonomy)
        cell = result.results[bad_cell]
        assert cell.label == UNASSIGNED
        assert cell.status == STATUS_UNASSIGNED
        assert cell.error["error_code"] == "E201_INSUFFICIENT_OVERLAP"
        errors = result.errors_frame()
        assert list(errors["cell_id"]) == [bad_cell]
        others = result.labels().drop(bad_cell)
        assert (others != UNASSIGNED).sum() > 0
        assert bad_cell not in set(result.scores["cell_id"])


class TestGeneLoss:
    """Discriminating genes missing from the query."""

    def test_loss_recorded_and_warned(self, taxonomy, query, caplog):
        frame, _ = query
        # keep only the block separating A from B
        reduced = frame.loc[[f"G{i:03d}" for i in range(20, 40)]]
        config = ClassifierConfig.from_dict({"genes": {"n_genes": 20}})
        with caplog.at_level(logging.WARNING):
            result = classify_tree(reduced, taxonomy, config=config, threshold=0.0)
        loss = result.gene_loss.set_index("node_id")
        assert loss.loc["Node0", "n_missing"] == 20
        assert bool(loss.loc["Node0", "flagged"]) is True
        assert loss.loc["Node1", "n_missing"] == 0
        assert "Node0" in caplog.text
        assert len(result.results) == frame.shape[1]

    def test_plans_skip_missing_genes(self, taxonomy):
        genes = pd.Index([f"G{i:03d}" for i in range(30)], name="gene")
        plans, losses = prepare_node_plans(taxonomy, genes)
        assert set(plans) == {"Node0", "Node1"}
        for plan in plans.values():
            assert (plan.rows >= 0).all()
            assert plan.rows.max() < len(genes)
        assert {r.node_id for r in losses} == {"Node0", "Node1"}


class TestSingleType:
    """A one-type reference has no decisions to make."""

    def test_every_cell_gets_the_type(self, query):
        frame, _ = query
        store = ProfileStore(
            pd.DataFrame({"Only": np.ones(frame.shape[0])}, index=frame.index),
            {"Only": 5},
        )
        result = classify_tree(frame, build_taxonomy(store))
        assert set(result.labels()) == {"Only"}
        assert result.scores.empty
