"""Unit tests for discriminating gene selection."""

import logging

import numpy as np
import pandas as pd
import pytest

from celltype_tree.core.genes import (
    GeneSelection,
    rank_genes,
    restrict_to_query,
    select_discriminating_genes,
    select_spread_genes,
)


class TestRankGenes:
    """Tests for score ranking."""

    def test_descending(self):
        order = rank_genes(["a", "b", "c"], np.array([0.1, 0.5, 0.3]), 3)
        assert list(order) == [1, 2, 0]

    def test_ties_by_gene_id(self):
        order = rank_genes(["g3", "g1", "g2"], np.array([1.0, 1.0, 1.0]), 3)
        assert list(order) == [1, 2, 0]

    def test_zero_and_nan_excluded(self):
        order = rank_genes(["a", "b", "c"], np.array([0.0, np.nan, 2.0]), 3)
        assert list(order) == [2]

    def test_truncated(self):
        order = rank_genes(["a", "b", "c"], np.array([3.0, 2.0, 1.0]), 2)
        assert list(order) == [0, 1]


class TestSelectDiscriminatingGenes:
    """Tests for left/right group comparison."""

    def test_top_k_by_absolute_difference(self):
        left = pd.Series([5.0, 1.0, 2.0, 0.0], index=["a", "b", "c", "d"])
        right = pd.Series([1.0, 1.0, 4.5, 0.0], index=["a", "b", "c", "d"])
        selection = select_discriminating_genes(left, right, n_genes=2)
        assert selection.genes == ("a", "c")
        assert selection.differences == pytest.approx((4.0, -2.5))

    def test_identical_groups_select_nothing(self):
        profile = pd.Series([1.0, 2.0], index=["a", "b"])
        selection = select_discriminating_genes(profile, profile.copy())
        assert len(selection) == 0

    def test_group_means(self):
        left = pd.DataFrame({"x": [4.0, 0.0], "y": [2.0, 0.0]}, index=["a", "b"])
        right = pd.Series([0.0, 1.0], index=["a", "b"])
        selection = select_discriminating_genes(left, right)
        assert selection.genes == ("a", "b")
        assert selection.differences == pytest.approx((3.0, -1.0))

    def test_deterministic_ties(self):
        genes = [f"g{i}" for i in range(10)]
        left = pd.Series(np.ones(10), index=genes[::-1])
        right = pd.Series(np.zeros(10), index=genes)
        first = select_discriminating_genes(left, right, n_genes=4)
        second = select_discriminating_genes(left.sample(frac=1, random_state=3), right, n_genes=4)
        assert first.genes == ("g0", "g1", "g2", "g3")
        assert first == second

    def test_store_profiles(self, store):
        selection = select_discriminating_genes(store.profile("A"), store.profile("B"), n_genes=20)
        assert len(selection) == 20
        top = {f"G{i:03d}" for i in range(20, 40)}
        assert len(top.intersection(selection.genes)) >= 18

    def test_invalid_n_genes(self):
        profile = pd.Series([1.0], index=["a"])
        with pytest.raises(ValueError):
            select_discriminating_genes(profile, profile, n_genes=0)


class TestSelectSpreadGenes:
    """Tests for candidate spread ranking used in fine-tuning."""

    def test_spread(self):
        values = np.array([[1.0, 1.0, 1.0], [0.0, 3.0, 1.0], [2.0, 0.0, 0.5]])
        rows = select_spread_genes(values, ["a", "b", "c"], n_genes=5)
        assert list(rows) == [1, 2]

    def test_single_candidate(self):
        rows = select_spread_genes(np.ones((3, 1)), ["a", "b", "c"])
        assert rows.size == 0


class TestRestrictToQuery:
    """Tests for query gene loss handling."""

    def _selection(self):
        return GeneSelection(genes=("a", "b", "c", "d"), differences=(4.0, 3.0, -2.0, 1.0))

    def test_missing_skipped(self):
        kept, record = restrict_to_query(self._selection(), ["a", "c", "d", "z"], node_id="Node0")
        assert kept.genes == ("a", "c", "d")
        assert kept.differences == (4.0, -2.0, 1.0)
        assert record.n_selected == 4
        assert record.n_missing == 1
        assert record.frac_missing == pytest.approx(0.25)
        assert record.flagged is True

    def test_warning_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            restrict_to_query(self._selection(), ["a"], node_id="Node3", max_missing_frac=0.2)
        assert "Node3" in caplog.text

    def test_below_limit_not_flagged(self, caplog):
        with caplog.at_level(logging.WARNING):
            _, record = restrict_to_query(
                self._selection(), ["a", "b", "c"], node_id="Node1", max_missing_frac=0.3
            )
        assert record.flagged is False
        assert "Node1" not in caplog.text

    def test_nothing_missing(self):
        kept, record = restrict_to_query(self._selection(), ["a", "b", "c", "d"])
        assert kept == self._selection()
        assert record.n_missing == 0
        assert record.to_dict()["flagged"] is False
