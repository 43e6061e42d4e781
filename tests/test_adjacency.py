"""Tests for the soft-threshold adjacency stage."""

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import ParameterInvalidError
from coexnet.core.network import SimilarityMatrix
from coexnet.network.adjacency import AdjacencyBuilder, adjacency_from_similarity
from coexnet.network.correlation import CorrelationEngine


@pytest.fixture
def toy_similarity():
    data = np.array([
        [1.0, 0.6, -0.6],
        [0.6, 1.0, 0.0],
        [-0.6, 0.0, 1.0],
    ])
    return SimilarityMatrix(data, pd.Index(["A", "B", "C"]))


class TestTransform:

    def test_signed_maps_negative_correlation_low(self, toy_similarity):
        adj = AdjacencyBuilder(power=2, network_type="signed").apply(toy_similarity)
        assert adj.data[0, 1] == pytest.approx(0.8 ** 2)
        assert adj.data[0, 2] == pytest.approx(0.2 ** 2)
        assert adj.data[1, 2] == pytest.approx(0.25)

    def test_unsigned_uses_absolute_value(self, toy_similarity):
        adj = AdjacencyBuilder(power=2, network_type="unsigned").apply(toy_similarity)
        assert adj.data[0, 1] == pytest.approx(0.36)
        assert adj.data[0, 2] == pytest.approx(0.36)
        assert adj.data[1, 2] == 0.0

    @pytest.mark.parametrize("network_type", ["signed", "unsigned"])
    def test_invariants(self, planted_matrix, network_type):
        """Test that adjacency is symmetric, in [0, 1], with diagonal exactly 1."""
        sim = CorrelationEngine().apply(planted_matrix)
        adj = AdjacencyBuilder(power=6, network_type=network_type).apply(sim)

        assert np.array_equal(adj.data, adj.data.T)
        assert np.all(np.diag(adj.data) == 1.0)
        assert adj.data.min() >= 0.0 and adj.data.max() <= 1.0
        assert adj.power == 6
        assert adj.network_type == network_type

    def test_higher_power_never_increases_adjacency(self, small_matrix):
        sim = CorrelationEngine().apply(small_matrix)
        low = AdjacencyBuilder(power=2).apply(sim).data
        high = AdjacencyBuilder(power=8).apply(sim).data
        assert np.all(high <= low + 1e-15)

    def test_fractional_power(self, toy_similarity):
        adj = AdjacencyBuilder(power=1.5, network_type="unsigned").apply(toy_similarity)
        assert adj.data[0, 1] == pytest.approx(0.6 ** 1.5)

    def test_function_form_matches_stage(self, toy_similarity):
        direct = adjacency_from_similarity(toy_similarity.data, 3, "signed")
        staged = AdjacencyBuilder(power=3).apply(toy_similarity).data
        np.testing.assert_array_equal(direct, staged)


class TestFlaggedPairs:

    def test_flagged_pairs_get_zero_adjacency(self):
        data = np.array([
            [1.0, 0.0, 0.9],
            [0.0, 1.0, 0.0],
            [0.9, 0.0, 1.0],
        ])
        sim = SimilarityMatrix(
            data, pd.Index(["A", "B", "C"]),
            gene_flags=np.array([0, 2, 0]),
            flagged_pairs=np.array([[0, 1], [1, 2]]),
        )
        adj = AdjacencyBuilder(power=1, network_type="signed").apply(sim)

        assert adj.data[0, 1] == 0.0 and adj.data[1, 0] == 0.0
        assert adj.data[1, 2] == 0.0 and adj.data[2, 1] == 0.0
        assert adj.data[0, 2] == pytest.approx(0.95)
        assert adj.data[1, 1] == 1.0
        np.testing.assert_array_equal(adj.gene_flags, sim.gene_flags)
        np.testing.assert_array_equal(adj.flagged_pairs, sim.flagged_pairs)


class TestParameters:

    @pytest.mark.parametrize("power", [0, 0.5, -2, np.nan, np.inf, True, "6"])
    def test_invalid_power(self, power):
        with pytest.raises(ParameterInvalidError):
            AdjacencyBuilder(power=power)

    def test_invalid_network_type(self):
        with pytest.raises(ParameterInvalidError, match="network_type"):
            AdjacencyBuilder(power=6, network_type="hybrid")

    def test_connectivity_excludes_self(self, toy_similarity):
        adj = AdjacencyBuilder(power=1, network_type="unsigned").apply(toy_similarity)
        np.testing.assert_allclose(adj.connectivity(), [1.2, 0.6, 0.6])
