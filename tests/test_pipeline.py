"""End-to-end tests for CoexpressionPipeline and the deep_split sweep."""

import threading

import numpy as np
import pandas as pd
import pytest

from coexnet.clustering.assignment import UNASSIGNED
from coexnet.clustering.hierarchy import HierarchicalClusterer
from coexnet.core.errors import (
    DataQualityError,
    ParameterInvalidError,
    PipelineCancelledError,
)
from coexnet.core.expression import ExpressionMatrix
from coexnet.core.network import DissimilarityMatrix
from coexnet.pipeline import CoexpressionPipeline, NetworkResult, sweep_deep_split


def planted_labels(matrix: ExpressionMatrix, assignment) -> dict[str, set]:
    """Labels carried by each planted module's genes."""
    labels = {}
    for gene, label in assignment.labels.items():
        if gene.startswith("M"):
            labels.setdefault(gene.split("_")[0], set()).add(int(label))
    return labels


class TestScenarios:

    def test_two_perfect_pairs_give_two_modules(self, two_pair_matrix):
        """Scenario: two perfectly correlated pairs, unsigned, power 1, min size 2."""
        pipeline = CoexpressionPipeline(network_type="unsigned", min_cluster_size=2)
        result = pipeline.detect_modules(two_pair_matrix, power=1, deep_splits=[0, 1, 2, 3])

        for assignment in result.assignments.values():
            assert assignment.n_modules == 2
            assert assignment.partition() == {
                frozenset({"G1", "G2"}),
                frozenset({"G3", "G4"}),
            }

    def test_zero_variance_gene_fails_with_its_id(self, small_matrix):
        data = small_matrix.data.copy()
        data[3] = 7.0
        matrix = ExpressionMatrix(data, small_matrix.gene_ids, small_matrix.sample_ids)

        with pytest.raises(DataQualityError) as excinfo:
            CoexpressionPipeline(min_cluster_size=5).detect_modules(matrix, power=6)

        assert excinfo.value.gene_ids == [small_matrix.gene_ids[3]]

    def test_min_cluster_size_above_gene_count(self, small_matrix):
        pipeline = CoexpressionPipeline(min_cluster_size=small_matrix.n_genes + 1)
        result = pipeline.detect_modules(small_matrix, power=6)
        for assignment in result.assignments.values():
            assert assignment.n_modules == 0
            assert (assignment.labels == UNASSIGNED).all()

    def test_zero_cut_height(self, small_matrix):
        pipeline = CoexpressionPipeline(min_cluster_size=3, cut_height=0.0)
        result = pipeline.detect_modules(small_matrix, power=6)
        for assignment in result.assignments.values():
            assert (assignment.labels == UNASSIGNED).all()


class TestPlantedModules:

    def test_planted_modules_are_recovered(self, planted_matrix):
        pipeline = CoexpressionPipeline(min_cluster_size=10)
        result = pipeline.detect_modules(planted_matrix, power=6, deep_splits=[2])
        assignment = result.assignments[2]

        labels = planted_labels(planted_matrix, assignment)
        assert all(len(found) == 1 for found in labels.values())
        found = [next(iter(s)) for s in labels.values()]
        assert UNASSIGNED not in found
        assert len(set(found)) == 3

    def test_partition_is_invariant_to_gene_order(self, planted_matrix):
        """Test that permuting input genes permutes, but does not change, the modules."""
        pipeline = CoexpressionPipeline(min_cluster_size=10)
        order = np.random.default_rng(99).permutation(planted_matrix.n_genes)

        original = pipeline.detect_modules(planted_matrix, power=6, deep_splits=[1, 2])
        permuted = pipeline.detect_modules(
            planted_matrix.reorder_genes(order), power=6, deep_splits=[1, 2]
        )

        for deep_split in (1, 2):
            assert (
                original.assignments[deep_split].partition()
                == permuted.assignments[deep_split].partition()
            )

    def test_every_module_respects_min_cluster_size(self, planted_matrix):
        pipeline = CoexpressionPipeline(min_cluster_size=12)
        result = pipeline.detect_modules(planted_matrix, power=8, deep_splits=[0, 1, 2, 3, 4])
        for assignment in result.assignments.values():
            sizes = assignment.module_sizes().drop(UNASSIGNED, errors="ignore")
            assert (sizes >= 12).all()

    def test_network_invariants(self, planted_matrix):
        result = CoexpressionPipeline().build_network(planted_matrix, power=6)

        d = result.dissimilarity.data
        assert np.array_equal(d, d.T)
        assert np.all(np.diag(d) == 0.0)
        assert d.min() >= 0.0 and d.max() <= 1.0
        assert result.dendrogram.n_merges == planted_matrix.n_genes - 1
        assert np.all(np.diff(result.dendrogram.heights) >= 0)
        assert result.assignments == {}


class TestSweep:

    def test_sweep_returns_one_assignment_per_value(self, nested_dissimilarity):
        d, gene_ids = nested_dissimilarity
        diss = DissimilarityMatrix(d, gene_ids)
        tree = HierarchicalClusterer().apply(diss)

        sweep = sweep_deep_split(tree, diss, deep_splits=[3, 0, 1], min_cluster_size=5)

        assert list(sweep) == [3, 0, 1]
        assert [sweep[ds].n_modules for ds in (0, 1, 3)] == [2, 4, 4]
        assert sweep[3].params["deep_split"] == 3

    def test_sweep_counts_are_monotone(self, nested_dissimilarity):
        d, gene_ids = nested_dissimilarity
        diss = DissimilarityMatrix(d, gene_ids)
        tree = HierarchicalClusterer().apply(diss)

        sweep = sweep_deep_split(tree, diss, deep_splits=range(5), min_cluster_size=5)
        counts = [sweep[ds].n_modules for ds in range(5)]
        assert counts == sorted(counts)

    def test_empty_sweep_is_rejected(self, nested_dissimilarity):
        d, gene_ids = nested_dissimilarity
        diss = DissimilarityMatrix(d, gene_ids)
        tree = HierarchicalClusterer().apply(diss)
        with pytest.raises(ParameterInvalidError):
            sweep_deep_split(tree, diss, deep_splits=[])

    def test_result_tables(self, small_matrix):
        result = CoexpressionPipeline(min_cluster_size=4).detect_modules(
            small_matrix, power=6, deep_splits=[0, 2]
        )

        frame = result.assignment_frame()
        assert frame.columns.tolist() == ["deep_split_0", "deep_split_2"]
        assert frame.index.name == "gene_id"
        assert frame.index.equals(small_matrix.gene_ids)

        sizes = result.module_sizes_frame()
        assert sizes.columns.tolist() == ["deep_split", "module", "size"]
        for deep_split in (0, 2):
            assert sizes.loc[sizes["deep_split"] == deep_split, "size"].sum() == small_matrix.n_genes

        summary = result.to_dict()
        assert summary["power"] == 6
        assert summary["n_genes"] == small_matrix.n_genes
        assert set(summary["modules"]) == {0, 2}


class TestOrchestration:

    def test_power_scan_accepts_precomputed_similarity(self, small_matrix):
        pipeline = CoexpressionPipeline()
        similarity = pipeline.similarity(small_matrix)

        from_similarity = pipeline.pick_soft_threshold(similarity, powers=[1, 4, 8])
        from_matrix = pipeline.pick_soft_threshold(small_matrix, powers=[1, 4, 8])

        pd.testing.assert_frame_equal(from_similarity.to_frame(), from_matrix.to_frame())

    def test_memory_mapped_output(self, small_matrix, tmp_path):
        n = small_matrix.n_genes
        out = np.memmap(tmp_path / "dissimilarity.dat", dtype=np.float64, mode="w+", shape=(n, n))

        result = CoexpressionPipeline(min_cluster_size=4).build_network(small_matrix, 6, out=out)

        assert isinstance(result.dissimilarity.data, np.memmap)
        assert np.all(np.diag(result.dissimilarity.data) == 0.0)

    @pytest.mark.parametrize("kwargs", [
        {"network_type": "directed"},
        {"correlation": "kendall"},
        {"neighborhood": "max"},
        {"min_cluster_size": 0},
        {"cut_height": 2.0},
        {"block_size": 0},
        {"n_workers": 0},
    ])
    def test_invalid_construction(self, kwargs):
        with pytest.raises(ParameterInvalidError):
            CoexpressionPipeline(**kwargs)

    @pytest.mark.parametrize("power", [0, 0.99, -1])
    def test_invalid_power_fails_before_any_work(self, power):
        """Test that an invalid power is rejected even for unusable data."""
        bad = ExpressionMatrix(np.zeros((3, 6)), ["A", "B", "C"], [f"S{i}" for i in range(6)])
        with pytest.raises(ParameterInvalidError):
            CoexpressionPipeline().detect_modules(bad, power=power)

    @pytest.mark.parametrize("deep_splits", [[], [0, 5]])
    def test_invalid_deep_splits_fail_before_any_work(self, deep_splits):
        bad = ExpressionMatrix(np.zeros((3, 6)), ["A", "B", "C"], [f"S{i}" for i in range(6)])
        with pytest.raises(ParameterInvalidError):
            CoexpressionPipeline().detect_modules(bad, power=6, deep_splits=deep_splits)

    def test_cancellation(self, small_matrix):
        event = threading.Event()
        event.set()
        with pytest.raises(PipelineCancelledError):
            CoexpressionPipeline().detect_modules(small_matrix, power=6, cancel_event=event)

    def test_result_type(self, two_pair_matrix):
        result = CoexpressionPipeline(network_type="unsigned", min_cluster_size=2).detect_modules(
            two_pair_matrix, power=1, deep_splits=[2]
        )
        assert isinstance(result, NetworkResult)
        assert result.network_type == "unsigned"
        assert result.gene_ids.tolist() == ["G1", "G2", "G3", "G4"]
