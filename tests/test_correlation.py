"""Tests for the correlation stage (bicor with Pearson fallback)."""

import threading
import warnings

import numpy as np
import pandas as pd
import pytest

from coexnet.core.errors import (
    DataQualityError,
    NumericDegeneracyWarning,
    ParameterInvalidError,
    PipelineCancelledError,
)
from coexnet.core.expression import ExpressionMatrix
from coexnet.core.quality import QualityFlag
from coexnet.network.correlation import (
    CorrelationEngine,
    biweight_midcorrelation,
    normalized_profiles,
    pearson_correlation,
)


def reference_bicor(x: np.ndarray, y: np.ndarray) -> float:
    """Textbook biweight midcorrelation of two vectors."""
    def weighted(v):
        med = np.median(v)
        mad = np.median(np.abs(v - med))
        u = (v - med) / (9 * mad)
        w = (1 - u ** 2) ** 2 * (np.abs(u) < 1)
        return (v - med) * w

    a, b = weighted(x), weighted(y)
    return float(a @ b / np.sqrt((a @ a) * (b @ b)))


def matrix_from_rows(rows, gene_ids=None) -> ExpressionMatrix:
    data = np.asarray(rows, dtype=float)
    if gene_ids is None:
        gene_ids = [f"G{i}" for i in range(data.shape[0])]
    return ExpressionMatrix(
        data=data,
        gene_ids=pd.Index(gene_ids),
        sample_ids=pd.Index([f"S{i}" for i in range(data.shape[1])]),
    )


class TestSimilarityInvariants:
    """Structural properties of every similarity matrix."""

    @pytest.mark.parametrize("method", ["bicor", "pearson"])
    def test_symmetric_unit_diagonal_in_range(self, planted_matrix, method):
        """Test that similarity is symmetric, in [-1, 1] with diagonal exactly 1."""
        sim = CorrelationEngine(method=method).apply(planted_matrix)

        assert sim.data.shape == (planted_matrix.n_genes, planted_matrix.n_genes)
        assert np.array_equal(sim.data, sim.data.T)
        assert np.all(np.diag(sim.data) == 1.0)
        assert sim.data.min() >= -1.0 and sim.data.max() <= 1.0
        assert sim.method == method
        assert sim.gene_ids.equals(planted_matrix.gene_ids)

    def test_output_is_read_only(self, small_matrix):
        sim = CorrelationEngine().apply(small_matrix)
        with pytest.raises(ValueError):
            sim.data[0, 1] = 0.5

    def test_input_not_modified(self, small_matrix):
        before = small_matrix.data.copy()
        CorrelationEngine().apply(small_matrix)
        np.testing.assert_array_equal(small_matrix.data, before)

    def test_block_and_thread_layout_does_not_change_result(self, planted_matrix):
        """Test that blocking and threading give the same matrix as a single block."""
        single = CorrelationEngine(block_size=1000).apply(planted_matrix)
        blocked = CorrelationEngine(block_size=7, n_workers=4).apply(planted_matrix)
        np.testing.assert_allclose(blocked.data, single.data, atol=1e-12)
        assert np.array_equal(blocked.data, blocked.data.T)

    def test_preallocated_output_is_used(self, small_matrix):
        n = small_matrix.n_genes
        out = np.zeros((n, n))
        sim = CorrelationEngine().apply(small_matrix, out=out)
        assert sim.data is out


class TestEstimators:
    """Numerical agreement with reference formulas."""

    def test_pearson_matches_corrcoef(self, planted_matrix):
        sim = pearson_correlation(planted_matrix.data)
        expected = np.corrcoef(planted_matrix.data)
        np.fill_diagonal(expected, 1.0)
        np.testing.assert_allclose(sim, expected, atol=1e-12)

    def test_bicor_matches_reference_formula(self, small_matrix):
        data = small_matrix.data
        sim = biweight_midcorrelation(data)
        for i, j in [(0, 1), (0, 9), (3, 17), (10, 19)]:
            assert sim[i, j] == pytest.approx(reference_bicor(data[i], data[j]), abs=1e-10)

    def test_bicor_resists_single_outlier_sample(self):
        """Test that one extreme sample cannot destroy a strong bicor correlation."""
        rng = np.random.default_rng(3)
        x = rng.normal(size=30)
        y = x + 0.2 * rng.normal(size=30)
        y[0] = 60.0
        x[0] = -60.0

        matrix = matrix_from_rows([x, y])
        bicor = CorrelationEngine(method="bicor").apply(matrix).data[0, 1]
        pearson = CorrelationEngine(method="pearson").apply(matrix).data[0, 1]

        assert bicor > 0.9
        assert pearson < 0.0

    def test_max_p_outliers_keeps_invariants(self, planted_matrix):
        sim = CorrelationEngine(max_p_outliers=0.05).apply(planted_matrix)
        assert np.array_equal(sim.data, sim.data.T)
        assert np.all(np.diag(sim.data) == 1.0)
        assert sim.data.min() >= -1.0 and sim.data.max() <= 1.0


class TestDegenerateGenes:
    """Pearson fallback and numeric degeneracy."""

    def test_zero_mad_gene_falls_back_to_pearson(self):
        """Test that a gene with MAD 0 is flagged and correlated by Pearson."""
        peaked = [0, 0, 0, 0, 0, 0, 1, 2]
        other = [0.1, -0.3, 0.2, 0.0, -0.1, 0.4, 1.1, 2.3]
        matrix = matrix_from_rows([peaked, other], gene_ids=["PEAKED", "OTHER"])

        sim = CorrelationEngine().apply(matrix)

        assert sim.flagged_genes(QualityFlag.PEARSON_FALLBACK).tolist() == ["PEAKED"]
        assert np.isfinite(sim.data).all()
        assert sim.n_flagged_pairs == 0

    def test_underflowing_gene_is_flagged_and_warned(self):
        """Test that a gene whose profile underflows is flagged, not fatal."""
        rng = np.random.default_rng(11)
        rows = [rng.normal(size=8) for _ in range(3)]
        rows.append([5e-324, 0, 0, 0, 0, 0, 0, 0])
        matrix = matrix_from_rows(rows, gene_ids=["A", "B", "C", "TINY"])

        with pytest.warns(NumericDegeneracyWarning):
            sim = CorrelationEngine().apply(matrix)

        assert sim.flagged_genes(QualityFlag.NUMERIC_DEGENERATE).tolist() == ["TINY"]
        assert sorted(map(tuple, sim.flagged_pairs.tolist())) == [(0, 3), (1, 3), (2, 3)]
        assert np.all(sim.data[3, :3] == 0.0)
        assert sim.data[3, 3] == 1.0
        assert np.isfinite(sim.data).all()

    def test_flags_stay_uint8_on_clean_matrix(self):
        """Test that bicor on plain normal data runs and keeps uint8 flags."""
        data = np.random.default_rng(3).normal(size=(5, 10))
        matrix = matrix_from_rows(data)

        sim = CorrelationEngine().apply(matrix)

        assert sim.gene_flags.dtype == np.uint8
        assert np.all(sim.gene_flags == 0)
        assert np.all(np.diag(sim.data) == 1.0)

    def test_fallback_flag_set_in_profiles(self):
        data = np.array([
            [0, 0, 0, 0, 0, 0, 1, 2],
            [0.1, -0.3, 0.2, 0.0, -0.1, 0.4, 1.1, 2.3],
        ], dtype=float)

        _, flags = normalized_profiles(data)

        assert flags.dtype == np.uint8
        assert flags.tolist() == [int(QualityFlag.PEARSON_FALLBACK), 0]

    def test_clean_data_emits_no_warning(self, small_matrix):
        with warnings.catch_warnings():
            warnings.simplefilter("error", NumericDegeneracyWarning)
            CorrelationEngine().apply(small_matrix)


class TestDataQuality:
    """Inputs that cannot produce a defined network."""

    def test_zero_variance_gene_is_rejected_by_name(self):
        rows = [[1, 2, 3, 4, 5], [5, 5, 5, 5, 5], [2, 1, 4, 3, 5]]
        matrix = matrix_from_rows(rows, gene_ids=["A", "FLAT", "C"])

        with pytest.raises(DataQualityError) as excinfo:
            CorrelationEngine().apply(matrix)

        assert excinfo.value.gene_ids == ["FLAT"]
        assert excinfo.value.stage == "CorrelationEngine"
        assert "FLAT" in str(excinfo.value)

    def test_nan_is_rejected(self):
        rows = [[1, 2, np.nan, 4, 5], [2, 1, 4, 3, 5]]
        with pytest.raises(DataQualityError) as excinfo:
            CorrelationEngine().apply(matrix_from_rows(rows))
        assert excinfo.value.gene_ids == ["G0"]

    def test_too_few_samples_is_rejected(self):
        with pytest.raises(DataQualityError, match="samples"):
            CorrelationEngine().apply(matrix_from_rows([[1, 2, 3], [3, 1, 2]]))


class TestParameters:
    """Construction-time validation."""

    @pytest.mark.parametrize("kwargs", [
        {"method": "spearman"},
        {"max_p_outliers": 0.0},
        {"max_p_outliers": 1.5},
        {"block_size": 0},
        {"n_workers": 0},
        {"min_samples": 1},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ParameterInvalidError) as excinfo:
            CorrelationEngine(**kwargs)
        assert excinfo.value.stage == "CorrelationEngine"

    def test_cancellation_before_start(self, small_matrix):
        event = threading.Event()
        event.set()
        with pytest.raises(PipelineCancelledError):
            CorrelationEngine().apply(small_matrix, cancel_event=event)
