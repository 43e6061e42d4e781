"""
Robust gene x gene correlation: biweight midcorrelation with Pearson fallback.

Biological Context:
    Expression profiles routinely carry a handful of outlier samples (a
    failed library, an unusually activated donor). Pearson correlation lets
    one such sample dominate a gene pair; biweight midcorrelation (bicor)
    down-weights samples far from the median so that co-expression reflects
    the bulk of the samples.

    For gene x with median med and median absolute deviation mad:

        u_s = (x_s - med) / (9 * mad)
        w_s = (1 - u_s^2)^2 * [|u_s| < 1]
        x~_s = (x_s - med) * w_s,   normalized so that ||x~|| = 1

    bicor(x, y) = x~ . y~.  Genes whose MAD is (near) zero (extremely peaked
    expression, most samples identical) make the weights degenerate; these
    genes fall back to Pearson normalization and are flagged PEARSON_FALLBACK.

Engineering Design:
    - Normalize every gene once (O(G S)); the G x G matrix is then a Gram
      matrix of normalized profiles, filled in upper row blocks across a
      thread pool (see coexnet.utils.blocks). Symmetry is exact and the
      diagonal is set to exactly 1.
    - Genes whose normalized profile is zero or non-finite even after the
      fallback are flagged NUMERIC_DEGENERATE; their pairs are listed in
      flagged_pairs, carry similarity 0, and a NumericDegeneracyWarning is
      emitted. The rest of the matrix is unaffected.

Examples:
    >>> import numpy as np
    >>> from coexnet.network.correlation import biweight_midcorrelation
    >>>
    >>> x = np.random.default_rng(0).normal(size=(5, 12))
    >>> sim = biweight_midcorrelation(x)
    >>> sim.shape
    (5, 5)
    >>> bool((np.diag(sim) == 1.0).all())
    True
"""

from __future__ import annotations

import logging
import threading
import warnings
from typing import Optional

import numpy as np

from coexnet.core.errors import NumericDegeneracyWarning
from coexnet.core.expression import ExpressionMatrix
from coexnet.core.network import SimilarityMatrix
from coexnet.core.quality import MIN_SAMPLES, QualityFlag, check_expression_quality
from coexnet.core.stage import Stage
from coexnet.utils.blocks import fill_symmetric_blocks

logger = logging.getLogger(__name__)

__all__ = [
    'CORRELATION_METHODS',
    'CorrelationEngine',
    'biweight_midcorrelation',
    'pearson_correlation',
    'normalized_profiles',
]

CORRELATION_METHODS: tuple[str, ...] = ("bicor", "pearson")

# MAD at or below this fraction of max(|median|, 1) counts as zero.
_MAD_TOLERANCE = 1e-12


def _pearson_profiles(data: np.ndarray) -> np.ndarray:
    centered = data - data.mean(axis=1, keepdims=True)
    with np.errstate(divide='ignore', invalid='ignore'):
        return centered / np.linalg.norm(centered, axis=1, keepdims=True)


def _biweight_profiles(
    data: np.ndarray,
    max_p_outliers: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """Biweight-weighted unit profiles and the mask of Pearson-fallback genes."""
    med = np.median(data, axis=1, keepdims=True)
    deviation = data - med
    mad = np.median(np.abs(deviation), axis=1, keepdims=True)

    fallback = (mad <= _MAD_TOLERANCE * np.maximum(np.abs(med), 1.0)).ravel()
    safe_mad = np.where(fallback[:, None], 1.0, mad)
    u = deviation / (9.0 * safe_mad)

    if max_p_outliers < 1.0:
        # Rescale each side so at most max_p_outliers of samples fall beyond |u| = 1
        lower_q = np.quantile(data, max_p_outliers, axis=1, keepdims=True)
        upper_q = np.quantile(data, 1.0 - max_p_outliers, axis=1, keepdims=True)
        u_lower = np.abs((lower_q - med) / (9.0 * safe_mad))
        u_upper = np.abs((upper_q - med) / (9.0 * safe_mad))
        scale_lower = np.where(u_lower > 1.0, u_lower, 1.0)
        scale_upper = np.where(u_upper > 1.0, u_upper, 1.0)
        u = np.where(u < 0, u / scale_lower, u / scale_upper)

    weights = (1.0 - u ** 2) ** 2
    weights[np.abs(u) >= 1.0] = 0.0
    weighted = deviation * weights

    with np.errstate(divide='ignore', invalid='ignore'):
        profiles = weighted / np.linalg.norm(weighted, axis=1, keepdims=True)

    if fallback.any():
        profiles[fallback] = _pearson_profiles(data[fallback])

    return profiles, fallback


def normalized_profiles(
    data: np.ndarray,
    method: str = "bicor",
    max_p_outliers: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Unit-length gene profiles whose dot products are the correlations.

    Args:
        data: Expression values (genes x samples)
        method: "bicor" or "pearson"
        max_p_outliers: Bicor only; largest fraction of samples treated as
            outliers on each side of the median (1.0 disables the rescaling)

    Returns:
        (profiles, gene_flags): float64 profiles (non-finite rows possible)
        and a uint8 QualityFlag array with PEARSON_FALLBACK set where used
    """
    data = np.asarray(data, dtype=np.float64)
    flags = np.zeros(data.shape[0], dtype=np.uint8)

    if method == "pearson":
        return _pearson_profiles(data), flags

    profiles, fallback = _biweight_profiles(data, max_p_outliers)
    flags[fallback] = (flags[fallback] | QualityFlag.PEARSON_FALLBACK).astype(flags.dtype)
    return profiles, flags


def _degenerate_rows(profiles: np.ndarray) -> np.ndarray:
    finite = np.isfinite(profiles).all(axis=1)
    norms = np.linalg.norm(np.where(np.isfinite(profiles), profiles, 0.0), axis=1)
    return ~finite | (norms == 0)


def _correlate(
    profiles: np.ndarray,
    block_size: int,
    n_workers: int,
    out: Optional[np.ndarray] = None,
    cancel_event: Optional[threading.Event] = None,
    stage: Optional[str] = None,
    verbose: bool = False,
) -> tuple[np.ndarray, np.ndarray]:
    """Block-wise Gram matrix of profiles; returns (matrix, non-finite pairs)."""
    n_genes = profiles.shape[0]
    bad_pairs: dict[int, np.ndarray] = {}

    def compute_block(start: int, end: int) -> np.ndarray:
        slab = profiles[start:end] @ profiles[start:].T
        bad = ~np.isfinite(slab)
        if bad.any():
            rows, cols = np.nonzero(bad)
            rows = rows + start
            cols = cols + start
            upper = rows < cols
            bad_pairs[start] = np.column_stack([rows[upper], cols[upper]])
            slab[bad] = 0.0
        return slab

    matrix = fill_symmetric_blocks(
        compute_block,
        n=n_genes,
        block_size=block_size,
        n_workers=n_workers,
        out=out,
        cancel_event=cancel_event,
        stage=stage,
        desc="Correlation",
        verbose=verbose,
    )
    np.clip(matrix, -1.0, 1.0, out=matrix)
    np.fill_diagonal(matrix, 1.0)

    if bad_pairs:
        pairs = np.concatenate([bad_pairs[k] for k in sorted(bad_pairs)])
    else:
        pairs = np.empty((0, 2), dtype=np.int64)
    return matrix, pairs


def _pairs_of_genes(genes: np.ndarray, n_genes: int) -> np.ndarray:
    """All (i, j), i < j, pairs with at least one endpoint in ``genes``."""
    if len(genes) == 0:
        return np.empty((0, 2), dtype=np.int64)
    mask = np.zeros((n_genes, n_genes), dtype=bool)
    mask[genes, :] = True
    mask[:, genes] = True
    rows, cols = np.nonzero(np.triu(mask, k=1))
    return np.column_stack([rows, cols]).astype(np.int64)


def biweight_midcorrelation(
    data: np.ndarray,
    max_p_outliers: float = 1.0,
    block_size: int = 1000,
    n_workers: int = 1,
) -> np.ndarray:
    """
    Biweight midcorrelation matrix of the rows of ``data``.

    Genes with (near) zero MAD use Pearson normalization. Degenerate rows
    yield 0 off the diagonal.
    """
    profiles, _ = normalized_profiles(data, "bicor", max_p_outliers)
    profiles[_degenerate_rows(profiles)] = 0.0
    matrix, _ = _correlate(profiles, block_size, n_workers)
    return matrix


def pearson_correlation(
    data: np.ndarray,
    block_size: int = 1000,
    n_workers: int = 1,
) -> np.ndarray:
    """Pearson correlation matrix of the rows of ``data``."""
    profiles, _ = normalized_profiles(data, "pearson")
    profiles[_degenerate_rows(profiles)] = 0.0
    matrix, _ = _correlate(profiles, block_size, n_workers)
    return matrix


class CorrelationEngine(Stage):
    """
    ExpressionMatrix -> SimilarityMatrix.

    Args:
        method: "bicor" (default) or "pearson"
        max_p_outliers: Bicor outlier cap in (0, 1]; 1.0 is the plain estimator
        block_size: Genes per row block
        n_workers: Threads for block computation
        min_samples: Minimum samples required
        verbose: Show progress bar

    Raises:
        ParameterInvalidError: On construction, for out-of-domain parameters
    """

    def __init__(
        self,
        method: str = "bicor",
        max_p_outliers: float = 1.0,
        block_size: int = 1000,
        n_workers: int = 1,
        min_samples: int = MIN_SAMPLES,
        verbose: bool = False,
    ):
        super().__init__(
            name="CorrelationEngine",
            params={
                "method": method,
                "max_p_outliers": max_p_outliers,
                "block_size": block_size,
                "n_workers": n_workers,
                "min_samples": min_samples,
            },
        )
        if method not in CORRELATION_METHODS:
            raise self.invalid(
                f"unknown correlation method {method!r}; choose from {CORRELATION_METHODS}"
            )
        if not 0.0 < max_p_outliers <= 1.0:
            raise self.invalid("max_p_outliers must be in (0, 1]")
        if block_size < 1:
            raise self.invalid("block_size must be >= 1")
        if n_workers < 1:
            raise self.invalid("n_workers must be >= 1")
        if min_samples < 2:
            raise self.invalid("min_samples must be >= 2")

        self.method = method
        self.max_p_outliers = max_p_outliers
        self.block_size = block_size
        self.n_workers = n_workers
        self.min_samples = min_samples
        self.verbose = verbose

    def apply(
        self,
        matrix: ExpressionMatrix,
        out: Optional[np.ndarray] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SimilarityMatrix:
        """
        Compute the similarity matrix.

        Args:
            matrix: Expression matrix (genes x samples)
            out: Optional preallocated G x G output (may be np.memmap)
            cancel_event: Checked between blocks

        Returns:
            SimilarityMatrix, read-only

        Raises:
            DataQualityError: NaN/Inf, zero-variance genes or too few samples
            PipelineCancelledError: If cancel_event is set mid-computation
        """
        check_expression_quality(
            matrix, min_samples=self.min_samples, stage=self.name, params=self.params
        )
        logger.info(
            f"{self.name}: {matrix.n_genes} genes × {matrix.n_samples} samples, "
            f"method={self.method}, block_size={self.block_size}, n_workers={self.n_workers}"
        )

        profiles, gene_flags = normalized_profiles(
            matrix.data, self.method, self.max_p_outliers
        )

        fallback = (gene_flags & QualityFlag.PEARSON_FALLBACK) != 0
        if fallback.any():
            ids = matrix.gene_ids[fallback].tolist()
            logger.info(
                f"{self.name}: {len(ids)} genes have near-zero MAD, using Pearson "
                f"for them: {ids[:10]}{' ...' if len(ids) > 10 else ''}"
            )

        degenerate = _degenerate_rows(profiles)
        profiles[degenerate] = 0.0
        gene_flags[degenerate] = (
            gene_flags[degenerate] | QualityFlag.NUMERIC_DEGENERATE
        ).astype(gene_flags.dtype)

        data, pair_flags = _correlate(
            profiles,
            block_size=self.block_size,
            n_workers=self.n_workers,
            out=out,
            cancel_event=cancel_event,
            stage=self.name,
            verbose=self.verbose,
        )

        flagged_pairs = _pairs_of_genes(np.flatnonzero(degenerate), matrix.n_genes)
        if len(pair_flags):
            flagged_pairs = np.unique(np.concatenate([flagged_pairs, pair_flags]), axis=0)
            involved = np.unique(pair_flags)
            gene_flags[involved] = (
                gene_flags[involved] | QualityFlag.NUMERIC_DEGENERATE
            ).astype(gene_flags.dtype)

        if len(flagged_pairs):
            flagged_ids = matrix.gene_ids[(gene_flags & QualityFlag.NUMERIC_DEGENERATE) != 0]
            message = (
                f"{self.name}: {len(flagged_pairs)} gene pairs are numerically degenerate "
                f"and carry similarity 0 (genes: {flagged_ids.tolist()[:20]})"
            )
            logger.warning(message)
            warnings.warn(message, NumericDegeneracyWarning, stacklevel=2)

        return SimilarityMatrix(
            data=data,
            gene_ids=matrix.gene_ids,
            method=self.method,
            gene_flags=gene_flags,
            flagged_pairs=flagged_pairs,
            copy=False,
        )
