"""
Quality flags and input checks for network construction.

Two concerns live here:

1. QualityFlag: bitwise per-gene annotations recording how a gene was
   treated while the network was built (robust estimator fell back to
   Pearson, numeric degeneracy, ...). Flags travel with the similarity,
   adjacency and dissimilarity matrices so that downstream consumers can
   answer "which genes were handled specially?" without re-running stages.

2. check_expression_quality: the DataQuality gate every expression matrix
   passes before correlation. Failures name the offending genes.

Engineering Design:
    IntFlag keeps flags composable:
    - Multiple flags per gene: PEARSON_FALLBACK | NUMERIC_DEGENERATE
    - Fast vectorized checks: (flags & QualityFlag.NUMERIC_DEGENERATE) != 0
    - One small integer per gene, not per gene pair

Examples:
    >>> import numpy as np
    >>> from coexnet.core.quality import QualityFlag
    >>>
    >>> flags = np.array([0, 1, 2, 3], dtype=np.uint8)
    >>> n_fallback = np.sum((flags & QualityFlag.PEARSON_FALLBACK) != 0)
    >>> int(n_fallback)
    2
"""

from __future__ import annotations

from enum import IntFlag
from typing import TYPE_CHECKING, Any, Mapping, Optional

import numpy as np

from coexnet.core.errors import DataQualityError

if TYPE_CHECKING:
    from coexnet.core.expression import ExpressionMatrix

__all__ = ['QualityFlag', 'MIN_SAMPLES', 'check_expression_quality', 'flag_names']

MIN_SAMPLES = 4
"""Fewest samples for which a (robust) correlation estimate is meaningful."""


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-gene provenance in network matrices.

    Attributes:
        ORIGINAL: Gene handled by the requested estimator, no issues (0)
        PEARSON_FALLBACK: Median absolute deviation was (near) zero, so the
            biweight estimator was replaced by Pearson correlation (1)
        NUMERIC_DEGENERATE: The gene's normalized profile or at least one of
            its pairwise values was non-finite; affected entries were set to
            the neutral value and treated as maximally dissimilar (2)
    """

    ORIGINAL = 0
    """Requested estimator applied without incident."""

    PEARSON_FALLBACK = 1
    """
    Robust estimator degenerate (MAD ~ 0, extremely peaked expression).
    Pearson normalization was used for this gene instead.
    """

    NUMERIC_DEGENERATE = 2
    """
    Non-finite value encountered (e.g. underflow of a near-constant profile).
    Pairs involving this gene are flagged and carried as maximum distance.
    """


def flag_names(flag: int) -> list[str]:
    """Names of the flags set in ``flag`` (empty for ORIGINAL)."""
    return [f.name for f in QualityFlag if f.value and (flag & f.value)]


def check_expression_quality(
    matrix: 'ExpressionMatrix',
    min_samples: int = MIN_SAMPLES,
    stage: str = "CorrelationEngine",
    params: Optional[Mapping[str, Any]] = None,
) -> None:
    """
    Reject expression matrices that cannot produce a defined network.

    Checks, in order:
        1. Sample count >= min_samples
        2. No NaN or infinite values
        3. Every gene varies across samples (zero variance makes
           correlation undefined)

    Args:
        matrix: Expression matrix to check
        min_samples: Minimum number of samples
        stage: Stage name reported in the error
        params: Parameters in force, reported in the error

    Raises:
        DataQualityError: With the offending gene identifiers
    """
    data = matrix.data

    if matrix.n_samples < min_samples:
        raise DataQualityError(
            f"{matrix.n_samples} samples is below the minimum of {min_samples} "
            "needed for a stable correlation estimate",
            stage=stage,
            params=params,
        )

    finite = np.isfinite(data)
    if not finite.all():
        bad_rows = np.flatnonzero(~finite.all(axis=1))
        raise DataQualityError(
            f"{int((~finite).sum())} NaN/Inf values in {len(bad_rows)} genes; "
            "clean or impute upstream",
            stage=stage,
            gene_ids=matrix.gene_ids[bad_rows],
            params=params,
        )

    constant = np.ptp(data, axis=1) == 0
    if constant.any():
        raise DataQualityError(
            f"{int(constant.sum())} genes have zero variance across all samples; "
            "correlation is undefined",
            stage=stage,
            gene_ids=matrix.gene_ids[constant],
            params=params,
        )
