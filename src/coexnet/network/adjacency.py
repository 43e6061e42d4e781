"""
Soft-thresholded weighted adjacency.

Biological Context:
    A hard correlation cutoff turns a continuum of co-expression into an
    arbitrary yes/no edge. Raising the (rescaled) correlation to a power p
    instead keeps every edge but suppresses weak ones much faster than strong
    ones: 0.9^12 = 0.28 while 0.5^12 = 0.0002.

    signed:    a_ij = ((s_ij + 1) / 2) ^ p   (anti-correlation -> 0)
    unsigned:  a_ij = |s_ij| ^ p             (sign ignored)

    The diagonal is 1 by convention and is excluded from connectivity.

Examples:
    >>> import numpy as np
    >>> from coexnet.network.adjacency import adjacency_from_similarity
    >>>
    >>> s = np.array([[1.0, -1.0], [-1.0, 1.0]])
    >>> float(adjacency_from_similarity(s, power=2, network_type="signed")[0, 1])
    0.0
    >>> float(adjacency_from_similarity(s, power=2, network_type="unsigned")[0, 1])
    1.0
"""

from __future__ import annotations

import logging
import numbers
from typing import Optional

import numpy as np

from coexnet.core.network import NETWORK_TYPES, AdjacencyMatrix, SimilarityMatrix
from coexnet.core.stage import Stage

logger = logging.getLogger(__name__)

__all__ = [
    'AdjacencyBuilder',
    'adjacency_from_similarity',
    'similarity_to_unit',
    'apply_pair_mask',
]

_ROW_CHUNK = 1000


def similarity_to_unit(values: np.ndarray, network_type: str) -> np.ndarray:
    """Map similarity values into [0, 1] before the power transform."""
    if network_type == "signed":
        return (values + 1.0) / 2.0
    return np.abs(values)


def apply_pair_mask(
    block: np.ndarray,
    flagged_pairs: np.ndarray,
    row_start: int,
    col_start: int,
    value: float,
) -> None:
    """Set flagged (i, j) and (j, i) entries that fall inside ``block`` to ``value``."""
    if len(flagged_pairs) == 0:
        return
    n_rows, n_cols = block.shape
    for a, b in ((0, 1), (1, 0)):
        rows = flagged_pairs[:, a] - row_start
        cols = flagged_pairs[:, b] - col_start
        inside = (rows >= 0) & (rows < n_rows) & (cols >= 0) & (cols < n_cols)
        block[rows[inside], cols[inside]] = value


def adjacency_from_similarity(
    similarity: np.ndarray,
    power: float,
    network_type: str = "signed",
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Element-wise soft-threshold transform of a similarity matrix.

    Rows are transformed in chunks so that temporaries stay small when
    ``out`` is a memory-mapped array. The diagonal is set to 1.
    """
    n_genes = similarity.shape[0]
    if out is None:
        out = np.empty(similarity.shape, dtype=np.float64)

    for start in range(0, n_genes, _ROW_CHUNK):
        end = min(start + _ROW_CHUNK, n_genes)
        out[start:end] = similarity_to_unit(similarity[start:end], network_type) ** power

    np.clip(out, 0.0, 1.0, out=out)
    np.fill_diagonal(out, 1.0)
    return out


class AdjacencyBuilder(Stage):
    """
    SimilarityMatrix -> AdjacencyMatrix for one chosen power.

    Args:
        power: Soft-threshold exponent, >= 1
        network_type: "signed" or "unsigned"

    Raises:
        ParameterInvalidError: If power < 1 or network_type is unknown
    """

    def __init__(self, power: float, network_type: str = "signed"):
        super().__init__(
            name="AdjacencyBuilder",
            params={"power": power, "network_type": network_type},
        )
        if isinstance(power, bool) or not isinstance(power, numbers.Real):
            raise self.invalid(f"power must be a real number, got {power!r}")
        if not np.isfinite(power) or power < 1:
            raise self.invalid(f"power must be >= 1, got {power}")
        if network_type not in NETWORK_TYPES:
            raise self.invalid(
                f"unknown network_type {network_type!r}; choose from {NETWORK_TYPES}"
            )
        self.power = power
        self.network_type = network_type

    def apply(
        self,
        similarity: SimilarityMatrix,
        out: Optional[np.ndarray] = None,
    ) -> AdjacencyMatrix:
        """
        Build the adjacency matrix.

        Flagged (numerically degenerate) pairs get adjacency 0.

        Args:
            similarity: Input similarity (not modified)
            out: Optional preallocated G x G output (may be np.memmap)

        Returns:
            AdjacencyMatrix, read-only
        """
        logger.info(
            f"{self.name}: {similarity.n_genes} genes, power={self.power}, "
            f"network_type={self.network_type}"
        )
        data = adjacency_from_similarity(
            similarity.data, self.power, self.network_type, out=out
        )
        apply_pair_mask(data, similarity.flagged_pairs, 0, 0, 0.0)

        return AdjacencyMatrix(
            data=data,
            gene_ids=similarity.gene_ids,
            power=self.power,
            network_type=self.network_type,
            gene_flags=similarity.gene_flags.copy(),
            flagged_pairs=similarity.flagged_pairs,
            copy=False,
        )
