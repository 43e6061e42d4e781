"""
Gene x gene network matrices handed between pipeline stages.

Each stage owns the matrix it produces and hands it downstream whole:

    ExpressionMatrix --CorrelationEngine--> SimilarityMatrix
    SimilarityMatrix --AdjacencyBuilder--> AdjacencyMatrix
    AdjacencyMatrix --TopologicalOverlapComputer--> DissimilarityMatrix

Engineering Design:
    - Read-only: the array of every network matrix is flagged non-writeable
      on construction, so a downstream stage cannot mutate what it did not
      produce. Caller arrays are copied first (copy=True); stages hand over
      the buffer they filled with copy=False, so an np.memmap output is
      frozen in place rather than copied into memory.
    - Provenance: per-gene QualityFlag array plus the list of numerically
      degenerate pairs travel unchanged from similarity to dissimilarity.
    - Shape checks only: numeric invariants (symmetry, diagonal, ranges) are
      established by the producing stage and asserted in tests, not re-scanned
      on every construction (O(G^2) each time).

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from coexnet.core.network import SimilarityMatrix
    >>>
    >>> sim = SimilarityMatrix(
    ...     data=np.array([[1.0, 0.5], [0.5, 1.0]]),
    ...     gene_ids=pd.Index(["A", "B"]),
    ...     method="pearson",
    ... )
    >>> sim.n_genes
    2
    >>> sim.n_flagged_pairs
    0
"""

from __future__ import annotations

from typing import Literal, Optional, Sequence

import numpy as np
import pandas as pd

from coexnet.core.quality import QualityFlag

__all__ = [
    'NetworkType',
    'NETWORK_TYPES',
    'GeneMatrix',
    'SimilarityMatrix',
    'AdjacencyMatrix',
    'DissimilarityMatrix',
]

NetworkType = Literal["signed", "unsigned"]
NETWORK_TYPES: tuple[str, ...] = ("signed", "unsigned")


def _empty_pairs() -> np.ndarray:
    return np.empty((0, 2), dtype=np.int64)


class GeneMatrix:
    """
    Square gene x gene matrix with provenance.

    Attributes:
        data: Values (n_genes x n_genes), read-only
        gene_ids: Row and column identifiers
        gene_flags: QualityFlag per gene (uint8)
        flagged_pairs: (k, 2) array of numerically degenerate pairs, i < j

    With copy=False the given arrays themselves become read-only.
    """

    kind = "matrix"

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index | Sequence[str],
        gene_flags: Optional[np.ndarray] = None,
        flagged_pairs: Optional[np.ndarray] = None,
        copy: bool = True,
    ):
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if data.ndim != 2 or data.shape[0] != data.shape[1]:
            raise ValueError(f"{self.kind} must be square, got shape {data.shape}")

        gene_ids = pd.Index(gene_ids)
        n_genes = data.shape[0]
        if len(gene_ids) != n_genes:
            raise ValueError(
                f"gene_ids length ({len(gene_ids)}) must match matrix size ({n_genes})"
            )

        if gene_flags is None:
            gene_flags = np.full(n_genes, QualityFlag.ORIGINAL, dtype=np.uint8)
        gene_flags = np.asarray(gene_flags, dtype=np.uint8)
        if gene_flags.shape != (n_genes,):
            raise ValueError(
                f"gene_flags shape {gene_flags.shape} must be ({n_genes},)"
            )

        if flagged_pairs is None:
            flagged_pairs = _empty_pairs()
        flagged_pairs = np.asarray(flagged_pairs, dtype=np.int64).reshape(-1, 2)

        if copy:
            data = np.array(data, dtype=np.float64, copy=True)
            gene_flags = gene_flags.copy()
            flagged_pairs = flagged_pairs.copy()

        data.setflags(write=False)
        gene_flags.setflags(write=False)
        flagged_pairs.setflags(write=False)

        self._data = data
        self._gene_ids = gene_ids
        self._gene_flags = gene_flags
        self._flagged_pairs = flagged_pairs

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def gene_ids(self) -> pd.Index:
        return self._gene_ids

    @property
    def gene_flags(self) -> np.ndarray:
        return self._gene_flags

    @property
    def flagged_pairs(self) -> np.ndarray:
        return self._flagged_pairs

    @property
    def n_genes(self) -> int:
        return self._data.shape[0]

    @property
    def n_flagged_pairs(self) -> int:
        return len(self._flagged_pairs)

    def flagged_genes(self, flag: QualityFlag) -> pd.Index:
        """Identifiers of genes carrying ``flag``."""
        return self._gene_ids[(self._gene_flags & flag) != 0]

    def to_frame(self) -> pd.DataFrame:
        """Copy of the matrix as a labelled DataFrame."""
        return pd.DataFrame(
            np.array(self._data), index=self._gene_ids, columns=self._gene_ids
        )

    def _provenance(self) -> dict:
        return {
            "gene_flags": self._gene_flags,
            "flagged_pairs": self._flagged_pairs,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.n_genes} × {self.n_genes}, "
            f"{self.n_flagged_pairs} flagged pairs)"
        )


class SimilarityMatrix(GeneMatrix):
    """
    Pairwise gene correlation, values in [-1, 1], diagonal exactly 1.

    Attributes:
        method: Correlation estimator ("bicor" or "pearson")
    """

    kind = "similarity"

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index | Sequence[str],
        method: str = "bicor",
        gene_flags: Optional[np.ndarray] = None,
        flagged_pairs: Optional[np.ndarray] = None,
        copy: bool = True,
    ):
        super().__init__(data, gene_ids, gene_flags, flagged_pairs, copy=copy)
        self.method = method

    def __repr__(self) -> str:
        return (
            f"SimilarityMatrix({self.n_genes} × {self.n_genes}, method={self.method}, "
            f"{self.n_flagged_pairs} flagged pairs)"
        )


class AdjacencyMatrix(GeneMatrix):
    """
    Weighted network adjacency in [0, 1], diagonal exactly 1.

    Attributes:
        power: Soft-threshold exponent applied
        network_type: "signed" or "unsigned"
    """

    kind = "adjacency"

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index | Sequence[str],
        power: float,
        network_type: str = "signed",
        gene_flags: Optional[np.ndarray] = None,
        flagged_pairs: Optional[np.ndarray] = None,
        copy: bool = True,
    ):
        super().__init__(data, gene_ids, gene_flags, flagged_pairs, copy=copy)
        self.power = power
        self.network_type = network_type

    def connectivity(self) -> np.ndarray:
        """Per-gene connectivity: row sum excluding the self-adjacency."""
        return self._data.sum(axis=1) - 1.0

    def __repr__(self) -> str:
        return (
            f"AdjacencyMatrix({self.n_genes} × {self.n_genes}, power={self.power}, "
            f"type={self.network_type})"
        )


class DissimilarityMatrix(GeneMatrix):
    """
    Topological-overlap dissimilarity in [0, 1], diagonal exactly 0.

    Flagged pairs carry the maximum dissimilarity 1.
    """

    kind = "dissimilarity"
