"""
Expression matrix container: the immutable input to network construction.

Biological Context:
    The core receives a clean, normalized expression table from upstream
    stages (ingestion, filtering, normalization, batch correction):
    - Rows = genes (unique identifiers)
    - Columns = samples
    - Values = real-valued, normalized expression

    An optional sample trait table may travel alongside for diagnostic and
    plotting collaborators; network construction never reads it.

Engineering Design:
    - Immutable: the data array is flagged read-only; subsetting returns
      new instances
    - Validated: shape and identifier uniqueness checked at construction
    - Numeric quality (NaN, zero variance, sample count) is checked by
      coexnet.core.quality.check_expression_quality when a stage consumes
      the matrix, so that the failure names the stage

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from coexnet.core.expression import ExpressionMatrix
    >>>
    >>> matrix = ExpressionMatrix(
    ...     data=np.array([[1.0, 2.0, 3.0, 4.0], [2.0, 1.0, 4.0, 3.0]]),
    ...     gene_ids=pd.Index(["GENE_A", "GENE_B"]),
    ...     sample_ids=pd.Index(["S1", "S2", "S3", "S4"]),
    ... )
    >>> matrix.shape
    (2, 4)
    >>> matrix.select_genes([1]).gene_ids.tolist()
    ['GENE_B']
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from coexnet.core.errors import DataQualityError

__all__ = ['ExpressionMatrix']


class ExpressionMatrix:
    """
    Immutable container for a genes x samples expression matrix.

    Attributes:
        data: Expression values (genes x samples), float64, read-only
        gene_ids: Row identifiers, unique
        sample_ids: Column identifiers, unique
        sample_traits: Optional trait table indexed by sample_ids

    Shape Invariants:
        - data.shape == (len(gene_ids), len(sample_ids))
        - sample_traits.index equals sample_ids (when present)
    """

    def __init__(
        self,
        data: np.ndarray,
        gene_ids: pd.Index | Sequence[str],
        sample_ids: pd.Index | Sequence[str],
        sample_traits: Optional[pd.DataFrame] = None,
    ):
        """
        Initialize with validation.

        Args:
            data: Expression matrix (genes x samples)
            gene_ids: Row identifiers (must be unique)
            sample_ids: Column identifiers (must be unique)
            sample_traits: Optional DataFrame indexed by sample id

        Raises:
            TypeError: If data is not a numeric array
            ValueError: If shapes are inconsistent
            DataQualityError: If gene or sample identifiers are duplicated
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if data.ndim != 2:
            raise ValueError(f"data must be 2D, got shape {data.shape}")
        if not np.issubdtype(data.dtype, np.number):
            raise TypeError(f"data must be numeric, got dtype {data.dtype}")

        gene_ids = pd.Index(gene_ids)
        sample_ids = pd.Index(sample_ids)
        n_genes, n_samples = data.shape

        if len(gene_ids) != n_genes:
            raise ValueError(
                f"gene_ids length ({len(gene_ids)}) must match data rows ({n_genes})"
            )
        if len(sample_ids) != n_samples:
            raise ValueError(
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})"
            )

        if gene_ids.has_duplicates:
            duplicated = gene_ids[gene_ids.duplicated()].unique()
            raise DataQualityError(
                f"{len(duplicated)} duplicated gene identifiers",
                stage="ExpressionMatrix",
                gene_ids=duplicated,
            )
        if sample_ids.has_duplicates:
            duplicated = sample_ids[sample_ids.duplicated()].unique().tolist()
            raise DataQualityError(
                f"duplicated sample identifiers: {duplicated[:10]}",
                stage="ExpressionMatrix",
            )

        if sample_traits is not None:
            if not isinstance(sample_traits, pd.DataFrame):
                raise TypeError(
                    f"sample_traits must be pd.DataFrame, got {type(sample_traits)}"
                )
            if not sample_traits.index.equals(sample_ids):
                raise ValueError(
                    "sample_traits.index must match sample_ids exactly. "
                    f"Got {len(sample_traits.index)} trait rows for {n_samples} samples."
                )

        values = np.array(data, dtype=np.float64, copy=True)
        values.setflags(write=False)

        self._data = values
        self._gene_ids = gene_ids
        self._sample_ids = sample_ids
        self._sample_traits = sample_traits

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        sample_traits: Optional[pd.DataFrame] = None,
    ) -> ExpressionMatrix:
        """Build from a DataFrame indexed by gene with one column per sample."""
        return cls(
            data=frame.to_numpy(dtype=np.float64),
            gene_ids=frame.index,
            sample_ids=frame.columns,
            sample_traits=sample_traits,
        )

    @property
    def data(self) -> np.ndarray:
        """Expression values (genes x samples), read-only."""
        return self._data

    @property
    def gene_ids(self) -> pd.Index:
        """Gene identifiers."""
        return self._gene_ids

    @property
    def sample_ids(self) -> pd.Index:
        """Sample identifiers."""
        return self._sample_ids

    @property
    def sample_traits(self) -> Optional[pd.DataFrame]:
        """Optional per-sample trait table (not consumed by the core)."""
        return self._sample_traits

    @property
    def shape(self) -> tuple[int, int]:
        """Matrix dimensions (n_genes, n_samples)."""
        return self._data.shape

    @property
    def n_genes(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def select_genes(self, indexer: np.ndarray | pd.Series | Sequence[int]) -> ExpressionMatrix:
        """
        Subset (or reorder) genes.

        Args:
            indexer: Boolean mask of length n_genes, or integer positions.
                Integer positions may reorder genes.

        Returns:
            New ExpressionMatrix with the selected genes

        Raises:
            ValueError: If a boolean mask has the wrong length
        """
        if isinstance(indexer, pd.Series):
            indexer = indexer.to_numpy()
        indexer = np.asarray(indexer)

        if indexer.dtype == bool and len(indexer) != self.n_genes:
            raise ValueError(
                f"mask length ({len(indexer)}) must match n_genes ({self.n_genes})"
            )

        return ExpressionMatrix(
            data=self._data[indexer, :],
            gene_ids=self._gene_ids[indexer],
            sample_ids=self._sample_ids,
            sample_traits=self._sample_traits,
        )

    def reorder_genes(self, order: Sequence[int]) -> ExpressionMatrix:
        """
        Return a copy with genes permuted by ``order``.

        Raises:
            ValueError: If order is not a permutation of range(n_genes)
        """
        order = np.asarray(order)
        if sorted(order.tolist()) != list(range(self.n_genes)):
            raise ValueError("order must be a permutation of range(n_genes)")
        return self.select_genes(order)

    def to_frame(self) -> pd.DataFrame:
        """Expression values as a DataFrame (genes x samples)."""
        return pd.DataFrame(self._data, index=self._gene_ids, columns=self._sample_ids)

    def __repr__(self) -> str:
        traits = list(self._sample_traits.columns) if self._sample_traits is not None else []
        return (
            f"ExpressionMatrix({self.n_genes} genes × {self.n_samples} samples)\n"
            f"  Genes: {self.gene_ids[0]}...{self.gene_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Trait columns: {traits}"
        )
