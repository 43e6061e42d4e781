"""
Module assignment: gene -> module label.

Label 0 is the distinguished UNASSIGNED (background) label. Labels 1..k are
ordered by decreasing module size; the names themselves carry no meaning,
only the partition does (compare assignments with partition()).

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from coexnet.clustering.assignment import ModuleAssignment
    >>>
    >>> assignment = ModuleAssignment.from_raw_labels(
    ...     np.array([7, 7, 0, 3, 3, 3]),
    ...     gene_ids=pd.Index(list("ABCDEF")),
    ...     min_cluster_size=2,
    ... )
    >>> assignment.labels.tolist()
    [2, 2, 0, 1, 1, 1]
    >>> sorted(sorted(m) for m in assignment.partition())
    [['A', 'B'], ['D', 'E', 'F']]
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

__all__ = ['UNASSIGNED', 'ModuleAssignment']

UNASSIGNED = 0


class ModuleAssignment:
    """
    Mapping from gene identifier to module label.

    Attributes:
        labels: Series indexed by gene id, int labels (0 = unassigned)
        min_cluster_size: Minimum module size in force
        params: All detector parameters in force (deep_split, cut_height, ...)

    Invariant:
        Every module with a non-zero label has at least min_cluster_size genes.
    """

    def __init__(
        self,
        labels: pd.Series,
        min_cluster_size: int,
        params: Optional[dict[str, Any]] = None,
    ):
        labels = labels.astype(np.int64)
        sizes = labels[labels != UNASSIGNED].value_counts()
        too_small = sizes[sizes < min_cluster_size]
        if len(too_small):
            raise ValueError(
                f"modules {too_small.index.tolist()} are smaller than "
                f"min_cluster_size={min_cluster_size}"
            )
        self._labels = labels
        self.min_cluster_size = min_cluster_size
        self.params = dict(params) if params else {"min_cluster_size": min_cluster_size}

    @classmethod
    def from_raw_labels(
        cls,
        raw_labels: np.ndarray,
        gene_ids: pd.Index | Sequence[str],
        min_cluster_size: int,
        params: Optional[dict[str, Any]] = None,
    ) -> ModuleAssignment:
        """
        Relabel arbitrary integer labels to 1..k by decreasing size.

        0 stays UNASSIGNED. Equal-sized modules are ordered by the position of
        their first gene.
        """
        raw_labels = np.asarray(raw_labels, dtype=np.int64)
        assigned = raw_labels != UNASSIGNED
        uniques, first_pos, counts = np.unique(
            raw_labels[assigned], return_index=True, return_counts=True
        )
        first_gene = np.flatnonzero(assigned)[first_pos] if len(uniques) else first_pos
        order = sorted(range(len(uniques)), key=lambda i: (-counts[i], first_gene[i]))

        mapping = {int(uniques[i]): rank + 1 for rank, i in enumerate(order)}
        mapping[UNASSIGNED] = UNASSIGNED
        new_labels = np.array([mapping[int(v)] for v in raw_labels], dtype=np.int64)

        return cls(
            labels=pd.Series(new_labels, index=pd.Index(gene_ids), name="module"),
            min_cluster_size=min_cluster_size,
            params=params,
        )

    @property
    def labels(self) -> pd.Series:
        return self._labels

    @property
    def gene_ids(self) -> pd.Index:
        return self._labels.index

    @property
    def n_modules(self) -> int:
        return int(self._labels[self._labels != UNASSIGNED].nunique())

    @property
    def unassigned(self) -> pd.Index:
        """Genes carrying the UNASSIGNED label."""
        return self._labels.index[self._labels == UNASSIGNED]

    def module_sizes(self) -> pd.Series:
        """Genes per label (UNASSIGNED included when present), sorted by label."""
        return self._labels.value_counts().sort_index().rename("size")

    def genes(self, label: int) -> pd.Index:
        """Genes carrying ``label``."""
        return self._labels.index[self._labels == label]

    def partition(self) -> set[frozenset]:
        """Modules as a set of gene-id sets (UNASSIGNED excluded)."""
        assigned = self._labels[self._labels != UNASSIGNED]
        return {
            frozenset(group.index)
            for _, group in assigned.groupby(assigned)
        }

    def to_frame(self) -> pd.DataFrame:
        """Two-column table: gene_id, module."""
        frame = self._labels.rename("module").to_frame()
        frame.index.name = "gene_id"
        return frame.reset_index()

    def __repr__(self) -> str:
        return (
            f"ModuleAssignment({len(self._labels)} genes, {self.n_modules} modules, "
            f"{len(self.unassigned)} unassigned)"
        )
