"""
Average-linkage hierarchical clustering of a dissimilarity matrix.

Engineering Design:
    Greedy agglomeration with a per-row nearest-neighbour cache:

    - Every active cluster occupies a slot, the smallest gene index it
      contains. Row s of the cache holds the closest active slot t > s.
    - Each step merges the globally closest pair (lowest slot on ties, then
      lowest partner). The merged cluster keeps the lower slot.
    - Distances to the merged cluster follow the Lance-Williams average
      update d(k, i+j) = (n_i d_ki + n_j d_kj) / (n_i + n_j), evaluated as
      lo + (hi - lo) * w_hi so the result never falls below the smaller
      input. Merge heights are therefore non-decreasing exactly, not just up
      to rounding.
    - Only rows whose cached neighbour was one of the merged slots are
      rescanned, giving O(G^2) typical cost.

    The merge table uses the SciPy linkage layout, so
    scipy.cluster.hierarchy.dendrogram() and friends can render it.

Examples:
    >>> import numpy as np
    >>> from coexnet.clustering.hierarchy import average_linkage
    >>>
    >>> d = np.array([[0.0, 0.1, 0.8],
    ...               [0.1, 0.0, 0.6],
    ...               [0.8, 0.6, 0.0]])
    >>> np.round(average_linkage(d), 6).tolist()
    [[0.0, 1.0, 0.1, 2.0], [2.0, 3.0, 0.7, 3.0]]
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.cluster import hierarchy

from coexnet.core.network import DissimilarityMatrix
from coexnet.core.stage import Stage

logger = logging.getLogger(__name__)

__all__ = ['Dendrogram', 'HierarchicalClusterer', 'average_linkage']

LINKAGE_METHODS: tuple[str, ...] = ("average",)


class Dendrogram:
    """
    Merge tree over G leaves.

    Attributes:
        merges: (G - 1) x 4 array [left_id, right_id, height, size], read-only.
            Leaves are 0..G-1; merge m creates node G + m.
        gene_ids: Leaf identifiers
    """

    def __init__(self, merges: np.ndarray, gene_ids: pd.Index | Sequence[str]):
        merges = np.array(merges, dtype=np.float64).reshape(-1, 4)
        gene_ids = pd.Index(gene_ids)
        if len(gene_ids) and len(merges) != len(gene_ids) - 1:
            raise ValueError(
                f"{len(gene_ids)} leaves need {len(gene_ids) - 1} merges, got {len(merges)}"
            )
        if len(gene_ids) >= 2:
            hierarchy.is_valid_linkage(merges, throw=True, name="merges")
        merges.setflags(write=False)
        self._merges = merges
        self._gene_ids = gene_ids

    @property
    def merges(self) -> np.ndarray:
        return self._merges

    @property
    def gene_ids(self) -> pd.Index:
        return self._gene_ids

    @property
    def heights(self) -> np.ndarray:
        return self._merges[:, 2]

    @property
    def n_leaves(self) -> int:
        return len(self._gene_ids)

    @property
    def n_merges(self) -> int:
        return len(self._merges)

    def children(self, node: int) -> tuple[int, int]:
        """Child node ids of internal node ``node``."""
        row = self._merges[node - self.n_leaves]
        return int(row[0]), int(row[1])

    def leaves_under(self, node: int) -> list[int]:
        """Leaf indices below ``node`` in left-to-right order."""
        n = self.n_leaves
        order = []
        stack = [node]
        while stack:
            current = stack.pop()
            if current < n:
                order.append(current)
            else:
                left, right = self.children(current)
                stack.append(right)
                stack.append(left)
        return order

    def leaf_order(self) -> np.ndarray:
        """Leaf indices in plotting order (scipy leaves_list)."""
        if self.n_leaves == 0:
            return np.empty(0, dtype=np.int64)
        if self.n_leaves == 1:
            return np.zeros(1, dtype=np.int64)
        return hierarchy.leaves_list(self._merges).astype(np.int64)

    def to_linkage(self) -> np.ndarray:
        """Writable copy in scipy.cluster.hierarchy linkage format."""
        return np.array(self._merges, dtype=np.float64)

    def to_frame(self) -> pd.DataFrame:
        """Merge table with integer ids and named columns."""
        frame = pd.DataFrame(
            self._merges, columns=["left", "right", "height", "size"]
        )
        return frame.astype({"left": np.int64, "right": np.int64, "size": np.int64})

    def __repr__(self) -> str:
        top = f"{self.heights[-1]:.4f}" if self.n_merges else "n/a"
        return f"Dendrogram({self.n_leaves} leaves, {self.n_merges} merges, top height {top})"


def _nearest_above(dist: np.ndarray, active: np.ndarray, row: int) -> tuple[int, float]:
    """Closest active slot above ``row``: (slot, distance) or (-1, inf)."""
    candidates = np.flatnonzero(active[row + 1:]) + row + 1
    if len(candidates) == 0:
        return -1, np.inf
    values = dist[row, candidates]
    best = int(np.argmin(values))
    return int(candidates[best]), float(values[best])


def average_linkage(
    dissimilarity: np.ndarray,
    cancel_check: Optional[Callable[[], None]] = None,
) -> np.ndarray:
    """
    Average-linkage merge table for a symmetric dissimilarity matrix.

    Args:
        dissimilarity: G x G symmetric matrix (not modified)
        cancel_check: Called once per merge; may raise to abort

    Returns:
        (G - 1) x 4 float array in SciPy linkage layout
    """
    n = dissimilarity.shape[0]
    merges = np.zeros((max(n - 1, 0), 4), dtype=np.float64)
    if n < 2:
        return merges

    dist = np.array(dissimilarity, dtype=np.float64, copy=True)
    np.fill_diagonal(dist, np.inf)

    active = np.ones(n, dtype=bool)
    size = np.ones(n, dtype=np.int64)
    node_id = np.arange(n, dtype=np.int64)

    nn = np.full(n, -1, dtype=np.int64)
    nn_dist = np.full(n, np.inf)
    for row in range(n - 1):
        nn[row], nn_dist[row] = _nearest_above(dist, active, row)

    for step in range(n - 1):
        if cancel_check is not None:
            cancel_check()

        i = int(np.argmin(nn_dist))
        j = int(nn[i])
        height = nn_dist[i]

        left, right = sorted((node_id[i], node_id[j]))
        merges[step] = (left, right, height, size[i] + size[j])

        # Lance-Williams average update, anchored on the smaller input
        others = active.copy()
        others[[i, j]] = False
        d_ki = dist[i, others]
        d_kj = dist[j, others]
        w_j = size[j] / (size[i] + size[j])
        lo = np.minimum(d_ki, d_kj)
        hi = np.maximum(d_ki, d_kj)
        w_hi = np.where(d_kj >= d_ki, w_j, 1.0 - w_j)
        updated = lo + (hi - lo) * w_hi

        dist[i, others] = updated
        dist[others, i] = updated
        dist[j, :] = np.inf
        dist[:, j] = np.inf
        active[j] = False
        size[i] += size[j]
        node_id[i] = n + step
        nn[j], nn_dist[j] = -1, np.inf

        stale = np.flatnonzero(active & ((nn == i) | (nn == j)))
        for row in stale:
            nn[row], nn_dist[row] = _nearest_above(dist, active, row)
        nn[i], nn_dist[i] = _nearest_above(dist, active, i)

        # Rows below i may now be closest to the merged cluster
        below = np.flatnonzero(active[:i])
        if len(below):
            candidate = dist[below, i]
            better = (candidate < nn_dist[below]) | (
                (candidate == nn_dist[below]) & (i < nn[below])
            )
            nn[below[better]] = i
            nn_dist[below[better]] = candidate[better]

    return merges


class HierarchicalClusterer(Stage):
    """
    DissimilarityMatrix -> Dendrogram.

    Args:
        method: Linkage; only "average" is supported

    Raises:
        ParameterInvalidError: For any other method
    """

    def __init__(self, method: str = "average"):
        super().__init__(name="HierarchicalClusterer", params={"method": method})
        if method not in LINKAGE_METHODS:
            raise self.invalid(
                f"unknown linkage method {method!r}; choose from {LINKAGE_METHODS}"
            )
        self.method = method

    def apply(
        self,
        dissimilarity: DissimilarityMatrix,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dendrogram:
        """
        Cluster genes.

        Args:
            dissimilarity: Dissimilarity matrix (not modified)
            cancel_event: Checked once per merge

        Returns:
            Dendrogram with G - 1 merges

        Raises:
            PipelineCancelledError: If cancel_event is set during clustering
        """
        logger.info(f"{self.name}: {dissimilarity.n_genes} genes, method={self.method}")

        def cancel_check() -> None:
            self.check_cancelled(cancel_event)

        merges = average_linkage(
            dissimilarity.data,
            cancel_check=cancel_check if cancel_event is not None else None,
        )
        dendrogram = Dendrogram(merges, dissimilarity.gene_ids)
        logger.info(f"{self.name}: {dendrogram!r}")
        return dendrogram
