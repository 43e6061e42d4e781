"""
Dynamic tree cut: adaptive branch pruning of a dendrogram into modules.

Biological Context:
    A single horizontal cut of a co-expression dendrogram either splits
    large, loose modules or merges small, tight ones. The dynamic (hybrid)
    tree cut instead walks the tree bottom-up and decides for each merge
    whether the two branches are distinct enough to be separate modules,
    judging distinctness against each branch's own core tightness.

Algorithm (tree stage of the hybrid cut):
    Only merges at or below cut_height are visited. Heights are scaled into
    [ref_height, cut_height], where ref_height is the 5% quantile merge
    height. deep_split selects the sensitivity:

        deep_split         0     1     2     3     4
        max_core_scatter   0.64  0.73  0.82  0.91  0.95
        min_gap = (1 - max_core_scatter) * 3/4

    A basic branch is a subtree that has not yet been split. Its core is the
    first core_size(n) genes it gathered, where
    core_size(n) = int(m/2 + 1 + sqrt(n - m/2 - 1)) for m = min_cluster_size,
    and its core scatter is the mean average in-core dissimilarity.

    When two branches merge, a basic branch is absorbed into its partner if
    it is too small, too scattered, separated by too small a gap
    (height - core scatter < min_gap) or below the minimum split height.
    Otherwise both become children of a new composite branch. A basic branch
    that was never absorbed becomes a module if it is large enough, tight
    enough, and separated from where it attaches by more than min_gap.

    Higher deep_split means a larger tolerated scatter and a smaller required
    gap, so more branches survive as separate modules.

    Optional PAM-like stage: an unassigned gene hanging on a composite branch
    joins the nearest module under that branch (mean dissimilarity) if the
    distance is below the module's diameter or below cut_height.

Examples:
    >>> from coexnet.clustering.dynamic_tree import DynamicModuleDetector
    >>>
    >>> detector = DynamicModuleDetector(min_cluster_size=30, deep_split=2)
    >>> assignment = detector.apply(dendrogram, dissimilarity)  # doctest: +SKIP
    >>> assignment.n_modules  # doctest: +SKIP
    12
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from coexnet.clustering.assignment import UNASSIGNED, ModuleAssignment
from coexnet.clustering.hierarchy import Dendrogram
from coexnet.core.errors import DataQualityError
from coexnet.core.network import DissimilarityMatrix
from coexnet.core.stage import Stage

logger = logging.getLogger(__name__)

__all__ = [
    'DEEP_SPLIT_CORE_SCATTER',
    'DynamicModuleDetector',
    'cut_tree_dynamic',
    'core_size',
]

DEEP_SPLIT_CORE_SCATTER: tuple[float, ...] = (0.64, 0.73, 0.82, 0.91, 0.95)

_REF_QUANTILE = 0.05


def core_size(branch_size: int, min_cluster_size: int) -> int:
    """Number of leading genes that form a branch's core."""
    base = min_cluster_size / 2 + 1
    if base < branch_size:
        return int(base + math.sqrt(branch_size - base))
    return branch_size


@dataclass
class _Branch:
    is_basic: bool
    size: int
    singletons: list[int] = field(default_factory=list)
    basic_clusters: list[int] = field(default_factory=list)
    is_top_basic: bool = True
    attach_height: Optional[float] = None


def _core_scatter(branch: _Branch, dissimilarity: np.ndarray, min_cluster_size: int) -> float:
    n_core = core_size(len(branch.singletons), min_cluster_size)
    core = branch.singletons[:n_core]
    block = dissimilarity[np.ix_(core, core)]
    return float(np.mean(block.sum(axis=0) / (n_core - 1)))


@dataclass(frozen=True)
class _Thresholds:
    cut_height: float
    ref_height: float
    max_abs_core_scatter: float
    min_abs_gap: float
    min_abs_split_height: float


def _thresholds(heights: np.ndarray, cut_height: float, deep_split: int) -> _Thresholds:
    n_merge = len(heights)
    ref_merge = max(int(round(n_merge * _REF_QUANTILE)), 1) - 1
    ref_height = float(heights[ref_merge])
    max_core_scatter = DEEP_SPLIT_CORE_SCATTER[deep_split]
    min_gap = (1.0 - max_core_scatter) * 3.0 / 4.0
    return _Thresholds(
        cut_height=cut_height,
        ref_height=ref_height,
        max_abs_core_scatter=ref_height + max_core_scatter * (cut_height - ref_height),
        min_abs_gap=min_gap * (cut_height - ref_height),
        min_abs_split_height=ref_height,
    )


def _tree_stage(
    merges: np.ndarray,
    dissimilarity: np.ndarray,
    thresholds: _Thresholds,
    min_cluster_size: int,
) -> tuple[list[_Branch], np.ndarray]:
    """Walk merges bottom-up; returns branches and each leaf's composite branch (-1 if none)."""
    n_leaves = len(merges) + 1
    merge_to_branch = np.full(len(merges), -1, dtype=np.int64)
    on_branch = np.full(n_leaves, -1, dtype=np.int64)
    branches: list[_Branch] = []
    cut = thresholds.cut_height

    def should_absorb(branch: _Branch, height: float) -> bool:
        if not branch.is_basic:
            return False
        scatter = _core_scatter(branch, dissimilarity, min_cluster_size)
        return (
            branch.size < min_cluster_size
            or scatter > thresholds.max_abs_core_scatter
            or height - scatter < thresholds.min_abs_gap
            or height < thresholds.min_abs_split_height
        )

    for m, (left, right, height, _) in enumerate(merges):
        if height > cut:
            continue
        left, right = int(left), int(right)
        left_leaf, right_leaf = left < n_leaves, right < n_leaves

        if left_leaf and right_leaf:
            branches.append(_Branch(is_basic=True, size=2, singletons=[left, right]))
            merge_to_branch[m] = len(branches) - 1
            continue

        if left_leaf or right_leaf:
            gene, node = (left, right) if left_leaf else (right, left)
            index = int(merge_to_branch[node - n_leaves])
            branch = branches[index]
            if branch.is_basic:
                branch.singletons.append(gene)
            else:
                on_branch[gene] = index
            branch.size += 1
            merge_to_branch[m] = index
            continue

        pair = [int(merge_to_branch[left - n_leaves]), int(merge_to_branch[right - n_leaves])]
        small, large = pair if branches[pair[0]].size <= branches[pair[1]].size else pair[::-1]

        absorb = should_absorb(branches[small], height)
        if not absorb and should_absorb(branches[large], height):
            absorb = True
            small, large = large, small

        if absorb:
            absorbed, keeper = branches[small], branches[large]
            absorbed.is_top_basic = False
            absorbed.attach_height = height
            if keeper.is_basic:
                keeper.singletons.extend(absorbed.singletons)
            else:
                on_branch[absorbed.singletons] = large
            keeper.size += absorbed.size
            merge_to_branch[m] = large
            continue

        composite = _Branch(
            is_basic=False,
            size=branches[small].size + branches[large].size,
            is_top_basic=False,
        )
        for index in (small, large):
            child = branches[index]
            child.attach_height = height
            if child.is_basic:
                composite.basic_clusters.append(index)
            else:
                composite.basic_clusters.extend(child.basic_clusters)
        branches.append(composite)
        merge_to_branch[m] = len(branches) - 1

    return branches, on_branch


def _pam_stage(
    labels: np.ndarray,
    branches: list[_Branch],
    branch_labels: dict[int, int],
    on_branch: np.ndarray,
    dissimilarity: np.ndarray,
    max_pam_dist: float,
) -> int:
    """Attach unassigned genes on composite branches to nearby modules; returns count."""
    before = labels.copy()
    diameter = {}
    for label in np.unique(before[before != UNASSIGNED]):
        members = np.flatnonzero(before == label)
        if len(members) > 1:
            within = dissimilarity[np.ix_(members, members)].sum(axis=1) / (len(members) - 1)
            diameter[int(label)] = float(within.max())
        else:
            diameter[int(label)] = 0.0

    n_attached = 0
    for gene in np.flatnonzero(before == UNASSIGNED):
        composite = int(on_branch[gene])
        if composite < 0:
            continue
        candidates = sorted({
            branch_labels[b] for b in branches[composite].basic_clusters if b in branch_labels
        })
        if not candidates:
            continue
        mean_dist = [
            float(dissimilarity[gene, before == label].mean()) for label in candidates
        ]
        nearest = int(np.argmin(mean_dist))
        label = candidates[nearest]
        if mean_dist[nearest] < diameter[label] or mean_dist[nearest] < max_pam_dist:
            labels[gene] = label
            n_attached += 1
    return n_attached


def cut_tree_dynamic(
    merges: np.ndarray,
    dissimilarity: np.ndarray,
    min_cluster_size: int = 30,
    cut_height: float = 0.99,
    deep_split: int = 2,
    pam_stage: bool = False,
) -> np.ndarray:
    """
    Raw module labels for each leaf (0 = unassigned, others arbitrary).

    Args:
        merges: (G - 1) x 4 linkage table
        dissimilarity: G x G dissimilarity the tree was built from
        min_cluster_size: Minimum module size
        cut_height: Maximum merge height considered (lowered to the top merge)
        deep_split: Sensitivity, 0..4
        pam_stage: Attach unassigned genes on composite branches to modules

    Returns:
        Integer label per leaf
    """
    n_leaves = len(merges) + 1
    labels = np.zeros(n_leaves, dtype=np.int64)
    if len(merges) == 0:
        return labels

    heights = merges[:, 2]
    cut_height = min(cut_height, float(heights.max()))

    n_below_cut = int(np.count_nonzero(heights <= cut_height))
    if n_below_cut < min_cluster_size:
        logger.info(
            f"only {n_below_cut} merges at or below cut_height={cut_height:.4f} "
            f"(min_cluster_size={min_cluster_size}); all genes unassigned"
        )
        return labels

    thresholds = _thresholds(heights, cut_height, deep_split)
    logger.debug(f"dynamic cut thresholds: {thresholds}")

    branches, on_branch = _tree_stage(merges, dissimilarity, thresholds, min_cluster_size)

    branch_labels: dict[int, int] = {}
    for index, branch in enumerate(branches):
        if not branch.is_top_basic:
            continue
        attach = branch.attach_height if branch.attach_height is not None else cut_height
        scatter = _core_scatter(branch, dissimilarity, min_cluster_size)
        if (
            branch.size >= min_cluster_size
            and scatter < thresholds.max_abs_core_scatter
            and attach - scatter > thresholds.min_abs_gap
        ):
            branch_labels[index] = len(branch_labels) + 1
            labels[branch.singletons] = branch_labels[index]

    if pam_stage and branch_labels and (labels == UNASSIGNED).any():
        n_attached = _pam_stage(
            labels, branches, branch_labels, on_branch, dissimilarity, cut_height
        )
        logger.debug(f"PAM stage attached {n_attached} genes")

    return labels


class DynamicModuleDetector(Stage):
    """
    (Dendrogram, DissimilarityMatrix) -> ModuleAssignment.

    Args:
        min_cluster_size: Minimum module size, >= 1
        cut_height: Merge height ceiling in [0, 1]
        deep_split: Sensitivity in {0, 1, 2, 3, 4}
        pam_stage: Attach unassigned genes on composite branches to modules

    Raises:
        ParameterInvalidError: On construction, for out-of-domain parameters
    """

    def __init__(
        self,
        min_cluster_size: int = 30,
        cut_height: float = 0.99,
        deep_split: int = 2,
        pam_stage: bool = False,
    ):
        super().__init__(
            name="DynamicModuleDetector",
            params={
                "min_cluster_size": min_cluster_size,
                "cut_height": cut_height,
                "deep_split": deep_split,
                "pam_stage": pam_stage,
            },
        )
        if isinstance(min_cluster_size, bool) or not isinstance(min_cluster_size, numbers.Integral):
            raise self.invalid(f"min_cluster_size must be an integer, got {min_cluster_size!r}")
        if min_cluster_size < 1:
            raise self.invalid("min_cluster_size must be >= 1")
        if isinstance(cut_height, bool) or not isinstance(cut_height, numbers.Real):
            raise self.invalid(f"cut_height must be a number, got {cut_height!r}")
        if not 0.0 <= cut_height <= 1.0:
            raise self.invalid("cut_height must be in [0, 1]")
        if isinstance(deep_split, bool) or not isinstance(deep_split, numbers.Integral):
            raise self.invalid(f"deep_split must be an integer, got {deep_split!r}")
        if not 0 <= deep_split < len(DEEP_SPLIT_CORE_SCATTER):
            raise self.invalid(
                f"deep_split must be in 0..{len(DEEP_SPLIT_CORE_SCATTER) - 1}, got {deep_split}"
            )

        self.min_cluster_size = int(min_cluster_size)
        self.cut_height = float(cut_height)
        self.deep_split = int(deep_split)
        self.pam_stage = bool(pam_stage)

    def apply(
        self,
        dendrogram: Dendrogram,
        dissimilarity: DissimilarityMatrix,
    ) -> ModuleAssignment:
        """
        Cut the dendrogram into modules.

        Args:
            dendrogram: Tree built from ``dissimilarity``
            dissimilarity: Dissimilarity matrix (same genes, same order)

        Returns:
            ModuleAssignment, labels 1..k by decreasing size, 0 = unassigned

        Raises:
            DataQualityError: If the two inputs describe different genes
        """
        if not dendrogram.gene_ids.equals(dissimilarity.gene_ids):
            raise DataQualityError(
                "dendrogram and dissimilarity gene identifiers differ",
                stage=self.name,
                gene_ids=dendrogram.gene_ids.symmetric_difference(dissimilarity.gene_ids),
                params=self.params,
            )

        raw = cut_tree_dynamic(
            dendrogram.merges,
            dissimilarity.data,
            min_cluster_size=self.min_cluster_size,
            cut_height=self.cut_height,
            deep_split=self.deep_split,
            pam_stage=self.pam_stage,
        )
        assignment = ModuleAssignment.from_raw_labels(
            raw,
            gene_ids=dendrogram.gene_ids,
            min_cluster_size=self.min_cluster_size,
            params=self.params,
        )
        logger.info(
            f"{self.name}: deep_split={self.deep_split} -> {assignment.n_modules} modules, "
            f"{len(assignment.unassigned)} of {dendrogram.n_leaves} genes unassigned"
        )
        return assignment
