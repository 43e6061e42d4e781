"""
Co-expression network pipeline: expression matrix to modules.

Data flows strictly forward through independent stages:

    ExpressionMatrix
      -> CorrelationEngine           SimilarityMatrix
      -> SoftThresholdSelector       CandidatePowerReport   (analyst picks power)
      -> AdjacencyBuilder            AdjacencyMatrix
      -> TopologicalOverlapComputer  DissimilarityMatrix
      -> HierarchicalClusterer       Dendrogram
      -> DynamicModuleDetector       ModuleAssignment (one per deep_split)

Engineering Design:
    - Every stage is configured (and its parameters validated) when the
      pipeline is constructed or when a method is called, before any matrix
      work starts.
    - Each intermediate matrix is handed to the next stage whole and the
      pipeline drops its own reference as soon as the next one exists, so at
      most two dense G x G matrices are alive at once.
    - The deep_split sweep maps each value to an independent assignment
      (sweep_deep_split); nothing accumulates across values.

Examples:
    >>> from coexnet.pipeline import CoexpressionPipeline
    >>>
    >>> pipeline = CoexpressionPipeline(network_type="signed", min_cluster_size=30)
    >>> report = pipeline.pick_soft_threshold(matrix)  # doctest: +SKIP
    >>> power = report.suggested_power() or 12  # doctest: +SKIP
    >>> result = pipeline.detect_modules(matrix, power, deep_splits=(0, 1, 2, 3))  # doctest: +SKIP
    >>> result.assignment_frame().head()  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from coexnet.clustering.assignment import ModuleAssignment
from coexnet.clustering.dynamic_tree import DynamicModuleDetector
from coexnet.clustering.hierarchy import Dendrogram, HierarchicalClusterer
from coexnet.core.errors import ParameterInvalidError
from coexnet.core.expression import ExpressionMatrix
from coexnet.core.network import NETWORK_TYPES, DissimilarityMatrix, SimilarityMatrix
from coexnet.network.adjacency import AdjacencyBuilder
from coexnet.network.correlation import CorrelationEngine
from coexnet.network.overlap import TopologicalOverlapComputer
from coexnet.network.soft_threshold import (
    DEFAULT_POWERS,
    CandidatePowerReport,
    SoftThresholdSelector,
)

logger = logging.getLogger(__name__)

__all__ = [
    'DEFAULT_DEEP_SPLITS',
    'NetworkResult',
    'CoexpressionPipeline',
    'sweep_deep_split',
]

DEFAULT_DEEP_SPLITS: tuple[int, ...] = (0, 1, 2, 3)

MatrixInput = Union[ExpressionMatrix, SimilarityMatrix]


def sweep_deep_split(
    dendrogram: Dendrogram,
    dissimilarity: DissimilarityMatrix,
    deep_splits: Sequence[int] = DEFAULT_DEEP_SPLITS,
    min_cluster_size: int = 30,
    cut_height: float = 0.99,
    pam_stage: bool = False,
) -> dict[int, ModuleAssignment]:
    """
    Independent module assignment for each deep_split value.

    All detectors are configured (and validated) before the first cut runs.

    Returns:
        {deep_split: ModuleAssignment}, in the order given

    Raises:
        ParameterInvalidError: If deep_splits is empty or holds an invalid value
    """
    if len(deep_splits) == 0:
        raise ParameterInvalidError(
            "deep_splits is empty", stage="DynamicModuleDetector"
        )
    detectors = {
        deep_split: DynamicModuleDetector(
            min_cluster_size=min_cluster_size,
            cut_height=cut_height,
            deep_split=deep_split,
            pam_stage=pam_stage,
        )
        for deep_split in deep_splits
    }
    return {
        deep_split: detector.apply(dendrogram, dissimilarity)
        for deep_split, detector in detectors.items()
    }


@dataclass
class NetworkResult:
    """
    Network built at one power, with optional module assignments.

    Attributes:
        power: Soft-threshold power used
        network_type: "signed" or "unsigned"
        dissimilarity: Topological-overlap dissimilarity
        dendrogram: Average-linkage tree over the genes
        assignments: {deep_split: ModuleAssignment}
    """
    power: float
    network_type: str
    dissimilarity: DissimilarityMatrix
    dendrogram: Dendrogram
    assignments: dict[int, ModuleAssignment] = field(default_factory=dict)

    @property
    def gene_ids(self) -> pd.Index:
        return self.dendrogram.gene_ids

    def assignment_frame(self) -> pd.DataFrame:
        """Genes x deep_split table of module labels (columns 'deep_split_<d>')."""
        columns = {
            f"deep_split_{deep_split}": assignment.labels
            for deep_split, assignment in self.assignments.items()
        }
        frame = pd.DataFrame(columns, index=self.gene_ids)
        frame.index.name = "gene_id"
        return frame

    def module_sizes_frame(self) -> pd.DataFrame:
        """Long table: deep_split, module, size (module 0 = unassigned)."""
        rows = [
            {"deep_split": deep_split, "module": int(label), "size": int(size)}
            for deep_split, assignment in self.assignments.items()
            for label, size in assignment.module_sizes().items()
        ]
        return pd.DataFrame(rows, columns=["deep_split", "module", "size"])

    def to_dict(self) -> dict:
        return {
            "power": self.power,
            "network_type": self.network_type,
            "n_genes": len(self.gene_ids),
            "n_flagged_pairs": self.dissimilarity.n_flagged_pairs,
            "modules": {
                deep_split: assignment.n_modules
                for deep_split, assignment in self.assignments.items()
            },
        }


class CoexpressionPipeline:
    """
    End-to-end weighted co-expression network construction.

    Args:
        correlation: "bicor" or "pearson"
        network_type: "signed" or "unsigned"
        min_cluster_size: Minimum module size
        cut_height: Dendrogram height ceiling for modules
        neighborhood: Topological overlap neighbor sum, "product" or "min"
        pam_stage: Attach unassigned genes on composite branches to modules
        max_p_outliers: Bicor outlier cap
        block_size: Genes per row block in the dense stages
        n_workers: Threads for the dense stages
        verbose: Show progress bars

    Raises:
        ParameterInvalidError: For any out-of-domain parameter
    """

    def __init__(
        self,
        correlation: str = "bicor",
        network_type: str = "signed",
        min_cluster_size: int = 30,
        cut_height: float = 0.99,
        neighborhood: str = "product",
        pam_stage: bool = False,
        max_p_outliers: float = 1.0,
        block_size: int = 1000,
        n_workers: int = 1,
        verbose: bool = False,
    ):
        if network_type not in NETWORK_TYPES:
            raise ParameterInvalidError(
                f"unknown network_type {network_type!r}; choose from {NETWORK_TYPES}",
                stage="CoexpressionPipeline",
                params={"network_type": network_type},
            )

        self.correlation_engine = CorrelationEngine(
            method=correlation,
            max_p_outliers=max_p_outliers,
            block_size=block_size,
            n_workers=n_workers,
            verbose=verbose,
        )
        self.overlap_computer = TopologicalOverlapComputer(
            neighborhood=neighborhood,
            block_size=block_size,
            n_workers=n_workers,
            verbose=verbose,
        )
        self.clusterer = HierarchicalClusterer(method="average")
        # Validates min_cluster_size / cut_height up front
        DynamicModuleDetector(
            min_cluster_size=min_cluster_size,
            cut_height=cut_height,
            pam_stage=pam_stage,
        )

        self.network_type = network_type
        self.min_cluster_size = min_cluster_size
        self.cut_height = cut_height
        self.pam_stage = pam_stage
        self.block_size = block_size
        self.n_workers = n_workers
        self.verbose = verbose

    def similarity(
        self,
        matrix: ExpressionMatrix,
        cancel_event: Optional[threading.Event] = None,
    ) -> SimilarityMatrix:
        """Gene x gene similarity of ``matrix``."""
        return self.correlation_engine.apply(matrix, cancel_event=cancel_event)

    def _as_similarity(
        self,
        data: MatrixInput,
        cancel_event: Optional[threading.Event],
    ) -> SimilarityMatrix:
        if isinstance(data, SimilarityMatrix):
            return data
        return self.similarity(data, cancel_event=cancel_event)

    def pick_soft_threshold(
        self,
        data: MatrixInput,
        powers: Sequence[float] = DEFAULT_POWERS,
        target_fit: float = 0.9,
        n_breaks: int = 10,
        cancel_event: Optional[threading.Event] = None,
    ) -> CandidatePowerReport:
        """
        Scan candidate powers on an expression or similarity matrix.

        The report informs the choice of power; nothing is chosen here.
        """
        selector = SoftThresholdSelector(
            powers=powers,
            network_type=self.network_type,
            n_breaks=n_breaks,
            target_fit=target_fit,
            block_size=self.block_size,
            n_workers=self.n_workers,
            verbose=self.verbose,
        )
        similarity = self._as_similarity(data, cancel_event)
        return selector.apply(similarity, cancel_event=cancel_event)

    def build_network(
        self,
        data: MatrixInput,
        power: float,
        cancel_event: Optional[threading.Event] = None,
        out: Optional[np.ndarray] = None,
    ) -> NetworkResult:
        """
        Build dissimilarity and dendrogram at ``power``.

        Args:
            data: Expression matrix (or a precomputed similarity)
            power: Soft-threshold power, >= 1
            cancel_event: Cancels the dense stages and clustering
            out: Optional preallocated G x G dissimilarity buffer (e.g. np.memmap)

        Returns:
            NetworkResult without assignments
        """
        adjacency_builder = AdjacencyBuilder(power=power, network_type=self.network_type)

        similarity = self._as_similarity(data, cancel_event)
        adjacency = adjacency_builder.apply(similarity)
        del similarity

        dissimilarity = self.overlap_computer.apply(
            adjacency, out=out, cancel_event=cancel_event
        )
        del adjacency

        dendrogram = self.clusterer.apply(dissimilarity, cancel_event=cancel_event)
        return NetworkResult(
            power=power,
            network_type=self.network_type,
            dissimilarity=dissimilarity,
            dendrogram=dendrogram,
        )

    def detect_modules(
        self,
        data: MatrixInput,
        power: float,
        deep_splits: Sequence[int] = DEFAULT_DEEP_SPLITS,
        cancel_event: Optional[threading.Event] = None,
        out: Optional[np.ndarray] = None,
    ) -> NetworkResult:
        """
        Build the network at ``power`` and cut it at each deep_split value.

        Returns:
            NetworkResult with one ModuleAssignment per deep_split
        """
        if len(deep_splits) == 0:
            raise ParameterInvalidError("deep_splits is empty", stage="CoexpressionPipeline")
        for deep_split in deep_splits:
            DynamicModuleDetector(
                min_cluster_size=self.min_cluster_size,
                cut_height=self.cut_height,
                deep_split=deep_split,
                pam_stage=self.pam_stage,
            )

        result = self.build_network(data, power, cancel_event=cancel_event, out=out)
        result.assignments = sweep_deep_split(
            result.dendrogram,
            result.dissimilarity,
            deep_splits=deep_splits,
            min_cluster_size=self.min_cluster_size,
            cut_height=self.cut_height,
            pam_stage=self.pam_stage,
        )

        summary = ", ".join(
            f"deep_split={d}: {a.n_modules}" for d, a in result.assignments.items()
        )
        logger.info(f"CoexpressionPipeline: modules per deep_split: {summary}")
        return result
