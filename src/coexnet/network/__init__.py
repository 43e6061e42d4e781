"""
Network construction stages: correlation, soft-threshold scan, adjacency,
topological overlap.
"""

from coexnet.network.adjacency import AdjacencyBuilder, adjacency_from_similarity
from coexnet.network.correlation import (
    CorrelationEngine,
    biweight_midcorrelation,
    pearson_correlation,
)
from coexnet.network.overlap import (
    TopologicalOverlapComputer,
    topological_overlap_dissimilarity,
)
from coexnet.network.soft_threshold import (
    DEFAULT_POWERS,
    CandidatePowerReport,
    PowerFit,
    SoftThresholdSelector,
    scale_free_fit,
)

__all__ = [
    'AdjacencyBuilder',
    'adjacency_from_similarity',
    'CorrelationEngine',
    'biweight_midcorrelation',
    'pearson_correlation',
    'TopologicalOverlapComputer',
    'topological_overlap_dissimilarity',
    'DEFAULT_POWERS',
    'CandidatePowerReport',
    'PowerFit',
    'SoftThresholdSelector',
    'scale_free_fit',
]
