"""
Core data structures: expression input, network matrices, quality flags,
errors and the stage base class.
"""

from coexnet.core.errors import (
    CoexnetError,
    DataQualityError,
    NumericDegeneracyWarning,
    ParameterInvalidError,
    PipelineCancelledError,
)
from coexnet.core.expression import ExpressionMatrix
from coexnet.core.network import (
    AdjacencyMatrix,
    DissimilarityMatrix,
    GeneMatrix,
    SimilarityMatrix,
)
from coexnet.core.quality import QualityFlag, check_expression_quality
from coexnet.core.stage import Stage

__all__ = [
    'CoexnetError',
    'DataQualityError',
    'NumericDegeneracyWarning',
    'ParameterInvalidError',
    'PipelineCancelledError',
    'ExpressionMatrix',
    'AdjacencyMatrix',
    'DissimilarityMatrix',
    'GeneMatrix',
    'SimilarityMatrix',
    'QualityFlag',
    'check_expression_quality',
    'Stage',
]
