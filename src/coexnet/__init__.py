"""
coexnet - Weighted Gene Co-expression Network Analysis

Builds a weighted gene co-expression network from a gene x sample
expression matrix and partitions genes into modules of coordinated
expression: robust correlation, soft-threshold power scan, signed or
unsigned adjacency, topological-overlap dissimilarity, average-linkage
clustering and dynamic branch cutting.
"""

__version__ = "0.1.0"

from coexnet.core.expression import ExpressionMatrix
from coexnet.core.quality import QualityFlag
from coexnet.core.errors import (
    CoexnetError,
    DataQualityError,
    NumericDegeneracyWarning,
    ParameterInvalidError,
    PipelineCancelledError,
)
from coexnet.pipeline import CoexpressionPipeline, NetworkResult

__all__ = [
    "ExpressionMatrix",
    "QualityFlag",
    "CoexnetError",
    "DataQualityError",
    "NumericDegeneracyWarning",
    "ParameterInvalidError",
    "PipelineCancelledError",
    "CoexpressionPipeline",
    "NetworkResult",
]
