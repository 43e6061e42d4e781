"""
Error and warning taxonomy for the network-construction pipeline.

Every failure raised by a stage names the stage, the offending gene
identifiers (when there are any) and the parameter values in force, so that
a message read in a log file is enough to reproduce the problem.

Taxonomy:
    DataQualityError: The input cannot yield a defined network
        (NaN/Inf values, zero-variance genes, duplicate or mismatched
        identifiers, too few samples). Fatal, never imputed or dropped.
    ParameterInvalidError: A parameter is outside its domain. Raised when the
        stage is configured, before any matrix is touched.
    PipelineCancelledError: A long-running stage observed a cancellation
        request. No partial output is returned.
    NumericDegeneracyWarning: Individual gene pairs produced a non-finite
        value. The pairs are flagged and the pipeline continues.

Scale-free fit advisories are not errors; they live on
CandidatePowerReport (see coexnet.network.soft_threshold).

Examples:
    >>> from coexnet.core.errors import DataQualityError
    >>> try:
    ...     raise DataQualityError(
    ...         "zero variance across all samples",
    ...         stage="CorrelationEngine",
    ...         gene_ids=["GENE_7"],
    ...         params={"method": "bicor"},
    ...     )
    ... except DataQualityError as e:
    ...     print(e)
    [CorrelationEngine] zero variance across all samples; genes: GENE_7; params: method=bicor
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

__all__ = [
    'CoexnetError',
    'DataQualityError',
    'ParameterInvalidError',
    'PipelineCancelledError',
    'NumericDegeneracyWarning',
]

# Long gene lists are truncated in messages; the full list stays on the exception.
_MAX_IDS_IN_MESSAGE = 20


def _format_ids(gene_ids: list[str]) -> str:
    shown = ", ".join(gene_ids[:_MAX_IDS_IN_MESSAGE])
    if len(gene_ids) > _MAX_IDS_IN_MESSAGE:
        shown += f", ... ({len(gene_ids)} total)"
    return shown


class CoexnetError(Exception):
    """
    Base class for all pipeline errors.

    Attributes:
        reason: Short description of what went wrong
        stage: Name of the stage that raised (e.g. "CorrelationEngine")
        gene_ids: Offending gene identifiers (may be empty)
        params: Parameter values in force when the error was raised
    """

    def __init__(
        self,
        reason: str,
        stage: Optional[str] = None,
        gene_ids: Optional[Iterable[Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.reason = reason
        self.stage = stage
        self.gene_ids = [str(g) for g in gene_ids] if gene_ids is not None else []
        self.params = dict(params) if params else {}
        super().__init__(self._render())

    def _render(self) -> str:
        parts = []
        prefix = f"[{self.stage}] " if self.stage else ""
        parts.append(f"{prefix}{self.reason}")
        if self.gene_ids:
            parts.append(f"genes: {_format_ids(self.gene_ids)}")
        if self.params:
            params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
            parts.append(f"params: {params_str}")
        return "; ".join(parts)


class DataQualityError(CoexnetError, ValueError):
    """Input data cannot produce a defined network (NaN, zero variance, ...)."""
    pass


class ParameterInvalidError(CoexnetError, ValueError):
    """A stage parameter is outside its supported domain."""
    pass


class PipelineCancelledError(CoexnetError):
    """A stage stopped early because cancellation was requested."""
    pass


class NumericDegeneracyWarning(UserWarning):
    """Some gene pairs produced non-finite values and were flagged."""
    pass
