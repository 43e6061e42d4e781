"""
Base class for pipeline stages.

Every stage of network construction is a pure function object: it is
configured once (parameters validated immediately, before any matrix is
touched), then applied to an input it does not own and returns a new output.

Engineering Design:
    Pure Functions:
        - No side effects (inputs are read-only arrays)
        - Deterministic (same input + params -> same output)
        - Composable (CoexpressionPipeline chains stages)

    Auditable:
        - name + params recorded on the instance and logged on apply
        - params attached to every error a stage raises

Examples:
    >>> from coexnet.core.stage import Stage
    >>>
    >>> class Identity(Stage):
    ...     def __init__(self):
    ...         super().__init__(name="Identity", params={})
    ...
    ...     def apply(self, matrix):
    ...         return matrix
    >>>
    >>> Identity()
    Identity()
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from coexnet.core.errors import ParameterInvalidError, PipelineCancelledError

__all__ = ['Stage']


class Stage(ABC):
    """
    Abstract base class for network construction stages.

    Attributes:
        name: Stage name used in logs and error messages
        params: Parameters in force (JSON-serializable)
        timestamp: When this stage instance was created
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, *inputs: Any, **kwargs: Any) -> Any:
        """
        Run the stage and return a new output.

        Must never modify its inputs.
        """
        pass

    def invalid(self, reason: str) -> ParameterInvalidError:
        """ParameterInvalidError naming this stage and its parameters."""
        return ParameterInvalidError(reason, stage=self.name, params=self.params)

    def check_cancelled(self, cancel_event: Optional[threading.Event]) -> None:
        """Raise PipelineCancelledError if ``cancel_event`` is set."""
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelledError(
                "cancellation requested", stage=self.name, params=self.params
            )

    def __repr__(self) -> str:
        params_str = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
