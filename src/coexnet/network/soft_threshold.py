"""
Soft-threshold power scan: scale-free topology fit per candidate power.

Biological Context:
    Gene co-expression networks are expected to be approximately scale-free:
    a few hub genes with many strong connections, most genes with few. The
    soft-threshold power trades this off against connectivity: larger powers
    fit the scale-free model better but leave a sparser network.

    For every candidate power p the scan reports:
    - fit_index: R^2 of log10 p(k) ~ log10 k, multiplied by -sign(slope)
      (a positive slope means more highly-connected genes than poorly
      connected ones, the opposite of scale-free, and is penalized)
    - truncated_r_squared: adjusted R^2 when k itself is added as a regressor
      (truncated exponential model)
    - mean / median / max connectivity

    The scan does not pick the power. suggested_power() returns the smallest
    power whose fit_index reaches target_fit; the analyst decides.

Engineering Design:
    - Connectivity is accumulated block-wise: each upper row block of the
      similarity is mapped into [0, 1] once and shared read-only by every
      power; each power raises it independently. Row sums feed the block's
      own genes, column sums of the off-diagonal part feed the genes below,
      so the full G x G adjacency is never materialized.
    - Blocks run on a thread pool; a threading.Event cancels between blocks
      and no partial report is returned.
    - OLS fits use statsmodels.

Examples:
    >>> from coexnet.network.soft_threshold import SoftThresholdSelector
    >>>
    >>> selector = SoftThresholdSelector(powers=[1, 2, 4, 6, 8])
    >>> report = selector.apply(similarity)  # doctest: +SKIP
    >>> report.suggested_power()  # doctest: +SKIP
    6
    >>> report.to_frame()  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import numbers
import threading
from dataclasses import asdict, dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm

from coexnet.core.network import NETWORK_TYPES, SimilarityMatrix
from coexnet.core.stage import Stage
from coexnet.network.adjacency import apply_pair_mask, similarity_to_unit
from coexnet.utils.blocks import block_ranges, run_blocks

logger = logging.getLogger(__name__)

__all__ = [
    'DEFAULT_POWERS',
    'PowerFit',
    'CandidatePowerReport',
    'SoftThresholdSelector',
    'scale_free_fit',
]

DEFAULT_POWERS: tuple[int, ...] = tuple(range(1, 11)) + tuple(range(12, 41, 2))
"""1..10, then even powers 12..40."""


@dataclass(frozen=True)
class PowerFit:
    """Scale-free fit statistics for one candidate power."""
    power: float
    fit_index: float
    slope: float
    r_squared: float
    truncated_r_squared: float
    mean_connectivity: float
    median_connectivity: float
    max_connectivity: float


@dataclass(frozen=True)
class CandidatePowerReport:
    """
    Result of a soft-threshold scan, one PowerFit per power (ascending).

    Attributes:
        fits: Per-power statistics
        target_fit: fit_index threshold used for suggested_power() and the advisory
        network_type: Network type the adjacency was built with
        n_genes: Number of genes in the network
    """
    fits: tuple[PowerFit, ...]
    target_fit: float
    network_type: str
    n_genes: int

    @property
    def powers(self) -> list[float]:
        return [fit.power for fit in self.fits]

    def suggested_power(self) -> Optional[float]:
        """Smallest power with fit_index >= target_fit, or None."""
        for fit in self.fits:
            if np.isfinite(fit.fit_index) and fit.fit_index >= self.target_fit:
                return fit.power
        return None

    @property
    def low_confidence(self) -> bool:
        """True when no scanned power reaches target_fit."""
        return self.suggested_power() is None

    @property
    def advisory(self) -> Optional[str]:
        """Low-confidence advisory message, or None when the target is reached."""
        if not self.low_confidence:
            return None
        finite = [f for f in self.fits if np.isfinite(f.fit_index)]
        if not finite:
            return (
                f"No scanned power produced a defined scale-free fit "
                f"(target {self.target_fit}); the connectivity distribution is degenerate."
            )
        best = max(finite, key=lambda f: f.fit_index)
        return (
            f"No scanned power reached scale-free fit {self.target_fit}; best was "
            f"{best.fit_index:.3f} at power {best.power:g}. Treat any chosen power as "
            "low confidence (consider checking for batch effects or outlier samples)."
        )

    def best_fit(self) -> PowerFit:
        """Fit with the highest fit_index."""
        return max(
            self.fits,
            key=lambda f: f.fit_index if np.isfinite(f.fit_index) else -np.inf,
        )

    def to_frame(self) -> pd.DataFrame:
        """Table keyed by power."""
        frame = pd.DataFrame([asdict(fit) for fit in self.fits])
        return frame.set_index("power")

    def to_dict(self) -> dict:
        return {
            "target_fit": self.target_fit,
            "network_type": self.network_type,
            "n_genes": self.n_genes,
            "suggested_power": self.suggested_power(),
            "low_confidence": self.low_confidence,
            "advisory": self.advisory,
            "fits": [asdict(fit) for fit in self.fits],
        }


def scale_free_fit(k: np.ndarray, n_breaks: int = 10) -> tuple[float, float, float]:
    """
    Scale-free topology fit of a connectivity vector.

    Connectivity is cut into ``n_breaks`` equal-width bins. dk is the mean
    connectivity in each bin (bin midpoint when the bin is empty or its mean
    is 0) and p(dk) the fraction of genes in it. log10(p(dk) + 1e-9) is
    regressed on log10(dk).

    Args:
        k: Per-gene connectivity
        n_breaks: Number of bins

    Returns:
        (r_squared, slope, truncated_r_squared); all NaN when k is constant
    """
    k = np.asarray(k, dtype=np.float64)
    k_min, k_max = float(k.min()), float(k.max())
    if not k_max > k_min:
        return np.nan, np.nan, np.nan

    edges = np.linspace(k_min, k_max, n_breaks + 1)
    bins = np.clip(np.searchsorted(edges, k, side="right") - 1, 0, n_breaks - 1)
    counts = np.bincount(bins, minlength=n_breaks).astype(np.float64)
    sums = np.bincount(bins, weights=k, minlength=n_breaks)
    midpoints = 0.5 * (edges[1:] + edges[:-1])

    with np.errstate(divide='ignore', invalid='ignore'):
        dk = sums / counts
    fill = ~np.isfinite(dk) | (dk == 0)
    dk[fill] = midpoints[fill]

    p_dk = counts / len(k)
    log_dk = np.log10(dk)
    log_p = np.log10(p_dk + 1e-9)

    model = sm.OLS(log_p, sm.add_constant(log_dk, has_constant="add")).fit()
    truncated = sm.OLS(
        log_p, sm.add_constant(np.column_stack([log_dk, dk]), has_constant="add")
    ).fit()

    return float(model.rsquared), float(model.params[1]), float(truncated.rsquared_adj)


def _validate_powers(powers: Sequence[float]) -> Optional[str]:
    if powers is None or len(powers) == 0:
        return "candidate power list is empty"
    for p in powers:
        if isinstance(p, bool) or not isinstance(p, numbers.Real):
            return f"candidate powers must be real numbers, got {p!r}"
        if not np.isfinite(p) or p < 1:
            return f"candidate powers must be >= 1, got {p}"
    return None


class SoftThresholdSelector(Stage):
    """
    SimilarityMatrix -> CandidatePowerReport.

    Args:
        powers: Candidate powers (each >= 1); scanned in ascending order
        network_type: "signed" or "unsigned"
        n_breaks: Connectivity bins for the fit
        target_fit: fit_index considered scale-free, in (0, 1]
        block_size: Genes per row block
        n_workers: Threads
        verbose: Show progress bar

    Raises:
        ParameterInvalidError: On construction, for out-of-domain parameters
    """

    def __init__(
        self,
        powers: Sequence[float] = DEFAULT_POWERS,
        network_type: str = "signed",
        n_breaks: int = 10,
        target_fit: float = 0.9,
        block_size: int = 1000,
        n_workers: int = 1,
        verbose: bool = False,
    ):
        powers = list(powers) if powers is not None else []
        super().__init__(
            name="SoftThresholdSelector",
            params={
                "powers": powers,
                "network_type": network_type,
                "n_breaks": n_breaks,
                "target_fit": target_fit,
                "block_size": block_size,
                "n_workers": n_workers,
            },
        )
        problem = _validate_powers(powers)
        if problem:
            raise self.invalid(problem)
        if network_type not in NETWORK_TYPES:
            raise self.invalid(
                f"unknown network_type {network_type!r}; choose from {NETWORK_TYPES}"
            )
        if n_breaks < 4:
            raise self.invalid("n_breaks must be >= 4")
        if not 0.0 < target_fit <= 1.0:
            raise self.invalid("target_fit must be in (0, 1]")
        if block_size < 1:
            raise self.invalid("block_size must be >= 1")
        if n_workers < 1:
            raise self.invalid("n_workers must be >= 1")

        self.powers = sorted(set(powers))
        self.network_type = network_type
        self.n_breaks = n_breaks
        self.target_fit = target_fit
        self.block_size = block_size
        self.n_workers = n_workers
        self.verbose = verbose

    def connectivity(
        self,
        similarity: SimilarityMatrix,
        cancel_event: Optional[threading.Event] = None,
    ) -> np.ndarray:
        """
        Per-gene connectivity for every power.

        Returns:
            (n_powers, n_genes) array; row i belongs to self.powers[i]
        """
        values = similarity.data
        flagged_pairs = similarity.flagged_pairs
        n_genes = similarity.n_genes
        powers = np.asarray(self.powers, dtype=np.float64)

        def block_contribution(start: int, end: int) -> np.ndarray:
            base = similarity_to_unit(values[start:end, start:], self.network_type)
            np.clip(base, 0.0, 1.0, out=base)
            width = end - start
            base[np.arange(width), np.arange(width)] = 1.0
            apply_pair_mask(base, flagged_pairs, start, start, 0.0)
            base.setflags(write=False)

            contribution = np.zeros((len(powers), n_genes))
            for i, power in enumerate(powers):
                powered = base ** power
                contribution[i, start:end] = powered.sum(axis=1)
                contribution[i, end:] += powered[:, width:].sum(axis=0)
            return contribution

        contributions = run_blocks(
            block_contribution,
            block_ranges(n_genes, self.block_size),
            n_workers=self.n_workers,
            cancel_event=cancel_event,
            stage=self.name,
            desc="Power scan",
            verbose=self.verbose,
        )
        return np.sum(contributions, axis=0) - 1.0

    def apply(
        self,
        similarity: SimilarityMatrix,
        cancel_event: Optional[threading.Event] = None,
    ) -> CandidatePowerReport:
        """
        Scan candidate powers.

        Args:
            similarity: Similarity matrix
            cancel_event: Checked between blocks

        Returns:
            CandidatePowerReport (advisory set when no power reaches target_fit)

        Raises:
            PipelineCancelledError: If cancel_event is set during the scan
        """
        logger.info(
            f"{self.name}: scanning {len(self.powers)} powers "
            f"({self.powers[0]:g}..{self.powers[-1]:g}) on {similarity.n_genes} genes, "
            f"network_type={self.network_type}"
        )
        k_by_power = self.connectivity(similarity, cancel_event=cancel_event)
        self.check_cancelled(cancel_event)

        fits = []
        for power, k in zip(self.powers, k_by_power):
            r_squared, slope, truncated = scale_free_fit(k, self.n_breaks)
            fit = PowerFit(
                power=power,
                fit_index=float(-np.sign(slope) * r_squared),
                slope=slope,
                r_squared=r_squared,
                truncated_r_squared=truncated,
                mean_connectivity=float(np.mean(k)),
                median_connectivity=float(np.median(k)),
                max_connectivity=float(np.max(k)),
            )
            logger.debug(
                f"{self.name}: power={power:g} fit_index={fit.fit_index:.3f} "
                f"slope={slope:.3f} mean_k={fit.mean_connectivity:.2f}"
            )
            fits.append(fit)

        report = CandidatePowerReport(
            fits=tuple(fits),
            target_fit=self.target_fit,
            network_type=self.network_type,
            n_genes=similarity.n_genes,
        )

        if report.low_confidence:
            logger.warning(f"{self.name}: {report.advisory}")
        else:
            logger.info(
                f"{self.name}: smallest power reaching fit {self.target_fit}: "
                f"{report.suggested_power():g}"
            )
        return report
