"""
CSV writers for network results.

Engineering Design:
    - One table per result so each file opens cleanly in R/Excel/pandas
    - Parent directories are created; existing files are overwritten
    - Gene ids are written as strings (no numeric coercion on reload)
    - Each writer returns the path(s) it wrote

Output Files (as written by the command line):
    power_report.csv        one row per candidate power
    module_assignments.csv  genes x deep_split labels (0 = unassigned)
    module_sizes.csv        deep_split, module, size
    dendrogram.csv          merge table in SciPy linkage layout
    dendrogram_leaves.csv   leaf plotting order with gene ids

Examples:
    >>> from pathlib import Path
    >>> from coexnet.io.writers import write_module_assignments
    >>>
    >>> write_module_assignments(result, Path("results/module_assignments.csv"))  # doctest: +SKIP
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from coexnet.clustering.hierarchy import Dendrogram
from coexnet.network.soft_threshold import CandidatePowerReport
from coexnet.pipeline import NetworkResult

logger = logging.getLogger(__name__)

__all__ = [
    'write_power_report',
    'write_module_assignments',
    'write_module_sizes',
    'write_dendrogram',
]


def _prepare(path: Path) -> Path:
    path = Path(path)
    if path.parent != Path('.') and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _write(frame: pd.DataFrame, path: Path, index: bool = True) -> Path:
    path = _prepare(path)
    try:
        frame.to_csv(path, index=index)
    except OSError as e:
        raise OSError(f"Failed to write {path}: {e}") from e
    logger.info(f"Wrote {path}")
    return path


def write_power_report(report: CandidatePowerReport, path: Path) -> Path:
    """
    Write the soft-threshold scan, one row per power.

    Columns: power, fit_index, slope, r_squared, truncated_r_squared,
    mean_connectivity, median_connectivity, max_connectivity.
    """
    if not isinstance(report, CandidatePowerReport):
        raise TypeError(f"report must be CandidatePowerReport, got {type(report)}")
    return _write(report.to_frame(), path)


def write_module_assignments(result: NetworkResult, path: Path) -> Path:
    """Write the genes x deep_split label table (index column gene_id)."""
    if not result.assignments:
        raise ValueError("NetworkResult has no module assignments to write")
    return _write(result.assignment_frame(), path)


def write_module_sizes(result: NetworkResult, path: Path) -> Path:
    """Write module sizes per deep_split (module 0 = unassigned genes)."""
    if not result.assignments:
        raise ValueError("NetworkResult has no module assignments to write")
    return _write(result.module_sizes_frame(), path, index=False)


def write_dendrogram(dendrogram: Dendrogram, path: Path) -> tuple[Path, Path]:
    """
    Write the merge table and the leaf order beside it.

    Args:
        dendrogram: Tree to export
        path: Merge table path; the leaf order goes to ``<stem>_leaves.csv``

    Returns:
        (merge table path, leaf order path)
    """
    path = Path(path)
    merges = dendrogram.to_frame()
    merges.index.name = "merge"
    merge_path = _write(merges, path)

    order = dendrogram.leaf_order()
    leaves = pd.DataFrame({
        "position": range(len(order)),
        "leaf": order,
        "gene_id": dendrogram.gene_ids[order].astype(str),
    })
    leaves_path = _write(leaves, path.with_name(f"{path.stem}_leaves.csv"), index=False)
    return merge_path, leaves_path
