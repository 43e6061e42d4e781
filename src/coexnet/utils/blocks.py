"""
Block-wise computation of dense symmetric gene x gene matrices.

PROBLEM:
    Similarity, connectivity and topological overlap all cost O(G^2 S) or
    O(G^3) for G genes. A single monolithic matrix product holds several
    G x G temporaries at once and runs on one thread.

SOLUTION:
    Split the rows into blocks of ``block_size`` genes. Each block computes
    only its upper part (rows s:e, columns s:) with matrix products and
    writes a disjoint region of the output, so blocks can run on a
    ThreadPoolExecutor without locking (NumPy's BLAS releases the GIL).
    The lower triangle is mirrored from the upper one afterwards, so the
    result is symmetric bit for bit.

MEMORY:
    - Per block temporaries: block_size x G values
    - Output: G x G, either allocated here or supplied by the caller
      (e.g. np.memmap to keep the matrix on disk)

USAGE:
    >>> import numpy as np
    >>> from coexnet.utils.blocks import fill_symmetric_blocks
    >>>
    >>> z = np.random.default_rng(0).normal(size=(50, 8))
    >>> gram = fill_symmetric_blocks(
    ...     lambda s, e: z[s:e] @ z[s:].T, n=50, block_size=16
    ... )
    >>> bool(np.array_equal(gram, gram.T))
    True
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Optional

import numpy as np
from tqdm import tqdm

from coexnet.core.errors import PipelineCancelledError

logger = logging.getLogger(__name__)

__all__ = ['block_ranges', 'run_blocks', 'fill_symmetric_blocks']


def block_ranges(n: int, block_size: int) -> list[tuple[int, int]]:
    """Half-open ``(start, end)`` row ranges covering ``range(n)``."""
    return [(start, min(start + block_size, n)) for start in range(0, n, block_size)]


def run_blocks(
    func: Callable[[int, int], Any],
    ranges: list[tuple[int, int]],
    n_workers: int = 1,
    cancel_event: Optional[threading.Event] = None,
    stage: Optional[str] = None,
    desc: str = "Blocks",
    verbose: bool = False,
) -> list[Any]:
    """
    Evaluate ``func(start, end)`` for every block and return results in block order.

    Args:
        func: Block function; must only write regions owned by its block
        ranges: Block boundaries from block_ranges()
        n_workers: Threads to use (1 runs sequentially in the calling thread)
        cancel_event: Checked before each block starts
        stage: Stage name for PipelineCancelledError
        desc: Progress bar label
        verbose: Show a tqdm progress bar

    Returns:
        List of block results, ordered like ``ranges``

    Raises:
        PipelineCancelledError: If cancel_event is set before all blocks ran
    """
    def guarded(start: int, end: int) -> Any:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelledError("cancellation requested", stage=stage)
        logger.debug(f"{desc}: block rows {start}:{end}")
        return func(start, end)

    results: list[Any] = [None] * len(ranges)
    progress = tqdm(total=len(ranges), desc=desc, unit="block", disable=not verbose)

    try:
        if n_workers > 1 and len(ranges) > 1:
            with ThreadPoolExecutor(max_workers=min(n_workers, len(ranges))) as executor:
                future_to_index = {
                    executor.submit(guarded, start, end): i
                    for i, (start, end) in enumerate(ranges)
                }
                for future in as_completed(future_to_index):
                    results[future_to_index[future]] = future.result()
                    progress.update(1)
        else:
            for i, (start, end) in enumerate(ranges):
                results[i] = guarded(start, end)
                progress.update(1)
    finally:
        progress.close()

    return results


def fill_symmetric_blocks(
    compute_block: Callable[[int, int], np.ndarray],
    n: int,
    block_size: int = 1000,
    n_workers: int = 1,
    out: Optional[np.ndarray] = None,
    dtype: Any = np.float64,
    cancel_event: Optional[threading.Event] = None,
    stage: Optional[str] = None,
    desc: str = "Blocks",
    verbose: bool = False,
) -> np.ndarray:
    """
    Fill an n x n symmetric matrix from its upper blocks.

    ``compute_block(start, end)`` must return the (end - start) x (n - start)
    slab of rows start:end and columns start:. The square diagonal part of
    each slab is symmetrized as (B + B.T) / 2, then every slab is mirrored
    into the lower triangle.

    Args:
        compute_block: Upper slab function
        n: Matrix size
        block_size: Rows per block
        n_workers: Threads
        out: Optional preallocated n x n array (may be np.memmap)
        dtype: dtype when allocating
        cancel_event: Checked between blocks
        stage: Stage name for errors
        desc: Progress bar label
        verbose: Show progress bar

    Returns:
        The filled matrix (``out`` when given)
    """
    if out is None:
        out = np.empty((n, n), dtype=dtype)
    elif out.shape != (n, n):
        raise ValueError(f"out must have shape ({n}, {n}), got {out.shape}")

    def fill(start: int, end: int) -> None:
        slab = np.asarray(compute_block(start, end))
        width = end - start
        diag = slab[:, :width]
        out[start:end, start:end] = (diag + diag.T) / 2.0
        out[start:end, end:] = slab[:, width:]

    ranges = block_ranges(n, block_size)
    run_blocks(
        fill, ranges, n_workers=n_workers, cancel_event=cancel_event,
        stage=stage, desc=desc, verbose=verbose,
    )

    # Mirror after every upper slab is written
    for start, end in ranges:
        out[end:, start:end] = out[start:end, end:].T

    return out
