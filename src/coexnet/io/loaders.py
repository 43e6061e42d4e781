"""
Loaders for clean, numeric expression tables and sample trait tables.

Ingestion, filtering and normalization happen upstream; these loaders only
turn an already-clean delimited table into an ExpressionMatrix so the
command line can feed the network core.

Expected Format:
    - First column: gene identifiers (header may be empty)
    - Header row: sample identifiers
    - Remaining cells: numeric expression values

    ```
    gene_id,S1,S2,S3,S4
    GENE_A,5.21,6.02,5.87,4.99
    GENE_B,7.10,7.33,6.95,7.41
    ```

Engineering Design:
    - Delimiter sniffed from the first bytes of the file (csv.Sniffer with a
      first-line count fallback) unless given explicitly
    - Non-numeric cells rejected with up to five examples naming row/column
    - NaN and Inf are kept: the stage quality check reports them with the
      offending gene ids, which is more useful than failing at load time
    - Duplicate gene ids are left for ExpressionMatrix to reject

Examples:
    >>> from pathlib import Path
    >>> from coexnet.io.loaders import load_expression_matrix, load_sample_traits
    >>>
    >>> matrix = load_expression_matrix(Path("expression.tsv"))  # doctest: +SKIP
    >>> traits = load_sample_traits(Path("traits.csv"), matrix.sample_ids)  # doctest: +SKIP
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from coexnet.core.expression import ExpressionMatrix

logger = logging.getLogger(__name__)

__all__ = ['load_expression_matrix', 'load_sample_traits', 'sniff_delimiter']

_MAX_EXAMPLES = 5


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Auto-detect the delimiter of a text table.

    Args:
        path: Path to data file
        sample_size: Bytes to sample for detection

    Returns:
        Detected delimiter ('\\t', ',', ';' or '|')

    Raises:
        ValueError: If no delimiter can be determined
    """
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = f.read(sample_size)

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,;|')
        return dialect.delimiter
    except csv.Error:
        pass

    first_line = sample.split('\n')[0]
    counts = {delim: first_line.count(delim) for delim in ('\t', ',', ';', '|')}
    if max(counts.values()) == 0:
        raise ValueError(
            f"Could not detect delimiter in {path}. Pass delimiter explicitly."
        )
    return max(counts, key=counts.get)


def _read_table(path: Path, delimiter: Optional[str]) -> pd.DataFrame:
    if not isinstance(path, Path):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    if delimiter is None:
        delimiter = sniff_delimiter(path)
        logger.debug(f"Sniffed delimiter {delimiter!r} for {path}")

    try:
        frame = pd.read_csv(path, sep=delimiter, index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"File is empty: {path}") from e
    except pd.errors.ParserError as e:
        raise ValueError(f"Failed to parse {path}: {e}") from e

    frame.index = frame.index.astype(str)
    frame.columns = frame.columns.astype(str)
    return frame


def _non_numeric_examples(frame: pd.DataFrame) -> list[str]:
    """Up to _MAX_EXAMPLES cells that do not parse as numbers."""
    coerced = frame.apply(pd.to_numeric, errors='coerce')
    bad = coerced.isna() & frame.notna()
    rows, cols = np.nonzero(bad.to_numpy())
    return [
        f"row {i} ('{frame.index[i]}'), col {j} ('{frame.columns[j]}'): {frame.iat[i, j]!r}"
        for i, j in zip(rows[:_MAX_EXAMPLES], cols[:_MAX_EXAMPLES])
    ]


def load_expression_matrix(
    path: Path,
    delimiter: Optional[str] = None,
) -> ExpressionMatrix:
    """
    Load a genes x samples expression table.

    Args:
        path: Path to CSV/TSV file
        delimiter: Field separator; sniffed from the file when None

    Returns:
        ExpressionMatrix with gene ids from the first column and sample ids
        from the header

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the table is empty or holds non-numeric cells
        DataQualityError: If gene or sample ids are duplicated
    """
    path = Path(path)
    frame = _read_table(path, delimiter)

    if frame.shape[0] == 0:
        raise ValueError(f"Table contains no genes (rows): {path}")
    if frame.shape[1] == 0:
        raise ValueError(f"Table contains no samples (columns): {path}")

    try:
        data = frame.to_numpy(dtype=np.float64)
    except (ValueError, TypeError) as e:
        examples = _non_numeric_examples(frame)
        raise ValueError(
            "Table contains non-numeric values:\n"
            + "\n".join(f"  - {x}" for x in examples)
            + ("\n  ..." if len(examples) >= _MAX_EXAMPLES else "")
        ) from e

    n_missing = int(np.isnan(data).sum())
    if n_missing:
        logger.warning(
            f"{path}: {n_missing:,} missing values "
            f"({100 * n_missing / data.size:.2f}% of cells); "
            "impute or filter before network construction"
        )

    matrix = ExpressionMatrix(data=data, gene_ids=frame.index, sample_ids=frame.columns)
    logger.info(f"Loaded {matrix.n_genes} genes x {matrix.n_samples} samples from {path}")
    return matrix


def load_sample_traits(
    path: Path,
    sample_ids: pd.Index | Sequence[str],
    delimiter: Optional[str] = None,
) -> pd.DataFrame:
    """
    Load a sample trait table and align it to ``sample_ids``.

    The first column holds sample ids; every other column is a trait.
    Traits are only carried alongside the expression matrix.

    Args:
        path: Path to CSV/TSV file
        sample_ids: Samples of the expression matrix, in matrix order
        delimiter: Field separator; sniffed from the file when None

    Returns:
        DataFrame indexed exactly by sample_ids

    Raises:
        ValueError: If any expression sample is missing from the trait table
    """
    path = Path(path)
    traits = _read_table(path, delimiter)
    sample_ids = pd.Index(sample_ids).astype(str)

    if traits.index.has_duplicates:
        duplicated = traits.index[traits.index.duplicated()].unique().tolist()
        raise ValueError(f"Duplicated sample ids in {path}: {duplicated[:10]}")

    missing = sample_ids.difference(traits.index)
    if len(missing):
        raise ValueError(
            f"{len(missing)} samples have no trait row in {path}: "
            f"{missing[:10].tolist()}"
        )

    extra = traits.index.difference(sample_ids)
    if len(extra):
        logger.info(f"Ignoring {len(extra)} trait rows with no matching sample")

    return traits.loc[sample_ids]
