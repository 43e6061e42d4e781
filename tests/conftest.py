"""
Pytest configuration and shared fixtures.

This module provides synthetic expression generators and shared fixtures for
all test suites.
"""

import numpy as np
import pandas as pd
import pytest

from coexnet.core.expression import ExpressionMatrix


def generate_planted_modules(
    n_modules: int = 3,
    module_size: int = 20,
    n_background: int = 10,
    n_samples: int = 40,
    noise: float = 0.4,
    seed: int = 42,
) -> ExpressionMatrix:
    """
    Generate an expression matrix with planted co-expression modules.

    Args:
        n_modules: Number of modules
        module_size: Genes per module
        n_background: Independent genes belonging to no module
        n_samples: Number of samples
        noise: Standard deviation of per-gene noise around the module pattern
        seed: Random seed for reproducibility

    Returns:
        ExpressionMatrix; gene ids are M<module>_G<index> for module genes and
        BG_<index> for background genes

    Design:
        - One shared N(0, 1) pattern per module
        - Gene = offset + scale * (pattern + noise), so within-module
          correlation is about 1 / (1 + noise^2)
        - Background genes are pure noise
    """
    rng = np.random.default_rng(seed)
    rows = []
    gene_ids = []
    for module in range(n_modules):
        pattern = rng.normal(size=n_samples)
        for gene in range(module_size):
            offset = rng.uniform(4.0, 10.0)
            scale = rng.uniform(0.5, 2.0)
            rows.append(offset + scale * (pattern + noise * rng.normal(size=n_samples)))
            gene_ids.append(f"M{module}_G{gene:02d}")
    for gene in range(n_background):
        rows.append(rng.uniform(4.0, 10.0) + rng.normal(size=n_samples))
        gene_ids.append(f"BG_{gene:02d}")

    return ExpressionMatrix(
        data=np.vstack(rows),
        gene_ids=pd.Index(gene_ids),
        sample_ids=pd.Index([f"S{i:03d}" for i in range(n_samples)]),
    )


def generate_two_pair_matrix() -> ExpressionMatrix:
    """
    Four genes forming two perfectly correlated pairs, uncorrelated across pairs.

    G2 is an affine copy of G1 and G4 of G3; G1 and G3 are orthogonal
    +/-1 patterns over eight samples.
    """
    g1 = np.array([1, 1, -1, -1, 1, 1, -1, -1], dtype=float)
    g3 = np.array([1, -1, 1, -1, 1, -1, 1, -1], dtype=float)
    data = np.vstack([g1, 2 * g1 + 3, g3, 3 * g3 - 1])
    return ExpressionMatrix(
        data=data,
        gene_ids=pd.Index(["G1", "G2", "G3", "G4"]),
        sample_ids=pd.Index([f"S{i}" for i in range(8)]),
    )


def generate_nested_dissimilarity() -> tuple[np.ndarray, pd.Index]:
    """
    40 genes in a two-level hierarchy: 2 superclusters x 2 subclusters x 10 genes.

    Dissimilarity is 0.1 within a subcluster, 0.3 between sibling
    subclusters and 0.9 between superclusters.
    """
    n = 40
    sub = np.arange(n) // 10
    sup = np.arange(n) // 20
    d = np.full((n, n), 0.9)
    d[sup[:, None] == sup[None, :]] = 0.3
    d[sub[:, None] == sub[None, :]] = 0.1
    np.fill_diagonal(d, 0.0)
    return d, pd.Index([f"N{i:02d}" for i in range(n)])


@pytest.fixture
def planted_matrix():
    """Three planted modules of 20 genes plus 10 background genes, 40 samples."""
    return generate_planted_modules()


@pytest.fixture
def small_matrix():
    """Small matrix for fast stage tests (2 modules x 8 genes + 4 background)."""
    return generate_planted_modules(n_modules=2, module_size=8, n_background=4,
                                    n_samples=24, seed=7)


@pytest.fixture
def two_pair_matrix():
    return generate_two_pair_matrix()


@pytest.fixture
def nested_dissimilarity():
    return generate_nested_dissimilarity()


@pytest.fixture
def expression_csv(tmp_path, small_matrix):
    """small_matrix written as a comma-separated table."""
    path = tmp_path / "expression.csv"
    small_matrix.to_frame().to_csv(path)
    return path
