"""Statistical utilities for celltype_tree.

Provides scale transforms, ranking and correlation helpers shared by the
flat classifier, the taxonomy builder and the hierarchical classifier.
All functions are pure and operate on one query vector at a time so that
results never depend on which other cells are processed alongside.
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy.stats import rankdata

ArrayLike = Union[np.ndarray, list]


def apply_scale(values: ArrayLike, scale: str) -> np.ndarray:
    """Put expression values on the numeric scale used for profiles.

    Parameters
    ----------
    values : ArrayLike
        Raw non-negative expression values. NaN is preserved.
    scale : str
        "log1p" or "identity".

    Returns
    -------
    np.ndarray
        Transformed values as float array.
    """
    arr = np.asarray(values, dtype=float)
    if scale == "log1p":
        return np.log1p(arr)
    if scale == "identity":
        return arr.copy()
    raise ValueError(f"Unknown scale '{scale}'")


def invert_scale(values: ArrayLike, scale: str) -> np.ndarray:
    """Map profile-scale values back to raw expression.

    ``apply_scale(invert_scale(p, scale), scale)`` reproduces ``p`` up to
    floating point, so a profile (or an average of profiles) can be fed to a
    classifier as a query cell.
    """
    arr = np.asarray(values, dtype=float)
    if scale == "log1p":
        return np.maximum(np.expm1(arr), 0.0)
    if scale == "identity":
        return arr.copy()
    raise ValueError(f"Unknown scale '{scale}'")


def _prepare(values: np.ndarray, method: str, axis: int = 0) -> np.ndarray:
    if method == "spearman":
        return rankdata(values, axis=axis)
    if method == "pearson":
        return np.asarray(values, dtype=float)
    raise ValueError(f"Unknown correlation method '{method}'")


def correlate(x: ArrayLike, y: ArrayLike, method: str = "pearson") -> float:
    """Correlation between two equally long finite vectors.

    Returns NaN when fewer than two values are given or either vector is
    constant.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError(f"Shape mismatch: {x.shape} vs {y.shape}")
    if x.size < 2:
        return float("nan")

    xr = _prepare(x, method)
    yr = _prepare(y, method)
    xc = xr - xr.mean()
    yc = yr - yr.mean()
    denom = np.sqrt(np.sum(xc * xc) * np.sum(yc * yc))
    if denom == 0:
        return float("nan")
    return float(np.clip(np.sum(xc * yc) / denom, -1.0, 1.0))


def correlate_columns(x: ArrayLike, matrix: np.ndarray, method: str = "pearson") -> np.ndarray:
    """Correlation of vector x with every column of matrix.

    Parameters
    ----------
    x : ArrayLike
        Query vector of length n.
    matrix : np.ndarray
        Reference values of shape (n, m).
    method : str
        "pearson" or "spearman".

    Returns
    -------
    np.ndarray
        Array of m correlations; NaN where undefined.
    """
    x = np.asarray(x, dtype=float)
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != x.size:
        raise ValueError(f"Shape mismatch: {x.shape} vs {matrix.shape}")
    n_cols = matrix.shape[1]
    if x.size < 2 or n_cols == 0:
        return np.full(n_cols, np.nan)

    xr = _prepare(x, method)
    mr = _prepare(matrix, method, axis=0)
    xc = xr - xr.mean()
    mc = mr - mr.mean(axis=0)
    denom = np.sqrt(np.sum(xc * xc) * np.sum(mc * mc, axis=0))
    num = np.sum(xc[:, None] * mc, axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = np.where(denom > 0, num / np.where(denom > 0, denom, 1.0), np.nan)
    return np.clip(corr, -1.0, 1.0)


def correlation_matrix(matrix: np.ndarray, method: str = "pearson") -> np.ndarray:
    """Pairwise correlation between the columns of matrix.

    Undefined correlations (constant columns) are reported as 0, and the
    diagonal is fixed to 1.
    """
    matrix = np.asarray(matrix, dtype=float)
    n_cols = matrix.shape[1]
    prepared = _prepare(matrix, method, axis=0)
    centered = prepared - prepared.mean(axis=0)
    norms = np.sqrt(np.sum(centered * centered, axis=0))
    result = np.zeros((n_cols, n_cols), dtype=float)
    for i in range(n_cols):
        for j in range(i, n_cols):
            if i == j:
                value = 1.0
            elif norms[i] == 0 or norms[j] == 0:
                value = 0.0
            else:
                value = float(np.sum(centered[:, i] * centered[:, j]) / (norms[i] * norms[j]))
                value = float(np.clip(value, -1.0, 1.0))
            result[i, j] = value
            result[j, i] = value
    return result


def best_index(scores: np.ndarray) -> int:
    """Index of the maximal finite score; the first one wins ties.

    Returns -1 when no score is finite.
    """
    scores = np.asarray(scores, dtype=float)
    finite = np.isfinite(scores)
    if not finite.any():
        return -1
    masked = np.where(finite, scores, -np.inf)
    return int(np.argmax(masked))
