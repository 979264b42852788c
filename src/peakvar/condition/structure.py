"""
PeakVar Condition: structure matrices.

A structure matrix describes, for one interval, the relative variances and
correlations of the samples of a condition. The signal vector x of an
interval is modelled as having covariance sigma^2 * S. Structure matrices
for all intervals are stored as a single (n_intervals, m, m) array;
``None`` stands for the identity everywhere, which is by far the common
case and is handled without any matrix algebra.
"""

import numpy as np
from typing import Optional, Tuple

from ..errors import DimensionMismatchError


def identity_structure(n_intervals: int, n_samples: int) -> np.ndarray:
    """Identity structure matrices for every interval."""
    return np.broadcast_to(np.eye(n_samples), (n_intervals, n_samples, n_samples)).copy()


def structure_from_weights(weights: np.ndarray) -> np.ndarray:
    """
    Build diagonal structure matrices from sample weights.

    Args:
        weights: (n_intervals, n_samples) array of positive weights. A
            sample with weight w at an interval gets relative variance 1/w.

    Returns:
        (n_intervals, n_samples, n_samples) array of diagonal matrices.
    """
    weights = np.asarray(weights, dtype=float)
    if weights.ndim == 1:
        weights = weights.reshape(1, -1)
    if weights.ndim != 2:
        raise ValueError(f"weights must be 2D, got {weights.ndim}D")
    if not np.all(np.isfinite(weights)) or np.any(weights <= 0):
        raise ValueError("weights must be finite and positive")

    n, m = weights.shape
    structure = np.zeros((n, m, m))
    idx = np.arange(m)
    structure[:, idx, idx] = 1.0 / weights
    return structure


def validate_structure(
    structure: Optional[np.ndarray],
    n_intervals: int,
    n_samples: int,
) -> Optional[np.ndarray]:
    """Check shape and symmetry of structure matrices; returns them as float array."""
    if structure is None:
        return None

    structure = np.asarray(structure, dtype=float)
    if structure.ndim == 2:
        # One matrix shared by all intervals
        structure = np.broadcast_to(structure, (n_intervals,) + structure.shape).copy()

    if structure.shape != (n_intervals, n_samples, n_samples):
        raise DimensionMismatchError(
            f"structure matrices must have shape ({n_intervals}, {n_samples}, {n_samples}), "
            f"got {structure.shape}"
        )
    if not np.allclose(structure, np.swapaxes(structure, 1, 2)):
        raise ValueError("structure matrices must be symmetric")

    return structure


def weighted_mean_var(
    values: np.ndarray,
    structure: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Per-interval weighted mean and variance of a condition's samples.

    With structure matrices S_i:

        mean_i  = 1' S_i^-1 x_i / 1' S_i^-1 1
        var_i   = (x_i - mean_i)' S_i^-1 (x_i - mean_i) / (m - 1)
        scale_i = 1 / 1' S_i^-1 1

    where ``scale_i * sigma^2`` is the variance of the weighted mean. With
    identity matrices these reduce to the ordinary sample mean, the unbiased
    sample variance and 1/m.

    Args:
        values: (n_intervals, m) signal matrix.
        structure: Optional (n_intervals, m, m) structure matrices.

    Returns:
        (mean, var, scale); var is NaN everywhere when m < 2.
    """
    values = np.asarray(values, dtype=float)
    n, m = values.shape

    if structure is None:
        mean = values.mean(axis=1)
        scale = np.full(n, 1.0 / m)
        if m < 2:
            var = np.full(n, np.nan)
        else:
            var = values.var(axis=1, ddof=1)
        return mean, var, scale

    inv = np.linalg.inv(structure)
    w = inv.sum(axis=2)
    total = w.sum(axis=1)
    mean = np.einsum("ni,ni->n", w, values) / total
    scale = 1.0 / total

    if m < 2:
        var = np.full(n, np.nan)
    else:
        resid = values - mean[:, None]
        var = np.einsum("ni,nij,nj->n", resid, inv, resid) / (m - 1)

    return mean, var, scale
