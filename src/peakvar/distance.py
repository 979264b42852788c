"""
PeakVar: weighted distances between samples of a condition.

    d(x, y) = ( sum_i w_i |y_i - x_i|^p / sum_i w_i )^(1/p)

with w_i the reciprocal of the variance expected at interval i, so that
intervals with intrinsically noisy signal count less. The resulting matrix
is meant for external clustering routines.
"""

import logging
import numpy as np
import pandas as pd
from typing import Optional

from .errors import MissingCurveError
from .condition.condition import Condition
from .curves.prior import interval_mask

logger = logging.getLogger(__name__)

WEIGHT_METHODS = ("prior", "posterior", "none")


def weighted_distance(
    x: np.ndarray,
    y: np.ndarray,
    weights: Optional[np.ndarray] = None,
    p: float = 2.0,
) -> float:
    """Weighted p-norm distance; unit weights if none are given."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError(f"x and y must have the same shape, got {x.shape} and {y.shape}")
    if p <= 0:
        raise ValueError(f"p must be positive, got {p}")
    if weights is None:
        weights = np.ones(len(x))
    weights = np.asarray(weights, dtype=float)
    if len(x) == 0 or weights.sum() <= 0:
        raise ValueError("distance needs at least one interval with positive weight")
    return float((np.sum(weights * np.abs(y - x) ** p) / np.sum(weights)) ** (1.0 / p))


def _interval_variances(condition: Condition, method: str) -> np.ndarray:
    if method == "none":
        return np.ones(condition.n_intervals)
    if condition.curve is None:
        raise MissingCurveError(
            f"'{method}' weights need a mean-variance curve on condition '{condition.name}'"
        )

    prior = condition.prior_var()
    if method == "prior" or not condition.has_replicates:
        return prior

    prior_df = condition.curve.prior_df
    if np.isinf(prior_df):
        return prior
    d = condition.df
    return (prior_df * prior + d * condition.var) / (prior_df + d)


def distance_matrix(
    condition: Condition,
    subset: Optional[np.ndarray] = None,
    method: str = "prior",
    p: float = 2.0,
    min_var: float = 0.0,
) -> pd.DataFrame:
    """
    Pairwise weighted distances between the samples of a condition.

    Args:
        condition: Condition whose samples are compared.
        subset: Optional interval mask (e.g. hypervariable intervals only).
        method: "prior" (reciprocal scaled prior variances), "posterior"
            (reciprocal moderated variances) or "none" (unit weights).
        p: Order of the norm.
        min_var: Floor applied to the variances before inversion.

    Returns:
        Symmetric DataFrame labelled by sample names, zero diagonal.
    """
    if method not in WEIGHT_METHODS:
        raise ValueError(f"Unknown weight method: {method}. Use one of {WEIGHT_METHODS}.")

    mask = interval_mask(condition, occupy_only=False, subset=subset)
    variances = np.maximum(_interval_variances(condition, method), min_var)[mask]
    if np.any(variances <= 0):
        raise ValueError("interval variances must be positive; set min_var to floor them")
    weights = 1.0 / variances
    values = condition.values[mask]

    m = condition.n_samples
    dist = np.zeros((m, m))
    for i in range(m):
        for j in range(i + 1, m):
            dist[i, j] = dist[j, i] = weighted_distance(values[:, i], values[:, j], weights, p)

    logger.debug(f"Distance matrix for '{condition.name}' over {int(mask.sum())} intervals")
    return pd.DataFrame(dist, index=condition.sample_names, columns=condition.sample_names)
