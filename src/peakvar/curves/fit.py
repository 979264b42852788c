"""
PeakVar Curves: mean-variance curve fitting.

Pools the (mean, variance) pairs of all replicated conditions and fits an
unscaled curve of log variance against mean signal, then estimates the
prior degrees of freedom and the variance ratio of each condition. All
conditions of one call end up referencing the same curve instance.

Fit methods:
    parametric: log v = log(c0 + c1 * 2^-mean). For log2 read counts the
        Poisson component of the variance decays like 2^-mean and c0 is the
        biological variance floor.
    local: LOWESS of log variance on mean; no global form, constant
        extrapolation beyond the observed means.
"""

import logging
import numpy as np
from scipy import optimize
from statsmodels.nonparametric.smoothers_lowess import lowess
from typing import Optional, List, Sequence, Tuple, Union, Dict, Any

from ..config import get_config
from ..errors import FitConvergenceError, InsufficientDataError
from ..condition.condition import Condition, check_same_intervals
from .model import MeanVarianceCurve, FitMethod
from .prior import (
    interval_mask,
    log_chisq_bias,
    estimate_prior_params,
    apply_prior_params,
    default_no_rep_ratio,
    shared_curve,
)

logger = logging.getLogger(__name__)


def pool_mean_var(
    conditions: Sequence[Condition],
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pool (mean, bias-corrected log variance) observations of replicated conditions.

    The log sample variance of a condition with d = m - 1 degrees of freedom
    is biased by digamma(d/2) - log(d/2); the bias is removed so conditions
    with different replicate numbers are comparable.
    """
    means, log_vars = [], []
    for cond in conditions:
        if not cond.has_replicates:
            continue
        mask = interval_mask(cond, occupy_only, subset)
        with np.errstate(invalid="ignore"):
            mask &= np.isfinite(cond.var) & (cond.var > 0)
        means.append(cond.mean[mask])
        log_vars.append(np.log(cond.var[mask]) - log_chisq_bias(cond.df))

    if not means:
        return np.empty(0), np.empty(0)
    return np.concatenate(means), np.concatenate(log_vars)


def _parametric_model(mean, c0, c1):
    return np.log(c0 + c1 * np.exp2(-mean))


def _fit_parametric(
    x: np.ndarray,
    log_var: np.ndarray,
    init_coef: Optional[Sequence[float]] = None,
) -> Tuple[Dict[str, Any], float]:
    if len(x) < 2:
        raise InsufficientDataError(f"parametric fit needs at least 2 observations, got {len(x)}")

    if init_coef is None:
        v = np.exp(log_var)
        init_coef = (
            max(float(np.median(v)) / 2, 1e-8),
            max(float(np.median(v * np.exp2(x))) / 2, 1e-8),
        )
    init_coef = [float(c) for c in init_coef]
    if len(init_coef) != 2:
        raise ValueError(f"init_coef must hold two coefficients (c0, c1), got {init_coef}")

    try:
        popt, _ = optimize.curve_fit(
            _parametric_model,
            x,
            log_var,
            p0=init_coef,
            bounds=([1e-12, 0.0], [np.inf, np.inf]),
            maxfev=10000,
        )
    except (RuntimeError, ValueError) as e:
        raise FitConvergenceError(
            f"parametric curve fit failed from initial coefficients {init_coef}: {e}"
        ) from e

    if not np.all(np.isfinite(popt)):
        raise FitConvergenceError(f"parametric curve fit produced non-finite coefficients {popt}")

    rss = float(np.sum((log_var - _parametric_model(x, *popt)) ** 2))
    logger.debug(f"Parametric fit: c0={popt[0]:.4g} c1={popt[1]:.4g} rss={rss:.4g}")
    return {"c0": float(popt[0]), "c1": float(popt[1])}, rss


def _fit_local(
    x: np.ndarray,
    log_var: np.ndarray,
    span: Optional[float] = None,
) -> Tuple[Dict[str, Any], float]:
    cfg = get_config()
    span = cfg.local_span if span is None else span
    if not 0 < span <= 1:
        raise ValueError(f"span must lie in (0, 1], got {span}")
    if len(x) < 3:
        raise InsufficientDataError(f"local fit needs at least 3 observations, got {len(x)}")

    fitted = lowess(log_var, x, frac=span, it=cfg.lowess_iterations, return_sorted=True)
    ok = np.all(np.isfinite(fitted), axis=1)
    if not ok.any():
        raise FitConvergenceError("local regression produced no finite fitted values")
    grid_x, inverse = np.unique(fitted[ok, 0], return_inverse=True)
    grid_y = np.bincount(inverse, weights=fitted[ok, 1]) / np.bincount(inverse)

    params = {"x": grid_x, "log_var": grid_y, "span": span}
    rss = float(np.sum((log_var - np.interp(x, grid_x, grid_y)) ** 2))
    logger.debug(f"Local fit: span={span:.3g} grid={len(grid_x)} rss={rss:.4g}")
    return params, rss


def fit_mean_var_curve(
    conditions: Sequence[Condition],
    method: Union[str, FitMethod] = "parametric",
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    init_coef: Optional[Sequence[float]] = None,
    span: Optional[float] = None,
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
    no_rep_ratio: Optional[float] = None,
) -> List[Condition]:
    """
    Fit a mean-variance curve jointly to a set of conditions.

    Args:
        conditions: Normalized conditions aligned to the same intervals.
            Unreplicated conditions contribute no observations but are
            associated with the resulting curve.
        method: "parametric" or "local".
        occupy_only: Use only intervals occupied by each condition.
        subset: Optional additional interval mask.
        init_coef: Initial (c0, c1) for the parametric fit.
        span: Smoothing span for the local fit.
        robust: Estimate d0 and variance ratios robustly.
        tail_p: Winsorization tails for the robust estimators.
        no_rep_ratio: Variance ratio for unreplicated conditions.

    Returns:
        New conditions sharing one MeanVarianceCurve, each with its own
        variance ratio.

    Raises:
        InsufficientDataError: No replicated condition provides observations.
        FitConvergenceError: The parametric fit failed; retry with init_coef.

    Example:
        >>> fitted = fit_mean_var_curve([cond_a, cond_b], method="parametric")
        >>> print(fitted[0].curve.prior_df, fitted[0].var_ratio)
    """
    check_same_intervals(conditions)
    method = FitMethod.parse(method)

    x, log_var = pool_mean_var(conditions, occupy_only, subset)
    if len(x) == 0:
        raise InsufficientDataError("no replicated condition provides variance observations")

    logger.info(f"Fitting {method.value} mean-variance curve to {len(x)} observations")

    if method == FitMethod.PARAMETRIC:
        params, rss = _fit_parametric(x, log_var, init_coef)
    else:
        params, rss = _fit_local(x, log_var, span)

    curve = MeanVarianceCurve(
        method=method,
        params=params,
        diagnostics={
            "n_obs": int(len(x)),
            "rss": rss,
            "occupy_only": occupy_only,
        },
    )

    prior = estimate_prior_params(conditions, curve, occupy_only, subset, robust, tail_p)
    return apply_prior_params(conditions, curve, prior, no_rep_ratio)


def extend_mean_var_curve(
    conditions: Sequence[Condition],
    reference: Union[Condition, Sequence[Condition], MeanVarianceCurve],
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
    no_rep_ratio: Optional[float] = None,
) -> List[Condition]:
    """
    Associate an already fitted curve with further conditions.

    The curve (and its ID and d0) is reused unchanged; only the variance
    ratios of the new conditions are estimated.
    """
    if isinstance(reference, MeanVarianceCurve):
        curve = reference
    elif isinstance(reference, Condition):
        curve = shared_curve([reference])
    else:
        curve = shared_curve(list(reference))

    if np.isnan(curve.prior_df):
        raise InsufficientDataError("reference curve has no estimated prior degrees of freedom")

    prior = estimate_prior_params(
        conditions, curve, occupy_only, subset, robust, tail_p, prior_df=curve.prior_df
    )
    if no_rep_ratio is None:
        no_rep_ratio = default_no_rep_ratio(prior.var_ratios)

    return [
        cond.with_curve(curve, no_rep_ratio if ratio is None else ratio)
        for cond, ratio in zip(conditions, prior.var_ratios)
    ]
