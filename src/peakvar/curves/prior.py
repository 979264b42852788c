"""
PeakVar Curves: prior degrees of freedom and variance ratios.

Model: for an interval of condition j with m_j samples and d_j = m_j - 1,

    var / (gamma_j * f0(mean))  ~  F(d_j, d0)

so the FZ statistic log(var / f0(mean)) is log(gamma_j) plus a log-F
variable whose mean and variance are

    E   = [digamma(d_j/2) - log(d_j/2)] - [digamma(d0/2) - log(d0/2)]
    Var = trigamma(d_j/2) + trigamma(d0/2)

Matching the sample variance of the FZ statistics gives d0 (through the
inverse trigamma function); matching their mean then gives gamma_j. The
robust variants winsorize the FZ statistics and match them against the
winsorized moments of the log-F distribution, computed by numerical
integration.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from scipy import integrate, optimize, special, stats
from typing import Optional, List, Sequence, Tuple, Dict, Any

from ..config import get_config
from ..errors import ConvergenceError, MissingCurveError
from ..condition.condition import Condition, check_same_intervals
from .model import MeanVarianceCurve

logger = logging.getLogger(__name__)


def log_chisq_bias(df) -> np.ndarray:
    """
    E[log(chi2_df / df)] = digamma(df/2) - log(df/2); zero for infinite df.
    """
    df = np.asarray(df, dtype=float)
    with np.errstate(invalid="ignore"):
        out = np.where(np.isinf(df), 0.0, special.digamma(df / 2) - np.log(df / 2))
    return out if out.ndim else float(out)


def trigamma(x):
    """Trigamma function; zero at infinity."""
    x = np.asarray(x, dtype=float)
    out = np.where(np.isinf(x), 0.0, special.polygamma(1, np.where(np.isinf(x), 1.0, x)))
    return out if out.ndim else float(out)


def trigamma_inverse(
    x: float,
    tol: Optional[float] = None,
    max_iter: Optional[int] = None,
) -> float:
    """
    Solve trigamma(y) = x for y > 0 by Newton iteration.

    Args:
        x: Positive target value.
        tol: Relative step tolerance (config default).
        max_iter: Iteration cap (config default).

    Raises:
        ConvergenceError: No convergence within the iteration cap.
    """
    cfg = get_config()
    tol = cfg.newton_tol if tol is None else tol
    max_iter = cfg.newton_max_iter if max_iter is None else max_iter

    x = float(x)
    if not np.isfinite(x) or x <= 0:
        raise ValueError(f"trigamma_inverse requires a positive finite argument, got {x}")
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = float(special.polygamma(1, y))
        dif = tri * (1.0 - tri / x) / float(special.polygamma(2, y))
        y += dif
        if abs(dif / y) < tol:
            return y

    raise ConvergenceError(f"trigamma inversion of {x:.6g} did not converge in {max_iter} iterations")


def winsorize(x: np.ndarray, tail_p: Tuple[float, float]) -> np.ndarray:
    """Clip values at the lower tail_p[0] and upper tail_p[1] sample quantiles."""
    x = np.asarray(x, dtype=float)
    if len(x) == 0:
        return x
    low = np.quantile(x, tail_p[0])
    high = np.quantile(x, 1.0 - tail_p[1])
    return np.clip(x, low, high)


def _f_dist(d1: float, d2: float):
    if np.isinf(d2):
        return stats.chi2(d1, scale=1.0 / d1)
    return stats.f(d1, d2)


def winsorized_log_f_moments(
    d1: float,
    d2: float,
    tail_p: Tuple[float, float] = (0.0, 0.0),
) -> Tuple[float, float]:
    """
    Mean and variance of Z = log F(d1, d2) winsorized at the given tails.

    With zero tails the closed-form log-F moments are returned; otherwise the
    moments are integrated numerically over the central part of the
    distribution, with the tail masses placed at the winsorization points.
    """
    p_low, p_up = tail_p
    if p_low == 0 and p_up == 0:
        mean = log_chisq_bias(d1) - log_chisq_bias(d2)
        var = trigamma(d1 / 2) + trigamma(d2 / 2)
        return float(mean), float(var)

    dist = _f_dist(d1, d2)
    z_low = float(np.log(dist.ppf(p_low))) if p_low > 0 else -np.inf
    z_up = float(np.log(dist.isf(p_up))) if p_up > 0 else np.inf

    def density(z):
        with np.errstate(over="ignore", divide="ignore"):
            return float(np.exp(dist.logpdf(np.exp(z)) + z))

    m1, _ = integrate.quad(lambda z: z * density(z), z_low, z_up, limit=200)
    m2, _ = integrate.quad(lambda z: z * z * density(z), z_low, z_up, limit=200)
    if p_low > 0:
        m1 += p_low * z_low
        m2 += p_low * z_low ** 2
    if p_up > 0:
        m1 += p_up * z_up
        m2 += p_up * z_up ** 2

    return float(m1), float(m2 - m1 ** 2)


def estimate_prior_df_from_fz(
    fz_list: Sequence[np.ndarray],
    df_list: Sequence[int],
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
) -> float:
    """
    Estimate d0 from the FZ statistics of one or more conditions.

    Per-condition estimates are pooled with weights (n_j - 1), n_j being the
    number of FZ statistics of condition j, so the result does not depend on
    the order of the conditions.

    Returns:
        d0; ``inf`` when the observed spread does not exceed what the
        sampling variability alone explains, NaN when fewer than
        ``min_fz_intervals`` statistics are available.
    """
    cfg = get_config()
    if tail_p is None:
        tail_p = cfg.winsor_tail_p

    groups = [
        (np.asarray(fz, dtype=float), float(d))
        for fz, d in zip(fz_list, df_list)
        if len(fz) >= 2
    ]
    total = sum(len(fz) for fz, _ in groups)
    if total < cfg.min_fz_intervals:
        logger.warning(
            f"Only {total} FZ statistics available; prior degrees of freedom set to NaN"
        )
        return np.nan

    weights = np.array([len(fz) - 1 for fz, _ in groups], dtype=float)

    if not robust:
        excess = np.array([np.var(fz, ddof=1) - trigamma(d / 2) for fz, d in groups])
        pooled = float(np.sum(weights * excess) / np.sum(weights))
        if pooled <= 0:
            return np.inf
        return 2.0 * trigamma_inverse(pooled)

    observed = float(
        np.sum(weights * np.array([np.var(winsorize(fz, tail_p), ddof=1) for fz, _ in groups]))
        / np.sum(weights)
    )

    def gap(prior_df: float) -> float:
        theoretical = np.array(
            [winsorized_log_f_moments(d, prior_df, tail_p)[1] for _, d in groups]
        )
        return float(np.sum(weights * theoretical) / np.sum(weights)) - observed

    low, high = cfg.prior_df_bounds
    if gap(np.inf) >= 0 or gap(high) >= 0:
        return np.inf
    if gap(low) <= 0:
        logger.warning(f"Robust prior df estimate below {low}; clamped to the lower bound")
        return low

    root = optimize.brentq(lambda t: gap(np.exp(t)), np.log(low), np.log(high), xtol=1e-8)
    return float(np.exp(root))


def estimate_var_ratio_from_fz(
    fz: np.ndarray,
    df: int,
    prior_df: float,
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
) -> float:
    """Variance ratio gamma of one condition given d0; NaN if d0 is NaN or no FZ values."""
    fz = np.asarray(fz, dtype=float)
    if len(fz) == 0 or np.isnan(prior_df):
        return np.nan

    if robust:
        if tail_p is None:
            tail_p = get_config().winsor_tail_p
        observed = float(np.mean(winsorize(fz, tail_p)))
        expected, _ = winsorized_log_f_moments(df, prior_df, tail_p)
    else:
        observed = float(np.mean(fz))
        expected = log_chisq_bias(df) - log_chisq_bias(prior_df)
    return float(np.exp(observed - expected))


def interval_mask(
    condition: Condition,
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Intervals of a condition eligible for curve fitting and hyperparameter estimation."""
    mask = condition.occupancy_state.copy() if occupy_only else np.ones(condition.n_intervals, dtype=bool)
    if subset is not None:
        subset = np.asarray(subset, dtype=bool)
        if subset.shape != mask.shape:
            raise ValueError(f"subset must have length {condition.n_intervals}, got shape {subset.shape}")
        mask &= subset
    return mask


def fz_statistics(
    condition: Condition,
    curve: MeanVarianceCurve,
    mask: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    FZ statistics log(var / f0(mean)) of a replicated condition.

    Intervals with non-positive or undefined variance are skipped.
    """
    if mask is None:
        mask = np.ones(condition.n_intervals, dtype=bool)
    with np.errstate(invalid="ignore"):
        sel = mask & np.isfinite(condition.var) & (condition.var > 0)
    prior = curve.predict(condition.mean[sel])
    return np.log(condition.var[sel] / prior)


def shared_curve(conditions: Sequence[Condition]) -> MeanVarianceCurve:
    """The curve shared by all conditions; MissingCurveError if absent or not shared."""
    if len(conditions) == 0:
        raise ValueError("at least one condition is required")
    for cond in conditions:
        if cond.curve is None:
            raise MissingCurveError(f"condition '{cond.name}' has no associated mean-variance curve")
    ids = {cond.curve_id for cond in conditions}
    if len(ids) > 1:
        raise MissingCurveError(
            "conditions are associated with different mean-variance curves; "
            "fit them jointly or extend one curve to the others"
        )
    return conditions[0].curve


@dataclass
class PriorParams:
    """
    Estimated hyperparameters.

    Attributes:
        prior_df: d0 shared by all conditions.
        var_ratios: gamma of each condition (None for unreplicated ones).
        n_fz: Number of FZ statistics used for each condition.
        robust: Whether the robust estimators were used.
        tail_p: Winsorization tails (robust only).
    """
    prior_df: float
    var_ratios: List[Optional[float]]
    n_fz: List[int]
    robust: bool = False
    tail_p: Optional[Tuple[float, float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def estimate_prior_params(
    conditions: Sequence[Condition],
    curve: MeanVarianceCurve,
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
    prior_df: Optional[float] = None,
) -> PriorParams:
    """
    Estimate d0 (unless given) and the variance ratio of each condition.

    Args:
        conditions: Conditions sharing the unscaled curve.
        curve: Unscaled curve f0.
        occupy_only: Use only intervals occupied by each condition.
        subset: Optional additional interval mask.
        robust: Use the winsorized estimators.
        tail_p: Winsorization tails (config default for robust estimation).
        prior_df: Fixed d0; only variance ratios are estimated.

    Returns:
        PriorParams aligned with ``conditions``.
    """
    if robust and tail_p is None:
        tail_p = get_config().winsor_tail_p

    fz_list: List[np.ndarray] = []
    for cond in conditions:
        if cond.has_replicates:
            fz_list.append(fz_statistics(cond, curve, interval_mask(cond, occupy_only, subset)))
        else:
            fz_list.append(np.empty(0))

    replicated = [i for i, c in enumerate(conditions) if c.has_replicates]
    if prior_df is None:
        prior_df = estimate_prior_df_from_fz(
            [fz_list[i] for i in replicated],
            [conditions[i].df for i in replicated],
            robust=robust,
            tail_p=tail_p,
        )

    var_ratios: List[Optional[float]] = []
    for cond, fz in zip(conditions, fz_list):
        if cond.has_replicates:
            var_ratios.append(estimate_var_ratio_from_fz(fz, cond.df, prior_df, robust, tail_p))
        else:
            var_ratios.append(None)

    logger.info(
        f"Prior df = {prior_df:.4g} from {sum(len(fz) for fz in fz_list)} FZ statistics "
        f"({'robust' if robust else 'moment'} estimate)"
    )

    return PriorParams(
        prior_df=float(prior_df),
        var_ratios=var_ratios,
        n_fz=[len(fz) for fz in fz_list],
        robust=robust,
        tail_p=tail_p if robust else None,
    )


def default_no_rep_ratio(var_ratios: Sequence[Optional[float]]) -> float:
    """Geometric mean of the finite variance ratios of replicated conditions (1 if none)."""
    finite = [r for r in var_ratios if r is not None and np.isfinite(r) and r > 0]
    if not finite:
        return 1.0
    return float(np.exp(np.mean(np.log(finite))))


def apply_prior_params(
    conditions: Sequence[Condition],
    curve: MeanVarianceCurve,
    params: PriorParams,
    no_rep_ratio: Optional[float] = None,
    **diagnostics,
) -> List[Condition]:
    """
    Attach a new curve instance carrying params.prior_df to copies of the conditions.

    Unreplicated conditions receive ``no_rep_ratio`` (default: geometric
    mean of the estimated ratios).
    """
    if no_rep_ratio is None:
        no_rep_ratio = default_no_rep_ratio(params.var_ratios)

    new_curve = curve.with_prior_df(
        params.prior_df,
        prior_df_method="robust" if params.robust else "moment",
        n_fz=int(sum(params.n_fz)),
        **diagnostics,
    )
    return [
        cond.with_curve(new_curve, no_rep_ratio if ratio is None else ratio)
        for cond, ratio in zip(conditions, params.var_ratios)
    ]


def estimate_prior_df(
    conditions: Sequence[Condition],
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
    no_rep_ratio: Optional[float] = None,
) -> List[Condition]:
    """
    Re-estimate d0 and variance ratios without refitting the curve shape.

    Typically used to restrict estimation to occupied intervals, where the
    curve is not distorted by extrapolation. The conditions must share one
    curve; the returned conditions share a new curve instance with a new ID.
    """
    check_same_intervals(conditions)
    curve = shared_curve(conditions)
    params = estimate_prior_params(conditions, curve, occupy_only, subset, robust, tail_p)
    return apply_prior_params(conditions, curve, params, no_rep_ratio)


def estimate_prior_df_robust(
    conditions: Sequence[Condition],
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    tail_p: Optional[Tuple[float, float]] = None,
    no_rep_ratio: Optional[float] = None,
) -> List[Condition]:
    """Outlier-resistant ``estimate_prior_df`` based on winsorized FZ statistics."""
    return estimate_prior_df(conditions, occupy_only, subset, True, tail_p, no_rep_ratio)


def set_prior_df(
    conditions: Sequence[Condition],
    prior_df: float,
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    robust: bool = False,
    tail_p: Optional[Tuple[float, float]] = None,
    no_rep_ratio: Optional[float] = None,
) -> List[Condition]:
    """Fix d0 (``inf`` allowed) and re-estimate the variance ratios accordingly."""
    if not prior_df > 0:
        raise ValueError(f"prior_df must be positive, got {prior_df}")
    check_same_intervals(conditions)
    curve = shared_curve(conditions)
    params = estimate_prior_params(
        conditions, curve, occupy_only, subset, robust, tail_p, prior_df=float(prior_df)
    )
    return apply_prior_params(conditions, curve, params, no_rep_ratio, prior_df_fixed=True)
