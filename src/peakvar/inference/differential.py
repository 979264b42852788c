"""
PeakVar Inference: moderated differential tests.

Observed variances of the conditions are combined with the prior variance
read off the shared curve into a posterior (moderated) variance, on the
unscaled curve level:

    post = (d0 * f0(A) + sum_j d_j * var_j / gamma_j) / (d0 + sum_j d_j)

with d_j = m_j - 1, and post = f0(A) exactly when d0 is infinite. The
variance of a condition mean is then gamma_j * mean_scale_j * post.
"""

import logging
import numpy as np
from scipy import stats
from typing import Optional, Sequence, Tuple

from ..errors import InsufficientDataError
from ..condition.condition import Condition, check_same_intervals
from ..curves.model import MeanVarianceCurve
from ..curves.prior import shared_curve
from .results import TestResult, adjust_pvalues

logger = logging.getLogger(__name__)


def _checked_curve(conditions: Sequence[Condition]) -> MeanVarianceCurve:
    check_same_intervals(conditions)
    curve = shared_curve(conditions)
    if np.isnan(curve.prior_df):
        raise InsufficientDataError(
            "the shared curve has no estimated prior degrees of freedom; "
            "set one explicitly with set_prior_df"
        )
    return curve


def moderated_variance(
    conditions: Sequence[Condition],
    curve: MeanVarianceCurve,
    mean: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Prior and posterior (unscaled) variances at the given mean levels.

    Returns:
        (prior_var, post_var, total_df) with total_df = d0 + sum_j (m_j - 1).
    """
    prior_df = curve.prior_df
    prior = curve.predict(mean)

    obs_df = 0
    ss = np.zeros(len(mean))
    for cond in conditions:
        if cond.has_replicates:
            obs_df += cond.df
            ss += cond.df * cond.var / cond.var_ratio

    if np.isinf(prior_df) or obs_df == 0:
        post = prior.copy()
    else:
        post = (prior_df * prior + ss) / (prior_df + obs_df)

    return prior, post, float(prior_df + obs_df)


def diff_test(
    cond1: Condition,
    cond2: Condition,
    p_adjust: Optional[str] = None,
) -> TestResult:
    """
    Moderated t test between two conditions sharing a mean-variance curve.

    Args:
        cond1: Reference condition.
        cond2: Condition compared against the reference.
        p_adjust: Multiple-testing method (config default "fdr_bh").

    Returns:
        TestResult with effect = mean2 - mean1 and two-sided p-values from a
        t distribution with d0 + (m1 - 1) + (m2 - 1) degrees of freedom
        (normal when d0 is infinite).

    Raises:
        MissingCurveError: A condition has no curve, or the curves differ.
        DimensionMismatchError: The conditions are not aligned.
    """
    conditions = [cond1, cond2]
    curve = _checked_curve(conditions)

    mean = (cond1.mean + cond2.mean) / 2
    prior, post, total_df = moderated_variance(conditions, curve, mean)

    effect = cond2.mean - cond1.mean
    se = np.sqrt(post * (cond1.var_ratio * cond1.mean_scale + cond2.var_ratio * cond2.mean_scale))
    stat = effect / se

    if np.isinf(total_df):
        pval = 2 * stats.norm.sf(np.abs(stat))
    else:
        pval = 2 * stats.t.sf(np.abs(stat), total_df)
    pval = np.minimum(pval, 1.0)

    logger.info(
        f"Differential test '{cond2.name}' vs '{cond1.name}': {len(pval)} intervals, df={total_df:.4g}"
    )

    return TestResult(
        effect=effect,
        stat=stat,
        pval=pval,
        padj=adjust_pvalues(pval, p_adjust),
        df=np.full(len(pval), total_df),
        extra={
            "mean": mean,
            f"{cond1.name}.mean": cond1.mean.copy(),
            f"{cond2.name}.mean": cond2.mean.copy(),
            "prior_var": prior,
            "post_var": post,
        },
        intervals=cond1.intervals,
        test="diff",
    )


def aov_test(
    conditions: Sequence[Condition],
    p_adjust: Optional[str] = None,
) -> TestResult:
    """
    Moderated one-way ANOVA across two or more conditions.

    Condition means are weighted by the reciprocal of their relative
    variances gamma_j * mean_scale_j. The between-group mean square is
    compared with the posterior variance:

        F = sum_j w_j (mean_j - grand)^2 / (k - 1) / post

    referred to F(k - 1, d0 + sum_j (m_j - 1)); a scaled chi-square when
    the denominator degrees of freedom are infinite.
    """
    conditions = list(conditions)
    k = len(conditions)
    if k < 2:
        raise ValueError(f"aov_test needs at least 2 conditions, got {k}")
    curve = _checked_curve(conditions)

    means = np.column_stack([c.mean for c in conditions])
    weights = np.column_stack([1.0 / (c.var_ratio * c.mean_scale) for c in conditions])

    mean = means.mean(axis=1)
    prior, post, total_df = moderated_variance(conditions, curve, mean)

    grand = np.sum(weights * means, axis=1) / np.sum(weights, axis=1)
    between = np.sum(weights * (means - grand[:, None]) ** 2, axis=1) / (k - 1)
    stat = between / post

    if np.isinf(total_df):
        pval = stats.chi2.sf(stat * (k - 1), k - 1)
    else:
        pval = stats.f.sf(stat, k - 1, total_df)

    logger.info(f"ANOVA across {k} conditions: df=({k - 1}, {total_df:.4g})")

    return TestResult(
        effect=between,
        stat=stat,
        pval=pval,
        padj=adjust_pvalues(pval, p_adjust),
        df=np.full(len(pval), total_df),
        df_num=float(k - 1),
        extra={
            "mean": mean,
            "grand_mean": grand,
            "prior_var": prior,
            "post_var": post,
        },
        intervals=conditions[0].intervals,
        test="aov",
    )
