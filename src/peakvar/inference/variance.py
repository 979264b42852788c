"""
PeakVar Inference: hypervariability tests.

Under the fitted model the observed variance of an interval, divided by its
scaled prior variance gamma * f0(mean), follows F(m - 1, d0). Intervals with
a large ratio are hypervariable across the samples of the condition.

Hypervariable intervals inflate the upper tail of the FZ statistics and,
left alone, drive the d0 estimate down and the variance ratio up, which
costs power. ``estimate_hyper_params`` therefore re-derives both with an
upper-heavy winsorization before testing.
"""

import logging
import numpy as np
from scipy import stats
from typing import Optional, Sequence, Tuple, Union, List

from ..config import get_config
from ..errors import MissingCurveError, InsufficientDataError
from ..condition.condition import Condition
from ..curves.prior import estimate_prior_df
from .results import TestResult, adjust_pvalues

logger = logging.getLogger(__name__)

ALTERNATIVES = ("two-sided", "greater", "less")


def var_test(
    condition: Condition,
    alternative: str = "two-sided",
    p_adjust: Optional[str] = None,
) -> TestResult:
    """
    Test observed variances against the scaled prior variances.

    Args:
        condition: Replicated condition with an associated curve.
        alternative: "two-sided" (p = 2 * min(F, 1 - F), capped at 1),
            "greater" (hypervariability) or "less".
        p_adjust: Multiple-testing method (config default "fdr_bh").

    Returns:
        TestResult with stat = fold change var / (gamma * f0(mean)) and
        effect = its log2.
    """
    if alternative not in ALTERNATIVES:
        raise ValueError(f"Unknown alternative: {alternative}. Use one of {ALTERNATIVES}.")
    if condition.curve is None:
        raise MissingCurveError(f"condition '{condition.name}' has no associated mean-variance curve")
    if not condition.has_replicates:
        raise MissingCurveError(f"condition '{condition.name}' has no replicate variance to test")

    prior_df = condition.curve.prior_df
    if np.isnan(prior_df):
        raise InsufficientDataError("the curve has no estimated prior degrees of freedom")

    d1 = condition.df
    prior = condition.prior_var()
    fold_change = condition.var / prior

    if np.isinf(prior_df):
        lower = stats.chi2.cdf(fold_change * d1, d1)
        upper = stats.chi2.sf(fold_change * d1, d1)
    else:
        lower = stats.f.cdf(fold_change, d1, prior_df)
        upper = stats.f.sf(fold_change, d1, prior_df)

    if alternative == "two-sided":
        pval = np.minimum(1.0, 2 * np.minimum(lower, upper))
    elif alternative == "greater":
        pval = upper
    else:
        pval = lower

    with np.errstate(divide="ignore"):
        log2_fc = np.log2(fold_change)

    logger.info(
        f"Variance test on '{condition.name}' ({alternative}): df=({d1}, {prior_df:.4g})"
    )

    return TestResult(
        effect=log2_fc,
        stat=fold_change,
        pval=pval,
        padj=adjust_pvalues(pval, p_adjust),
        df=np.full(len(pval), float(prior_df)),
        df_num=float(d1),
        extra={
            "mean": condition.mean.copy(),
            "var": condition.var.copy(),
            "prior_var": prior,
            "fold_change": fold_change.copy(),
        },
        intervals=condition.intervals,
        test="var",
    )


def estimate_hyper_params(
    conditions: Union[Condition, Sequence[Condition]],
    occupy_only: bool = True,
    subset: Optional[np.ndarray] = None,
    tail_p: Optional[Tuple[float, float]] = None,
    no_rep_ratio: Optional[float] = None,
) -> Union[Condition, List[Condition]]:
    """
    Re-estimate d0 and variance ratios for hypervariability testing.

    Uses the robust estimators with an asymmetric winsorization that trims
    the upper tail of the FZ statistics much harder than the lower one
    (config ``hyper_tail_p``), discounting hypervariable intervals and so
    favouring a larger d0. The curve shape is kept; the returned conditions
    reference a new curve instance.

    Args:
        conditions: One condition or several sharing a curve.
        occupy_only: Use only occupied intervals.
        subset: Optional additional interval mask.
        tail_p: Lower/upper winsorization tails.
        no_rep_ratio: Variance ratio for unreplicated conditions.

    Returns:
        A Condition if one was given, otherwise a list.
    """
    single = isinstance(conditions, Condition)
    conds = [conditions] if single else list(conditions)
    if tail_p is None:
        tail_p = get_config().hyper_tail_p

    updated = estimate_prior_df(
        conds,
        occupy_only=occupy_only,
        subset=subset,
        robust=True,
        tail_p=tail_p,
        no_rep_ratio=no_rep_ratio,
    )
    logger.info(
        f"Hypervariability parameters: d0={updated[0].curve.prior_df:.4g}, "
        f"tails={tail_p}"
    )
    return updated[0] if single else updated
