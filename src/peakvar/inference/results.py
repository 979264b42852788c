"""
PeakVar Inference: test result tables and multiple-testing adjustment.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from statsmodels.stats.multitest import multipletests
from typing import Optional, Dict

from ..config import get_config


def adjust_pvalues(pvals: np.ndarray, method: Optional[str] = None) -> np.ndarray:
    """
    Adjust p-values for multiple testing.

    NaN p-values are left out of the adjustment and stay NaN.

    Args:
        pvals: Raw p-values.
        method: statsmodels ``multipletests`` method (config default "fdr_bh").

    Returns:
        Adjusted p-values, never above 1.
    """
    if method is None:
        method = get_config().p_adjust_method

    pvals = np.asarray(pvals, dtype=float)
    adjusted = np.full(pvals.shape, np.nan)
    valid = np.isfinite(pvals)
    if valid.any():
        _, adjusted[valid], _, _ = multipletests(pvals[valid], method=method)
    return np.minimum(adjusted, 1.0)


@dataclass(frozen=True, eq=False)
class TestResult:
    """
    Per-interval result of a moderated test, in interval order.

    Attributes:
        effect: Effect estimate (difference of means, between-group mean
            square or variance fold change, depending on the test).
        stat: Test statistic (t, F or variance ratio).
        pval: Raw p-value.
        padj: Adjusted p-value.
        df: (Denominator) degrees of freedom.
        df_num: Numerator degrees of freedom of an F test.
        extra: Additional named per-interval columns.
        intervals: Optional interval labels.
        test: Name of the test that produced the result.
    """
    __test__ = False

    effect: np.ndarray
    stat: np.ndarray
    pval: np.ndarray
    padj: np.ndarray
    df: np.ndarray
    df_num: Optional[float] = None
    extra: Dict[str, np.ndarray] = field(default_factory=dict)
    intervals: Optional[pd.Index] = None
    test: str = ""

    def __len__(self) -> int:
        return len(self.pval)

    def to_frame(self) -> pd.DataFrame:
        """Result table with columns effect, stat, pval, padj, df and the extras."""
        columns = {
            "effect": self.effect,
            "stat": self.stat,
            "pval": self.pval,
            "padj": self.padj,
            "df": self.df,
        }
        columns.update(self.extra)
        return pd.DataFrame(columns, index=self.intervals)

    def significant(self, alpha: float = 0.1) -> np.ndarray:
        """Boolean mask of intervals with adjusted p-value below alpha."""
        with np.errstate(invalid="ignore"):
            return self.padj < alpha
