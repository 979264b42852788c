"""
PeakVar Normalization: pairwise MA normalization.

Each sample is normalized against a baseline by an affine transform of its
log2 signal, x' = a + b * x, chosen so that on the common peaks of the two
samples the M values (y - x') show no trend along the A values
((x' + y) / 2). Common peaks are intervals occupied by both samples,
optionally intersected with a caller-supplied mask.

The baseline is chosen among the samples by their log2 size factors
(median-of-ratios style), or a pseudo-reference profile built from all
samples is used instead.

Key relationship:
    If M = alpha + beta * A on the common peaks, then
        b = (1 + beta/2) / (1 - beta/2),   a = alpha / (1 - beta/2)
    removes the trend exactly. A sample normalized against itself gets
    b = 1, a = 0.
"""

import logging
import numpy as np
import pandas as pd
import statsmodels.api as sm
from dataclasses import dataclass, field
from scipy import stats
from typing import Optional, List, Dict, Union, Tuple, Sequence

from ..config import get_config
from ..errors import RegressionError
from ..condition.condition import Condition

logger = logging.getLogger(__name__)

PSEUDO_REFERENCE = "pseudo-reference"


@dataclass(frozen=True)
class NormalizationRecord:
    """
    Normalization coefficients of one sample relative to a baseline.

    Attributes:
        slope: b in x' = a + b * x
        intercept: a in x' = a + b * x
        n_common: Number of common-peak intervals used in the fit
        cor_before: Pearson M-A correlation on common peaks before normalization
        cor_after: Pearson M-A correlation on common peaks after normalization
        baseline: Label of the baseline sample
        method: Regression method ("robust" or "scale")
    """
    slope: float
    intercept: float
    n_common: int
    cor_before: float
    cor_after: float
    baseline: str = ""
    method: str = "robust"

    def apply(self, x: np.ndarray) -> np.ndarray:
        """Apply the affine transform to a signal vector."""
        return self.intercept + self.slope * np.asarray(x, dtype=float)

    def to_dict(self) -> Dict[str, object]:
        return {
            "slope": self.slope,
            "intercept": self.intercept,
            "n_common": self.n_common,
            "cor_before": self.cor_before,
            "cor_after": self.cor_after,
            "baseline": self.baseline,
            "method": self.method,
        }


def log_counts(counts, offset: Optional[float] = None):
    """
    Log2-transform raw read counts.

    Args:
        counts: Array or DataFrame of non-negative counts.
        offset: Pseudo-count added before the transform (config default 0.5).

    Returns:
        log2(counts + offset), of the same type as the input.
    """
    if offset is None:
        offset = get_config().offset

    if isinstance(counts, pd.DataFrame):
        if (counts.to_numpy() < 0).any():
            raise ValueError("counts must be non-negative")
        return np.log2(counts.astype(float) + offset)

    counts = np.asarray(counts, dtype=float)
    if np.any(counts < 0):
        raise ValueError("counts must be non-negative")
    return np.log2(counts + offset)


def ma_values(x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """M (log ratio, y - x) and A (average, (x + y) / 2) values of two log2 signals."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    return y - x, (x + y) / 2


def _pearson(u: np.ndarray, v: np.ndarray) -> float:
    """Pearson correlation, defined as 0 when either vector has no spread."""
    if len(u) < 2 or np.ptp(u) == 0 or np.ptp(v) == 0:
        return 0.0
    r, _ = stats.pearsonr(u, v)
    return float(r)


def ma_correlation(x: np.ndarray, y: np.ndarray, mask: Optional[np.ndarray] = None) -> float:
    """Pearson correlation between M and A values over the masked intervals."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if mask is not None:
        x, y = x[mask], y[mask]
    m, a = ma_values(x, y)
    return _pearson(m, a)


def _robust_line(a_vals: np.ndarray, m_vals: np.ndarray) -> Tuple[float, float]:
    """Huber M-estimate of M = alpha + beta * A."""
    cfg = get_config()

    if np.ptp(m_vals) == 0:
        return float(m_vals[0]), 0.0

    design = sm.add_constant(a_vals, has_constant="add")
    ols = sm.OLS(m_vals, design).fit()
    resid = np.asarray(ols.resid)
    mad = np.median(np.abs(resid - np.median(resid)))
    if mad <= 1e-10 * max(1.0, float(np.abs(m_vals).max())):
        # Zero robust scale: the majority of points lie on the OLS line
        return float(ols.params[0]), float(ols.params[1])

    rlm = sm.RLM(m_vals, design, M=sm.robust.norms.HuberT(t=cfg.huber_t))
    fit = rlm.fit(maxiter=cfg.rlm_max_iter, tol=cfg.rlm_tol)
    return float(fit.params[0]), float(fit.params[1])


def fit_ma_trend(
    x: np.ndarray,
    y: np.ndarray,
    common: Optional[np.ndarray] = None,
    method: str = "robust",
    baseline: str = "",
) -> NormalizationRecord:
    """
    Fit the affine transform normalizing x against the baseline y.

    Args:
        x: Log2 signal of the sample to normalize.
        y: Log2 signal of the baseline.
        common: Boolean mask of common-peak intervals (all intervals if None).
        method: "robust" (Huber regression of M on A) or "scale" (match
            mean and standard deviation on the common peaks).
        baseline: Label of the baseline, stored in the record.

    Returns:
        NormalizationRecord with the coefficients and M-A correlations.

    Raises:
        RegressionError: Too few common peaks, or a degenerate fit.
    """
    cfg = get_config()
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError(f"x and y must have the same shape, got {x.shape} and {y.shape}")

    if common is None:
        common = np.ones(len(x), dtype=bool)
    common = np.asarray(common, dtype=bool)

    n_common = int(common.sum())
    if n_common < cfg.min_common_peaks:
        raise RegressionError(
            f"{n_common} common peak intervals, at least {cfg.min_common_peaks} required"
        )

    xs, ys = x[common], y[common]
    cor_before = ma_correlation(xs, ys)

    if method == "robust":
        m_vals, a_vals = ma_values(xs, ys)
        if np.ptp(a_vals) == 0:
            raise RegressionError("A values of the common peaks have no spread")
        alpha, beta = _robust_line(a_vals, m_vals)
        denom = 1.0 - beta / 2.0
        if abs(denom) < 1e-12:
            raise RegressionError(f"degenerate MA trend (slope {beta:.3g})")
        slope = (1.0 + beta / 2.0) / denom
        intercept = alpha / denom
    elif method == "scale":
        sx = float(np.std(xs, ddof=1))
        if sx == 0:
            raise RegressionError("sample signal has no spread on the common peaks")
        slope = float(np.std(ys, ddof=1)) / sx
        intercept = float(np.mean(ys)) - slope * float(np.mean(xs))
    else:
        raise ValueError(f"Unknown normalization method: {method}. Use 'robust' or 'scale'.")

    if slope <= 0:
        raise RegressionError(f"non-positive normalization slope {slope:.3g}")

    cor_after = ma_correlation(intercept + slope * xs, ys)

    return NormalizationRecord(
        slope=float(slope),
        intercept=float(intercept),
        n_common=n_common,
        cor_before=cor_before,
        cor_after=cor_after,
        baseline=baseline,
        method=method,
    )


def _region_mask(common_peak_regions: Optional[np.ndarray], n: int) -> np.ndarray:
    if common_peak_regions is None:
        return np.ones(n, dtype=bool)
    mask = np.asarray(common_peak_regions, dtype=bool)
    if mask.shape != (n,):
        raise ValueError(f"common_peak_regions must have length {n}, got shape {mask.shape}")
    return mask


def pairwise_size_factors(
    values: np.ndarray,
    occupancy: np.ndarray,
    common_peak_regions: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Pairwise log2 size factors.

    Entry (i, j) is the median of values[:, j] - values[:, i] over the
    intervals occupied by both samples (and selected by the region mask);
    NaN when the two samples share no such interval.
    """
    values = np.asarray(values, dtype=float)
    occupancy = np.asarray(occupancy, dtype=bool)
    n, n_samples = values.shape
    region = _region_mask(common_peak_regions, n)

    factors = np.full((n_samples, n_samples), np.nan)
    for i in range(n_samples):
        for j in range(n_samples):
            mask = occupancy[:, i] & occupancy[:, j] & region
            if mask.any():
                factors[i, j] = np.median(values[mask, j] - values[mask, i])
    return factors


def estimate_size_factors(
    values: np.ndarray,
    occupancy: np.ndarray,
    common_peak_regions: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Log2 size factor of each sample.

    The size factor of sample j is the median, over all samples i, of the
    pairwise size factor (i, j).
    """
    factors = pairwise_size_factors(values, occupancy, common_peak_regions)
    log_sf = np.full(factors.shape[1], np.nan)
    for j in range(factors.shape[1]):
        col = factors[:, j]
        col = col[~np.isnan(col)]
        if len(col):
            log_sf[j] = float(np.median(col))
    return log_sf


def select_baseline(
    values: np.ndarray,
    occupancy: np.ndarray,
    common_peak_regions: Optional[np.ndarray] = None,
) -> int:
    """Index of the sample whose log2 size factor is closest to zero."""
    log_sf = estimate_size_factors(values, occupancy, common_peak_regions)
    if np.all(np.isnan(log_sf)):
        raise RegressionError("no sample shares common peaks with any other sample")
    return int(np.nanargmin(np.abs(log_sf)))


def pseudo_reference(
    values: np.ndarray,
    occupancy: np.ndarray,
    trim: float = 0.1,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Synthetic baseline profile combining all samples.

    Returns:
        (profile, occupancy): per-interval trimmed mean signal, and intervals
        occupied by at least half of the samples.
    """
    values = np.asarray(values, dtype=float)
    occupancy = np.asarray(occupancy, dtype=bool)
    profile = stats.trim_mean(values, trim, axis=1)
    occupied = 2 * occupancy.sum(axis=1) >= occupancy.shape[1]
    return profile, occupied


@dataclass(frozen=True, eq=False)
class NormalizationResult:
    """
    Result of normalizing a set of samples.

    Attributes:
        values: (n_intervals, n_samples) normalized log2 signal.
        occupancy: (n_intervals, n_samples) occupancy, unchanged.
        records: Normalization record of each sample, by label.
        baseline: Label of the baseline sample, or "pseudo-reference".
        size_factors: Log2 size factors of the samples before normalization.
        labels: Sample labels.
        intervals: Optional interval labels.
    """
    values: np.ndarray
    occupancy: np.ndarray
    records: Dict[str, NormalizationRecord]
    baseline: str
    size_factors: np.ndarray
    labels: List[str]
    intervals: Optional[pd.Index] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """Normalized signal as a DataFrame, one column per sample."""
        return pd.DataFrame(self.values, columns=self.labels, index=self.intervals)

    def records_frame(self) -> pd.DataFrame:
        """Normalization coefficients, one row per sample."""
        return pd.DataFrame({k: r.to_dict() for k, r in self.records.items()}).T

    def to_condition(
        self,
        samples: Sequence[Union[str, int]],
        name: str = "condition",
        occupy_num: int = 1,
        structure: Optional[np.ndarray] = None,
    ) -> Condition:
        """Build a Condition from a subset of the normalized samples."""
        idx = [self.labels.index(s) if isinstance(s, str) else int(s) for s in samples]
        return Condition(
            values=self.values[:, idx],
            occupancy=self.occupancy[:, idx],
            occupy_num=occupy_num,
            structure=structure,
            name=name,
            sample_names=[self.labels[i] for i in idx],
            intervals=self.intervals,
        )


def _resolve_baseline(baseline: Union[None, int, str], labels: List[str]) -> int:
    if isinstance(baseline, (int, np.integer)):
        if not 0 <= baseline < len(labels):
            raise ValueError(f"baseline index {baseline} out of range for {len(labels)} samples")
        return int(baseline)
    if baseline in labels:
        return labels.index(baseline)
    raise ValueError(f"Unknown baseline: {baseline}")


def normalize(
    values,
    occupancy=None,
    baseline: Union[None, int, str] = None,
    common_peak_regions: Optional[np.ndarray] = None,
    method: str = "robust",
    labels: Optional[Sequence[str]] = None,
) -> NormalizationResult:
    """
    MA-normalize a set of samples against a common baseline.

    Args:
        values: (n_intervals, n_samples) log2 signal, array or DataFrame.
        occupancy: Matching boolean occupancy (all True if None).
        baseline: None to select the sample with the smallest absolute log
            size factor, an index or label to designate one, or
            "pseudo-reference" to normalize against a synthetic profile.
        common_peak_regions: Optional boolean mask restricting the
            intervals used as common peaks.
        method: Regression method passed to ``fit_ma_trend``.
        labels: Sample labels (DataFrame columns by default).

    Returns:
        NormalizationResult with normalized values and per-sample records.

    Example:
        >>> result = normalize(log_counts(counts), occupancy)
        >>> print(result.baseline, result.records[result.baseline].slope)
    """
    intervals = None
    if isinstance(values, pd.DataFrame):
        if labels is None:
            labels = [str(c) for c in values.columns]
        intervals = values.index
        values = values.to_numpy(dtype=float)
    values = np.asarray(values, dtype=float)
    if values.ndim != 2:
        raise ValueError(f"values must be 2D, got {values.ndim}D")
    n, n_samples = values.shape

    if occupancy is None:
        occupancy = np.ones((n, n_samples), dtype=bool)
    elif isinstance(occupancy, pd.DataFrame):
        occupancy = occupancy.to_numpy()
    occupancy = np.asarray(occupancy).astype(bool)
    if occupancy.shape != values.shape:
        raise ValueError(f"occupancy shape {occupancy.shape} does not match values shape {values.shape}")

    if labels is None:
        labels = [f"sample{i + 1}" for i in range(n_samples)]
    labels = [str(s) for s in labels]
    if len(labels) != n_samples:
        raise ValueError(f"expected {n_samples} labels, got {len(labels)}")

    region = _region_mask(common_peak_regions, n)
    log_sf = estimate_size_factors(values, occupancy, region)

    if isinstance(baseline, str) and baseline == PSEUDO_REFERENCE and PSEUDO_REFERENCE not in labels:
        base_values, base_occ = pseudo_reference(values, occupancy)
        base_label = PSEUDO_REFERENCE
    else:
        if baseline is None:
            base_idx = select_baseline(values, occupancy, region)
        else:
            base_idx = _resolve_baseline(baseline, labels)
        base_values, base_occ = values[:, base_idx], occupancy[:, base_idx]
        base_label = labels[base_idx]

    logger.info(f"Normalizing {n_samples} samples against baseline '{base_label}'")

    normalized = np.empty_like(values)
    records: Dict[str, NormalizationRecord] = {}
    for j, label in enumerate(labels):
        common = occupancy[:, j] & base_occ & region
        record = fit_ma_trend(values[:, j], base_values, common, method=method, baseline=base_label)
        normalized[:, j] = record.apply(values[:, j])
        records[label] = record
        logger.debug(
            f"{label}: slope={record.slope:.4f} intercept={record.intercept:.4f} "
            f"common={record.n_common} cor {record.cor_before:.3f} -> {record.cor_after:.3f}"
        )

    return NormalizationResult(
        values=normalized,
        occupancy=occupancy,
        records=records,
        baseline=base_label,
        size_factors=log_sf,
        labels=labels,
        intervals=intervals,
        metadata={"method": method},
    )
