"""
PeakVar Normalization: MA normalization of samples and conditions.

Within a condition, samples are normalized pairwise against a baseline
sample (or a pseudo-reference profile). Between conditions, the condition
means are normalized the same way and the transform is carried over to
every sample.

Example:
    >>> from peakvar.normalization import log_counts, normalize
    >>> result = normalize(log_counts(counts), occupancy)
    >>> cond = result.to_condition(["a1", "a2"], name="A")
"""

from .pair import (
    NormalizationRecord,
    NormalizationResult,
    PSEUDO_REFERENCE,
    log_counts,
    ma_values,
    ma_correlation,
    fit_ma_trend,
    pairwise_size_factors,
    estimate_size_factors,
    select_baseline,
    pseudo_reference,
    normalize,
)

from .group import (
    GroupNormalizationResult,
    normalize_conditions,
)

__all__ = [
    # Pairwise
    "NormalizationRecord",
    "NormalizationResult",
    "PSEUDO_REFERENCE",
    "log_counts",
    "ma_values",
    "ma_correlation",
    "fit_ma_trend",
    "pairwise_size_factors",
    "estimate_size_factors",
    "select_baseline",
    "pseudo_reference",
    "normalize",
    # Between conditions
    "GroupNormalizationResult",
    "normalize_conditions",
]
