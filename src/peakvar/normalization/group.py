"""
PeakVar Normalization: between-condition normalization.

Applies the pairwise MA normalization at the level of conditions: the mean
signal of each condition plays the role of a sample and its occupancy state
the role of the occupancy vector. The affine transform fitted for a
condition is applied to every one of its samples, so its mean is transformed
the same way and its variance is rescaled by the square of the slope.
"""

import logging
import numpy as np
from dataclasses import dataclass
from typing import Optional, List, Dict, Sequence, Union

from ..condition.condition import Condition, check_same_intervals
from ..errors import RegressionError
from .pair import (
    NormalizationRecord,
    fit_ma_trend,
    estimate_size_factors,
    _region_mask,
)

logger = logging.getLogger(__name__)


@dataclass
class GroupNormalizationResult:
    """
    Conditions expressed on a common normalized scale.

    Attributes:
        conditions: New Condition instances, in input order.
        records: Normalization record of each condition, by name.
        baseline: Name of the baseline condition.
        size_factors: Log2 size factors of the condition means.
    """
    conditions: List[Condition]
    records: Dict[str, NormalizationRecord]
    baseline: str
    size_factors: np.ndarray


def normalize_conditions(
    conditions: Sequence[Condition],
    baseline: Union[None, int, str] = None,
    common_peak_regions: Optional[np.ndarray] = None,
    method: str = "robust",
) -> GroupNormalizationResult:
    """
    Normalize conditions against each other.

    Args:
        conditions: Conditions to normalize; they must share the interval list.
        baseline: None for automatic selection (smallest absolute log size
            factor of the condition means), or an index or condition name.
        common_peak_regions: Optional boolean mask intersected with the
            jointly occupied intervals of each pair (e.g. to exclude sex
            chromosomes).
        method: Regression method passed to ``fit_ma_trend``.

    Returns:
        GroupNormalizationResult. Input conditions are left untouched; any
        previously associated curve is dropped from the new instances.

    Raises:
        RegressionError: Automatic baseline selection found no pair of
            conditions with enough common peaks.
    """
    n = check_same_intervals(conditions)
    names = [c.name for c in conditions]
    if len(set(names)) != len(names):
        raise ValueError(f"condition names must be unique, got {names}")

    means = np.column_stack([c.mean for c in conditions])
    states = np.column_stack([c.occupancy_state for c in conditions])
    region = _region_mask(common_peak_regions, n)
    log_sf = estimate_size_factors(means, states, region)

    if baseline is None:
        if np.all(np.isnan(log_sf)):
            raise RegressionError("no condition shares common peaks with any other condition")
        base_idx = int(np.nanargmin(np.abs(log_sf)))
    elif isinstance(baseline, (int, np.integer)):
        base_idx = int(baseline)
        if not 0 <= base_idx < len(conditions):
            raise ValueError(f"baseline index {base_idx} out of range")
    elif baseline in names:
        base_idx = names.index(baseline)
    else:
        raise ValueError(f"Unknown baseline condition: {baseline}")

    base = conditions[base_idx]
    logger.info(f"Normalizing {len(conditions)} conditions against '{base.name}'")

    normalized: List[Condition] = []
    records: Dict[str, NormalizationRecord] = {}
    for cond in conditions:
        common = cond.occupancy_state & base.occupancy_state & region
        record = fit_ma_trend(cond.mean, base.mean, common, method=method, baseline=base.name)
        normalized.append(cond.with_values(record.apply(cond.values)))
        records[cond.name] = record
        logger.debug(
            f"{cond.name}: slope={record.slope:.4f} intercept={record.intercept:.4f} "
            f"common={record.n_common}"
        )

    return GroupNormalizationResult(
        conditions=normalized,
        records=records,
        baseline=base.name,
        size_factors=log_sf,
    )
