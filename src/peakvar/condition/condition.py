"""
PeakVar Condition: groups of replicate samples.

A Condition aggregates normalized samples of one biological condition over
the shared interval list. It derives the per-interval occupancy state and
the (structure-weighted) mean and variance, and optionally references a
fitted MeanVarianceCurve together with its own variance ratio.

Conditions are never modified by library functions; every operation that
changes signal values, curve or variance ratio returns a new instance.
"""

import logging
import numpy as np
import pandas as pd
from dataclasses import dataclass, field, replace
from typing import Optional, List, Sequence, Dict, Any, TYPE_CHECKING

from ..errors import DimensionMismatchError, MissingCurveError
from .structure import validate_structure, structure_from_weights, weighted_mean_var

if TYPE_CHECKING:
    from ..curves.model import MeanVarianceCurve

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Condition:
    """
    A biological condition built from replicate samples.

    Attributes:
        values: (n_intervals, m) normalized signal intensities.
        occupancy: (n_intervals, m) boolean occupancy; all True if omitted.
        occupy_num: Minimum number of occupying samples for an interval to
            be occupied by the condition.
        structure: Optional (n_intervals, m, m) structure matrices.
        name: Condition name.
        sample_names: Names of the samples (columns).
        intervals: Optional interval labels, used for alignment checks.
        curve: Associated mean-variance curve, if fitted.
        var_ratio: Variance ratio factor scaling the unscaled curve.

    Conditions are frozen and all their arrays are read-only copies.

    Derived (read-only):
        occupancy_state: boolean per interval.
        mean, var: per-interval weighted mean and variance (var NaN if m < 2).
        mean_scale: variance multiplier of the weighted mean (1/m for
            identity structure).
    """
    values: np.ndarray
    occupancy: Optional[np.ndarray] = None
    occupy_num: int = 1
    structure: Optional[np.ndarray] = None
    name: str = "condition"
    sample_names: Optional[List[str]] = None
    intervals: Optional[pd.Index] = None
    curve: Optional["MeanVarianceCurve"] = None
    var_ratio: float = 1.0

    occupancy_state: np.ndarray = field(init=False, repr=False)
    mean: np.ndarray = field(init=False, repr=False)
    var: np.ndarray = field(init=False, repr=False)
    mean_scale: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        """Validate inputs and derive occupancy state, mean and variance."""
        # Own copies of all inputs, so callers cannot change a condition afterwards
        values = np.array(self.values, dtype=float)
        if values.ndim == 1:
            values = values.reshape(-1, 1)
        if values.ndim != 2 or values.shape[1] == 0:
            raise ValueError(f"values must be a non-empty 2D matrix, got shape {values.shape}")
        if not np.all(np.isfinite(values)):
            raise ValueError("values must be finite")
        n, m = values.shape

        if self.occupancy is None:
            occupancy = np.ones((n, m), dtype=bool)
        else:
            occupancy = np.array(self.occupancy).astype(bool)
            if occupancy.ndim == 1:
                occupancy = occupancy.reshape(-1, 1)
        if occupancy.shape != values.shape:
            raise DimensionMismatchError(
                f"occupancy shape {occupancy.shape} does not match values shape {values.shape}"
            )

        if self.occupy_num < 1:
            raise ValueError(f"occupy_num must be at least 1, got {self.occupy_num}")

        structure = self.structure
        if structure is not None:
            structure = validate_structure(np.array(structure, dtype=float), n, m)

        if self.sample_names is None:
            sample_names = [f"{self.name}.{i + 1}" for i in range(m)]
        else:
            sample_names = [str(s) for s in self.sample_names]
            if len(sample_names) != m:
                raise ValueError(f"expected {m} sample names, got {len(sample_names)}")

        intervals = self.intervals
        if intervals is not None:
            intervals = pd.Index(intervals)
            if len(intervals) != n:
                raise DimensionMismatchError(
                    f"{len(intervals)} interval labels for {n} intervals"
                )

        occupancy_state = occupancy.sum(axis=1) >= self.occupy_num
        mean, var, mean_scale = weighted_mean_var(values, structure)

        derived = {
            "values": values,
            "occupancy": occupancy,
            "structure": structure,
            "sample_names": sample_names,
            "intervals": intervals,
            "occupancy_state": occupancy_state,
            "mean": mean,
            "var": var,
            "mean_scale": mean_scale,
        }
        for key, value in derived.items():
            if isinstance(value, np.ndarray):
                value.flags.writeable = False
            object.__setattr__(self, key, value)

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        signal_cols: Sequence[str],
        occupancy_cols: Optional[Sequence[str]] = None,
        occupy_num: int = 1,
        name: str = "condition",
    ) -> "Condition":
        """Build a condition from columns of an interval table, keeping its row index."""
        signal_cols = list(signal_cols)
        occupancy = None
        if occupancy_cols is not None:
            occupancy = frame[list(occupancy_cols)].to_numpy().astype(bool)
        return cls(
            values=frame[signal_cols].to_numpy(dtype=float),
            occupancy=occupancy,
            occupy_num=occupy_num,
            name=name,
            sample_names=signal_cols,
            intervals=frame.index,
        )

    @property
    def n_intervals(self) -> int:
        return self.values.shape[0]

    @property
    def n_samples(self) -> int:
        return self.values.shape[1]

    @property
    def has_replicates(self) -> bool:
        return self.n_samples > 1

    @property
    def df(self) -> int:
        """Residual degrees of freedom of the per-interval variance."""
        return self.n_samples - 1

    @property
    def curve_id(self) -> Optional[str]:
        return None if self.curve is None else self.curve.curve_id

    def with_curve(self, curve: "MeanVarianceCurve", var_ratio: float) -> "Condition":
        """New condition referencing the given curve with its own variance ratio."""
        return replace(self, curve=curve, var_ratio=float(var_ratio))

    def with_values(self, values: np.ndarray) -> "Condition":
        """New condition with transformed signal; any fitted curve is dropped."""
        return replace(self, values=values, curve=None, var_ratio=1.0)

    def prior_var(self, mean: Optional[np.ndarray] = None) -> np.ndarray:
        """Scaled prior variance var_ratio * f0(mean); defaults to the condition's own means."""
        if self.curve is None:
            raise MissingCurveError(f"condition '{self.name}' has no associated mean-variance curve")
        if mean is None:
            mean = self.mean
        return self.var_ratio * self.curve.predict(mean)

    def to_frame(self) -> pd.DataFrame:
        """Per-interval summary table: mean, variance and occupancy state."""
        return pd.DataFrame(
            {
                "mean": self.mean,
                "var": self.var,
                "occupancy": self.occupancy_state,
            },
            index=self.intervals,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "n_intervals": self.n_intervals,
            "n_samples": self.n_samples,
            "n_occupied": int(self.occupancy_state.sum()),
            "curve_id": self.curve_id,
            "var_ratio": self.var_ratio,
            "prior_df": None if self.curve is None else self.curve.prior_df,
        }


def check_same_intervals(conditions: Sequence[Condition]) -> int:
    """
    Ensure conditions are aligned to the same interval list.

    Interval counts must agree; where every condition carries interval
    labels, the labels must agree too.

    Returns:
        The common number of intervals.
    """
    if len(conditions) == 0:
        raise ValueError("at least one condition is required")

    n = conditions[0].n_intervals
    for cond in conditions[1:]:
        if cond.n_intervals != n:
            raise DimensionMismatchError(
                f"condition '{cond.name}' has {cond.n_intervals} intervals, "
                f"expected {n} as in '{conditions[0].name}'"
            )

    labelled = [c for c in conditions if c.intervals is not None]
    if len(labelled) == len(conditions):
        first = labelled[0].intervals
        for cond in labelled[1:]:
            if not cond.intervals.equals(first):
                raise DimensionMismatchError(
                    f"interval labels of '{cond.name}' differ from those of '{labelled[0].name}'"
                )
    return n


def combine_conditions(
    conditions: Sequence[Condition],
    occupy_num: int = 1,
    name: str = "combined",
) -> Condition:
    """
    Combine conditions into one aggregate condition.

    Each input condition contributes one "sample": its mean signal, with its
    occupancy state as occupancy. The aggregate's structure matrices are
    diagonal with entries var_ratio * mean_scale, the relative variance of
    each condition mean. Interval count and order are preserved.

    Args:
        conditions: Conditions to combine.
        occupy_num: Occupancy threshold of the aggregate.
        name: Name of the aggregate.

    Returns:
        New Condition without an associated curve.
    """
    check_same_intervals(conditions)

    values = np.column_stack([c.mean for c in conditions])
    occupancy = np.column_stack([c.occupancy_state for c in conditions])
    rel_var = np.column_stack([c.var_ratio * c.mean_scale for c in conditions])

    logger.debug(f"Combining {len(conditions)} conditions into '{name}'")

    return Condition(
        values=values,
        occupancy=occupancy,
        occupy_num=occupy_num,
        structure=structure_from_weights(1.0 / rel_var),
        name=name,
        sample_names=[c.name for c in conditions],
        intervals=conditions[0].intervals,
    )
