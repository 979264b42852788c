"""
PeakVar Curves: the mean-variance curve.

A MeanVarianceCurve is the unscaled function f0(mean) -> prior variance
together with the prior degrees of freedom d0. It is shared by reference
among all conditions fitted together; each condition rescales it by its own
variance ratio. Curves are immutable: any re-estimation creates a new
instance with a new ID.
"""

import uuid
import numpy as np
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Any, Union


class FitMethod(Enum):
    """
    Method used to fit the unscaled curve.

    PARAMETRIC: log v = log(c0 + c1 * 2^-mean), nonlinear least squares
    LOCAL: locally weighted regression of log variance on mean
    """
    PARAMETRIC = "parametric"
    LOCAL = "local"

    @classmethod
    def parse(cls, method: Union[str, "FitMethod"]) -> "FitMethod":
        if isinstance(method, cls):
            return method
        try:
            return cls(str(method).lower())
        except ValueError:
            raise ValueError(
                f"Unknown fit method: {method}. Use 'parametric' or 'local'."
            ) from None


def _new_curve_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, eq=False)
class MeanVarianceCurve:
    """
    Unscaled mean-variance curve with its prior degrees of freedom.

    Attributes:
        method: Fit method.
        params: For PARAMETRIC, ``{'c0': float, 'c1': float}``. For LOCAL,
            ``{'x': means, 'log_var': fitted log variances}`` on a sorted grid.
        prior_df: d0; ``inf`` means the curve is treated as exact, NaN means
            it could not be estimated.
        diagnostics: Fit statistics (observations used, residual sum of
            squares, how d0 was obtained).
        curve_id: Opaque identifier shared by all conditions using this curve.
    """
    method: FitMethod
    params: Dict[str, Any]
    prior_df: float = np.nan
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    curve_id: str = field(default_factory=_new_curve_id)

    def predict(self, mean) -> np.ndarray:
        """Evaluate the unscaled prior variance f0 at the given mean levels."""
        mean = np.asarray(mean, dtype=float)
        if self.method == FitMethod.PARAMETRIC:
            return self.params["c0"] + self.params["c1"] * np.exp2(-mean)
        # Constant extrapolation beyond the fitted range
        log_var = np.interp(mean, self.params["x"], self.params["log_var"])
        return np.exp(log_var)

    def __call__(self, mean) -> np.ndarray:
        return self.predict(mean)

    def with_prior_df(self, prior_df: float, **diagnostics) -> "MeanVarianceCurve":
        """New curve with the same shape, a new d0 and a new ID."""
        return replace(
            self,
            prior_df=float(prior_df),
            diagnostics={**self.diagnostics, **diagnostics},
            curve_id=_new_curve_id(),
        )

    @property
    def is_exact(self) -> bool:
        """Whether d0 is infinite, i.e. observed variances are ignored."""
        return bool(np.isinf(self.prior_df))

    def to_dict(self) -> Dict[str, Any]:
        params = {
            k: (v.tolist() if isinstance(v, np.ndarray) else v)
            for k, v in self.params.items()
        }
        return {
            "method": self.method.value,
            "params": params,
            "prior_df": self.prior_df,
            "curve_id": self.curve_id,
            "diagnostics": dict(self.diagnostics),
        }
