"""
PeakVar Curves: mean-variance curves and their hyperparameters.

The unscaled curve f0(mean) is fitted once over a set of conditions and
shared by all of them. The prior degrees of freedom d0 and each
condition's variance ratio are estimated from the moments of the FZ
statistics log(var / f0(mean)).
"""

from .model import (
    FitMethod,
    MeanVarianceCurve,
)

from .prior import (
    PriorParams,
    trigamma_inverse,
    winsorize,
    winsorized_log_f_moments,
    fz_statistics,
    estimate_prior_df_from_fz,
    estimate_var_ratio_from_fz,
    estimate_prior_params,
    estimate_prior_df,
    estimate_prior_df_robust,
    set_prior_df,
)

from .fit import (
    pool_mean_var,
    fit_mean_var_curve,
    extend_mean_var_curve,
)

__all__ = [
    # Curve
    "FitMethod",
    "MeanVarianceCurve",
    # Hyperparameters
    "PriorParams",
    "trigamma_inverse",
    "winsorize",
    "winsorized_log_f_moments",
    "fz_statistics",
    "estimate_prior_df_from_fz",
    "estimate_var_ratio_from_fz",
    "estimate_prior_params",
    "estimate_prior_df",
    "estimate_prior_df_robust",
    "set_prior_df",
    # Fitting
    "pool_mean_var",
    "fit_mean_var_curve",
    "extend_mean_var_curve",
]
