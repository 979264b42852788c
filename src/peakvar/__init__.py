"""
PeakVar: differential and hypervariable ChIP-seq signal analysis.

PeakVar normalizes signal intensities of many samples over a common set of
genomic intervals and models how the variance of the signal depends on its
mean with an empirical-Bayes mean-variance curve. It provides:
- MA normalization within and between groups of samples
- Mean-variance curve fitting (parametric or local regression)
- Prior degrees of freedom and variance ratio estimation
- Moderated differential, ANOVA-like and hypervariability tests
- Weighted sample distances for clustering

Example:
    >>> import peakvar as pv
    >>> norm = pv.normalize(pv.log_counts(counts), occupancy)
    >>> a = norm.to_condition(["a1", "a2"], name="A")
    >>> b = norm.to_condition(["b1", "b2"], name="B")
    >>> a, b = pv.normalize_conditions([a, b]).conditions
    >>> a, b = pv.fit_mean_var_curve([a, b])
    >>> result = pv.diff_test(a, b).to_frame()

License: MIT
"""

__version__ = "0.1.0"

from .errors import (
    PeakVarError,
    RegressionError,
    ConvergenceError,
    FitConvergenceError,
    InsufficientDataError,
    MissingCurveError,
    DimensionMismatchError,
)
from .config import EstimationConfig, get_config, set_config, reset_config
from .condition import Condition, combine_conditions, structure_from_weights
from .normalization import log_counts, normalize, normalize_conditions
from .curves import (
    MeanVarianceCurve,
    FitMethod,
    fit_mean_var_curve,
    extend_mean_var_curve,
    estimate_prior_df,
    estimate_prior_df_robust,
    set_prior_df,
)
from .inference import TestResult, diff_test, aov_test, var_test, estimate_hyper_params
from .distance import weighted_distance, distance_matrix

__all__ = [
    # Errors
    "PeakVarError",
    "RegressionError",
    "ConvergenceError",
    "FitConvergenceError",
    "InsufficientDataError",
    "MissingCurveError",
    "DimensionMismatchError",
    # Configuration
    "EstimationConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Conditions
    "Condition",
    "combine_conditions",
    "structure_from_weights",
    # Normalization
    "log_counts",
    "normalize",
    "normalize_conditions",
    # Curves
    "MeanVarianceCurve",
    "FitMethod",
    "fit_mean_var_curve",
    "extend_mean_var_curve",
    "estimate_prior_df",
    "estimate_prior_df_robust",
    "set_prior_df",
    # Inference
    "TestResult",
    "diff_test",
    "aov_test",
    "var_test",
    "estimate_hyper_params",
    # Distance
    "weighted_distance",
    "distance_matrix",
    "__version__",
]
