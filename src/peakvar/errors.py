"""
PeakVar error hierarchy.

Estimation routines report "not enough signal" through NaN/inf sentinels
and a logged warning. The exceptions below are reserved for structural
failures that leave no usable result.
"""


class PeakVarError(Exception):
    """Base class for all PeakVar errors."""


class RegressionError(PeakVarError):
    """MA-trend regression could not be performed (too few common peaks, degenerate A values)."""


class ConvergenceError(PeakVarError):
    """An iterative numerical routine did not converge within its iteration cap."""


class FitConvergenceError(ConvergenceError):
    """
    Parametric mean-variance curve fit failed to converge.

    Recoverable: retry with explicit initial coefficients.
    """


class InsufficientDataError(PeakVarError):
    """Too few intervals or replicates to estimate a quantity at all."""


class MissingCurveError(PeakVarError):
    """A test requires a fitted mean-variance curve that is absent or not shared."""


class DimensionMismatchError(PeakVarError, ValueError):
    """Jointly processed objects are not aligned to the same intervals."""
