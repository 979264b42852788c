"""
PeakVar Condition: replicate groups and structure matrices.

A Condition bundles the normalized samples of one biological condition
and derives per-interval occupancy, mean and variance. Structure matrices
describe unequal sample variances or correlations; the identity is used
when none are given.
"""

from .structure import (
    identity_structure,
    structure_from_weights,
    validate_structure,
    weighted_mean_var,
)

from .condition import (
    Condition,
    check_same_intervals,
    combine_conditions,
)

__all__ = [
    # Structure matrices
    "identity_structure",
    "structure_from_weights",
    "validate_structure",
    "weighted_mean_var",
    # Conditions
    "Condition",
    "check_same_intervals",
    "combine_conditions",
]
