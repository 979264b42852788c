"""
PeakVar Inference: moderated tests built on a fitted mean-variance curve.

- diff_test: two conditions, moderated t test
- aov_test: two or more conditions, moderated F test
- var_test: observed vs. prior variance (hypervariability)
"""

from .results import (
    TestResult,
    adjust_pvalues,
)

from .differential import (
    moderated_variance,
    diff_test,
    aov_test,
)

from .variance import (
    var_test,
    estimate_hyper_params,
)

__all__ = [
    "TestResult",
    "adjust_pvalues",
    "moderated_variance",
    "diff_test",
    "aov_test",
    "var_test",
    "estimate_hyper_params",
]
