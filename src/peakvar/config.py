"""
PeakVar: numerical configuration.

All tolerances, iteration caps and default tail proportions used by the
estimation routines live here. Functions read the global configuration at
call time; explicit keyword arguments always take precedence.

Example:
    >>> from peakvar.config import EstimationConfig, set_config
    >>> set_config(EstimationConfig(winsor_tail_p=(0.05, 0.1)))
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass
class EstimationConfig:
    """
    Configuration for normalization and hyperparameter estimation.

    Attributes:
        offset: Pseudo-count added before log2-transforming raw counts.
        min_common_peaks: Minimum number of common-peak intervals for an
            MA-trend regression.
        huber_t: Tuning constant of the Huber norm in robust MA regression.
        rlm_max_iter: Iteration cap of the robust regression.
        rlm_tol: Convergence tolerance of the robust regression.
        newton_tol: Relative tolerance of the trigamma inversion.
        newton_max_iter: Iteration cap of the trigamma inversion.
        min_fz_intervals: Minimum pooled number of FZ statistics required to
            estimate the prior degrees of freedom.
        winsor_tail_p: Lower/upper tail proportions for robust estimation.
        hyper_tail_p: Lower/upper tail proportions used when estimating
            hyperparameters for hypervariability tests.
        prior_df_bounds: Search bracket for the robust d0 root finder.
        local_span: Fraction of points used by each local regression.
        lowess_iterations: Robustifying iterations of the local regression.
        p_adjust_method: Multiple-testing method (statsmodels name).
    """
    offset: float = 0.5
    min_common_peaks: int = 2
    huber_t: float = 1.345
    rlm_max_iter: int = 50
    rlm_tol: float = 1e-8
    newton_tol: float = 1e-10
    newton_max_iter: int = 50
    min_fz_intervals: int = 3
    winsor_tail_p: Tuple[float, float] = (0.01, 0.1)
    hyper_tail_p: Tuple[float, float] = (0.01, 0.2)
    prior_df_bounds: Tuple[float, float] = (1e-2, 1e6)
    local_span: float = 2.0 / 3.0
    lowess_iterations: int = 3
    p_adjust_method: str = "fdr_bh"

    def __post_init__(self):
        """Validate configuration."""
        if self.offset < 0:
            raise ValueError(f"offset must be non-negative, got {self.offset}")
        if self.min_common_peaks < 2:
            raise ValueError("min_common_peaks must be at least 2")
        if self.min_fz_intervals < 2:
            raise ValueError("min_fz_intervals must be at least 2")
        for name in ("winsor_tail_p", "hyper_tail_p"):
            low, up = getattr(self, name)
            if low < 0 or up < 0 or low + up >= 1:
                raise ValueError(f"{name} must be non-negative and sum below 1, got {(low, up)}")
        lo, hi = self.prior_df_bounds
        if not 0 < lo < hi:
            raise ValueError(f"prior_df_bounds must satisfy 0 < low < high, got {(lo, hi)}")
        if not 0 < self.local_span <= 1:
            raise ValueError(f"local_span must lie in (0, 1], got {self.local_span}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Global configuration
_global_config: Optional[EstimationConfig] = None


def get_config() -> EstimationConfig:
    """Get the global estimation configuration."""
    global _global_config
    if _global_config is None:
        _global_config = EstimationConfig()
    return _global_config


def set_config(config: EstimationConfig) -> None:
    """Set the global estimation configuration."""
    global _global_config
    _global_config = config
    logger.debug(f"Estimation config set: {config.to_dict()}")


def reset_config() -> None:
    """Restore the default configuration."""
    global _global_config
    _global_config = None
