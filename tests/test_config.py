"""Tests for the estimation configuration."""

import pytest
import numpy as np

from peakvar import EstimationConfig, get_config, set_config, reset_config, log_counts
from peakvar.curves import estimate_prior_df_from_fz


class TestEstimationConfig:
    """Tests for EstimationConfig validation and the global accessor."""

    def test_defaults(self):
        """Default values of the estimation settings."""
        config = EstimationConfig()
        assert config.offset == 0.5
        assert config.winsor_tail_p == (0.01, 0.1)
        assert config.hyper_tail_p == (0.01, 0.2)
        assert config.min_fz_intervals == 3
        assert config.to_dict()["p_adjust_method"] == "fdr_bh"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"offset": -1.0},
            {"min_common_peaks": 1},
            {"winsor_tail_p": (0.6, 0.5)},
            {"hyper_tail_p": (-0.1, 0.2)},
            {"prior_df_bounds": (10.0, 1.0)},
            {"local_span": 0.0},
        ],
    )
    def test_invalid(self, kwargs):
        """Out-of-range settings raise ValueError."""
        with pytest.raises(ValueError):
            EstimationConfig(**kwargs)

    def test_set_and_reset(self):
        """The global configuration is used by library functions."""
        set_config(EstimationConfig(offset=1.0))
        assert get_config().offset == 1.0
        assert np.allclose(log_counts([1.0]), [1.0])
        reset_config()
        assert get_config().offset == 0.5

    def test_min_fz_intervals(self):
        """Too few FZ statistics leave the prior df undefined."""
        fz = [np.array([0.1, -0.4, 0.9, -1.5])]
        set_config(EstimationConfig(min_fz_intervals=10))
        assert np.isnan(estimate_prior_df_from_fz(fz, [2]))
        reset_config()
        assert not np.isnan(estimate_prior_df_from_fz(fz, [2]))
