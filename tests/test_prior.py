"""Tests for prior degrees of freedom and variance ratio estimation."""

import pytest
import numpy as np
from scipy import special

from peakvar import ConvergenceError
from peakvar.curves import (
    trigamma_inverse,
    winsorize,
    winsorized_log_f_moments,
    estimate_prior_df_from_fz,
    estimate_var_ratio_from_fz,
)
from peakvar.curves.prior import log_chisq_bias, trigamma


def log_f_sample(rng, d1, d2, n):
    return np.log(rng.f(d1, d2, size=n))


class TestSpecialFunctions:
    """Tests for trigamma helpers and the log chi-square bias."""

    @pytest.mark.parametrize("y", [0.1, 1.0, 5.0, 50.0, 500.0])
    def test_trigamma_inverse_round_trip(self, y):
        """trigamma_inverse inverts trigamma."""
        x = float(special.polygamma(1, y))
        assert trigamma_inverse(x) == pytest.approx(y, rel=1e-6)

    def test_trigamma_inverse_invalid(self):
        """Non-positive arguments are rejected."""
        with pytest.raises(ValueError):
            trigamma_inverse(0.0)
        with pytest.raises(ValueError):
            trigamma_inverse(-1.0)

    def test_trigamma_inverse_iteration_cap(self):
        """Hitting the iteration cap raises ConvergenceError."""
        with pytest.raises(ConvergenceError):
            trigamma_inverse(2.0, max_iter=1, tol=1e-30)

    def test_infinite_df(self):
        """Infinite degrees of freedom give zero."""
        assert trigamma(np.inf) == 0.0
        assert log_chisq_bias(np.inf) == 0.0

    def test_log_chisq_bias(self, rng):
        """The bias matches simulated log chi-square means."""
        sample = np.log(rng.chisquare(4, size=200000) / 4)
        assert log_chisq_bias(4) == pytest.approx(sample.mean(), abs=0.01)


class TestWinsorizedMoments:
    """Tests for the (winsorized) log-F moments."""

    def test_closed_form(self):
        """Without winsorization the moments are closed form."""
        mean, var = winsorized_log_f_moments(2, 6)
        assert mean == pytest.approx(log_chisq_bias(2) - log_chisq_bias(6))
        assert var == pytest.approx(float(special.polygamma(1, 1) + special.polygamma(1, 3)))

    def test_tiny_tails_match_closed_form(self):
        """Quadrature with tiny tails matches the closed form."""
        exact = winsorized_log_f_moments(2, 6)
        integrated = winsorized_log_f_moments(2, 6, (1e-10, 1e-10))
        assert integrated[0] == pytest.approx(exact[0], abs=1e-3)
        assert integrated[1] == pytest.approx(exact[1], abs=1e-3)

    def test_match_sample_moments(self, rng):
        """Winsorized moments match simulated ones."""
        tail_p = (0.01, 0.1)
        z = winsorize(log_f_sample(rng, 2, 8, 200000), tail_p)
        mean, var = winsorized_log_f_moments(2, 8, tail_p)
        assert mean == pytest.approx(z.mean(), abs=0.02)
        assert var == pytest.approx(z.var(), abs=0.05)

    def test_infinite_denominator(self, rng):
        """An infinite denominator df reduces to log chi-square."""
        tail_p = (0.05, 0.05)
        z = winsorize(np.log(rng.chisquare(4, size=200000) / 4), tail_p)
        mean, var = winsorized_log_f_moments(4, np.inf, tail_p)
        assert mean == pytest.approx(z.mean(), abs=0.02)
        assert var == pytest.approx(z.var(), abs=0.05)

    def test_winsorizing_reduces_variance(self):
        """Winsorization shrinks the variance."""
        _, full = winsorized_log_f_moments(2, 6)
        _, clipped = winsorized_log_f_moments(2, 6, (0.05, 0.05))
        assert clipped < full

    def test_winsorize_clips(self):
        """Values beyond the tail quantiles are clipped."""
        x = np.arange(101, dtype=float)
        clipped = winsorize(x, (0.1, 0.2))
        assert clipped.min() == pytest.approx(10.0)
        assert clipped.max() == pytest.approx(80.0)


class TestPriorDf:
    """Tests for the prior degrees of freedom estimators."""

    def test_recovers_prior_df(self, rng):
        """The moment estimator recovers the simulated d0."""
        fz = [log_f_sample(rng, 2, 8, 3000), log_f_sample(rng, 2, 8, 3000)]
        d0 = estimate_prior_df_from_fz(fz, [2, 2])
        assert 4 < d0 < 25

    def test_constant_statistics_give_infinite_df(self):
        """No excess spread gives an infinite d0."""
        fz = [np.full(100, -0.3), np.full(50, -0.3)]
        assert np.isinf(estimate_prior_df_from_fz(fz, [2, 3]))
        assert np.isinf(estimate_prior_df_from_fz(fz, [2, 3], robust=True))

    def test_too_few_statistics(self):
        """Too few statistics leave d0 undefined."""
        assert np.isnan(estimate_prior_df_from_fz([np.array([0.1, 0.2])], [2]))
        assert np.isnan(estimate_prior_df_from_fz([np.array([0.1]), np.array([0.2])], [2, 2]))

    def test_order_invariance(self, rng):
        """The estimate does not depend on the order of the inputs."""
        fz1 = log_f_sample(rng, 2, 8, 500)
        fz2 = log_f_sample(rng, 4, 8, 800)
        forward = estimate_prior_df_from_fz([fz1, fz2], [2, 4])
        backward = estimate_prior_df_from_fz([fz2, fz1], [4, 2])
        assert forward == pytest.approx(backward, rel=1e-10)

    def test_robust_without_tails_matches_moment_estimate(self, rng):
        """The robust estimator without tails equals the moment estimator."""
        fz = [log_f_sample(rng, 2, 8, 3000), log_f_sample(rng, 2, 8, 3000)]
        plain = estimate_prior_df_from_fz(fz, [2, 2])
        robust = estimate_prior_df_from_fz(fz, [2, 2], robust=True, tail_p=(0.0, 0.0))
        assert robust == pytest.approx(plain, rel=1e-5)

    def test_robust_resists_outliers(self, rng):
        """Outliers lower the moment estimate more than the robust one."""
        fz = []
        for _ in range(2):
            z = log_f_sample(rng, 2, 8, 3000)
            z[:150] += 8.0
            fz.append(z)
        plain = estimate_prior_df_from_fz(fz, [2, 2])
        robust = estimate_prior_df_from_fz(fz, [2, 2], robust=True)
        assert robust > 2 * plain


class TestVarRatio:
    """Tests for the variance ratio estimator."""

    def test_recovers_ratio(self, rng):
        """The moment estimator recovers a doubled variance."""
        fz = np.log(2.0) + log_f_sample(rng, 2, 8, 5000)
        assert estimate_var_ratio_from_fz(fz, 2, 8.0) == pytest.approx(2.0, rel=0.1)

    def test_robust_recovers_ratio(self, rng):
        """The robust estimator recovers a doubled variance."""
        fz = np.log(2.0) + log_f_sample(rng, 2, 8, 5000)
        assert estimate_var_ratio_from_fz(fz, 2, 8.0, robust=True) == pytest.approx(2.0, rel=0.15)

    def test_undefined(self):
        """Empty input or undefined d0 gives NaN."""
        assert np.isnan(estimate_var_ratio_from_fz(np.empty(0), 2, 8.0))
        assert np.isnan(estimate_var_ratio_from_fz(np.zeros(10), 2, np.nan))
