"""Shared fixtures: simulated replicate signal following the mean-variance model."""

import pytest
import numpy as np

from peakvar import Condition, reset_config


def true_variance(mu):
    """Variance curve used for simulation: 0.05 + 2 * 2^-mu."""
    return 0.05 + 2.0 * np.exp2(-mu)


def simulate_signal(rng, n=1000, prior_df=10.0):
    """Interval means and interval-specific variances drawn from the prior."""
    mu = rng.uniform(2.0, 10.0, size=n)
    sigma2 = true_variance(mu) / (rng.chisquare(prior_df, size=n) / prior_df)
    return mu, sigma2


def draw_condition(rng, mu, sigma2, m, name, shift=None):
    values = mu[:, None] + rng.normal(size=(len(mu), m)) * np.sqrt(sigma2)[:, None]
    if shift is not None:
        values = values + np.asarray(shift)[:, None]
    return Condition(values=values, name=name)


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts from the default estimation configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def rng():
    return np.random.default_rng(20240601)


@pytest.fixture
def signal(rng):
    return simulate_signal(rng)


@pytest.fixture
def two_conditions(rng, signal):
    """Two triplicate conditions with no true differences."""
    mu, sigma2 = signal
    return [
        draw_condition(rng, mu, sigma2, 3, "A"),
        draw_condition(rng, mu, sigma2, 3, "B"),
    ]


@pytest.fixture
def exact_condition():
    """
    Duplicate condition whose sample variances lie exactly on the simulation curve.

    Samples are mu - delta and mu + delta with 2 * delta^2 = f(mu).
    """
    mu = np.linspace(2.0, 10.0, 200)
    delta = np.sqrt(true_variance(mu) / 2.0)
    values = np.column_stack([mu - delta, mu + delta])
    return Condition(values=values, name="exact")
