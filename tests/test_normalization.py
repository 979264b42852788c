"""Tests for MA normalization of samples and conditions."""

import dataclasses
import pytest
import numpy as np
import pandas as pd

from peakvar import (
    Condition,
    MeanVarianceCurve,
    FitMethod,
    RegressionError,
    log_counts,
    normalize,
    normalize_conditions,
)
from peakvar.normalization import (
    PSEUDO_REFERENCE,
    fit_ma_trend,
    ma_correlation,
    estimate_size_factors,
    select_baseline,
    pseudo_reference,
)


@pytest.fixture
def affine_samples(rng):
    """Four samples that are exact affine transforms of one profile."""
    base = rng.uniform(2.0, 12.0, size=300)
    shifts = [0.0, 0.8, -0.4, 1.5]
    scales = [1.0, 0.9, 1.2, 1.05]
    values = np.column_stack([c + s * base for c, s in zip(shifts, scales)])
    return values


class TestLogCounts:
    """Tests for the log2 transform of raw counts."""

    def test_offset(self):
        """Default offset of 0.5 before log2."""
        assert np.allclose(log_counts([0.0, 1.5]), [-1.0, 1.0])

    def test_custom_offset(self):
        """The offset argument overrides the configuration."""
        assert np.allclose(log_counts([1.0, 3.0], offset=1.0), [1.0, 2.0])

    def test_frame(self):
        """DataFrames keep their labels."""
        frame = pd.DataFrame({"a": [0, 1.5], "b": [3.5, 7.5]})
        logged = log_counts(frame)
        assert isinstance(logged, pd.DataFrame)
        assert np.allclose(logged["b"], [2.0, 3.0])

    def test_negative_counts(self):
        """Negative counts are rejected."""
        with pytest.raises(ValueError):
            log_counts([1.0, -1.0])


class TestFitMATrend:
    """Tests for the pairwise MA-trend regression."""

    def test_identical_samples(self):
        """A sample normalized against itself is left unchanged."""
        x = np.array([1.0, 2.0, 3.0, 4.0])
        record = fit_ma_trend(x, x)
        assert record.slope == 1.0
        assert record.intercept == 0.0
        assert record.cor_after == 0.0
        assert np.array_equal(record.apply(x), x)

    def test_exact_affine(self, rng):
        """An exact affine relation is recovered."""
        x = rng.uniform(2.0, 12.0, size=500)
        y = 0.5 + 1.2 * x
        record = fit_ma_trend(x, y)
        assert record.slope == pytest.approx(1.2, rel=1e-6)
        assert record.intercept == pytest.approx(0.5, abs=1e-6)
        assert np.allclose(record.apply(x), y)
        assert record.n_common == 500

    def test_robust_to_outliers(self, rng):
        """The Huber fit resists a few outlying peaks."""
        x = rng.uniform(2.0, 12.0, size=1000)
        y = 0.5 + 1.2 * x + rng.normal(scale=0.05, size=1000)
        outliers = rng.choice(1000, size=50, replace=False)
        y[outliers] += 3.0

        record = fit_ma_trend(x, y)
        assert record.slope == pytest.approx(1.2, abs=0.05)
        assert record.intercept == pytest.approx(0.5, abs=0.1)
        assert abs(record.cor_after) < abs(record.cor_before)

    def test_scale_method(self, rng):
        """The scale method matches mean and spread."""
        x = rng.uniform(2.0, 12.0, size=200)
        y = 1.0 + 2.0 * x
        record = fit_ma_trend(x, y, method="scale")
        assert record.slope == pytest.approx(2.0)
        assert record.intercept == pytest.approx(1.0)
        assert record.method == "scale"

    def test_common_mask(self, rng):
        """Only common peaks enter the regression."""
        x = rng.uniform(2.0, 12.0, size=100)
        y = x + 1.0
        common = np.zeros(100, dtype=bool)
        common[:10] = True
        y[~common] += rng.normal(size=90)
        record = fit_ma_trend(x, y, common)
        assert record.n_common == 10
        assert record.slope == pytest.approx(1.0)
        assert record.intercept == pytest.approx(1.0)

    def test_too_few_common_peaks(self):
        """Too few common peaks raise RegressionError."""
        common = np.array([True, False, False])
        with pytest.raises(RegressionError):
            fit_ma_trend(np.array([1.0, 2.0, 3.0]), np.array([2.0, 3.0, 5.0]), common)

    def test_no_spread(self):
        """Constant signal raises RegressionError."""
        with pytest.raises(RegressionError):
            fit_ma_trend(np.array([1.0, 1.0, 1.0]), np.array([3.0, 3.0, 3.0]))

    def test_unknown_method(self):
        """Unknown regression methods are rejected."""
        with pytest.raises(ValueError):
            fit_ma_trend(np.array([1.0, 2.0]), np.array([1.0, 2.0]), method="loess")

    def test_ma_correlation_of_trend(self):
        """M grows linearly with A for a doubled sample."""
        x = np.array([1.0, 2.0, 3.0, 4.0])
        assert ma_correlation(x, 2 * x) == pytest.approx(1.0)


class TestSizeFactors:
    """Tests for size factors and baseline selection."""

    def test_baseline_has_smallest_size_factor(self, rng):
        """Shifted samples give shifted size factors."""
        base = rng.uniform(2.0, 12.0, size=100)
        shifts = np.array([0.0, 1.0, -0.3, 2.0, 0.4])
        values = base[:, None] + shifts[None, :]
        occupancy = np.ones(values.shape, dtype=bool)

        log_sf = estimate_size_factors(values, occupancy)
        assert np.allclose(log_sf, shifts - 0.4)
        assert select_baseline(values, occupancy) == 4

    def test_baseline_minimizes_abs_size_factor(self, rng):
        """The baseline has the smallest absolute size factor."""
        values = rng.normal(loc=5.0, size=(200, 6)) + rng.normal(size=6)
        occupancy = rng.random((200, 6)) < 0.8
        log_sf = estimate_size_factors(values, occupancy)
        chosen = select_baseline(values, occupancy)
        assert abs(log_sf[chosen]) == np.min(np.abs(log_sf))

    def test_pseudo_reference_occupancy(self):
        """Trimmed-mean profile, occupied in at least half of the samples."""
        values = np.array([[1.0, 2.0, 3.0], [2.0, 2.0, 2.0], [0.0, 3.0, 6.0]])
        occupancy = np.array([[True, False, False], [True, True, False], [True, True, True]])
        profile, occupied = pseudo_reference(values, occupancy)
        assert np.allclose(profile, [2.0, 2.0, 3.0])
        assert occupied.tolist() == [False, True, True]


class TestNormalize:
    """Tests for within-group normalization."""

    def test_samples_mapped_to_baseline(self, affine_samples):
        """Affine samples are mapped onto the baseline."""
        result = normalize(affine_samples, labels=["s1", "s2", "s3", "s4"])
        base = result.labels.index(result.baseline)
        for j in range(4):
            assert np.allclose(result.values[:, j], affine_samples[:, base])
        record = result.records[result.baseline]
        assert record.slope == 1.0
        assert record.intercept == 0.0
        assert all(r.baseline == result.baseline for r in result.records.values())

    def test_explicit_baseline(self, affine_samples):
        """A baseline given by index."""
        result = normalize(affine_samples, baseline=2)
        assert result.baseline == "sample3"
        assert np.allclose(result.values[:, 0], affine_samples[:, 2])

    def test_pseudo_reference(self, affine_samples):
        """Normalization against the pseudo-reference."""
        result = normalize(affine_samples, baseline=PSEUDO_REFERENCE)
        assert result.baseline == PSEUDO_REFERENCE
        assert len(result.records) == 4
        for j in range(1, 4):
            assert np.allclose(result.values[:, j], result.values[:, 0])

    def test_frame_input(self, affine_samples):
        """DataFrame input keeps sample and interval labels."""
        frame = pd.DataFrame(
            affine_samples,
            columns=["a1", "a2", "b1", "b2"],
            index=[f"peak{i}" for i in range(len(affine_samples))],
        )
        result = normalize(frame)
        assert result.labels == ["a1", "a2", "b1", "b2"]
        assert result.to_frame().index.equals(frame.index)
        assert set(result.records_frame().index) == {"a1", "a2", "b1", "b2"}

        cond = result.to_condition(["b1", "b2"], name="B")
        assert cond.sample_names == ["b1", "b2"]
        assert cond.intervals.equals(frame.index)
        assert np.allclose(cond.var, 0.0)

    def test_unknown_baseline(self, affine_samples):
        """Unknown baseline labels are rejected."""
        with pytest.raises(ValueError):
            normalize(affine_samples, baseline="missing")

    def test_occupancy_shape(self, affine_samples):
        """Occupancy must match the signal matrix."""
        with pytest.raises(ValueError):
            normalize(affine_samples, occupancy=np.ones((3, 4), dtype=bool))


class TestNormalizeConditions:
    """Tests for between-condition normalization."""

    def test_variance_rescaled(self, rng):
        """The condition variance is rescaled by the squared slope."""
        mu = rng.uniform(2.0, 10.0, size=200)
        a_values = mu[:, None] + rng.normal(scale=0.3, size=(200, 3))
        a = Condition(a_values, name="A")
        b = Condition(0.3 + 1.1 * a_values, name="B")

        result = normalize_conditions([a, b], baseline="A")
        assert result.baseline == "A"
        assert result.records["B"].slope == pytest.approx(1 / 1.1)
        new_a, new_b = result.conditions
        assert np.allclose(new_b.mean, a.mean)
        assert np.allclose(new_b.var, a.var)
        assert np.allclose(new_a.values, a.values)
        # inputs are untouched
        assert np.allclose(b.values, 0.3 + 1.1 * a_values)

    def test_automatic_baseline(self, two_conditions):
        """Automatic baseline selection over conditions."""
        result = normalize_conditions(two_conditions)
        assert result.baseline in ("A", "B")
        assert len(result.size_factors) == 2
        assert [c.name for c in result.conditions] == ["A", "B"]

    def test_curves_dropped(self, two_conditions):
        """Normalized conditions lose their curves; inputs keep them."""
        curve = MeanVarianceCurve(FitMethod.PARAMETRIC, {"c0": 0.1, "c1": 1.0}, prior_df=5.0)
        conds = [c.with_curve(curve, 1.0) for c in two_conditions]
        result = normalize_conditions(conds)
        assert all(c.curve is None for c in result.conditions)
        assert all(c.curve is curve for c in conds)

    def test_duplicate_names(self, rng):
        """Condition names must be unique."""
        a = Condition(rng.normal(size=(20, 2)), name="A")
        with pytest.raises(ValueError):
            normalize_conditions([a, a])

    def test_no_common_peaks(self, rng):
        """Automatic baseline selection fails when no condition is occupied anywhere."""
        empty = np.zeros((20, 2), dtype=bool)
        a = Condition(rng.normal(size=(20, 2)), occupancy=empty, name="A")
        b = Condition(rng.normal(size=(20, 2)), occupancy=empty, name="B")
        with pytest.raises(RegressionError):
            normalize_conditions([a, b])

    def test_result_frozen(self, affine_samples):
        """Normalization results cannot be reassigned."""
        result = normalize(affine_samples)
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.baseline = "sample1"
