"""
Unit tests for the recursive smoother strategies.

Tests cover:
- Kalman seeding, gain and convergence
- Malformed accuracy and coordinates
- Exponential, moving-average and blended strategies
- Reset and replay reproducibility
- Per-entity state isolation
"""

import math

import numpy as np
import pytest

from courier_core.localization import (
    BlendedSmoother,
    ExponentialSmoother,
    KalmanSmoother,
    MovingAverageSmoother,
    SmootherConfig,
    SmoothingMode,
    create_smoother,
)
from courier_core.metrics import MetricsCollector
from tests.conftest import make_sample


def noisy_track(count: int = 30, seed: int = 7):
    """Stationary fixes scattered around (37.0, -122.0)."""
    rng = np.random.default_rng(seed)
    offsets = rng.normal(0.0, 0.00003, size=(count, 2))
    return [
        make_sample(37.0 + dlat, -122.0 + dlon, accuracy=5.0, t=1000 * (i + 1))
        for i, (dlat, dlon) in enumerate(offsets)
    ]


# =============================================================================
# Kalman
# =============================================================================


class TestKalmanSmoother:
    """Tests for the per-axis Kalman strategy."""

    def test_first_fix_returned_unchanged(self):
        """Test the first fix seeds the filter and is returned raw."""
        smoother = KalmanSmoother()
        state = smoother.new_state()

        fix = smoother.update(state, make_sample(37.0, -122.0, accuracy=5.0, t=0))

        assert fix.latitude == 37.0
        assert fix.longitude == -122.0
        assert fix.accuracy_m == pytest.approx(5.0)
        assert state.initialized
        assert state.variance.tolist() == pytest.approx([25.0, 25.0])

    def test_second_fix_applies_gain(self):
        """Test the update moves the estimate by g = P/(P+R)."""
        smoother = KalmanSmoother(SmootherConfig(process_noise=0.1))
        state = smoother.new_state()

        smoother.update(state, make_sample(37.0, -122.0, accuracy=5.0, t=0))
        fix = smoother.update(state, make_sample(37.001, -122.0, accuracy=5.0, t=1000))

        gain = 25.1 / 50.1
        assert fix.latitude == pytest.approx(37.0 + gain * 0.001)
        assert state.variance[0] == pytest.approx(25.1 * (1 - gain))

    def test_variance_non_increasing_and_converges(self):
        """Test stationary fixes shrink variance monotonically toward the mean."""
        smoother = KalmanSmoother()
        state = smoother.new_state()
        track = noisy_track(40)

        variances = []
        fix = None
        for sample in track:
            fix = smoother.update(state, sample)
            variances.append(state.largest_variance)

        assert all(b <= a + 1e-12 for a, b in zip(variances, variances[1:]))

        true_mean = np.mean([[s.latitude, s.longitude] for s in track], axis=0)
        assert fix.latitude == pytest.approx(true_mean[0], abs=0.00003)
        assert fix.longitude == pytest.approx(true_mean[1], abs=0.00003)
        assert fix.accuracy_m < 5.0

    def test_low_accuracy_fix_moves_estimate_less(self):
        """Test a noisier fix has a smaller gain."""
        smoother = KalmanSmoother()

        precise = smoother.new_state()
        smoother.update(precise, make_sample(37.0, -122.0, accuracy=5.0, t=0))
        precise_fix = smoother.update(precise, make_sample(37.001, -122.0, accuracy=5.0, t=1000))

        coarse = smoother.new_state()
        smoother.update(coarse, make_sample(37.0, -122.0, accuracy=5.0, t=0))
        coarse_fix = smoother.update(coarse, make_sample(37.001, -122.0, accuracy=20.0, t=1000))

        assert coarse_fix.latitude - 37.0 < precise_fix.latitude - 37.0


# =============================================================================
# Malformed input
# =============================================================================


class TestMalformedInput:
    """Tests for degenerate accuracy and coordinates."""

    def test_zero_accuracy_on_first_fix_uses_fallback(self):
        """Test zero accuracy without prior state uses the fallback accuracy."""
        metrics = MetricsCollector()
        smoother = KalmanSmoother(SmootherConfig(fallback_accuracy_m=25.0), metrics)
        state = smoother.new_state()

        fix = smoother.update(state, make_sample(accuracy=0.0, t=0))

        assert fix.accuracy_m == pytest.approx(25.0)
        assert metrics.get_counter('smoother_malformed_inputs') == 1

    def test_negative_accuracy_uses_largest_prior_variance(self):
        """Test negative accuracy is replaced by the largest prior variance."""
        smoother = KalmanSmoother(SmootherConfig(process_noise=0.0))
        state = smoother.new_state()

        smoother.update(state, make_sample(37.0, -122.0, accuracy=4.0, t=0))
        fix = smoother.update(state, make_sample(37.001, -122.0, accuracy=-1.0, t=1000))

        # R == P, so the gain is exactly one half
        assert fix.latitude == pytest.approx(37.0005)
        assert all(math.isfinite(v) for v in state.variance)

    def test_vanishing_accuracy_treated_as_unusable(self):
        """Test accuracies whose square underflows to zero never yield NaN."""
        metrics = MetricsCollector()
        smoother = create_smoother(SmootherConfig(process_noise=0.0), metrics)
        state = smoother.new_state()

        first = smoother.update(state, make_sample(37.0, -122.0, accuracy=1e-200, t=0))
        second = smoother.update(state, make_sample(37.001, -122.0, accuracy=1e-200, t=1000))

        assert first.accuracy_m == pytest.approx(25.0)
        assert math.isfinite(second.latitude) and math.isfinite(second.accuracy_m)
        assert second.latitude == pytest.approx(37.0005)
        assert metrics.get_counter('smoother_malformed_inputs') == 2

    def test_non_finite_coordinates_return_previous_output(self):
        """Test NaN coordinates leave the state untouched."""
        smoother = KalmanSmoother()
        state = smoother.new_state()

        first = smoother.update(state, make_sample(37.0, -122.0, t=0))
        result = smoother.update(state, make_sample(float('nan'), -122.0, t=1000))

        assert result == first
        assert state.update_count == 1

    def test_non_finite_first_fix_returns_none(self):
        """Test NaN coordinates on a fresh state produce no output."""
        smoother = KalmanSmoother()
        state = smoother.new_state()

        assert smoother.update(state, make_sample(float('nan'), float('nan'), t=0)) is None
        assert not state.initialized


# =============================================================================
# Alternative strategies
# =============================================================================


class TestAlternativeStrategies:
    """Tests for exponential, moving-average and blended smoothing."""

    def test_exponential(self):
        """Test x = alpha*z + (1-alpha)*x."""
        smoother = ExponentialSmoother(SmootherConfig(mode=SmoothingMode.EXPONENTIAL, alpha=0.3))
        state = smoother.new_state()

        smoother.update(state, make_sample(37.0, -122.0, t=0))
        fix = smoother.update(state, make_sample(37.001, -122.0, t=1000))

        assert fix.latitude == pytest.approx(37.0003)
        assert fix.longitude == pytest.approx(-122.0)

    def test_moving_average_window(self):
        """Test the mean covers only the last window_size fixes."""
        smoother = MovingAverageSmoother(SmootherConfig(mode=SmoothingMode.MOVING_AVERAGE, window_size=3))
        state = smoother.new_state()

        for i, lat in enumerate([37.000, 37.003, 37.006, 37.009]):
            fix = smoother.update(state, make_sample(lat, -122.0, t=1000 * i))

        assert fix.latitude == pytest.approx(37.006)
        assert len(state.window) == 3

    def test_blended(self):
        """Test blended output lies between its two components."""
        config = SmootherConfig(mode=SmoothingMode.BLENDED, blend_weight=0.7, window_size=5)
        blended = BlendedSmoother(config)
        kalman = KalmanSmoother(config)
        average = MovingAverageSmoother(config)

        states = [blended.new_state(), kalman.new_state(), average.new_state()]
        samples = [make_sample(37.0 + 0.001 * i, -122.0, t=1000 * i) for i in range(4)]

        for sample in samples:
            b = blended.update(states[0], sample)
            k = kalman.update(states[1], sample)
            a = average.update(states[2], sample)

        assert b.latitude == pytest.approx(0.7 * k.latitude + 0.3 * a.latitude)

    def test_create_smoother_selects_mode(self):
        """Test the factory returns the configured strategy."""
        for mode, cls in [
            (SmoothingMode.KALMAN, KalmanSmoother),
            (SmoothingMode.EXPONENTIAL, ExponentialSmoother),
            (SmoothingMode.MOVING_AVERAGE, MovingAverageSmoother),
            (SmoothingMode.BLENDED, BlendedSmoother),
        ]:
            assert isinstance(create_smoother(SmootherConfig(mode=mode)), cls)

    def test_invalid_alpha(self):
        """Test alpha outside (0, 1] is rejected."""
        with pytest.raises(AssertionError):
            SmootherConfig(alpha=0.0)


# =============================================================================
# Reset and isolation
# =============================================================================


class TestResetAndIsolation:
    """Tests for reproducibility and per-entity state."""

    @pytest.mark.parametrize("mode", list(SmoothingMode))
    def test_reset_then_replay_is_identical(self, mode):
        """Test resetting and replaying reproduces identical output."""
        smoother = create_smoother(SmootherConfig(mode=mode))
        state = smoother.new_state()
        track = noisy_track(12)

        first_run = [smoother.update(state, s) for s in track]
        smoother.reset(state)
        second_run = [smoother.update(state, s) for s in track]

        assert first_run == second_run

    def test_states_are_independent(self):
        """Test two entities sharing a smoother do not affect each other."""
        smoother = KalmanSmoother()
        a = smoother.new_state()
        b = smoother.new_state()

        smoother.update(a, make_sample(37.0, -122.0, t=0))
        smoother.update(a, make_sample(37.001, -122.0, t=1000))
        fix_b = smoother.update(b, make_sample(22.29, 114.17, t=0))

        assert fix_b.latitude == 22.29
        assert a.update_count == 2
        assert b.update_count == 1
