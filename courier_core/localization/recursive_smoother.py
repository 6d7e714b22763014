"""
Recursive Smoother for GNSS Fixes.

Denoises accepted location fixes per tracked entity. The default strategy
is a per-axis 1-D Kalman filter (no velocity state) on latitude and
longitude, driven by the fix's reported accuracy:

    predict:  P = P + q
    gain:     g = P / (P + R),   R = accuracy_m²
    update:   x = x + g * (z - x)
              P = P * (1 - g)

Alternative strategies share the same interface and FilterState:
- EXPONENTIAL: x = α·z + (1-α)·x, for anchor-less low-power operation
- MOVING_AVERAGE: mean of the last N accepted fixes
- BLENDED: w·kalman + (1-w)·moving_average

The smoothers themselves are stateless; all per-entity memory lives in a
FilterState so entities never share mutable state.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Optional, Tuple

import numpy as np

from courier_core.proto.samples import RawSample
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class SmoothingMode(Enum):
    """Smoothing strategy."""
    KALMAN = "kalman"
    EXPONENTIAL = "exponential"
    MOVING_AVERAGE = "moving_average"
    BLENDED = "blended"


@dataclass
class SmootherConfig:
    """
    Configuration for the recursive smoother.

    Attributes:
        mode: Smoothing strategy
        process_noise: Variance added per update in the predict step
        alpha: Weight of the new fix in EXPONENTIAL mode (0, 1]
        window_size: Number of fixes averaged in MOVING_AVERAGE mode
        blend_weight: Kalman weight in BLENDED mode [0, 1]
        fallback_accuracy_m: Accuracy assumed for a first fix with no usable accuracy
    """

    mode: SmoothingMode = SmoothingMode.KALMAN
    process_noise: float = 0.1
    alpha: float = 0.3
    window_size: int = 5
    blend_weight: float = 0.7
    fallback_accuracy_m: float = 25.0

    def __post_init__(self):
        """Validate configuration."""
        assert self.process_noise >= 0, "process_noise must be non-negative"
        assert 0 < self.alpha <= 1, "alpha must be in (0, 1]"
        assert self.window_size >= 1, "window_size must be at least 1"
        assert 0 <= self.blend_weight <= 1, "blend_weight must be in [0, 1]"
        assert self.fallback_accuracy_m > 0, "fallback_accuracy_m must be positive"


@dataclass(frozen=True)
class SmoothedFix:
    """Smoothed position produced from one accepted fix."""
    latitude: float
    longitude: float
    accuracy_m: float
    timestamp_ms: int
    altitude_m: Optional[float] = None

    @property
    def lat_lon(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass
class FilterState:
    """
    Per-entity smoother memory.

    Attributes:
        estimate: Current [lat, lon] estimate (None until initialized)
        variance: Current [var_lat, var_lon] in m² (None until initialized)
        initialized: True once the first usable fix has been applied
        window: Recent (lat, lon, accuracy_m) fixes for averaging strategies
        last_output: Most recent smoothed fix
        update_count: Number of fixes applied since the last reset
    """

    window_size: int = 5
    estimate: Optional[np.ndarray] = None
    variance: Optional[np.ndarray] = None
    initialized: bool = False
    window: Deque[Tuple[float, float, float]] = field(default_factory=deque)
    last_output: Optional[SmoothedFix] = None
    update_count: int = 0

    def __post_init__(self):
        self.window = deque(self.window, maxlen=self.window_size)

    def reset(self):
        """Return to the uninitialized state."""
        self.estimate = None
        self.variance = None
        self.initialized = False
        self.window.clear()
        self.last_output = None
        self.update_count = 0

    @property
    def largest_variance(self) -> Optional[float]:
        if self.variance is None:
            return None
        return float(np.max(self.variance))


class Smoother:
    """
    Base smoothing strategy.

    Usage:
        smoother = create_smoother(SmootherConfig(mode=SmoothingMode.KALMAN))
        state = smoother.new_state()

        for sample in accepted_samples:
            fix = smoother.update(state, sample)

        smoother.reset(state)

    Subclasses implement _apply(state, measurement, measurement_variance, sample).
    """

    mode = SmoothingMode.KALMAN

    def __init__(self, config: Optional[SmootherConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        """
        Initialize smoother.

        Args:
            config: Smoother configuration (uses defaults if None)
            metrics: Metrics collector (private collector if None)
        """
        self.config = config or SmootherConfig(mode=self.mode)
        self.metrics = metrics or MetricsCollector()

    def new_state(self) -> FilterState:
        """Fresh, uninitialized state sized for this smoother."""
        return FilterState(window_size=self.config.window_size)

    def reset(self, state: FilterState):
        """Clear a filter state; replaying the same fixes afterwards reproduces the same output."""
        state.reset()

    def update(self, state: FilterState, sample: RawSample) -> Optional[SmoothedFix]:
        """
        Apply one accepted fix.

        Args:
            state: Entity's filter state (mutated)
            sample: Accepted location fix

        Returns:
            Smoothed fix. Non-finite coordinates leave the state untouched and
            return the previous output (None if there is none).
        """
        if not sample.has_finite_position:
            logger.warning("Non-finite fix at t=%d ignored by smoother", sample.timestamp_ms)
            self.metrics.increment('smoother_malformed_inputs')
            return state.last_output

        measurement = np.array([sample.latitude, sample.longitude], dtype=float)
        measurement_variance = self._measurement_variance(state, sample)

        fix = self._apply(state, measurement, measurement_variance, sample)
        state.initialized = True
        state.last_output = fix
        state.update_count += 1
        self.metrics.increment('smoother_updates')
        return fix

    def _measurement_variance(self, state: FilterState, sample: RawSample) -> float:
        accuracy = sample.accuracy_m
        if math.isfinite(accuracy) and accuracy > 0:
            # Tiny accuracies square to zero
            variance = accuracy ** 2
            if variance > 0:
                return variance

        substitute = state.largest_variance
        if substitute is None or not (math.isfinite(substitute) and substitute > 0):
            substitute = self.config.fallback_accuracy_m ** 2
        logger.warning(
            "Fix at t=%d has unusable accuracy %r, substituting variance %.3f",
            sample.timestamp_ms, accuracy, substitute,
        )
        self.metrics.increment('smoother_malformed_inputs')
        return substitute

    def _apply(self, state: FilterState, measurement: np.ndarray,
               measurement_variance: float, sample: RawSample) -> SmoothedFix:
        raise NotImplementedError

    @staticmethod
    def _make_fix(position: np.ndarray, accuracy_m: float, sample: RawSample) -> SmoothedFix:
        return SmoothedFix(
            latitude=float(position[0]),
            longitude=float(position[1]),
            accuracy_m=float(accuracy_m),
            timestamp_ms=sample.timestamp_ms,
            altitude_m=sample.altitude_m if sample.has_altitude else None,
        )


class KalmanSmoother(Smoother):
    """Per-axis 1-D Kalman filter on latitude and longitude."""

    mode = SmoothingMode.KALMAN

    def _apply(self, state, measurement, measurement_variance, sample):
        if state.estimate is None:
            # First fix seeds the filter and is returned unchanged
            state.estimate = measurement.copy()
            state.variance = np.full(2, measurement_variance)
            return self._make_fix(measurement, math.sqrt(measurement_variance), sample)

        state.variance = state.variance + self.config.process_noise
        gain = state.variance / (state.variance + measurement_variance)

        state.estimate = state.estimate + gain * (measurement - state.estimate)
        state.variance = state.variance * (1.0 - gain)

        self.metrics.record_histogram('smoother_gain', float(np.mean(gain)))
        return self._make_fix(state.estimate, math.sqrt(float(np.mean(state.variance))), sample)


class ExponentialSmoother(Smoother):
    """Exponential smoothing: x = α·z + (1-α)·x."""

    mode = SmoothingMode.EXPONENTIAL

    def _apply(self, state, measurement, measurement_variance, sample):
        if state.estimate is None:
            state.estimate = measurement.copy()
            state.variance = np.full(2, measurement_variance)
            return self._make_fix(measurement, math.sqrt(measurement_variance), sample)

        alpha = self.config.alpha
        state.estimate = alpha * measurement + (1.0 - alpha) * state.estimate
        state.variance = alpha * measurement_variance + (1.0 - alpha) * state.variance
        return self._make_fix(state.estimate, math.sqrt(float(np.mean(state.variance))), sample)


class MovingAverageSmoother(Smoother):
    """Mean of the last window_size accepted fixes."""

    mode = SmoothingMode.MOVING_AVERAGE

    def _apply(self, state, measurement, measurement_variance, sample):
        state.window.append((float(measurement[0]), float(measurement[1]),
                             math.sqrt(measurement_variance)))
        window = np.array(state.window)
        mean = window.mean(axis=0)
        return self._make_fix(mean[:2], mean[2], sample)


class BlendedSmoother(Smoother):
    """
    Weighted blend of the Kalman and moving-average strategies.

    Both strategies advance on every fix; the Kalman part owns
    estimate/variance and the moving average owns the window.
    """

    mode = SmoothingMode.BLENDED

    def __init__(self, config: Optional[SmootherConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        super().__init__(config, metrics)
        self._kalman = KalmanSmoother(self.config, self.metrics)
        self._average = MovingAverageSmoother(self.config, self.metrics)

    def _apply(self, state, measurement, measurement_variance, sample):
        kalman = self._kalman._apply(state, measurement, measurement_variance, sample)
        average = self._average._apply(state, measurement, measurement_variance, sample)

        w = self.config.blend_weight
        position = w * np.array(kalman.lat_lon) + (1.0 - w) * np.array(average.lat_lon)
        accuracy = w * kalman.accuracy_m + (1.0 - w) * average.accuracy_m
        return self._make_fix(position, accuracy, sample)


_SMOOTHERS = {
    SmoothingMode.KALMAN: KalmanSmoother,
    SmoothingMode.EXPONENTIAL: ExponentialSmoother,
    SmoothingMode.MOVING_AVERAGE: MovingAverageSmoother,
    SmoothingMode.BLENDED: BlendedSmoother,
}


def create_smoother(config: Optional[SmootherConfig] = None,
                    metrics: Optional[MetricsCollector] = None) -> Smoother:
    """
    Build the smoother selected by config.mode.

    Args:
        config: Smoother configuration (Kalman defaults if None)
        metrics: Metrics collector shared with the caller

    Returns:
        Smoother instance
    """
    config = config or SmootherConfig()
    return _SMOOTHERS[config.mode](config, metrics)
