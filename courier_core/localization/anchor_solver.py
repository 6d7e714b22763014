"""
Anchor Solver (Weighted-Centroid Multilateration).

Estimates a venue-local position from distance readings to fixed anchors
(BLE beacons with RSSI-derived distance, or UWB two-way ranges).

Algorithm:
    1. Keep usable readings: registered anchor, finite values, not older
       than max_reading_age_ms, newest reading per anchor
    2. Require at least min_anchors (3) usable readings, else None
    3. Sort by range uncertainty ascending, keep the best max_anchors (4)
    4. Weighted centroid of anchor positions, w_i = 1 / (u_i + ε)
    5. residual = Σ w_i |r_i - ||p - a_i||| / Σ w_i
    6. confidence = clamp(1 / (1 + residual), 0.1, 0.9)

The centroid is an approximation that is robust to noisy ranges; results
carry method="weighted_centroid" so consumers can tell it apart from a
geometric solve.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from courier_core.proto.samples import AnchorReading, RangingSample, RangeKind
from courier_core.proto.position import SourceKind, TrilaterationResult, WEIGHTED_CENTROID
from courier_core.localization.anchor_registry import AnchorRegistry, DEFAULT_TX_POWER_DBM
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)

# Derived distances are capped at 10^6 m
MAX_DISTANCE_EXPONENT = 6.0


# =============================================================================
# RSSI -> distance
# =============================================================================

@dataclass
class RssiModel:
    """
    Log-distance path-loss model for beacon RSSI.

    Attributes:
        path_loss_exponent: Environment exponent n (2 = free space, 2.5 indoor default)
        min_distance_m: Floor for derived distances (m)
        relative_uncertainty: Derived range uncertainty as a fraction of distance
        smoothing_alpha: EMA weight of new RSSI per anchor (None = no smoothing)
        min_rssi_dbm: Weakest plausible RSSI; anything lower is malformed
        max_rssi_dbm: Strongest plausible RSSI; anything higher is malformed
    """

    path_loss_exponent: float = 2.5
    min_distance_m: float = 0.1
    relative_uncertainty: float = 0.3
    smoothing_alpha: Optional[float] = None
    min_rssi_dbm: float = -130.0
    max_rssi_dbm: float = 20.0

    def __post_init__(self):
        """Validate configuration."""
        assert self.path_loss_exponent > 0, "path_loss_exponent must be positive"
        assert self.min_distance_m > 0, "min_distance_m must be positive"
        assert self.relative_uncertainty >= 0, "relative_uncertainty must be non-negative"
        if self.smoothing_alpha is not None:
            assert 0 < self.smoothing_alpha <= 1, "smoothing_alpha must be in (0, 1]"
        assert self.min_rssi_dbm < self.max_rssi_dbm, "min_rssi_dbm must be below max_rssi_dbm"


def rssi_to_distance(rssi_dbm: float,
                     tx_power_dbm: float = DEFAULT_TX_POWER_DBM,
                     path_loss_exponent: float = 2.5,
                     min_distance_m: float = 0.1) -> float:
    """
    Convert RSSI to distance with the log-distance path-loss model.

        d = 10 ^ ((tx_power - rssi) / (10 · n))

    Args:
        rssi_dbm: Measured RSSI (dBm)
        tx_power_dbm: Calibrated RSSI at 1 m (dBm)
        path_loss_exponent: Path-loss exponent n
        min_distance_m: Lower bound on the result (m)

    Returns:
        Distance in meters, within [min_distance_m, 10 ^ MAX_DISTANCE_EXPONENT]
    """
    exponent = (tx_power_dbm - rssi_dbm) / (10.0 * path_loss_exponent)
    exponent = min(exponent, MAX_DISTANCE_EXPONENT)
    return max(min_distance_m, 10.0 ** exponent)


class RangeConverter:
    """
    Turn raw ranging samples into AnchorReadings for one tracked entity.

    Holds the per-anchor RSSI smoothing memory, so each entity needs its
    own converter.

    Usage:
        converter = RangeConverter(RssiModel(smoothing_alpha=0.3))
        reading = converter.convert(sample, registry)
        if reading is not None:
            readings.append(reading)
    """

    def __init__(self, model: Optional[RssiModel] = None,
                 default_range_uncertainty_m: float = 0.3,
                 metrics: Optional[MetricsCollector] = None):
        self.model = model or RssiModel()
        self.default_range_uncertainty_m = default_range_uncertainty_m
        self.metrics = metrics or MetricsCollector()
        self._smoothed_rssi: Dict[str, float] = {}

    def convert(self, sample: RangingSample, registry: AnchorRegistry) -> Optional[AnchorReading]:
        """
        Convert one ranging sample.

        Returns:
            AnchorReading, or None for unknown anchors and malformed values
        """
        anchor = registry.get(sample.anchor_id)
        if anchor is None:
            self.metrics.increment_drop('unknown_anchor')
            logger.debug("Ranging from unknown anchor %s dropped", sample.anchor_id)
            return None

        if not math.isfinite(sample.value):
            self.metrics.increment_drop('malformed_sample')
            logger.warning("Non-finite ranging value from anchor %s dropped", sample.anchor_id)
            return None

        if sample.kind == RangeKind.RSSI:
            if not self.model.min_rssi_dbm <= sample.value <= self.model.max_rssi_dbm:
                self.metrics.increment_drop('malformed_sample')
                logger.warning("Implausible RSSI %.1f dBm from anchor %s dropped",
                               sample.value, sample.anchor_id)
                return None
            rssi = self._smooth(sample.anchor_id, sample.value)
            distance = rssi_to_distance(
                rssi,
                tx_power_dbm=anchor.tx_power_dbm,
                path_loss_exponent=self.model.path_loss_exponent,
                min_distance_m=self.model.min_distance_m,
            )
            uncertainty = distance * self.model.relative_uncertainty
        else:
            if sample.value < 0:
                self.metrics.increment_drop('malformed_sample')
                logger.warning("Negative range %.3f from anchor %s dropped", sample.value, sample.anchor_id)
                return None
            distance = sample.value
            uncertainty = sample.uncertainty_m
            if uncertainty is None or not math.isfinite(uncertainty) or uncertainty < 0:
                uncertainty = self.default_range_uncertainty_m

        return AnchorReading(
            anchor_id=sample.anchor_id,
            range_m=distance,
            range_uncertainty_m=uncertainty,
            timestamp_ms=sample.timestamp_ms,
        )

    def reset(self):
        """Forget RSSI smoothing history."""
        self._smoothed_rssi.clear()

    def _smooth(self, anchor_id: str, rssi: float) -> float:
        alpha = self.model.smoothing_alpha
        if alpha is None:
            return rssi

        previous = self._smoothed_rssi.get(anchor_id)
        smoothed = rssi if previous is None else alpha * rssi + (1.0 - alpha) * previous
        self._smoothed_rssi[anchor_id] = smoothed
        return smoothed


# =============================================================================
# Solver
# =============================================================================

@dataclass
class AnchorSolverConfig:
    """
    Configuration for the anchor solver.

    Attributes:
        min_anchors: Minimum usable readings for a solution
        max_anchors: Maximum readings used (lowest uncertainty first)
        epsilon: Added to uncertainty before inverting into a weight
        max_reading_age_ms: Readings older than this at solve time are stale
        min_confidence: Lower clamp on solution confidence
        max_confidence: Upper clamp on solution confidence
    """

    min_anchors: int = 3
    max_anchors: int = 4
    epsilon: float = 1e-3
    max_reading_age_ms: int = 5000
    min_confidence: float = 0.1
    max_confidence: float = 0.9

    def __post_init__(self):
        """Validate configuration."""
        assert self.min_anchors >= 1, "min_anchors must be at least 1"
        assert self.max_anchors >= self.min_anchors, "max_anchors must be >= min_anchors"
        assert self.epsilon > 0, "epsilon must be positive"
        assert self.max_reading_age_ms > 0, "max_reading_age_ms must be positive"
        assert 0 <= self.min_confidence <= self.max_confidence <= 1, "confidence clamp must lie in [0, 1]"


class AnchorSolver:
    """
    Weighted-centroid solver over ranged anchors.

    Usage:
        solver = AnchorSolver(AnchorSolverConfig())
        result = solver.solve(readings, registry, now_ms=tick_time)

        if result is None:
            # Fewer than 3 usable anchors: normal degraded outcome
            ...
        else:
            x, y, z = result.position

    Accuracy of a result is residual + mean range uncertainty of the used
    readings.
    """

    def __init__(self, config: Optional[AnchorSolverConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        """
        Initialize anchor solver.

        Args:
            config: Solver configuration (uses defaults if None)
            metrics: Metrics collector (private collector if None)
        """
        self.config = config or AnchorSolverConfig()
        self.metrics = metrics or MetricsCollector()

    def usable_readings(self, readings: Sequence[AnchorReading], registry: AnchorRegistry,
                        now_ms: Optional[int] = None) -> List[AnchorReading]:
        """
        Filter readings down to the newest usable reading per registered anchor.

        Args:
            readings: Candidate readings, any order
            registry: Anchor registry to resolve ids against
            now_ms: Solve time for staleness checks (None disables them)

        Returns:
            Usable readings, one per anchor
        """
        newest: Dict[str, AnchorReading] = {}

        for reading in readings:
            if reading.anchor_id not in registry:
                self.metrics.increment_drop('unknown_anchor')
                continue

            if not reading.is_finite:
                self.metrics.increment_drop('malformed_sample')
                logger.warning("Non-finite reading for anchor %s dropped", reading.anchor_id)
                continue

            if now_ms is not None and now_ms - reading.timestamp_ms > self.config.max_reading_age_ms:
                self.metrics.increment_drop('stale_reading')
                continue

            current = newest.get(reading.anchor_id)
            if current is None or reading.timestamp_ms > current.timestamp_ms:
                newest[reading.anchor_id] = reading

        return list(newest.values())

    def solve(self, readings: Sequence[AnchorReading], registry: AnchorRegistry,
              now_ms: Optional[int] = None) -> Optional[TrilaterationResult]:
        """
        Solve position from anchor readings.

        Args:
            readings: Anchor readings collected since the last tick
            registry: Anchor registry
            now_ms: Solve time for staleness checks

        Returns:
            TrilaterationResult, or None if fewer than min_anchors readings are usable
        """
        usable = self.usable_readings(readings, registry, now_ms)

        if len(usable) < self.config.min_anchors:
            self.metrics.increment_drop('insufficient_anchors')
            logger.debug("Insufficient anchors: %d usable (need %d)",
                         len(usable), self.config.min_anchors)
            return None

        # Stable sort keeps input order among equal uncertainties
        usable.sort(key=lambda r: r.range_uncertainty_m)
        used = usable[:self.config.max_anchors]

        anchors = [registry.get(r.anchor_id) for r in used]
        positions = np.array([a.position for a in anchors], dtype=float)
        ranges = np.array([r.range_m for r in used], dtype=float)
        uncertainties = np.array([r.range_uncertainty_m for r in used], dtype=float)

        weights = 1.0 / (uncertainties + self.config.epsilon)
        solved = (weights[:, None] * positions).sum(axis=0) / weights.sum()

        distances = np.linalg.norm(positions - solved, axis=1)
        residual = float(np.sum(weights * np.abs(ranges - distances)) / weights.sum())

        confidence = float(np.clip(1.0 / (1.0 + residual),
                                   self.config.min_confidence,
                                   self.config.max_confidence))

        kinds = tuple(k for k in SourceKind if any(a.kind == k for a in anchors))

        self.metrics.increment('anchor_solutions')
        self.metrics.record_histogram('anchor_residual_m', residual)

        return TrilaterationResult(
            position=(float(solved[0]), float(solved[1]), float(solved[2])),
            confidence=confidence,
            used_anchor_ids=tuple(r.anchor_id for r in used),
            residual_error_m=residual,
            method=WEIGHTED_CENTROID,
            accuracy_m=residual + float(np.mean(uncertainties)),
            timestamp_ms=max(r.timestamp_ms for r in used),
            source_kinds=kinds,
        )
