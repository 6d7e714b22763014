"""
Unit tests for anchor registry, RSSI conversion and the anchor solver.

Tests cover:
- Registry lookup, duplicates, recalibration
- RSSI path-loss conversion and per-anchor smoothing
- Weighted-centroid solve, residual and confidence clamp
- Minimum anchor count, stale and unknown readings
"""

import math

import pytest

from courier_core.proto import (
    AnchorReading,
    RangeKind,
    RangingSample,
    SourceKind,
    TrilaterationResult,
    WEIGHTED_CENTROID,
)
from courier_core.localization import (
    AnchorPosition,
    AnchorRegistry,
    AnchorSolver,
    AnchorSolverConfig,
    RangeConverter,
    RssiModel,
    rssi_to_distance,
)
from courier_core.metrics import MetricsCollector


# =============================================================================
# Registry
# =============================================================================


class TestAnchorRegistry:
    """Tests for the anchor registry."""

    def test_lookup(self, triangle_registry):
        """Test anchors resolve by id."""
        assert len(triangle_registry) == 3
        assert "A1" in triangle_registry
        assert triangle_registry.get("A1").position == (10.0, 0.0, 0.0)
        assert triangle_registry.get("missing") is None

    def test_duplicate_id_rejected(self):
        """Test duplicate anchor ids are rejected."""
        with pytest.raises(ValueError):
            AnchorRegistry([
                AnchorPosition("A0", (0.0, 0.0, 0.0)),
                AnchorPosition("A0", (1.0, 0.0, 0.0)),
            ])

    def test_with_anchor_returns_new_registry(self, triangle_registry):
        """Test recalibration leaves the original registry untouched."""
        moved = AnchorPosition("A1", (10.5, 0.0, 0.0), kind=SourceKind.UWB)
        updated = triangle_registry.with_anchor(moved)

        assert updated.get("A1").position == (10.5, 0.0, 0.0)
        assert triangle_registry.get("A1").position == (10.0, 0.0, 0.0)

    def test_invalid_anchor(self):
        """Test GNSS kind and non-finite positions are rejected."""
        with pytest.raises(ValueError):
            AnchorPosition("G", (0.0, 0.0, 0.0), kind=SourceKind.GNSS)
        with pytest.raises(ValueError):
            AnchorPosition("N", (0.0, float('nan'), 0.0))

    def test_to_dict(self):
        """Test anchor serialization."""
        data = AnchorPosition("B1", (1.0, 2.0, 3.0), floor=1).to_dict()
        assert data['kind'] == 'beacon'
        assert data['position'] == [1.0, 2.0, 3.0]
        assert data['floor'] == 1


# =============================================================================
# RSSI conversion
# =============================================================================


class TestRssiConversion:
    """Tests for RSSI to distance conversion."""

    def test_rssi_at_tx_power_is_one_metre(self):
        """Test RSSI equal to the 1 m calibration gives 1 m."""
        assert rssi_to_distance(-59.0, -59.0, 2.5) == pytest.approx(1.0)

    def test_path_loss(self):
        """Test 25 dB below calibration with n=2.5 gives 10 m."""
        assert rssi_to_distance(-84.0, -59.0, 2.5) == pytest.approx(10.0)

    def test_minimum_distance(self):
        """Test very strong signals are floored at 0.1 m."""
        assert rssi_to_distance(-10.0, -59.0, 2.5) == pytest.approx(0.1)

    def test_extreme_rssi_stays_finite(self):
        """Test absurdly weak signals are capped instead of overflowing."""
        distance = rssi_to_distance(-1e4, -59.0, 2.5)

        assert math.isfinite(distance)
        assert distance == pytest.approx(1e6)

    def test_converter_rejects_implausible_rssi(self, triangle_registry):
        """Test RSSI outside the plausible window is dropped as malformed."""
        metrics = MetricsCollector()
        converter = RangeConverter(metrics=metrics)

        assert converter.convert(RangingSample("A0", -1e4, RangeKind.RSSI, 0), triangle_registry) is None
        assert converter.convert(RangingSample("A0", 45.0, RangeKind.RSSI, 0), triangle_registry) is None
        assert converter.convert(RangingSample("A0", -129.0, RangeKind.RSSI, 0), triangle_registry) is not None

        assert metrics.get_drop_count('malformed_sample') == 2

    def test_converter_rssi_uncertainty(self):
        """Test RSSI readings carry uncertainty proportional to distance."""
        registry = AnchorRegistry([AnchorPosition("B1", (0.0, 0.0, 0.0), tx_power_dbm=-59.0)])
        converter = RangeConverter(RssiModel(relative_uncertainty=0.3))

        reading = converter.convert(RangingSample("B1", -84.0, RangeKind.RSSI, 1000), registry)

        assert reading.range_m == pytest.approx(10.0)
        assert reading.range_uncertainty_m == pytest.approx(3.0)
        assert reading.timestamp_ms == 1000

    def test_converter_direct_range(self, triangle_registry):
        """Test direct ranges pass through with default uncertainty."""
        converter = RangeConverter(default_range_uncertainty_m=0.3)

        reading = converter.convert(RangingSample("A0", 4.2, RangeKind.RANGE, 1000), triangle_registry)
        assert reading.range_m == 4.2
        assert reading.range_uncertainty_m == 0.3

        reading = converter.convert(
            RangingSample("A0", 4.2, RangeKind.RANGE, 1000, uncertainty_m=0.1), triangle_registry)
        assert reading.range_uncertainty_m == 0.1

    def test_converter_unknown_and_malformed(self, triangle_registry):
        """Test unknown anchors and bad values are dropped with reasons."""
        metrics = MetricsCollector()
        converter = RangeConverter(metrics=metrics)

        assert converter.convert(RangingSample("ZZ", 3.0, RangeKind.RANGE, 0), triangle_registry) is None
        assert converter.convert(RangingSample("A0", -1.0, RangeKind.RANGE, 0), triangle_registry) is None
        assert converter.convert(RangingSample("A0", float('nan'), RangeKind.RSSI, 0), triangle_registry) is None

        assert metrics.get_drop_count('unknown_anchor') == 1
        assert metrics.get_drop_count('malformed_sample') == 2

    def test_rssi_smoothing_per_anchor(self):
        """Test EMA smoothing of RSSI is tracked per anchor and resettable."""
        registry = AnchorRegistry([
            AnchorPosition("B1", (0.0, 0.0, 0.0)),
            AnchorPosition("B2", (5.0, 0.0, 0.0)),
        ])
        converter = RangeConverter(RssiModel(smoothing_alpha=0.5))

        converter.convert(RangingSample("B1", -59.0, RangeKind.RSSI, 0), registry)
        smoothed = converter.convert(RangingSample("B1", -84.0, RangeKind.RSSI, 1000), registry)
        other = converter.convert(RangingSample("B2", -84.0, RangeKind.RSSI, 1000), registry)

        # B1 smoothed RSSI = -71.5
        assert smoothed.range_m == pytest.approx(10.0 ** (12.5 / 25.0))
        assert other.range_m == pytest.approx(10.0)

        converter.reset()
        fresh = converter.convert(RangingSample("B1", -84.0, RangeKind.RSSI, 2000), registry)
        assert fresh.range_m == pytest.approx(10.0)


# =============================================================================
# Solver
# =============================================================================


class TestAnchorSolver:
    """Tests for the weighted-centroid solver."""

    def test_equidistant_triangle(self, triangle_registry, equidistant_readings):
        """Test three 7.07 m ranges solve to the centroid (3.33, 3.33, 0)."""
        result = AnchorSolver().solve(equidistant_readings, triangle_registry)

        assert isinstance(result, TrilaterationResult)
        assert result.position == pytest.approx((10 / 3, 10 / 3, 0.0), abs=1e-6)
        assert result.residual_error_m == pytest.approx(1.041, abs=0.005)
        assert result.confidence == pytest.approx(1 / (1 + result.residual_error_m))
        assert result.method == WEIGHTED_CENTROID
        assert result.accuracy_m == pytest.approx(result.residual_error_m + 0.5)
        assert result.num_anchors_used == 3
        assert result.source_kinds == (SourceKind.UWB,)

    def test_two_anchors_returns_none(self, triangle_registry, equidistant_readings):
        """Test exactly two usable anchors is not enough."""
        metrics = MetricsCollector()
        solver = AnchorSolver(metrics=metrics)

        assert solver.solve(equidistant_readings[:2], triangle_registry) is None
        assert metrics.get_drop_count('insufficient_anchors') == 1

    def test_confidence_clamped(self, triangle_registry):
        """Test confidence stays within [0.1, 0.9]."""
        perfect = [
            AnchorReading("A0", 4.714, 0.1, 0),
            AnchorReading("A1", 7.454, 0.1, 0),
            AnchorReading("A2", 7.454, 0.1, 0),
        ]
        awful = [
            AnchorReading("A0", 90.0, 0.1, 0),
            AnchorReading("A1", 90.0, 0.1, 0),
            AnchorReading("A2", 90.0, 0.1, 0),
        ]
        solver = AnchorSolver()

        assert solver.solve(perfect, triangle_registry).confidence == pytest.approx(0.9)
        assert solver.solve(awful, triangle_registry).confidence == pytest.approx(0.1)

    def test_weights_favour_precise_anchors(self, triangle_registry):
        """Test a low-uncertainty anchor pulls the centroid toward it."""
        readings = [
            AnchorReading("A0", 5.0, 0.1, 0),
            AnchorReading("A1", 5.0, 2.0, 0),
            AnchorReading("A2", 5.0, 2.0, 0),
        ]
        x, y, _ = AnchorSolver().solve(readings, triangle_registry).position
        assert x < 1.0 and y < 1.0

    def test_keeps_best_four(self):
        """Test only the four lowest-uncertainty readings are used."""
        registry = AnchorRegistry([
            AnchorPosition(f"A{i}", (float(i), 0.0, 0.0), kind=SourceKind.UWB) for i in range(6)
        ])
        readings = [AnchorReading(f"A{i}", 1.0, 0.1 * (i + 1), 0) for i in range(6)]

        result = AnchorSolver().solve(readings, registry)

        assert result.used_anchor_ids == ("A0", "A1", "A2", "A3")

    def test_unknown_anchor_not_usable(self, triangle_registry, equidistant_readings):
        """Test unregistered anchors do not count toward the minimum."""
        readings = equidistant_readings[:2] + [AnchorReading("ZZ", 7.0, 0.5, 1000)]
        assert AnchorSolver().solve(readings, triangle_registry) is None

    def test_stale_readings_dropped(self, triangle_registry, equidistant_readings):
        """Test readings older than max_reading_age_ms are discarded."""
        metrics = MetricsCollector()
        solver = AnchorSolver(AnchorSolverConfig(max_reading_age_ms=5000), metrics)

        assert solver.solve(equidistant_readings, triangle_registry, now_ms=6000) is not None
        assert solver.solve(equidistant_readings, triangle_registry, now_ms=6001) is None
        assert metrics.get_drop_count('stale_reading') == 3

    def test_newest_reading_per_anchor(self, triangle_registry):
        """Test duplicate anchor readings collapse to the newest."""
        readings = [
            AnchorReading("A0", 1.0, 0.5, 100),
            AnchorReading("A0", 2.0, 0.5, 200),
            AnchorReading("A1", 7.0, 0.5, 200),
        ]
        usable = AnchorSolver().usable_readings(readings, triangle_registry)

        assert len(usable) == 2
        assert {r.anchor_id: r.range_m for r in usable}["A0"] == 2.0

    def test_mixed_kinds_reported(self):
        """Test beacon and UWB anchors are both reported in declaration order."""
        registry = AnchorRegistry([
            AnchorPosition("U0", (0.0, 0.0, 0.0), kind=SourceKind.UWB),
            AnchorPosition("B1", (10.0, 0.0, 0.0), kind=SourceKind.BEACON),
            AnchorPosition("U2", (0.0, 10.0, 0.0), kind=SourceKind.UWB),
        ])
        readings = [AnchorReading(a, 7.0, 0.5, 0) for a in ("U0", "B1", "U2")]

        result = AnchorSolver().solve(readings, registry)
        assert result.source_kinds == (SourceKind.BEACON, SourceKind.UWB)

    def test_result_is_finite(self, triangle_registry, equidistant_readings):
        """Test solved values are finite numbers."""
        result = AnchorSolver().solve(equidistant_readings, triangle_registry)
        assert all(math.isfinite(c) for c in result.position)
        assert math.isfinite(result.accuracy_m)

    def test_metrics(self, triangle_registry, equidistant_readings):
        """Test solutions and residuals are recorded."""
        metrics = MetricsCollector()
        AnchorSolver(metrics=metrics).solve(equidistant_readings, triangle_registry)

        assert metrics.get_counter('anchor_solutions') == 1
        assert metrics.get_histogram_stats('anchor_residual_m')['count'] == 1
