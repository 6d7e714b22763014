"""
Unit tests for the arrival state machine.

Tests cover:
- Debounced confirmation (stay vs. leave before the timer)
- Late-firing timers after cancellation
- Departure and re-arrival
- stop() cancellation
- Manual arrival confirmation
- Per-target configuration
"""

import heapq

import pytest

from courier_core.proto import ArrivalState
from courier_core.domain import ArrivalTarget, ArrivalTracker, ArrivalTrackerConfig
from courier_core.io import ManualScheduler, TimerHandle
from courier_core.metrics import MetricsCollector


class _LateTimerHandle(TimerHandle):
    """Timer whose cancellation arrives after it has been dispatched."""

    def cancel(self):
        pass


class LateFiringScheduler(ManualScheduler):
    """ManualScheduler whose timers still fire after cancel()."""

    def call_later(self, delay_ms, callback):
        handle = _LateTimerHandle(self._now_ms + max(0, int(delay_ms)), callback)
        heapq.heappush(self._queue, (handle.due_ms, next(self._sequence), handle))
        return handle


@pytest.fixture
def target():
    return ArrivalTarget("order-7", 37.0, -122.0)


@pytest.fixture
def events():
    return {"arrivals": [], "departures": []}


def make_tracker(target, scheduler, events, config=None, metrics=None):
    return ArrivalTracker(
        "courier-1", target, scheduler,
        config=config,
        on_arrival=events["arrivals"].append,
        on_departure=events["departures"].append,
        metrics=metrics,
    )


# =============================================================================
# Debounce
# =============================================================================


class TestDebounce:
    """Tests for the two-phase confirmation."""

    def test_initial_state(self, target, scheduler, events):
        """Test a new session starts approaching with no timer."""
        tracker = make_tracker(target, scheduler, events)
        assert tracker.state == ArrivalState.APPROACHING
        assert not tracker.has_pending_timer

    def test_outside_radius_stays_approaching(self, target, scheduler, events):
        """Test distances beyond the threshold do not start confirming."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(40.0, 0)
        assert tracker.state == ArrivalState.APPROACHING
        assert not tracker.has_pending_timer

    def test_stays_full_duration_arrives(self, target, scheduler, events):
        """Test staying inside for the debounce confirms the arrival once."""
        tracker = make_tracker(target, scheduler, events)

        tracker.update(10.0, 0)
        assert tracker.state == ArrivalState.CONFIRMING
        assert tracker.session.pending_deadline_ms == 3000

        scheduler.advance(2999)
        assert tracker.state == ArrivalState.CONFIRMING
        assert events["arrivals"] == []

        scheduler.advance(3000)
        assert tracker.state == ArrivalState.ARRIVED
        assert len(events["arrivals"]) == 1

        arrival = events["arrivals"][0]
        assert arrival.target_id == "order-7"
        assert arrival.entity_id == "courier-1"
        assert arrival.arrived_at_ms == 3000
        assert arrival.distance_m == 10.0
        assert arrival.dwell_ms == 3000

    def test_leaves_before_timer_never_arrives(self, target, scheduler, events):
        """Test leaving before the debounce cancels the confirmation."""
        tracker = make_tracker(target, scheduler, events)

        tracker.update(10.0, 0)
        scheduler.advance(1000)
        tracker.update(20.0, 1000)

        assert tracker.state == ArrivalState.APPROACHING
        assert not tracker.has_pending_timer

        scheduler.advance(10000)
        assert tracker.state == ArrivalState.APPROACHING
        assert events["arrivals"] == []

    def test_updates_while_confirming_keep_single_timer(self, target, scheduler, events):
        """Test repeated inside updates do not restart the timer."""
        tracker = make_tracker(target, scheduler, events)

        tracker.update(10.0, 0)
        scheduler.advance(1000)
        tracker.update(8.0, 1000)
        scheduler.advance(2000)
        tracker.update(6.0, 2000)

        assert scheduler.pending_count() == 1
        scheduler.advance(3000)

        assert tracker.state == ArrivalState.ARRIVED
        assert events["arrivals"][0].distance_m == 6.0

    def test_threshold_is_inclusive(self, target, scheduler, events):
        """Test exactly the threshold counts as inside."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(15.0, 0)
        assert tracker.state == ArrivalState.CONFIRMING


# =============================================================================
# Late timers
# =============================================================================


class TestLateTimers:
    """Tests for timers that fire after their session moved on."""

    def test_cancelled_timer_firing_late_is_ignored(self, target, events):
        """Test a late callback after leaving does not confirm."""
        scheduler = LateFiringScheduler()
        tracker = make_tracker(target, scheduler, events)

        tracker.update(10.0, 0)
        scheduler.advance(1000)
        tracker.update(20.0, 1000)
        scheduler.advance(5000)

        assert tracker.state == ArrivalState.APPROACHING
        assert events["arrivals"] == []

    def test_superseded_timer_is_ignored(self, target, events):
        """Test an old timer cannot confirm a newer confirmation early."""
        scheduler = LateFiringScheduler()
        tracker = make_tracker(target, scheduler, events)

        tracker.update(10.0, 0)        # timer due 3000
        scheduler.advance(1000)
        tracker.update(20.0, 1000)
        scheduler.advance(2000)
        tracker.update(10.0, 2000)     # timer due 5000

        scheduler.advance(3000)
        assert tracker.state == ArrivalState.CONFIRMING
        assert events["arrivals"] == []

        scheduler.advance(5000)
        assert tracker.state == ArrivalState.ARRIVED
        assert len(events["arrivals"]) == 1
        assert events["arrivals"][0].arrived_at_ms == 5000


# =============================================================================
# Departure and stop
# =============================================================================


class TestDeparture:
    """Tests for leaving after arrival."""

    def test_departure_returns_to_approaching(self, target, scheduler, events):
        """Test moving out after arrival emits a departure."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(5.0, 0)
        scheduler.advance(3000)

        tracker.update(30.0, 4000)

        assert tracker.state == ArrivalState.APPROACHING
        assert tracker.session.arrived_at_ms is None
        assert len(events["departures"]) == 1
        assert events["departures"][0].departed_at_ms == 4000
        assert events["departures"][0].distance_m == 30.0

    def test_rearrival(self, target, scheduler, events):
        """Test a courier can arrive again after departing."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(5.0, 0)
        scheduler.advance(3000)
        tracker.update(30.0, 4000)

        scheduler.advance(5000)
        tracker.update(5.0, 5000)
        scheduler.advance(8000)

        assert tracker.state == ArrivalState.ARRIVED
        assert len(events["arrivals"]) == 2

    def test_inside_updates_after_arrival_do_nothing(self, target, scheduler, events):
        """Test the arrival callback fires only once while inside."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(5.0, 0)
        scheduler.advance(3000)
        tracker.update(4.0, 4000)
        scheduler.advance(10000)

        assert len(events["arrivals"]) == 1


class TestStop:
    """Tests for stopping a session."""

    def test_stop_cancels_pending_timer(self, target, scheduler, events):
        """Test stop releases the timer and no arrival follows."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(5.0, 0)

        tracker.stop()
        scheduler.advance(10000)

        assert tracker.state == ArrivalState.DEPARTED
        assert not tracker.has_pending_timer
        assert events["arrivals"] == []

    def test_updates_after_stop_ignored(self, target, scheduler, events):
        """Test a stopped tracker ignores further distances."""
        tracker = make_tracker(target, scheduler, events)
        tracker.stop()
        tracker.update(1.0, 0)

        assert tracker.state == ArrivalState.DEPARTED
        assert scheduler.pending_count() == 0


class TestManualArrival:
    """Tests for confirming an arrival by hand."""

    def test_confirm_while_confirming(self, target, scheduler, events):
        """Test a manual arrival cancels the debounce and fires exactly once."""
        metrics = MetricsCollector()
        tracker = make_tracker(target, scheduler, events, metrics=metrics)
        tracker.update(5.0, 0)
        scheduler.advance(1000)

        assert tracker.confirm_now()
        scheduler.advance(10000)

        assert tracker.state == ArrivalState.ARRIVED
        assert not tracker.has_pending_timer
        assert tracker.session.pending_deadline_ms is None
        assert len(events["arrivals"]) == 1
        arrival = events["arrivals"][0]
        assert arrival.manual
        assert arrival.arrived_at_ms == 1000
        assert arrival.distance_m == 5.0
        assert metrics.get_counter('arrivals_manual') == 1
        assert metrics.get_counter('arrivals_confirmed') == 0

    def test_confirm_without_distance(self, target, scheduler, events):
        """Test a courier never positioned can still be marked arrived."""
        tracker = make_tracker(target, scheduler, events)

        assert tracker.confirm_now()

        assert events["arrivals"][0].distance_m is None
        assert events["arrivals"][0].to_dict()['manual'] is True

    def test_late_timer_after_confirm_ignored(self, target, events):
        """Test a timer dispatched despite cancellation cannot re-announce the arrival."""
        scheduler = LateFiringScheduler()
        tracker = make_tracker(target, scheduler, events)
        tracker.update(5.0, 0)

        tracker.confirm_now()
        scheduler.advance(5000)

        assert len(events["arrivals"]) == 1

    def test_noop_when_arrived_or_stopped(self, target, scheduler, events):
        """Test confirming twice, or after stop, emits nothing more."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(5.0, 0)
        scheduler.advance(3000)

        assert tracker.state == ArrivalState.ARRIVED
        assert not tracker.confirm_now()

        tracker.stop()
        assert not tracker.confirm_now()
        assert len(events["arrivals"]) == 1
        assert not events["arrivals"][0].manual


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    """Tests for thresholds and per-target overrides."""

    def test_exact_pin(self, scheduler, events):
        """Test an exact-pin target needs 3 m."""
        target = ArrivalTarget("door", 37.0, -122.0, config=ArrivalTrackerConfig.exact_pin())
        tracker = make_tracker(target, scheduler, events, config=ArrivalTrackerConfig(threshold_m=50.0))

        assert tracker.config.threshold_m == 3.0
        tracker.update(10.0, 0)
        assert tracker.state == ArrivalState.APPROACHING
        tracker.update(2.5, 1000)
        assert tracker.state == ArrivalState.CONFIRMING

    def test_custom_confirmation(self, target, scheduler, events):
        """Test a shorter debounce."""
        tracker = make_tracker(target, scheduler, events, config=ArrivalTrackerConfig(confirmation_ms=500))
        tracker.update(5.0, 0)
        scheduler.advance(500)
        assert tracker.state == ArrivalState.ARRIVED

    def test_non_finite_distance_ignored(self, target, scheduler, events):
        """Test NaN distances leave the state alone."""
        tracker = make_tracker(target, scheduler, events)
        tracker.update(float('nan'), 0)
        assert tracker.state == ArrivalState.APPROACHING
        assert tracker.session.current_distance_m is None

    def test_invalid_config(self):
        """Test non-positive thresholds are rejected."""
        with pytest.raises(AssertionError):
            ArrivalTrackerConfig(threshold_m=0.0)

    def test_invalid_target(self):
        """Test non-finite target coordinates are rejected."""
        with pytest.raises(ValueError):
            ArrivalTarget("bad", float('nan'), 0.0)

    def test_metrics(self, target, scheduler, events):
        """Test confirmed arrivals and dwell time are recorded."""
        metrics = MetricsCollector()
        tracker = make_tracker(target, scheduler, events, metrics=metrics)
        tracker.update(5.0, 0)
        scheduler.advance(3000)

        assert metrics.get_counter('arrivals_confirmed') == 1
        assert metrics.get_histogram_stats('arrival_dwell_ms')['mean'] == 3000
