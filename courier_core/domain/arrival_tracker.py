"""
Arrival Tracker (debounced arrival state machine).

Turns "distance to target is currently small" into a confirmed arrival.

States:
    APPROACHING --(d <= threshold, no timer pending)--> CONFIRMING   [start timer]
    CONFIRMING  --(d >  threshold before timer)-------> APPROACHING  [cancel timer]
    CONFIRMING  --(timer fires and d <= threshold)----> ARRIVED      [arrival event]
    CONFIRMING  --(timer fires and d >  threshold)----> APPROACHING
    ARRIVED     --(d >  threshold)--------------------> APPROACHING  [departure event]
    APPROACHING or CONFIRMING --(confirm_now)----------> ARRIVED   [arrival event]
    any         --(stop)------------------------------> DEPARTED     [cancel timer]

Every timer carries the token current when it was scheduled; a callback
whose token no longer matches, or that fires outside CONFIRMING, does
nothing. A valid callback re-checks the latest distance before acting.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from courier_core.proto.events import ArrivalEvent, ArrivalState, DepartureEvent
from courier_core.io.scheduler import Scheduler, TimerHandle
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)

EXACT_PIN_THRESHOLD_M = 3.0


@dataclass
class ArrivalTrackerConfig:
    """
    Configuration for arrival confirmation.

    Attributes:
        threshold_m: Arrival radius around the target (m)
        confirmation_ms: Time the courier must stay inside the radius (ms)
    """

    threshold_m: float = 15.0
    confirmation_ms: int = 3000

    def __post_init__(self):
        """Validate configuration."""
        assert self.threshold_m > 0, "threshold_m must be positive"
        assert self.confirmation_ms >= 0, "confirmation_ms must be non-negative"

    @classmethod
    def exact_pin(cls, confirmation_ms: int = 3000) -> "ArrivalTrackerConfig":
        """Tight radius for deliveries to an exact pin."""
        return cls(threshold_m=EXACT_PIN_THRESHOLD_M, confirmation_ms=confirmation_ms)


@dataclass(frozen=True)
class ArrivalTarget:
    """
    Delivery target.

    Attributes:
        target_id: Target identifier (e.g. order id)
        latitude: WGS84 latitude (degrees)
        longitude: WGS84 longitude (degrees)
        config: Per-target override of the tracker configuration
    """

    target_id: str
    latitude: float
    longitude: float
    config: Optional[ArrivalTrackerConfig] = None

    def __post_init__(self):
        """Validate target."""
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError(f"Target {self.target_id} coordinates must be finite")


@dataclass
class ArrivalSession:
    """
    Mutable state of one entity/target pair.

    Attributes:
        entity_id: Tracked courier
        target: Target being approached
        state: Current arrival state
        current_distance_m: Latest distance to the target (m)
        pending_deadline_ms: When the pending confirmation timer fires (ms)
        entered_at_ms: When the courier last came inside the radius (ms)
        arrived_at_ms: When the current arrival was confirmed (ms)
    """

    entity_id: str
    target: ArrivalTarget
    state: ArrivalState = ArrivalState.APPROACHING
    current_distance_m: Optional[float] = None
    pending_deadline_ms: Optional[int] = None
    entered_at_ms: Optional[int] = None
    arrived_at_ms: Optional[int] = None

    @property
    def target_id(self) -> str:
        return self.target.target_id


class ArrivalTracker:
    """
    Debounced arrival state machine for one entity/target pair.

    Usage:
        tracker = ArrivalTracker("courier-1", target, scheduler,
                                 on_arrival=notify_customer)

        # Every fused position:
        tracker.update(distance_m, timestamp_ms)

        # Courier confirms by hand:
        tracker.confirm_now()

        # When tracking stops or the target is removed:
        tracker.stop()
    """

    def __init__(self, entity_id: str, target: ArrivalTarget, scheduler: Scheduler,
                 config: Optional[ArrivalTrackerConfig] = None,
                 on_arrival: Optional[Callable[[ArrivalEvent], None]] = None,
                 on_departure: Optional[Callable[[DepartureEvent], None]] = None,
                 metrics: Optional[MetricsCollector] = None):
        """
        Initialize arrival tracker.

        Args:
            entity_id: Tracked courier
            target: Target to confirm arrival at
            scheduler: Clock and timer source
            config: Default configuration, overridden by target.config when set
            on_arrival: Called once per confirmed arrival
            on_departure: Called when the courier leaves after arriving
            metrics: Metrics collector (private collector if None)
        """
        self.config = target.config or config or ArrivalTrackerConfig()
        self.session = ArrivalSession(entity_id=entity_id, target=target)
        self.scheduler = scheduler
        self.on_arrival = on_arrival
        self.on_departure = on_departure
        self.metrics = metrics or MetricsCollector()

        self._timer: Optional[TimerHandle] = None
        self._token = 0

    @property
    def state(self) -> ArrivalState:
        return self.session.state

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None and self._timer.pending

    def update(self, distance_m: float, timestamp_ms: int):
        """
        Feed the latest distance to the target.

        Args:
            distance_m: Distance from the fused position to the target (m)
            timestamp_ms: Time of the fused position (ms)
        """
        session = self.session
        if session.state == ArrivalState.DEPARTED:
            return

        if distance_m is None or not math.isfinite(distance_m):
            logger.warning("Ignoring non-finite distance for target %s", session.target_id)
            return

        session.current_distance_m = distance_m
        inside = distance_m <= self.config.threshold_m

        if session.state == ArrivalState.APPROACHING:
            if inside and not self.has_pending_timer:
                self._start_confirming(timestamp_ms)

        elif session.state == ArrivalState.CONFIRMING:
            if not inside:
                self._cancel_timer()
                self._set_state(ArrivalState.APPROACHING)
                session.entered_at_ms = None

        elif session.state == ArrivalState.ARRIVED:
            if not inside:
                self._depart(distance_m, timestamp_ms)

    def confirm_now(self) -> bool:
        """
        Mark the courier as arrived without waiting for the debounce.

        Cancels any pending confirmation and emits one arrival event.

        Returns:
            True if an arrival was emitted, False when already arrived or stopped
        """
        session = self.session
        if session.state in (ArrivalState.ARRIVED, ArrivalState.DEPARTED):
            return False

        self._cancel_timer()
        self._token += 1
        self._arrive(session.current_distance_m, manual=True)
        return True

    def stop(self):
        """Cancel any pending timer and end the session; further updates are ignored."""
        self._cancel_timer()
        self._token += 1
        self._set_state(ArrivalState.DEPARTED)

    def _start_confirming(self, timestamp_ms: int):
        self._token += 1
        token = self._token

        self.session.entered_at_ms = timestamp_ms
        self.session.pending_deadline_ms = self.scheduler.now_ms() + self.config.confirmation_ms
        self._set_state(ArrivalState.CONFIRMING)
        self._timer = self.scheduler.call_later(
            self.config.confirmation_ms, lambda: self._on_timer(token)
        )

    def _on_timer(self, token: int):
        session = self.session
        if token != self._token or session.state != ArrivalState.CONFIRMING:
            logger.debug("Stale confirmation timer for target %s ignored", session.target_id)
            return

        self._timer = None
        session.pending_deadline_ms = None

        distance = session.current_distance_m
        if distance is None or distance > self.config.threshold_m:
            self._set_state(ArrivalState.APPROACHING)
            session.entered_at_ms = None
            return

        self._arrive(distance, manual=False)

    def _arrive(self, distance: Optional[float], manual: bool):
        session = self.session
        now_ms = self.scheduler.now_ms()
        session.arrived_at_ms = now_ms
        self._set_state(ArrivalState.ARRIVED)

        self.metrics.increment('arrivals_manual' if manual else 'arrivals_confirmed')
        if session.entered_at_ms is not None and not manual:
            self.metrics.record_histogram('arrival_dwell_ms', now_ms - session.entered_at_ms)
        logger.info("Arrival %s: %s at %s (%s)",
                    "marked manually" if manual else "confirmed",
                    session.entity_id, session.target_id,
                    "distance unknown" if distance is None else f"{distance:.1f}m")

        if self.on_arrival:
            self.on_arrival(ArrivalEvent(
                entity_id=session.entity_id,
                target_id=session.target_id,
                arrived_at_ms=now_ms,
                distance_m=distance,
                entered_at_ms=session.entered_at_ms,
                manual=manual,
            ))

    def _depart(self, distance_m: float, timestamp_ms: int):
        session = self.session
        session.arrived_at_ms = None
        session.entered_at_ms = None
        self._set_state(ArrivalState.APPROACHING)
        logger.info("Departure: %s left %s (%.1fm)", session.entity_id, session.target_id, distance_m)

        if self.on_departure:
            self.on_departure(DepartureEvent(
                entity_id=session.entity_id,
                target_id=session.target_id,
                departed_at_ms=timestamp_ms,
                distance_m=distance_m,
            ))

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.session.pending_deadline_ms = None

    def _set_state(self, state: ArrivalState):
        if state != self.session.state:
            logger.debug("Target %s: %s -> %s", self.session.target_id,
                         self.session.state.name, state.name)
        self.session.state = state
