"""
Positioning Engine.

Per-entity tracking sessions on top of the FusionOrchestrator:
- start/stop tracking couriers
- push-driven inputs buffered in bounded per-entity channels
- fusion ticks, callable from any scheduler (timer, test harness, replay)
- arrival targets per courier, with debounce timers on a shared Scheduler

Entities never share mutable state: each has its own FilterState,
BuildingCalibration, RSSI memory, channels and arrival trackers.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from courier_core.proto.samples import BarometricReading, RangingSample, RawSample
from courier_core.proto.position import FusedPosition
from courier_core.proto.events import (
    ArrivalEvent,
    DepartureEvent,
    DiagnosticEvent,
    DiagnosticKind,
    ZoneTransition,
)
from courier_core.localization.sample_gate import SampleGate, SampleGateConfig
from courier_core.localization.recursive_smoother import SmootherConfig, create_smoother
from courier_core.localization.anchor_solver import (
    AnchorSolver,
    AnchorSolverConfig,
    RangeConverter,
    RssiModel,
)
from courier_core.localization.floor_resolver import FloorResolver, FloorResolverConfig
from courier_core.domain.venue import VenueStore
from courier_core.domain.zone_matcher import SnapPolicy, ZoneMatcher
from courier_core.domain.arrival_tracker import ArrivalTarget, ArrivalTracker, ArrivalTrackerConfig
from courier_core.engine.orchestrator import (
    EntityState,
    FusionOrchestrator,
    OrchestratorConfig,
    TickInputs,
)
from courier_core.io.channel import EntityChannels
from courier_core.io.scheduler import ManualScheduler, Scheduler
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """
    Aggregate configuration for the positioning engine.

    Attributes:
        gate: Sample gate bounds
        smoother: Smoothing strategy and tuning
        solver: Anchor solver tuning
        rssi: RSSI path-loss model
        floor: Floor resolution
        snap: Snap-to-zone policy (off by default)
        arrival: Default arrival radius and debounce
        orchestrator: Source selection and history
        channel_capacity: Per-entity, per-source input buffer size
        history_size: Recent fused records kept per entity
    """

    gate: SampleGateConfig = field(default_factory=SampleGateConfig)
    smoother: SmootherConfig = field(default_factory=SmootherConfig)
    solver: AnchorSolverConfig = field(default_factory=AnchorSolverConfig)
    rssi: RssiModel = field(default_factory=RssiModel)
    floor: FloorResolverConfig = field(default_factory=FloorResolverConfig)
    snap: SnapPolicy = field(default_factory=SnapPolicy)
    arrival: ArrivalTrackerConfig = field(default_factory=ArrivalTrackerConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    channel_capacity: int = 64
    history_size: int = 100

    def __post_init__(self):
        """Validate configuration."""
        assert self.channel_capacity >= 1, "channel_capacity must be at least 1"
        assert self.history_size >= 1, "history_size must be at least 1"


@dataclass
class _TrackedEntity:
    state: EntityState
    channels: EntityChannels


class PositioningEngine:
    """
    Multi-courier positioning engine.

    Usage:
        store = VenueStore(load_venue_file("venue.json"))
        engine = PositioningEngine(store, EngineConfig(), scheduler=ManualScheduler(),
                                   on_arrival=notify)

        engine.start_tracking("courier-1")
        engine.add_target("courier-1", ArrivalTarget("order-7", 37.0, -122.0))

        engine.push_sample("courier-1", raw_sample)
        engine.push_ranging("courier-1", ranging_sample)
        record = engine.tick("courier-1", now_ms=1000)

        engine.stop_tracking("courier-1")
    """

    def __init__(self, venue_store: Optional[VenueStore] = None,
                 config: Optional[EngineConfig] = None,
                 scheduler: Optional[Scheduler] = None,
                 metrics: Optional[MetricsCollector] = None,
                 on_position: Optional[Callable[[FusedPosition], None]] = None,
                 on_arrival: Optional[Callable[[ArrivalEvent], None]] = None,
                 on_departure: Optional[Callable[[DepartureEvent], None]] = None,
                 on_diagnostic: Optional[Callable[[DiagnosticEvent], None]] = None,
                 on_zone_change: Optional[Callable[[ZoneTransition], None]] = None):
        """
        Initialize engine.

        Args:
            venue_store: Current venue (GNSS-only operation if None)
            config: Engine configuration (uses defaults if None)
            scheduler: Clock and timers (ManualScheduler at t=0 if None)
            metrics: Metrics collector shared by all components (private if None)
            on_position: Receives every emitted record, fresh or stale
            on_arrival: Receives confirmed arrivals
            on_departure: Receives departures after arrival
            on_diagnostic: Receives advisory diagnostics
            on_zone_change: Receives zone/floor transitions
        """
        self.venue_store = venue_store
        self.config = config or EngineConfig()
        self.scheduler = scheduler or ManualScheduler()
        self.metrics = metrics or MetricsCollector()

        self.on_position = on_position
        self.on_arrival = on_arrival
        self.on_departure = on_departure
        self.on_diagnostic = on_diagnostic

        self.orchestrator = FusionOrchestrator(
            config=replace(self.config.orchestrator, history_size=self.config.history_size),
            gate=SampleGate(self.config.gate, self.metrics),
            smoother=create_smoother(self.config.smoother, self.metrics),
            solver=AnchorSolver(self.config.solver, self.metrics),
            floor_resolver=FloorResolver(self.config.floor, self.metrics),
            zone_matcher=ZoneMatcher(self.config.snap, self.metrics),
            metrics=self.metrics,
            on_diagnostic=on_diagnostic,
            on_zone_change=on_zone_change,
        )

        self._entities: Dict[str, _TrackedEntity] = {}

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def start_tracking(self, entity_id: str) -> EntityState:
        """
        Begin tracking an entity (no-op if already tracked).

        Returns:
            The entity's state
        """
        tracked = self._entities.get(entity_id)
        if tracked is not None:
            return tracked.state

        state = self.orchestrator.new_entity_state(
            entity_id,
            range_converter=RangeConverter(self.config.rssi, metrics=self.metrics),
        )
        self._entities[entity_id] = _TrackedEntity(
            state=state,
            channels=EntityChannels(self.config.channel_capacity, self.metrics),
        )
        logger.info("Started tracking %s", entity_id)
        return state

    def stop_tracking(self, entity_id: str) -> bool:
        """
        Stop tracking an entity: cancel arrival timers, drop filter state and
        buffered inputs. No further records are emitted for it.

        Returns:
            False if the entity was not tracked
        """
        tracked = self._entities.pop(entity_id, None)
        if tracked is None:
            return False

        tracked.state.reset()
        tracked.channels.clear()
        logger.info("Stopped tracking %s", entity_id)
        return True

    def is_tracking(self, entity_id: str) -> bool:
        return entity_id in self._entities

    def tracked_entities(self) -> List[str]:
        return list(self._entities.keys())

    # =========================================================================
    # Targets
    # =========================================================================

    def add_target(self, entity_id: str, target: ArrivalTarget) -> ArrivalTracker:
        """
        Watch for the entity's arrival at a target. Replaces an existing
        target with the same id.

        Raises:
            KeyError: If the entity is not tracked
        """
        state = self._entities[entity_id].state
        previous = state.trackers.pop(target.target_id, None)
        if previous is not None:
            previous.stop()

        tracker = ArrivalTracker(
            entity_id,
            target,
            self.scheduler,
            config=self.config.arrival,
            on_arrival=self.on_arrival,
            on_departure=self.on_departure,
            metrics=self.metrics,
        )
        state.trackers[target.target_id] = tracker
        logger.info("%s: watching target %s (%.0fm radius)",
                    entity_id, target.target_id, tracker.config.threshold_m)
        return tracker

    def remove_target(self, entity_id: str, target_id: str) -> bool:
        """Stop watching a target; cancels its pending timer."""
        tracked = self._entities.get(entity_id)
        if tracked is None:
            return False

        tracker = tracked.state.trackers.pop(target_id, None)
        if tracker is None:
            return False

        tracker.stop()
        logger.info("%s: removed target %s", entity_id, target_id)
        return True

    def mark_arrived(self, entity_id: str, target_id: str) -> bool:
        """
        Confirm arrival at a target immediately, e.g. when the courier taps "arrived".

        Returns:
            True if an arrival event was emitted; False for unknown entities or
            targets and for targets already arrived at
        """
        tracker = self.tracker(entity_id, target_id)
        if tracker is None:
            return False
        return tracker.confirm_now()

    def tracker(self, entity_id: str, target_id: str) -> Optional[ArrivalTracker]:
        tracked = self._entities.get(entity_id)
        if tracked is None:
            return None
        return tracked.state.trackers.get(target_id)

    # =========================================================================
    # Inputs
    # =========================================================================

    def push_sample(self, entity_id: str, sample: RawSample) -> bool:
        """Buffer a location fix. Returns False if the entity is not tracked."""
        tracked = self._entities.get(entity_id)
        if tracked is None:
            logger.debug("Location fix for untracked %s ignored", entity_id)
            return False
        self._push(tracked, tracked.channels.samples, sample, sample.timestamp_ms)
        return True

    def push_ranging(self, entity_id: str, sample: RangingSample) -> bool:
        """Buffer a ranging observation. Returns False if the entity is not tracked."""
        tracked = self._entities.get(entity_id)
        if tracked is None:
            logger.debug("Ranging for untracked %s ignored", entity_id)
            return False
        self.metrics.increment('ranging_in')
        self._push(tracked, tracked.channels.ranging, sample, sample.timestamp_ms)
        return True

    def push_barometric(self, entity_id: str, reading: BarometricReading) -> bool:
        """Buffer a barometric reading. Returns False if the entity is not tracked."""
        tracked = self._entities.get(entity_id)
        if tracked is None:
            logger.debug("Barometric reading for untracked %s ignored", entity_id)
            return False
        self.metrics.increment('barometric_in')
        self._push(tracked, tracked.channels.barometric, reading, reading.timestamp_ms)
        return True

    def _push(self, tracked: _TrackedEntity, channel, item, timestamp_ms: int):
        if not channel.push(item) and self.on_diagnostic:
            self.on_diagnostic(DiagnosticEvent(
                entity_id=tracked.state.entity_id,
                kind=DiagnosticKind.CHANNEL_OVERFLOW,
                reason='queue_full',
                timestamp_ms=timestamp_ms,
                detail={'channel': channel.name, 'capacity': channel.capacity},
            ))

    # =========================================================================
    # Ticks
    # =========================================================================

    def tick(self, entity_id: str, now_ms: Optional[int] = None) -> Optional[FusedPosition]:
        """
        Run one fusion tick for an entity over everything buffered since the last tick.

        Args:
            entity_id: Tracked entity
            now_ms: Tick time (scheduler clock if None)

        Returns:
            Fresh or stale FusedPosition; None if the entity is not tracked or
            has never had a position
        """
        tracked = self._entities.get(entity_id)
        if tracked is None:
            return None

        now_ms = self.scheduler.now_ms() if now_ms is None else now_ms
        venue = self.venue_store.current if self.venue_store is not None else None
        drained = tracked.channels.drain()

        readings = []
        if venue is not None:
            for sample in drained.ranging:
                reading = tracked.state.range_converter.convert(sample, venue.anchors)
                if reading is not None:
                    readings.append(reading)

        barometric: Optional[BarometricReading] = None
        for reading in drained.barometric:
            if barometric is None or reading.timestamp_ms >= barometric.timestamp_ms:
                barometric = reading

        record = self.orchestrator.tick(
            TickInputs(
                timestamp_ms=now_ms,
                gnss_samples=tuple(drained.samples),
                anchor_readings=tuple(readings),
                barometric=barometric,
            ),
            tracked.state,
            venue,
        )

        if record is not None and self.on_position and entity_id in self._entities:
            self.on_position(record)
        return record

    def tick_all(self, now_ms: Optional[int] = None) -> Dict[str, FusedPosition]:
        """Tick every tracked entity; entities without any position are omitted."""
        records = {}
        for entity_id in list(self._entities.keys()):
            record = self.tick(entity_id, now_ms)
            if record is not None:
                records[entity_id] = record
        return records

    # =========================================================================
    # Queries and calibration
    # =========================================================================

    def last_known(self, entity_id: str) -> Optional[FusedPosition]:
        tracked = self._entities.get(entity_id)
        return tracked.state.last_fused if tracked else None

    def recent_positions(self, entity_id: str) -> List[FusedPosition]:
        """Recent fresh records, oldest first (bounded by history_size)."""
        tracked = self._entities.get(entity_id)
        return list(tracked.state.history) if tracked else []

    def calibrate_floor(self, entity_id: str, altitude_m: float):
        """Feed a known ground-level altitude into the entity's building calibration."""
        self._entities[entity_id].state.calibration.observe(altitude_m)

    def set_floor_offset(self, entity_id: str, offset: int):
        self._entities[entity_id].state.calibration.set_floor_offset(offset)

    def reset_calibration(self, entity_id: str):
        self._entities[entity_id].state.calibration.reset()
