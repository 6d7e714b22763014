"""
Fusion Orchestrator.

Top-level coordinator for one fusion tick of one tracked entity.

Pipeline:
    1. GNSS fixes -> SampleGate -> RecursiveSmoother
    2. Anchor readings -> AnchorSolver (used if confidence >= floor)
    3. Source selection: blend both, use the single available source,
       or re-emit the last known record marked stale
    4. Enrich: FloorResolver, then ZoneMatcher (optional snap)
    5. Zone/floor transition events, bounded history
    6. Distance to every active target -> ArrivalTracker

Confidence model (all sources):
    c = 1 / (1 + error_m / scale_m)
    GNSS:    error = smoothed accuracy, scale = gnss_confidence_scale_m
    Anchors: error = residual, scale = 1 m, clamped to [0.1, 0.9] by the solver
    Blend:   confidence = Σc² / Σc, accuracy = Σ(c·acc) / Σc

Expected degraded conditions never raise: they surface as flags on the
record, DiagnosticEvents, metrics drop reasons and DEBUG logs.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from courier_core.proto.samples import AnchorReading, BarometricReading, RawSample
from courier_core.proto.position import FusedPosition, SourceKind, TrilaterationResult
from courier_core.proto.events import DiagnosticEvent, DiagnosticKind, ZoneTransition
from courier_core.localization.geodesy import haversine_m
from courier_core.localization.sample_gate import RejectReason, SampleGate
from courier_core.localization.recursive_smoother import (
    FilterState,
    SmoothedFix,
    Smoother,
    create_smoother,
)
from courier_core.localization.anchor_solver import AnchorSolver, RangeConverter
from courier_core.localization.floor_resolver import (
    BuildingCalibration,
    FloorResolution,
    FloorResolver,
)
from courier_core.domain.venue import VenueModel
from courier_core.domain.zone_matcher import ZoneMatcher
from courier_core.domain.arrival_tracker import ArrivalTracker
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """
    Configuration for source selection and enrichment.

    Attributes:
        anchor_confidence_floor: Anchor solutions must score strictly above this to be used
        gnss_confidence_scale_m: Accuracy at which GNSS confidence is 0.5 (m)
        indoor_accuracy_m: GNSS accuracy above which an anchor fix counts as indoor (m)
        auto_calibrate: Every altitude lowers the building baseline when True;
            otherwise the baseline must be seeded explicitly
        history_size: Recent fused records kept per entity
    """

    anchor_confidence_floor: float = 0.3
    gnss_confidence_scale_m: float = 10.0
    indoor_accuracy_m: float = 15.0
    auto_calibrate: bool = True
    history_size: int = 100

    def __post_init__(self):
        """Validate configuration."""
        assert 0 <= self.anchor_confidence_floor <= 1, "anchor_confidence_floor must be in [0, 1]"
        assert self.gnss_confidence_scale_m > 0, "gnss_confidence_scale_m must be positive"
        assert self.indoor_accuracy_m > 0, "indoor_accuracy_m must be positive"
        assert self.history_size >= 1, "history_size must be at least 1"


class SourceSelection(Enum):
    """Which sources feed a tick's record."""
    BLENDED = "blended"
    GNSS_ONLY = "gnss_only"
    ANCHORS_ONLY = "anchors_only"
    NONE = "none"

    @classmethod
    def select(cls, gnss_available: bool, anchors_available: bool) -> "SourceSelection":
        if gnss_available and anchors_available:
            return cls.BLENDED
        if gnss_available:
            return cls.GNSS_ONLY
        if anchors_available:
            return cls.ANCHORS_ONLY
        return cls.NONE


@dataclass(frozen=True)
class TickInputs:
    """
    Inputs buffered for one entity since the previous tick.

    Attributes:
        timestamp_ms: Tick time (ms)
        gnss_samples: Raw location fixes, in arrival order
        anchor_readings: Anchor distance readings
        barometric: Latest barometric reading, if any
    """

    timestamp_ms: int
    gnss_samples: Tuple[RawSample, ...] = ()
    anchor_readings: Tuple[AnchorReading, ...] = ()
    barometric: Optional[BarometricReading] = None


@dataclass
class EntityState:
    """
    Everything the engine remembers about one tracked entity.

    Owned exclusively by that entity; nothing here is shared across
    entities.
    """

    entity_id: str
    filter_state: FilterState
    calibration: BuildingCalibration = field(default_factory=BuildingCalibration)
    range_converter: RangeConverter = field(default_factory=RangeConverter)
    last_accepted: Optional[RawSample] = None
    last_fused: Optional[FusedPosition] = None
    history: Deque[FusedPosition] = field(default_factory=lambda: deque(maxlen=100))
    last_zone_id: Optional[str] = None
    last_floor: Optional[int] = None
    trackers: Dict[str, ArrivalTracker] = field(default_factory=dict)

    def reset(self):
        """Drop filter, calibration, RSSI memory and history; stop arrival timers."""
        self.filter_state.reset()
        self.calibration.reset()
        self.range_converter.reset()
        self.last_accepted = None
        self.last_fused = None
        self.history.clear()
        self.last_zone_id = None
        self.last_floor = None
        for tracker in self.trackers.values():
            tracker.stop()
        self.trackers.clear()


@dataclass(frozen=True)
class _SourceFix:
    """One source's contribution to the blend."""
    kind: Tuple[SourceKind, ...]
    latitude: float
    longitude: float
    accuracy_m: float
    confidence: float


def source_confidence(error_m: float, scale_m: float) -> float:
    """c = 1 / (1 + error / scale)."""
    return 1.0 / (1.0 + max(0.0, error_m) / scale_m)


class FusionOrchestrator:
    """
    Produce one fused position per tick from whatever sources are available.

    Usage:
        orchestrator = FusionOrchestrator(OrchestratorConfig(), metrics=metrics)
        state = orchestrator.new_entity_state("courier-1")

        record = orchestrator.tick(
            TickInputs(timestamp_ms=1000, gnss_samples=(sample,)),
            state,
            venue,
        )

    tick() returns None only before the entity has ever had a position.
    """

    def __init__(self, config: Optional[OrchestratorConfig] = None,
                 gate: Optional[SampleGate] = None,
                 smoother: Optional[Smoother] = None,
                 solver: Optional[AnchorSolver] = None,
                 floor_resolver: Optional[FloorResolver] = None,
                 zone_matcher: Optional[ZoneMatcher] = None,
                 metrics: Optional[MetricsCollector] = None,
                 on_diagnostic: Optional[Callable[[DiagnosticEvent], None]] = None,
                 on_zone_change: Optional[Callable[[ZoneTransition], None]] = None):
        """
        Initialize orchestrator.

        Args:
            config: Orchestrator configuration (uses defaults if None)
            gate, smoother, solver, floor_resolver, zone_matcher: Components
                (default-configured, sharing the metrics collector, if None)
            metrics: Metrics collector (private collector if None)
            on_diagnostic: Receives advisory diagnostics
            on_zone_change: Receives zone/floor transitions
        """
        self.config = config or OrchestratorConfig()
        self.metrics = metrics or MetricsCollector()

        self.gate = gate or SampleGate(metrics=self.metrics)
        self.smoother = smoother or create_smoother(metrics=self.metrics)
        self.solver = solver or AnchorSolver(metrics=self.metrics)
        self.floor_resolver = floor_resolver or FloorResolver(metrics=self.metrics)
        self.zone_matcher = zone_matcher or ZoneMatcher(metrics=self.metrics)

        self.on_diagnostic = on_diagnostic
        self.on_zone_change = on_zone_change

    def new_entity_state(self, entity_id: str,
                         range_converter: Optional[RangeConverter] = None) -> EntityState:
        """Fresh state for a newly tracked entity."""
        return EntityState(
            entity_id=entity_id,
            filter_state=self.smoother.new_state(),
            range_converter=range_converter or RangeConverter(metrics=self.metrics),
            history=deque(maxlen=self.config.history_size),
        )

    # =========================================================================
    # Tick
    # =========================================================================

    def tick(self, inputs: TickInputs, state: EntityState,
             venue: Optional[VenueModel] = None) -> Optional[FusedPosition]:
        """
        Run one fusion tick.

        Args:
            inputs: Buffered inputs and tick time
            state: The entity's state (mutated)
            venue: Current venue snapshot (anchors, floors, zones), if any

        Returns:
            Fresh FusedPosition; the last known record marked stale when no
            source is usable; None if the entity never had a position
        """
        now_ms = inputs.timestamp_ms
        self.metrics.increment('fusion_ticks')

        gnss_fix = self._process_gnss(inputs.gnss_samples, state)
        anchor_result = self._process_anchors(inputs.anchor_readings, state, venue, now_ms)

        selection = SourceSelection.select(gnss_fix is not None, anchor_result is not None)

        if selection == SourceSelection.NONE:
            return self._no_sources(state, now_ms)

        sources: List[_SourceFix] = []
        if selection in (SourceSelection.BLENDED, SourceSelection.GNSS_ONLY):
            sources.append(self._gnss_source(gnss_fix))
        if selection in (SourceSelection.BLENDED, SourceSelection.ANCHORS_ONLY):
            sources.append(self._anchor_source(anchor_result, venue))

        latitude, longitude, accuracy, confidence = self._blend(sources)
        kinds = tuple(k for k in SourceKind if any(k in s.kind for s in sources))

        anchors_expected = bool(inputs.anchor_readings)
        degraded = gnss_fix is None or (anchors_expected and anchor_result is None)
        indoor = anchor_result is not None and (
            gnss_fix is None or gnss_fix.accuracy_m > self.config.indoor_accuracy_m
        )

        altitude = self._altitude(inputs.barometric, gnss_fix)
        floor_resolution = self._resolve_floor(altitude, state, venue, now_ms)
        floor = floor_resolution.floor if floor_resolution else None

        local_position = None
        zone_id = zone_name = None
        snapped = False
        if venue is not None:
            local_position = venue.frame.to_local(latitude, longitude, altitude)
            z = local_position[2] if altitude is not None else None
            match = self.zone_matcher.match((local_position[0], local_position[1], z),
                                            venue, floor, accuracy)
            if match is not None:
                zone_id, zone_name = match.zone.zone_id, match.zone.name

            snap = self.zone_matcher.snap((local_position[0], local_position[1], z),
                                          venue, confidence, floor)
            if snap is not None:
                latitude, longitude, _ = venue.frame.to_geo(snap.position[0], snap.position[1])
                local_position = (snap.position[0], snap.position[1], local_position[2])
                confidence = snap.confidence
                zone_id, zone_name = snap.zone.zone_id, snap.zone.name
                snapped = True

        fused = FusedPosition(
            entity_id=state.entity_id,
            latitude=latitude,
            longitude=longitude,
            accuracy_m=accuracy,
            confidence=confidence,
            sources_used=kinds,
            timestamp_ms=now_ms,
            altitude_m=altitude,
            local_position=local_position,
            floor=floor,
            floor_uncalibrated=bool(floor_resolution and floor_resolution.uncalibrated),
            zone_id=zone_id,
            zone_name=zone_name,
            snapped=snapped,
            degraded=degraded,
            indoor=indoor,
        )

        self._emit_transition(state, fused)
        state.last_fused = fused
        state.history.append(fused)

        self.metrics.increment('fused_positions')
        self.metrics.increment(f'selection_{selection.value}')
        self.metrics.record_histogram('fused_accuracy_m', accuracy)

        self._update_trackers(state, fused)
        return fused

    # =========================================================================
    # Sources
    # =========================================================================

    def _process_gnss(self, samples: Sequence[RawSample], state: EntityState) -> Optional[SmoothedFix]:
        """Gate and smooth every fix; return the fix from the last accepted one."""
        latest = None
        for sample in samples:
            result = self.gate.accept(sample, state.last_accepted)
            if result.rejected:
                kind = (DiagnosticKind.MALFORMED_MEASUREMENT
                        if result.reason == RejectReason.MALFORMED
                        else DiagnosticKind.SAMPLE_REJECTED)
                detail = {'accuracy_m': sample.accuracy_m}
                if result.implied_speed_m_s is not None:
                    detail['implied_speed_m_s'] = result.implied_speed_m_s
                self._diagnose(state, kind, result.reason_code, sample.timestamp_ms, detail)
                continue

            state.last_accepted = sample
            fix = self.smoother.update(state.filter_state, sample)
            if fix is not None:
                latest = fix
        return latest

    def _process_anchors(self, readings: Sequence[AnchorReading], state: EntityState,
                         venue: Optional[VenueModel], now_ms: int) -> Optional[TrilaterationResult]:
        if not readings or venue is None:
            return None

        result = self.solver.solve(readings, venue.anchors, now_ms)
        if result is None:
            self._diagnose(state, DiagnosticKind.INSUFFICIENT_ANCHORS, 'insufficient_anchors', now_ms,
                           {'readings': len(readings)})
            return None

        if result.confidence <= self.config.anchor_confidence_floor:
            self.metrics.increment_drop('low_anchor_confidence')
            self._diagnose(state, DiagnosticKind.INSUFFICIENT_ANCHORS, 'low_anchor_confidence', now_ms,
                           {'confidence': result.confidence,
                            'residual_m': result.residual_error_m})
            return None

        return result

    def _gnss_source(self, fix: SmoothedFix) -> _SourceFix:
        return _SourceFix(
            kind=(SourceKind.GNSS,),
            latitude=fix.latitude,
            longitude=fix.longitude,
            accuracy_m=fix.accuracy_m,
            confidence=source_confidence(fix.accuracy_m, self.config.gnss_confidence_scale_m),
        )

    def _anchor_source(self, result: TrilaterationResult, venue: VenueModel) -> _SourceFix:
        x, y, _ = result.position
        latitude, longitude, _ = venue.frame.to_geo(x, y)
        return _SourceFix(
            kind=result.source_kinds,
            latitude=latitude,
            longitude=longitude,
            accuracy_m=result.accuracy_m,
            confidence=result.confidence,
        )

    @staticmethod
    def _blend(sources: Sequence[_SourceFix]) -> Tuple[float, float, float, float]:
        """Confidence-weighted mean of positions and accuracies; confidence Σc²/Σc."""
        total = sum(s.confidence for s in sources)
        if total <= 0:
            # All confidences zero: plain mean
            weights = [1.0 / len(sources)] * len(sources)
        else:
            weights = [s.confidence / total for s in sources]

        latitude = sum(w * s.latitude for w, s in zip(weights, sources))
        longitude = sum(w * s.longitude for w, s in zip(weights, sources))
        accuracy = sum(w * s.accuracy_m for w, s in zip(weights, sources))
        confidence = sum(w * s.confidence for w, s in zip(weights, sources))
        return latitude, longitude, accuracy, min(1.0, max(0.0, confidence))

    def _no_sources(self, state: EntityState, now_ms: int) -> Optional[FusedPosition]:
        self.metrics.increment('no_source_ticks')
        self._diagnose(state, DiagnosticKind.NO_SOURCES, 'no_sources', now_ms)

        if state.last_fused is None:
            return None

        return replace(state.last_fused.as_stale(now_ms), degraded=True)

    # =========================================================================
    # Enrichment
    # =========================================================================

    @staticmethod
    def _altitude(barometric: Optional[BarometricReading],
                  gnss_fix: Optional[SmoothedFix]) -> Optional[float]:
        """Barometric altitude if usable, else GNSS altitude."""
        if barometric is not None:
            altitude = barometric.resolved_altitude_m()
            if altitude is not None:
                return altitude
        if gnss_fix is not None and gnss_fix.altitude_m is not None:
            return gnss_fix.altitude_m
        return None

    def _resolve_floor(self, altitude: Optional[float], state: EntityState,
                       venue: Optional[VenueModel], now_ms: int) -> Optional[FloorResolution]:
        if altitude is None or not math.isfinite(altitude):
            return None

        elevations = None
        if venue is not None:
            base = venue.reference.altitude_m
            elevations = {index: base + elevation
                          for index, elevation in venue.floor_elevations().items()}

        if self.config.auto_calibrate:
            state.calibration.observe(altitude)

        resolution = self.floor_resolver.resolve_floor(altitude, state.calibration, elevations)
        if resolution.uncalibrated:
            self._diagnose(state, DiagnosticKind.UNCALIBRATED_FLOOR, 'uncalibrated_floor', now_ms,
                           {'altitude_m': altitude})
        return resolution

    def _emit_transition(self, state: EntityState, fused: FusedPosition):
        if fused.zone_id == state.last_zone_id and fused.floor == state.last_floor:
            return

        transition = ZoneTransition(
            entity_id=state.entity_id,
            timestamp_ms=fused.timestamp_ms,
            previous_zone_id=state.last_zone_id,
            zone_id=fused.zone_id,
            previous_floor=state.last_floor,
            floor=fused.floor,
        )
        state.last_zone_id = fused.zone_id
        state.last_floor = fused.floor

        logger.debug("%s: zone %s -> %s, floor %s -> %s", state.entity_id,
                     transition.previous_zone_id, transition.zone_id,
                     transition.previous_floor, transition.floor)
        self.metrics.increment('zone_transitions')
        if self.on_zone_change:
            self.on_zone_change(transition)

    def _update_trackers(self, state: EntityState, fused: FusedPosition):
        # Trackers may be removed by an arrival callback
        for tracker in list(state.trackers.values()):
            target = tracker.session.target
            distance = haversine_m(fused.latitude, fused.longitude, target.latitude, target.longitude)
            tracker.update(distance, fused.timestamp_ms)

    def _diagnose(self, state: EntityState, kind: DiagnosticKind, reason: str,
                  timestamp_ms: int, detail: Optional[dict] = None):
        logger.debug("%s: %s (%s)", state.entity_id, kind.name, reason)
        if self.on_diagnostic:
            self.on_diagnostic(DiagnosticEvent(
                entity_id=state.entity_id,
                kind=kind,
                reason=reason,
                timestamp_ms=timestamp_ms,
                detail=detail or {},
            ))
