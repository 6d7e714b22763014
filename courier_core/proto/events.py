"""
Event Message Schemas.

Defines the arrival state machine states and the events emitted to
external consumers: confirmed arrivals, departures, zone/floor transitions
and advisory diagnostics.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional


class ArrivalState(IntEnum):
    """State of an arrival session."""
    APPROACHING = 0   # Outside the arrival radius, or no distance yet
    CONFIRMING = 1    # Inside the radius, debounce timer pending
    ARRIVED = 2       # Confirmed arrival
    DEPARTED = 3      # Session stopped; terminal


@dataclass(frozen=True)
class ArrivalEvent:
    """
    Confirmed arrival, fired once per visit.

    Attributes:
        entity_id: Courier that arrived
        target_id: Target that was reached
        arrived_at_ms: Time the arrival was confirmed (ms)
        distance_m: Distance to the target at confirmation (m), None if never measured
        entered_at_ms: Time the courier first came within the radius (ms)
        manual: Marked arrived by hand rather than by the debounce timer
    """

    entity_id: str
    target_id: str
    arrived_at_ms: int
    distance_m: Optional[float]
    entered_at_ms: Optional[int] = None
    manual: bool = False

    @property
    def dwell_ms(self) -> Optional[int]:
        """Time from entering the radius to confirmation."""
        if self.entered_at_ms is None:
            return None
        return self.arrived_at_ms - self.entered_at_ms

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'entity_id': self.entity_id,
            'target_id': self.target_id,
            'arrived_at_ms': self.arrived_at_ms,
            'distance_m': self.distance_m,
            'entered_at_ms': self.entered_at_ms,
            'manual': self.manual,
        }


@dataclass(frozen=True)
class DepartureEvent:
    """Courier left the arrival radius after a confirmed arrival."""

    entity_id: str
    target_id: str
    departed_at_ms: int
    distance_m: float

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'entity_id': self.entity_id,
            'target_id': self.target_id,
            'departed_at_ms': self.departed_at_ms,
            'distance_m': self.distance_m,
        }


class DiagnosticKind(IntEnum):
    """Kind of advisory diagnostic."""
    SAMPLE_REJECTED = 0
    INSUFFICIENT_ANCHORS = 1
    NO_SOURCES = 2
    UNCALIBRATED_FLOOR = 3
    MALFORMED_MEASUREMENT = 4
    CHANNEL_OVERFLOW = 5


@dataclass(frozen=True)
class DiagnosticEvent:
    """
    Advisory diagnostic for observability; never fatal.

    Attributes:
        entity_id: Entity the diagnostic concerns
        kind: Diagnostic category
        reason: Reason code; a MetricsCollector.DROP_REASONS key when an input was
            dropped, otherwise a condition such as no_sources or uncalibrated_floor
        timestamp_ms: Time of the triggering input or tick (ms)
        detail: Free-form context for logs
    """

    entity_id: str
    kind: DiagnosticKind
    reason: str
    timestamp_ms: int
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'entity_id': self.entity_id,
            'kind': self.kind.name,
            'reason': self.reason,
            'timestamp_ms': self.timestamp_ms,
            'detail': dict(self.detail),
        }


@dataclass(frozen=True)
class ZoneTransition:
    """
    Change of zone or floor for an entity between two fused records.

    Attributes:
        entity_id: Entity that moved
        timestamp_ms: Tick time of the new record (ms)
        previous_zone_id: Zone before the change (None = outside any zone)
        zone_id: Zone after the change
        previous_floor: Floor before the change
        floor: Floor after the change
    """

    entity_id: str
    timestamp_ms: int
    previous_zone_id: Optional[str]
    zone_id: Optional[str]
    previous_floor: Optional[int]
    floor: Optional[int]

    @property
    def zone_changed(self) -> bool:
        return self.previous_zone_id != self.zone_id

    @property
    def floor_changed(self) -> bool:
        return self.previous_floor != self.floor

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'entity_id': self.entity_id,
            'timestamp_ms': self.timestamp_ms,
            'previous_zone_id': self.previous_zone_id,
            'zone_id': self.zone_id,
            'previous_floor': self.previous_floor,
            'floor': self.floor,
        }
