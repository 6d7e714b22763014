"""
Position Output Schemas.

Defines the anchor multilateration result and the canonical fused position
record emitted once per fusion tick.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple
import math


class SourceKind(Enum):
    """Positioning source that contributed to a fused record."""

    GNSS = "GNSS"
    BEACON = "beacon"
    UWB = "UWB"


WEIGHTED_CENTROID = "weighted_centroid"


@dataclass(frozen=True)
class TrilaterationResult:
    """
    Anchor-based position solution.

    Attributes:
        position: Solved position (x, y, z) in venue-local meters
        confidence: Solution confidence in [0, 1]
        used_anchor_ids: Anchors that contributed, best first
        residual_error_m: Weighted mean |reported range - solved distance| (m)
        method: Solver method tag (e.g. "weighted_centroid")
        accuracy_m: Estimated horizontal accuracy of the solution (m)
        timestamp_ms: Newest reading time among used anchors (ms)
        source_kinds: Anchor technologies among used anchors
    """

    position: Tuple[float, float, float]
    confidence: float
    used_anchor_ids: Tuple[str, ...]
    residual_error_m: float
    method: str
    accuracy_m: float
    timestamp_ms: int
    source_kinds: Tuple[SourceKind, ...] = ()

    def __post_init__(self):
        """Validate trilateration result."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0,1]: {self.confidence}")

        if self.residual_error_m < 0:
            raise ValueError(f"Residual cannot be negative: {self.residual_error_m}")

    @property
    def num_anchors_used(self) -> int:
        """Number of anchors in the solution."""
        return len(self.used_anchor_ids)


@dataclass(frozen=True)
class FusedPosition:
    """
    Canonical fused position record.

    Attributes:
        entity_id: Tracked entity (courier) this record belongs to
        latitude: Fused WGS84 latitude (degrees)
        longitude: Fused WGS84 longitude (degrees)
        accuracy_m: Estimated horizontal accuracy (m)
        confidence: Fused confidence in [0, 1]
        sources_used: Sources that contributed this tick
        timestamp_ms: Tick time (ms)

        # Optional enrichment
        altitude_m: Fused altitude (m)
        local_position: Venue-local (x, y, z) in meters, if a venue is loaded
        floor: Resolved floor index
        floor_uncalibrated: True if floor is the uncalibrated default (0)
        zone_id: Matched zone id
        zone_name: Matched zone display name
        snapped: True if the position was pinned to a zone centre

        # Degradation flags
        degraded: True if fewer sources than configured were usable
        stale: True if this is the last known record re-emitted
        age_ms: Age of a stale record relative to the tick time (ms)
        indoor: True if anchors carried the fix while GNSS was absent or poor

    Notes:
        - Confidence is never NaN; records with non-finite coordinates are
          rejected at construction
    """

    entity_id: str
    latitude: float
    longitude: float
    accuracy_m: float
    confidence: float
    sources_used: Tuple[SourceKind, ...]
    timestamp_ms: int

    altitude_m: Optional[float] = None
    local_position: Optional[Tuple[float, float, float]] = None
    floor: Optional[int] = None
    floor_uncalibrated: bool = False
    zone_id: Optional[str] = None
    zone_name: Optional[str] = None
    snapped: bool = False

    degraded: bool = False
    stale: bool = False
    age_ms: int = 0
    indoor: bool = False

    def __post_init__(self):
        """Validate fused position."""
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError(f"Fused coordinates must be finite: {self.latitude}, {self.longitude}")

        if math.isnan(self.confidence) or not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0,1]: {self.confidence}")

        if math.isnan(self.accuracy_m) or self.accuracy_m < 0:
            raise ValueError(f"Accuracy must be non-negative: {self.accuracy_m}")

    @property
    def position(self) -> Tuple[float, float, Optional[float]]:
        """Geographic position (lat, lon, alt)."""
        return (self.latitude, self.longitude, self.altitude_m)

    def as_stale(self, now_ms: int) -> "FusedPosition":
        """
        Copy of this record marked stale.

        Args:
            now_ms: Tick time at which the record is re-emitted

        Returns:
            FusedPosition with stale=True and age_ms relative to now_ms
        """
        return replace(self, stale=True, age_ms=max(0, now_ms - self.timestamp_ms))

    def source_label(self) -> str:
        """Human-readable source list, e.g. "GNSS only" or "GNSS + UWB"."""
        if not self.sources_used:
            return "no sources"
        if len(self.sources_used) == 1:
            return f"{self.sources_used[0].value} only"
        return " + ".join(kind.value for kind in self.sources_used)

    def describe_accuracy(self) -> str:
        """
        User-visible accuracy text.

        Examples:
            "accuracy: 40m (GNSS only)"
            "accuracy: 5m (stale, 12s old)"
        """
        accuracy = f"accuracy: {round(self.accuracy_m)}m"
        if self.stale:
            return f"{accuracy} (stale, {self.age_ms // 1000}s old)"
        return f"{accuracy} ({self.source_label()})"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'entity_id': self.entity_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude_m': self.altitude_m,
            'accuracy_m': self.accuracy_m,
            'confidence': self.confidence,
            'sources_used': [kind.value for kind in self.sources_used],
            'timestamp_ms': self.timestamp_ms,
            'local_position': self.local_position,
            'floor': self.floor,
            'floor_uncalibrated': self.floor_uncalibrated,
            'zone_id': self.zone_id,
            'zone_name': self.zone_name,
            'snapped': self.snapped,
            'degraded': self.degraded,
            'stale': self.stale,
            'age_ms': self.age_ms,
            'indoor': self.indoor,
        }
