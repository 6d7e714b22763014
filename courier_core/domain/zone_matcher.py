"""
Zone Matcher.

Assigns venue-local positions to zones and optionally snaps them to a
nearby zone centre.

Matching:
- Candidates are active zones containing the point (box xyz containment,
  polygon/circle horizontal containment + floor check)
- Highest priority wins, ties broken by nearest zone centre
- Match confidence = 0.7·max(0, 1 - d/r) + 0.3·max(0, 1 - accuracy/50)
  with d the distance to the zone centre and r the zone radius

Snapping pins the position to the nearest zone centre within radius_m.
It trades positional truth for stable zone attribution and can mask real
movement, so it only runs when SnapPolicy.enabled is set.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from courier_core.domain.venue import VenueModel, Zone
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)

Position = Tuple[float, float, Optional[float]]

ACCURACY_REFERENCE_M = 50.0


@dataclass
class SnapPolicy:
    """
    Snap-to-zone policy.

    Attributes:
        enabled: Snap only when explicitly enabled
        radius_m: Maximum distance from a zone centre for snapping (m)
        confidence_boost: Added to the record's confidence when snapped
    """

    enabled: bool = False
    radius_m: float = 2.0
    confidence_boost: float = 0.2

    def __post_init__(self):
        """Validate configuration."""
        assert self.radius_m > 0, "radius_m must be positive"
        assert 0 <= self.confidence_boost <= 1, "confidence_boost must be in [0, 1]"


@dataclass(frozen=True)
class ZoneMatch:
    """
    Zone attribution for one position.

    Attributes:
        zone: Matched zone
        distance_to_center_m: Horizontal distance to the zone centre (m)
        confidence: Match confidence in [0, 1]
    """

    zone: Zone
    distance_to_center_m: float
    confidence: float


@dataclass(frozen=True)
class SnapResult:
    """Position pinned to a zone centre."""

    zone: Zone
    position: Tuple[float, float]
    confidence: float
    offset_m: float


class ZoneMatcher:
    """
    Point-in-zone lookup, nearby search and optional snapping.

    Usage:
        matcher = ZoneMatcher(SnapPolicy(enabled=False))

        zone = matcher.match_zone((3.0, 4.0, 1.2), venue, floor=0)
        nearby = matcher.nearby_zones((3.0, 4.0, 1.2), 10.0, venue)
    """

    def __init__(self, snap_policy: Optional[SnapPolicy] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.snap_policy = snap_policy or SnapPolicy()
        self.metrics = metrics or MetricsCollector()

    def match_zone(self, position: Position, venue: VenueModel,
                   floor: Optional[int] = None) -> Optional[Zone]:
        """Zone containing the position, or None."""
        match = self.match(position, venue, floor)
        return match.zone if match else None

    def match(self, position: Position, venue: VenueModel, floor: Optional[int] = None,
              accuracy_m: Optional[float] = None) -> Optional[ZoneMatch]:
        """
        Best zone containing the position, with match confidence.

        Args:
            position: Venue-local (x, y, z); z may be None
            venue: Venue snapshot
            floor: Resolved floor, used for polygon/circle zones and boxes without z
            accuracy_m: Horizontal accuracy of the position, for confidence

        Returns:
            ZoneMatch, or None if no active zone contains the point
        """
        x, y, z = position
        candidates = [zone for zone in venue.active_zones() if zone.contains(x, y, z, floor)]
        if not candidates:
            return None

        best = min(candidates, key=lambda zone: (-zone.priority, zone.distance_to_center(x, y)))
        distance = best.distance_to_center(x, y)

        self.metrics.increment('zone_matches')
        return ZoneMatch(
            zone=best,
            distance_to_center_m=distance,
            confidence=match_confidence(distance, best.radius_m, accuracy_m),
        )

    def nearby_zones(self, position: Position, radius_m: float, venue: VenueModel,
                     floor: Optional[int] = None) -> List[Zone]:
        """
        Active zones whose centre lies within radius_m, nearest first.

        Args:
            position: Venue-local (x, y, z)
            radius_m: Search radius (m)
            venue: Venue snapshot
            floor: If given, only zones on this floor
        """
        x, y, _ = position
        found = []
        for zone in venue.active_zones():
            if floor is not None and zone.floor != floor:
                continue
            distance = zone.distance_to_center(x, y)
            if distance <= radius_m:
                found.append((distance, zone))

        found.sort(key=lambda item: item[0])
        return [zone for _, zone in found]

    def snap(self, position: Position, venue: VenueModel, confidence: float,
             floor: Optional[int] = None) -> Optional[SnapResult]:
        """
        Pin a position to the nearest zone centre if the policy allows it.

        Returns:
            SnapResult, or None if snapping is disabled or no centre is close enough
        """
        if not self.snap_policy.enabled:
            return None

        nearby = self.nearby_zones(position, self.snap_policy.radius_m, venue, floor)
        if not nearby:
            return None

        zone = nearby[0]
        offset = zone.distance_to_center(position[0], position[1])
        self.metrics.increment('zone_snaps')
        logger.debug("Snapped position %.1fm to centre of zone %s", offset, zone.zone_id)
        return SnapResult(
            zone=zone,
            position=zone.center,
            confidence=min(1.0, confidence + self.snap_policy.confidence_boost),
            offset_m=offset,
        )


def match_confidence(distance_m: float, radius_m: float, accuracy_m: Optional[float]) -> float:
    """0.7·max(0, 1 - d/r) + 0.3·max(0, 1 - accuracy/50)."""
    proximity = max(0.0, 1.0 - distance_m / radius_m) if radius_m > 0 else 0.0
    accuracy = 0.0 if accuracy_m is None else accuracy_m
    precision = max(0.0, 1.0 - accuracy / ACCURACY_REFERENCE_M)
    return 0.7 * proximity + 0.3 * precision
