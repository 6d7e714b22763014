"""
Floor Resolver.

Converts an altitude (GNSS or barometric) into a discrete floor index.

Two methods:
- Venue elevations: nearest floor by |altitude - floor elevation|, used
  when the venue defines floor elevations
- Calibrated formula: round((altitude - baseline) / floor_height) + offset,
  clamped to [min_floor, max_floor]

The building baseline is discovered as the lowest altitude ever observed
in the session and never moves upward.
"""

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional

from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class BuildingCalibration:
    """
    Ground reference for the formula method, one per venue session.

    Attributes:
        baseline_altitude_m: Lowest altitude observed (None until seeded)
        floor_offset: Manual correction in floors (e.g. -3 if the ground
            sample was actually taken on the 3rd floor)
        sample_count: Altitudes observed since the last reset
    """

    baseline_altitude_m: Optional[float] = None
    floor_offset: int = 0
    sample_count: int = 0

    @property
    def is_seeded(self) -> bool:
        return self.baseline_altitude_m is not None

    def observe(self, altitude_m: float) -> bool:
        """
        Feed one altitude sample; the baseline can only move down.

        Returns:
            True if the baseline changed
        """
        if altitude_m is None or not math.isfinite(altitude_m):
            logger.warning("Non-finite altitude %r ignored by calibration", altitude_m)
            return False

        self.sample_count += 1
        if self.baseline_altitude_m is None or altitude_m < self.baseline_altitude_m:
            logger.debug("Building baseline %s -> %.2f m (%d samples)",
                         self.baseline_altitude_m, altitude_m, self.sample_count)
            self.baseline_altitude_m = altitude_m
            return True
        return False

    def set_floor_offset(self, offset: int):
        self.floor_offset = int(offset)
        logger.info("Floor offset set to %d", self.floor_offset)

    def reset(self):
        """Clear baseline, offset and sample count."""
        self.baseline_altitude_m = None
        self.floor_offset = 0
        self.sample_count = 0


@dataclass(frozen=True)
class FloorResolution:
    """
    Result of a floor lookup.

    Attributes:
        floor: Floor index
        uncalibrated: True when no baseline existed and floor is the default 0
        method: "venue_elevation", "formula" or "default"
    """

    floor: int
    uncalibrated: bool = False
    method: str = "formula"


@dataclass
class FloorResolverConfig:
    """
    Configuration for floor resolution.

    Attributes:
        floor_height_m: Height of one storey for the formula method (m)
        min_floor: Lowest floor index returned
        max_floor: Highest floor index returned
        prefer_venue_elevations: Use nearest venue floor elevation when available
    """

    floor_height_m: float = 4.0
    min_floor: int = 0
    max_floor: int = 100
    prefer_venue_elevations: bool = True

    def __post_init__(self):
        """Validate configuration."""
        assert self.floor_height_m > 0, "floor_height_m must be positive"
        assert self.min_floor <= self.max_floor, "min_floor must be <= max_floor"


class FloorResolver:
    """
    Resolve floor index from altitude.

    Usage:
        resolver = FloorResolver()
        calibration = BuildingCalibration()

        calibration.observe(10.0)
        resolution = resolver.resolve_floor(18.3, calibration)
        assert resolution.floor == 2
    """

    def __init__(self, config: Optional[FloorResolverConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.config = config or FloorResolverConfig()
        self.metrics = metrics or MetricsCollector()

    def resolve_floor(self, altitude_m: float, calibration: BuildingCalibration,
                      floor_elevations: Optional[Mapping[int, float]] = None) -> FloorResolution:
        """
        Resolve floor index.

        Args:
            altitude_m: Altitude in the same frame as the baseline/elevations (m)
            calibration: Building calibration for the formula method
            floor_elevations: Floor index -> elevation (m), if the venue defines them

        Returns:
            FloorResolution; floor 0 flagged uncalibrated when nothing can be computed
        """
        if altitude_m is None or not math.isfinite(altitude_m):
            logger.warning("Cannot resolve floor from altitude %r", altitude_m)
            return self._uncalibrated()

        if floor_elevations and self.config.prefer_venue_elevations:
            floor = min(floor_elevations, key=lambda f: (abs(altitude_m - floor_elevations[f]), f))
            return FloorResolution(floor=floor, method="venue_elevation")

        if not calibration.is_seeded:
            return self._uncalibrated()

        # Round half up
        raw = math.floor((altitude_m - calibration.baseline_altitude_m) / self.config.floor_height_m + 0.5)
        floor = int(raw) + calibration.floor_offset
        floor = max(self.config.min_floor, min(self.config.max_floor, floor))
        return FloorResolution(floor=floor, method="formula")

    def _uncalibrated(self) -> FloorResolution:
        self.metrics.increment('uncalibrated_floor_resolutions')
        logger.debug("Building baseline not established; reporting floor 0")
        return FloorResolution(floor=0, uncalibrated=True, method="default")


def format_floor(floor: int) -> str:
    """Display name: "Ground Floor", "1st Floor", "2nd Floor", "11th Floor"."""
    if floor == 0:
        return "Ground Floor"
    if floor < 0:
        return f"Basement {-floor}"

    if 10 <= floor % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(floor % 10, "th")
    return f"{floor}{suffix} Floor"
