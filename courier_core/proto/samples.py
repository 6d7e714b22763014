"""
Raw Sensor Input Message Schemas.

Defines the immutable records delivered by external sensor adapters:
location fixes, anchor ranging (beacon RSSI or UWB range) and barometric
altitude. All timestamps are milliseconds on the adapter's clock.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import math


class SourceTag(Enum):
    """Origin of a raw location fix."""

    GNSS = "gnss"
    NETWORK = "network"
    BEACON = "beacon"
    UWB = "uwb"


class RangeKind(Enum):
    """Kind of value carried by a ranging sample."""

    RSSI = "rssi"      # Received signal strength in dBm (BLE beacon)
    RANGE = "range"    # Direct distance in meters (UWB two-way ranging)


@dataclass(frozen=True)
class RawSample:
    """
    Location fix from the platform location provider.

    Attributes:
        latitude: WGS84 latitude (degrees)
        longitude: WGS84 longitude (degrees)
        accuracy_m: Reported horizontal accuracy radius (m)
        timestamp_ms: Fix time (ms)
        altitude_m: Altitude above sea level (m), if reported
        speed_m_s: Reported ground speed (m/s), if reported
        heading_deg: Reported course over ground (degrees), if reported
        source: Provider that produced the fix

    Notes:
        - Never mutated after creation
        - NaN coordinates are representable here; SampleGate rejects them
    """

    latitude: float
    longitude: float
    accuracy_m: float
    timestamp_ms: int
    altitude_m: Optional[float] = None
    speed_m_s: Optional[float] = None
    heading_deg: Optional[float] = None
    source: SourceTag = SourceTag.GNSS

    @property
    def has_finite_position(self) -> bool:
        """True if latitude and longitude are finite numbers."""
        return math.isfinite(self.latitude) and math.isfinite(self.longitude)

    @property
    def has_altitude(self) -> bool:
        """True if a finite altitude was reported."""
        return self.altitude_m is not None and math.isfinite(self.altitude_m)

    @classmethod
    def from_dict(cls, data: dict) -> "RawSample":
        """
        Build a sample from an adapter payload.

        Accepts the short keys used by location providers
        (`lat`, `lon`, `accuracy`, `altitude`, `speed`, `heading`, `timestamp`).
        """
        return cls(
            latitude=float(data["lat"]),
            longitude=float(data["lon"]),
            accuracy_m=float(data["accuracy"]),
            timestamp_ms=int(data["timestamp"]),
            altitude_m=_optional_float(data.get("altitude")),
            speed_m_s=_optional_float(data.get("speed")),
            heading_deg=_optional_float(data.get("heading")),
            source=SourceTag(data.get("source", SourceTag.GNSS.value)),
        )


@dataclass(frozen=True)
class RangingSample:
    """
    Raw ranging observation from the anchor scanning stream.

    Attributes:
        anchor_id: Stable anchor identifier (beacon UUID/major/minor or UWB id)
        value: RSSI in dBm or range in meters, depending on kind
        kind: RSSI or RANGE
        timestamp_ms: Observation time (ms)
        uncertainty_m: Range uncertainty (m) for direct ranges, if known
    """

    anchor_id: str
    value: float
    kind: RangeKind
    timestamp_ms: int
    uncertainty_m: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RangingSample":
        """Build a ranging sample from an adapter payload."""
        if "rssi" in data:
            value, kind = float(data["rssi"]), RangeKind.RSSI
        else:
            value, kind = float(data["range"]), RangeKind.RANGE
        return cls(
            anchor_id=str(data["anchor_id"]),
            value=value,
            kind=kind,
            timestamp_ms=int(data["timestamp"]),
            uncertainty_m=_optional_float(data.get("uncertainty")),
        )


@dataclass(frozen=True)
class AnchorReading:
    """
    Distance estimate to a registered anchor, ready for multilateration.

    Attributes:
        anchor_id: Anchor identifier resolved against the AnchorRegistry
        range_m: Estimated distance to the anchor (m)
        range_uncertainty_m: One-sigma uncertainty of range_m (m)
        timestamp_ms: Observation time (ms)
    """

    anchor_id: str
    range_m: float
    range_uncertainty_m: float
    timestamp_ms: int

    def __post_init__(self):
        """Validate anchor reading."""
        if self.range_m < 0:
            raise ValueError(f"Range cannot be negative: {self.range_m}")

        if self.range_uncertainty_m < 0:
            raise ValueError(f"Range uncertainty cannot be negative: {self.range_uncertainty_m}")

    @property
    def is_finite(self) -> bool:
        """True if range and uncertainty are finite."""
        return math.isfinite(self.range_m) and math.isfinite(self.range_uncertainty_m)


# Standard atmosphere constants for pressure altitude
SEA_LEVEL_PRESSURE_HPA = 1013.25


@dataclass(frozen=True)
class BarometricReading:
    """
    Barometric altitude observation.

    Exactly one of altitude_m or pressure_hpa is expected; when only the
    pressure is known, altitude is derived with the standard atmosphere.

    Attributes:
        timestamp_ms: Observation time (ms)
        altitude_m: Absolute altitude (m), if the platform reports it
        pressure_hpa: Static pressure (hPa), if altitude is not reported
    """

    timestamp_ms: int
    altitude_m: Optional[float] = None
    pressure_hpa: Optional[float] = None

    def __post_init__(self):
        """Validate barometric reading."""
        if self.altitude_m is None and self.pressure_hpa is None:
            raise ValueError("Barometric reading needs altitude_m or pressure_hpa")

    def resolved_altitude_m(self) -> Optional[float]:
        """
        Altitude in meters, or None if the reading is unusable.

        Returns:
            altitude_m if finite, else the pressure altitude
            44330 * (1 - (p / 1013.25) ** (1 / 5.255)), else None
        """
        if self.altitude_m is not None and math.isfinite(self.altitude_m):
            return self.altitude_m

        if self.pressure_hpa is None or not math.isfinite(self.pressure_hpa) or self.pressure_hpa <= 0:
            return None

        return 44330.0 * (1.0 - (self.pressure_hpa / SEA_LEVEL_PRESSURE_HPA) ** (1.0 / 5.255))

    @classmethod
    def from_dict(cls, data: dict) -> "BarometricReading":
        """Build a barometric reading from an adapter payload."""
        return cls(
            timestamp_ms=int(data["timestamp"]),
            altitude_m=_optional_float(data.get("altitude")),
            pressure_hpa=_optional_float(data.get("pressure")),
        )


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)
