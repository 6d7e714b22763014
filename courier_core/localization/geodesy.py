"""
Geodesy helpers and venue-local coordinate frame.

Great-circle distances and bearings between WGS84 points, display
formatting for distances and ETAs, and a local tangent-plane frame that
maps latitude/longitude to venue-local metres (x east-ish, y north-ish,
z up) around the venue reference point.
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two WGS84 points.

    Args:
        lat1, lon1: First point (degrees)
        lat2, lon2: Second point (degrees)

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2, degrees clockwise from north in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)

    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return normalize_angle(math.degrees(math.atan2(y, x)))


def normalize_angle(angle_deg: float) -> float:
    """Wrap an angle into [0, 360)."""
    return ((angle_deg % 360.0) + 360.0) % 360.0


def distance_3d_m(lat1: float, lon1: float, alt1: Optional[float],
                  lat2: float, lon2: float, alt2: Optional[float]) -> float:
    """
    Slant distance combining horizontal haversine distance and altitude difference.

    A missing altitude on either side contributes no vertical component.
    """
    horizontal = haversine_m(lat1, lon1, lat2, lon2)
    if alt1 is None or alt2 is None:
        return horizontal
    return math.hypot(horizontal, alt2 - alt1)


def eta_seconds(distance_m: float, speed_m_s: float) -> float:
    """Time to cover distance_m at speed_m_s; infinite for non-positive speed."""
    if speed_m_s <= 0:
        return math.inf
    return distance_m / speed_m_s


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_distance(distance_m: float) -> str:
    """Render a distance as "850m" below one kilometre, else "1.2km"."""
    if distance_m < 1000:
        return f"{_round_half_up(distance_m)}m"
    return f"{distance_m / 1000:.1f}km"


def format_eta(seconds: float) -> str:
    """Render an ETA in minutes ("Less than 1 min", "1 min", "12 mins", "1h 5m")."""
    if math.isinf(seconds):
        return "Unknown"

    minutes = _round_half_up(seconds / 60.0)
    if minutes < 1:
        return "Less than 1 min"
    if minutes == 1:
        return "1 min"
    if minutes < 60:
        return f"{minutes} mins"
    return f"{minutes // 60}h {minutes % 60}m"


def accuracy_quality(accuracy_m: float) -> str:
    """Bucket a horizontal accuracy: excellent <=5, good <=15, fair <=50, else poor."""
    if accuracy_m <= 5:
        return "excellent"
    if accuracy_m <= 15:
        return "good"
    if accuracy_m <= 50:
        return "fair"
    return "poor"


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    """True for finite latitude in [-90, 90] and longitude in [-180, 180]."""
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


@dataclass(frozen=True)
class GeoPoint:
    """WGS84 reference point."""
    latitude: float
    longitude: float
    altitude_m: float = 0.0


class LocalFrame:
    """
    Venue-local Cartesian frame anchored at a geographic reference point.

    Uses a linearised WGS84 tangent plane (valid over building-scale
    extents). The venue +y axis points `rotation_deg` clockwise from true
    north; `scale` is local units per metre.

    Usage:
        frame = LocalFrame(GeoPoint(37.0, -122.0, 10.0), rotation_deg=0.0)
        x, y, z = frame.to_local(37.0001, -122.0001, 14.0)
        lat, lon, alt = frame.to_geo(x, y, z)
    """

    # WGS84 ellipsoid
    WGS84_A = 6378137.0
    WGS84_F = 1.0 / 298.257223563
    WGS84_E2 = 2 * WGS84_F - WGS84_F ** 2

    def __init__(self, origin: GeoPoint, rotation_deg: float = 0.0, scale: float = 1.0):
        if scale <= 0:
            raise ValueError(f"Frame scale must be positive: {scale}")

        self.origin = origin
        self.rotation_deg = rotation_deg
        self.scale = scale

        lat0 = math.radians(origin.latitude)
        sin_lat0 = math.sin(lat0)
        denom = 1 - self.WGS84_E2 * sin_lat0 ** 2

        # Prime vertical and meridional radii of curvature at the origin
        n0 = self.WGS84_A / math.sqrt(denom)
        m0 = self.WGS84_A * (1 - self.WGS84_E2) / denom ** 1.5

        self._east_m_per_rad = (n0 + origin.altitude_m) * math.cos(lat0)
        self._north_m_per_rad = m0 + origin.altitude_m

        theta = math.radians(rotation_deg)
        self._cos = math.cos(theta)
        self._sin = math.sin(theta)

    def geo_to_enu(self, latitude: float, longitude: float,
                   altitude_m: Optional[float] = None) -> Tuple[float, float, float]:
        """East/north/up metres relative to the origin."""
        e = self._east_m_per_rad * math.radians(longitude - self.origin.longitude)
        n = self._north_m_per_rad * math.radians(latitude - self.origin.latitude)
        u = 0.0 if altitude_m is None else altitude_m - self.origin.altitude_m
        return (e, n, u)

    def enu_to_geo(self, e: float, n: float, u: float = 0.0) -> Tuple[float, float, float]:
        """Inverse of geo_to_enu."""
        latitude = self.origin.latitude + math.degrees(n / self._north_m_per_rad)
        longitude = self.origin.longitude + math.degrees(e / self._east_m_per_rad)
        return (latitude, longitude, self.origin.altitude_m + u)

    def to_local(self, latitude: float, longitude: float,
                 altitude_m: Optional[float] = None) -> Tuple[float, float, float]:
        """
        Convert a geographic point to venue-local coordinates.

        Args:
            latitude, longitude: WGS84 degrees
            altitude_m: Altitude above sea level; None maps to z=0

        Returns:
            (x, y, z) in venue-local units
        """
        e, n, u = self.geo_to_enu(latitude, longitude, altitude_m)
        x = e * self._cos - n * self._sin
        y = e * self._sin + n * self._cos
        return (x * self.scale, y * self.scale, u * self.scale)

    def to_geo(self, x: float, y: float, z: float = 0.0) -> Tuple[float, float, float]:
        """Convert venue-local coordinates back to (lat, lon, alt)."""
        x, y, z = x / self.scale, y / self.scale, z / self.scale
        e = x * self._cos + y * self._sin
        n = -x * self._sin + y * self._cos
        return self.enu_to_geo(e, n, z)
