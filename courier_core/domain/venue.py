"""
Venue Model.

Static description of a venue: geographic reference point and local frame,
floors with elevations, zones with bounding shapes, and the anchor
registry. Venues are immutable; edits go through VenueStore, which builds
a new VenueModel and swaps it in atomically so concurrent readers never
see a half-updated venue.

Zone shapes (venue-local metres):
- BoxShape: axis-aligned box, containment on x, y and z
- PolygonShape: horizontal polygon, containment by ray casting + floor check
- CircleShape: centre + radius, containment by distance + floor check
"""

import json
import logging
import math
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from courier_core.proto.position import SourceKind
from courier_core.localization.anchor_registry import (
    AnchorPosition,
    AnchorRegistry,
    DEFAULT_TX_POWER_DBM,
)
from courier_core.localization.geodesy import GeoPoint, LocalFrame

logger = logging.getLogger(__name__)


class VenueConfigError(ValueError):
    """Invalid venue configuration; raised before any tracking starts."""


class ZoneType(Enum):
    """Functional category of a zone."""
    BAR = "bar"
    SEATING = "seating"
    KITCHEN = "kitchen"
    ENTRANCE = "entrance"
    DECK = "deck"
    LOBBY = "lobby"
    PICKUP = "pickup"
    RESTROOM = "restroom"
    STAGE = "stage"
    OTHER = "other"


# =============================================================================
# Shapes
# =============================================================================

@dataclass(frozen=True)
class BoxShape:
    """Axis-aligned bounding box."""

    min_corner: Tuple[float, float, float]
    max_corner: Tuple[float, float, float]

    def __post_init__(self):
        if len(self.min_corner) != 3 or len(self.max_corner) != 3:
            raise VenueConfigError("Box corners must be (x, y, z)")
        if any(lo > hi for lo, hi in zip(self.min_corner, self.max_corner)):
            raise VenueConfigError(f"Box min corner exceeds max corner: {self.min_corner} > {self.max_corner}")

    def contains_xy(self, x: float, y: float) -> bool:
        return (self.min_corner[0] <= x <= self.max_corner[0] and
                self.min_corner[1] <= y <= self.max_corner[1])

    def contains_z(self, z: float) -> bool:
        return self.min_corner[2] <= z <= self.max_corner[2]

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.min_corner[0] + self.max_corner[0]) / 2.0,
                (self.min_corner[1] + self.max_corner[1]) / 2.0)

    @property
    def radius_m(self) -> float:
        """Half of the horizontal diagonal."""
        return math.hypot(self.max_corner[0] - self.min_corner[0],
                          self.max_corner[1] - self.min_corner[1]) / 2.0


@dataclass(frozen=True)
class PolygonShape:
    """Horizontal polygon given by ordered (x, y) vertices."""

    vertices: Tuple[Tuple[float, float], ...]

    def __post_init__(self):
        if len(self.vertices) < 3:
            raise VenueConfigError(f"Polygon needs at least 3 vertices, got {len(self.vertices)}")

    def contains_xy(self, x: float, y: float) -> bool:
        """Ray casting (even-odd rule)."""
        inside = False
        n = len(self.vertices)
        j = n - 1
        for i in range(n):
            xi, yi = self.vertices[i][0], self.vertices[i][1]
            xj, yj = self.vertices[j][0], self.vertices[j][1]
            if (yi > y) != (yj > y):
                x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
                if x < x_cross:
                    inside = not inside
            j = i
        return inside

    def contains_z(self, z: float) -> bool:
        return True

    @property
    def center(self) -> Tuple[float, float]:
        xs = [v[0] for v in self.vertices]
        ys = [v[1] for v in self.vertices]
        return (sum(xs) / len(xs), sum(ys) / len(ys))

    @property
    def radius_m(self) -> float:
        """Largest vertex distance from the vertex centroid."""
        cx, cy = self.center
        return max(math.hypot(v[0] - cx, v[1] - cy) for v in self.vertices)


@dataclass(frozen=True)
class CircleShape:
    """Circle given by centre and radius."""

    center_xy: Tuple[float, float]
    radius: float

    def __post_init__(self):
        if not self.radius > 0:
            raise VenueConfigError(f"Circle radius must be positive: {self.radius}")

    def contains_xy(self, x: float, y: float) -> bool:
        return math.hypot(x - self.center_xy[0], y - self.center_xy[1]) <= self.radius

    def contains_z(self, z: float) -> bool:
        return True

    @property
    def center(self) -> Tuple[float, float]:
        return self.center_xy

    @property
    def radius_m(self) -> float:
        return self.radius


ZoneShape = Union[BoxShape, PolygonShape, CircleShape]


# =============================================================================
# Venue entities
# =============================================================================

@dataclass(frozen=True)
class Zone:
    """
    Named area of a venue.

    Attributes:
        zone_id: Unique zone identifier
        name: Display name
        zone_type: Functional category
        shape: Bounding shape in venue-local metres
        floor: Floor index the zone lies on
        priority: Higher wins when zones overlap
        capacity: Nominal capacity, if known
        is_active: Inactive zones are never matched
    """

    zone_id: str
    name: str
    zone_type: ZoneType
    shape: ZoneShape
    floor: int = 0
    priority: int = 0
    capacity: Optional[int] = None
    is_active: bool = True

    @property
    def center(self) -> Tuple[float, float]:
        return self.shape.center

    @property
    def radius_m(self) -> float:
        return self.shape.radius_m

    def contains(self, x: float, y: float, z: Optional[float] = None,
                 floor: Optional[int] = None) -> bool:
        """
        Containment test.

        Boxes use their z-range when z is known; otherwise, and for polygons
        and circles, the zone's floor must match the given floor (when known).
        """
        if not self.shape.contains_xy(x, y):
            return False

        if isinstance(self.shape, BoxShape) and z is not None:
            return self.shape.contains_z(z)

        return floor is None or floor == self.floor

    def distance_to_center(self, x: float, y: float) -> float:
        cx, cy = self.center
        return math.hypot(x - cx, y - cy)


@dataclass(frozen=True)
class Floor:
    """
    Venue floor.

    Attributes:
        index: Floor index (0 = ground)
        name: Display name
        elevation_m: Floor level in venue-local z (m above the reference point)
    """

    index: int
    name: str = ""
    elevation_m: Optional[float] = None


@dataclass(frozen=True)
class VenueModel:
    """
    Immutable venue description.

    Attributes:
        venue_id: Venue identifier
        reference: Geographic origin of the venue-local frame
        floors: Floors, at least one
        zones: Zones
        anchors: Anchor registry
        name: Display name
        rotation_deg: Venue +y axis bearing from true north (degrees)
        scale: Local units per metre
        coordinate_system: Frame tag
    """

    venue_id: str
    reference: GeoPoint
    floors: Tuple[Floor, ...]
    zones: Tuple[Zone, ...] = ()
    anchors: AnchorRegistry = field(default_factory=AnchorRegistry)
    name: str = ""
    rotation_deg: float = 0.0
    scale: float = 1.0
    coordinate_system: str = "local_enu"

    def __post_init__(self):
        """Validate venue consistency."""
        if not self.floors:
            raise VenueConfigError(f"Venue {self.venue_id} has no floors")

        floor_ids = [f.index for f in self.floors]
        if len(set(floor_ids)) != len(floor_ids):
            raise VenueConfigError(f"Venue {self.venue_id} has duplicate floor indices: {floor_ids}")

        zone_ids = [z.zone_id for z in self.zones]
        if len(set(zone_ids)) != len(zone_ids):
            raise VenueConfigError(f"Venue {self.venue_id} has duplicate zone ids")

        for zone in self.zones:
            if zone.floor not in floor_ids:
                raise VenueConfigError(f"Zone {zone.zone_id} references unknown floor {zone.floor}")

        if self.scale <= 0:
            raise VenueConfigError(f"Venue scale must be positive: {self.scale}")

        object.__setattr__(self, '_frame', LocalFrame(self.reference, self.rotation_deg, self.scale))

    @property
    def frame(self) -> LocalFrame:
        return self._frame

    def zone(self, zone_id: str) -> Optional[Zone]:
        for zone in self.zones:
            if zone.zone_id == zone_id:
                return zone
        return None

    def zones_of_type(self, zone_type: ZoneType) -> List[Zone]:
        return [z for z in self.zones if z.zone_type == zone_type]

    def active_zones(self) -> List[Zone]:
        return [z for z in self.zones if z.is_active]

    def floor(self, index: int) -> Optional[Floor]:
        for floor in self.floors:
            if floor.index == index:
                return floor
        return None

    def floor_elevations(self) -> Dict[int, float]:
        """Floor index -> elevation for floors that define one."""
        return {f.index: f.elevation_m for f in self.floors if f.elevation_m is not None}

    def with_zones(self, zones: Sequence[Zone]) -> "VenueModel":
        return replace(self, zones=tuple(zones))

    def with_anchors(self, anchors: AnchorRegistry) -> "VenueModel":
        return replace(self, anchors=anchors)


# =============================================================================
# Loading
# =============================================================================

def _parse_shape(data: dict) -> ZoneShape:
    if "box" in data:
        box = data["box"]
        return BoxShape(tuple(float(v) for v in box["min"]), tuple(float(v) for v in box["max"]))
    if "polygon" in data:
        return PolygonShape(tuple((float(v[0]), float(v[1])) for v in data["polygon"]))
    if "circle" in data:
        circle = data["circle"]
        return CircleShape((float(circle["center"][0]), float(circle["center"][1])), float(circle["radius"]))
    raise VenueConfigError(f"Zone {data.get('id')} has no box, polygon or circle")


def _parse_zone(data: dict) -> Zone:
    try:
        zone_type = ZoneType(data.get("type", ZoneType.OTHER.value))
    except ValueError:
        raise VenueConfigError(f"Zone {data.get('id')} has unknown type {data.get('type')!r}") from None

    return Zone(
        zone_id=str(data["id"]),
        name=data.get("name", str(data["id"])),
        zone_type=zone_type,
        shape=_parse_shape(data),
        floor=int(data.get("floor", 0)),
        priority=int(data.get("priority", 0)),
        capacity=data.get("capacity"),
        is_active=bool(data.get("active", True)),
    )


def _parse_anchor(data: dict) -> AnchorPosition:
    try:
        kind = SourceKind(data.get("kind", SourceKind.BEACON.value))
    except ValueError:
        raise VenueConfigError(f"Anchor {data.get('id')} has unknown kind {data.get('kind')!r}") from None

    return AnchorPosition(
        anchor_id=str(data["id"]),
        position=tuple(float(v) for v in data["position"]),
        kind=kind,
        calibration_accuracy_m=float(data.get("calibration_accuracy", 0.0)),
        tx_power_dbm=float(data.get("tx_power", DEFAULT_TX_POWER_DBM)),
        floor=data.get("floor"),
    )


def load_venue(data: dict) -> VenueModel:
    """
    Build a VenueModel from a configuration document.

    Args:
        data: Parsed venue document:
            {"id", "name", "reference": {"lat", "lon", "alt"}, "rotation_deg", "scale",
             "floors": [{"index", "name", "elevation"}],
             "zones": [{"id", "name", "type", "floor", "priority", "capacity", "active",
                        "box": {"min", "max"} | "polygon": [[x, y], ...] |
                        "circle": {"center", "radius"}}],
             "anchors": [{"id", "position", "kind", "tx_power", "calibration_accuracy", "floor"}]}

    Returns:
        Validated VenueModel

    Raises:
        VenueConfigError: If the document is incomplete or inconsistent
    """
    if "reference" not in data:
        raise VenueConfigError(f"Venue {data.get('id')} has no reference point")

    try:
        ref = data["reference"]
        reference = GeoPoint(float(ref["lat"]), float(ref["lon"]), float(ref.get("alt", 0.0)))

        floors = tuple(
            Floor(
                index=int(f["index"]),
                name=f.get("name", ""),
                elevation_m=None if f.get("elevation") is None else float(f["elevation"]),
            )
            for f in data.get("floors", [])
        )
        zones = tuple(_parse_zone(z) for z in data.get("zones", []))
        anchors = AnchorRegistry(_parse_anchor(a) for a in data.get("anchors", []))

        venue = VenueModel(
            venue_id=str(data["id"]),
            name=data.get("name", ""),
            reference=reference,
            floors=floors,
            zones=zones,
            anchors=anchors,
            rotation_deg=float(data.get("rotation_deg", 0.0)),
            scale=float(data.get("scale", 1.0)),
            coordinate_system=data.get("coordinate_system", "local_enu"),
        )
    except VenueConfigError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise VenueConfigError(f"Invalid venue document: {exc}") from exc

    logger.info("Loaded venue %s: %d floors, %d zones, %d anchors",
                venue.venue_id, len(venue.floors), len(venue.zones), len(venue.anchors))
    return venue


def load_venue_file(path: str) -> VenueModel:
    """Load a venue from a JSON file."""
    with open(path, 'r', encoding='utf-8') as f:
        return load_venue(json.load(f))


# =============================================================================
# Copy-and-swap store
# =============================================================================

class VenueStore:
    """
    Holder of the current VenueModel with atomic edits.

    Readers call `current` and keep using the snapshot they got; every edit
    builds a complete new VenueModel (validated) and swaps the reference
    under a lock.

    Usage:
        store = VenueStore(load_venue_file("venue.json"))

        venue = store.current            # consistent snapshot
        store.set_zone_active("bar", False)
        store.upsert_anchor(AnchorPosition("A1", (10.2, 0.0, 2.5)))
    """

    def __init__(self, venue: VenueModel):
        self._lock = threading.Lock()
        self._venue = venue
        self._version = 1

    @property
    def current(self) -> VenueModel:
        with self._lock:
            return self._venue

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def replace(self, venue: VenueModel):
        """Swap in a whole new venue."""
        self._apply(lambda _: venue, f"replace with {venue.venue_id}")

    def add_zone(self, zone: Zone):
        self._apply(lambda v: v.with_zones(v.zones + (zone,)), f"add zone {zone.zone_id}")

    def remove_zone(self, zone_id: str):
        def edit(venue: VenueModel) -> VenueModel:
            if venue.zone(zone_id) is None:
                raise KeyError(zone_id)
            return venue.with_zones([z for z in venue.zones if z.zone_id != zone_id])

        self._apply(edit, f"remove zone {zone_id}")

    def update_zone(self, zone_id: str, /, **changes):
        """
        Replace fields of a zone (name, zone_type, shape, floor, priority,
        capacity, is_active). The zone id itself cannot change.
        """
        if 'zone_id' in changes:
            raise ValueError("zone_id cannot be changed")

        def edit(venue: VenueModel) -> VenueModel:
            if venue.zone(zone_id) is None:
                raise KeyError(zone_id)
            return venue.with_zones([
                replace(z, **changes) if z.zone_id == zone_id else z for z in venue.zones
            ])

        self._apply(edit, f"update zone {zone_id}")

    def set_zone_active(self, zone_id: str, active: bool):
        self.update_zone(zone_id, is_active=active)

    def upsert_anchor(self, anchor: AnchorPosition):
        """Add an anchor or recalibrate an existing one."""
        self._apply(lambda v: v.with_anchors(v.anchors.with_anchor(anchor)),
                    f"upsert anchor {anchor.anchor_id}")

    def _apply(self, edit: Callable[[VenueModel], VenueModel], description: str):
        with self._lock:
            updated = edit(self._venue)
            self._venue = updated
            self._version += 1
            version = self._version
        logger.info("Venue %s: %s (version %d)", updated.venue_id, description, version)
