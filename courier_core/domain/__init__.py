"""
Domain Module: Venue model, zone matching and arrival confirmation.

Implements:
- Venue, floors, zones (box / polygon / circle) and copy-and-swap edits
- Point-in-zone matching, nearby search and opt-in snap-to-zone
- Debounced arrival state machine per courier/target pair
"""

from .venue import (
    VenueConfigError,
    ZoneType,
    BoxShape,
    PolygonShape,
    CircleShape,
    Zone,
    Floor,
    VenueModel,
    VenueStore,
    load_venue,
    load_venue_file,
)
from .zone_matcher import (
    SnapPolicy,
    SnapResult,
    ZoneMatch,
    ZoneMatcher,
    match_confidence,
)
from .arrival_tracker import (
    ArrivalTarget,
    ArrivalSession,
    ArrivalTracker,
    ArrivalTrackerConfig,
)

__all__ = [
    # Venue
    'VenueConfigError',
    'ZoneType',
    'BoxShape',
    'PolygonShape',
    'CircleShape',
    'Zone',
    'Floor',
    'VenueModel',
    'VenueStore',
    'load_venue',
    'load_venue_file',
    # Zones
    'SnapPolicy',
    'SnapResult',
    'ZoneMatch',
    'ZoneMatcher',
    'match_confidence',
    # Arrival
    'ArrivalTarget',
    'ArrivalSession',
    'ArrivalTracker',
    'ArrivalTrackerConfig',
]
