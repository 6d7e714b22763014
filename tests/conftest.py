"""
Pytest configuration and shared fixtures for courier positioning tests.

This module provides reusable fixtures for testing the sample gate,
smoothers, anchor solving, floor and zone resolution, arrival confirmation
and the positioning engine.
"""

import sys
import copy
from pathlib import Path
from typing import Dict, List

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from courier_core.proto import AnchorReading, RawSample, SourceKind
from courier_core.localization import AnchorPosition, AnchorRegistry
from courier_core.domain import VenueModel, load_venue
from courier_core.io import ManualScheduler
from courier_core.metrics import MetricsCollector


# =============================================================================
# Venue Fixtures
# =============================================================================

REFERENCE_LAT = 37.0
REFERENCE_LON = -122.0


@pytest.fixture
def venue_document() -> Dict:
    """
    Venue document with three floors, overlapping zones and four anchors.

    Layout (venue-local metres, +x east, +y north):
    - lobby: box (0,0)-(10,10) on floor 0, priority 0
    - bar: polygon (6,6)-(10,6)-(10,10)-(6,10) on floor 0, priority 1
    - pickup: circle at (5, 5) radius 3 on floor 1
    - anchors A0 (0,0), A1 (10,0), A2 (0,10) UWB; B3 (10,10) beacon

    Returns:
        Dictionary in the venue loader layout.
    """
    return copy.deepcopy({
        "id": "venue-1",
        "name": "Harbour Food Hall",
        "reference": {"lat": REFERENCE_LAT, "lon": REFERENCE_LON, "alt": 0.0},
        "rotation_deg": 0.0,
        "scale": 1.0,
        "floors": [
            {"index": 0, "name": "Ground", "elevation": 0.0},
            {"index": 1, "name": "Mezzanine", "elevation": 4.0},
            {"index": 2, "name": "Roof", "elevation": 8.0},
        ],
        "zones": [
            {"id": "lobby", "name": "Lobby", "type": "lobby", "floor": 0,
             "box": {"min": [0, 0, -1], "max": [10, 10, 3]}},
            {"id": "bar", "name": "Bar", "type": "bar", "floor": 0, "priority": 1,
             "polygon": [[6, 6], [10, 6], [10, 10], [6, 10]]},
            {"id": "pickup", "name": "Pickup Counter", "type": "pickup", "floor": 1,
             "circle": {"center": [5, 5], "radius": 3}},
        ],
        "anchors": [
            {"id": "A0", "position": [0, 0, 0], "kind": "UWB"},
            {"id": "A1", "position": [10, 0, 0], "kind": "UWB"},
            {"id": "A2", "position": [0, 10, 0], "kind": "UWB"},
            {"id": "B3", "position": [10, 10, 0], "kind": "beacon", "tx_power": -59},
        ],
    })


@pytest.fixture
def venue(venue_document: Dict) -> VenueModel:
    """Validated VenueModel built from venue_document."""
    return load_venue(venue_document)


# =============================================================================
# Anchor Fixtures
# =============================================================================


@pytest.fixture
def triangle_registry() -> AnchorRegistry:
    """
    Three UWB anchors on a right triangle.

    Returns:
        Registry with A0 (0,0,0), A1 (10,0,0), A2 (0,10,0).
    """
    return AnchorRegistry([
        AnchorPosition("A0", (0.0, 0.0, 0.0), kind=SourceKind.UWB),
        AnchorPosition("A1", (10.0, 0.0, 0.0), kind=SourceKind.UWB),
        AnchorPosition("A2", (0.0, 10.0, 0.0), kind=SourceKind.UWB),
    ])


@pytest.fixture
def equidistant_readings() -> List[AnchorReading]:
    """Readings of 7.07 m to each triangle anchor, 0.5 m uncertainty."""
    return [
        AnchorReading("A0", 7.07, 0.5, 1000),
        AnchorReading("A1", 7.07, 0.5, 1000),
        AnchorReading("A2", 7.07, 0.5, 1000),
    ]


# =============================================================================
# Runtime Fixtures
# =============================================================================


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Deterministic scheduler starting at t=0."""
    return ManualScheduler()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh metrics collector."""
    return MetricsCollector()


# =============================================================================
# Helper Functions
# =============================================================================


def make_sample(lat: float = REFERENCE_LAT, lon: float = REFERENCE_LON,
                accuracy: float = 5.0, t: int = 1000, **kwargs) -> RawSample:
    """
    Build a RawSample with sensible defaults.

    Args:
        lat: Latitude (degrees)
        lon: Longitude (degrees)
        accuracy: Reported accuracy (m)
        t: Timestamp (ms)

    Returns:
        RawSample
    """
    return RawSample(latitude=lat, longitude=lon, accuracy_m=accuracy, timestamp_ms=t, **kwargs)
