"""
Localization Module: Sample gating, smoothing, anchor solving, floors.

Key classes:
- SampleGate: Accuracy / speed / jump rejection for raw location fixes
- Smoother family: Kalman, exponential, moving-average and blended smoothing
- AnchorRegistry: Fixed anchor positions for a venue
- RangeConverter / AnchorSolver: RSSI or UWB ranges -> weighted-centroid position
- FloorResolver: Altitude -> floor index with a building calibration
- LocalFrame: WGS84 <-> venue-local metres
"""

from .geodesy import (
    GeoPoint,
    LocalFrame,
    haversine_m,
    bearing_deg,
    distance_3d_m,
    eta_seconds,
    format_distance,
    format_eta,
    accuracy_quality,
    is_valid_coordinate,
)
from .sample_gate import (
    SampleGate,
    SampleGateConfig,
    GateResult,
    RejectReason,
)
from .recursive_smoother import (
    FilterState,
    SmoothedFix,
    SmoothingMode,
    SmootherConfig,
    Smoother,
    KalmanSmoother,
    ExponentialSmoother,
    MovingAverageSmoother,
    BlendedSmoother,
    create_smoother,
)
from .anchor_registry import (
    AnchorPosition,
    AnchorRegistry,
)
from .anchor_solver import (
    RssiModel,
    RangeConverter,
    AnchorSolver,
    AnchorSolverConfig,
    rssi_to_distance,
)
from .floor_resolver import (
    BuildingCalibration,
    FloorResolution,
    FloorResolver,
    FloorResolverConfig,
    format_floor,
)

__all__ = [
    # Geodesy
    'GeoPoint',
    'LocalFrame',
    'haversine_m',
    'bearing_deg',
    'distance_3d_m',
    'eta_seconds',
    'format_distance',
    'format_eta',
    'accuracy_quality',
    'is_valid_coordinate',
    # Gating
    'SampleGate',
    'SampleGateConfig',
    'GateResult',
    'RejectReason',
    # Smoothing
    'FilterState',
    'SmoothedFix',
    'SmoothingMode',
    'SmootherConfig',
    'Smoother',
    'KalmanSmoother',
    'ExponentialSmoother',
    'MovingAverageSmoother',
    'BlendedSmoother',
    'create_smoother',
    # Anchors
    'AnchorPosition',
    'AnchorRegistry',
    'RssiModel',
    'RangeConverter',
    'AnchorSolver',
    'AnchorSolverConfig',
    'rssi_to_distance',
    # Floors
    'BuildingCalibration',
    'FloorResolution',
    'FloorResolver',
    'FloorResolverConfig',
    'format_floor',
]
