"""
Protocol Module: Message schemas.

Immutable records exchanged with sensor adapters and consumers:
- Raw inputs (location fixes, ranging, barometric altitude)
- Anchor readings and trilateration results
- Fused position records
- Arrival, departure, zone transition and diagnostic events
"""

from .samples import (
    RawSample,
    SourceTag,
    RangingSample,
    RangeKind,
    AnchorReading,
    BarometricReading,
)
from .position import (
    TrilaterationResult,
    FusedPosition,
    SourceKind,
    WEIGHTED_CENTROID,
)
from .events import (
    ArrivalState,
    ArrivalEvent,
    DepartureEvent,
    DiagnosticKind,
    DiagnosticEvent,
    ZoneTransition,
)

__all__ = [
    # Inputs
    'RawSample',
    'SourceTag',
    'RangingSample',
    'RangeKind',
    'AnchorReading',
    'BarometricReading',
    # Outputs
    'TrilaterationResult',
    'FusedPosition',
    'SourceKind',
    'WEIGHTED_CENTROID',
    # Events
    'ArrivalState',
    'ArrivalEvent',
    'DepartureEvent',
    'DiagnosticKind',
    'DiagnosticEvent',
    'ZoneTransition',
]
