"""
Anchor registry.

Maps stable anchor identifiers (beacon UUID/major/minor or UWB anchor id)
to fixed venue-local positions and calibration data. Registries are
immutable: recalibration produces a new registry, which the venue store
swaps in atomically.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import math

import numpy as np

from courier_core.proto.position import SourceKind

DEFAULT_TX_POWER_DBM = -59.0


@dataclass(frozen=True)
class AnchorPosition:
    """
    Fixed anchor installed in a venue.

    Attributes:
        anchor_id: Stable anchor identifier
        position: Venue-local position (x, y, z) in meters
        kind: Anchor technology (BEACON or UWB)
        calibration_accuracy_m: Survey accuracy of the position (m)
        tx_power_dbm: Calibrated RSSI at 1 m for beacons (dBm)
        floor: Floor the anchor is mounted on, if known
    """

    anchor_id: str
    position: Tuple[float, float, float]
    kind: SourceKind = SourceKind.BEACON
    calibration_accuracy_m: float = 0.0
    tx_power_dbm: float = DEFAULT_TX_POWER_DBM
    floor: Optional[int] = None

    def __post_init__(self):
        """Validate anchor definition."""
        if self.kind == SourceKind.GNSS:
            raise ValueError(f"Anchor {self.anchor_id} cannot be of kind GNSS")

        if len(self.position) != 3 or not all(math.isfinite(c) for c in self.position):
            raise ValueError(f"Anchor {self.anchor_id} position must be 3 finite values: {self.position}")

        if self.calibration_accuracy_m < 0:
            raise ValueError(f"Calibration accuracy cannot be negative: {self.calibration_accuracy_m}")

    @property
    def position_array(self) -> np.ndarray:
        return np.array(self.position, dtype=float)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'anchor_id': self.anchor_id,
            'position': list(self.position),
            'kind': self.kind.value,
            'calibration_accuracy_m': self.calibration_accuracy_m,
            'tx_power_dbm': self.tx_power_dbm,
            'floor': self.floor,
        }


class AnchorRegistry:
    """
    Read-only lookup of anchor positions.

    Usage:
        registry = AnchorRegistry([
            AnchorPosition("A0", (0.0, 0.0, 0.0), kind=SourceKind.UWB),
            AnchorPosition("A1", (10.0, 0.0, 0.0), kind=SourceKind.UWB),
        ])

        if "A0" in registry:
            pos = registry.get("A0").position

        recalibrated = registry.with_anchor(AnchorPosition("A1", (10.2, 0.0, 0.0)))
    """

    def __init__(self, anchors: Iterable[AnchorPosition] = ()):
        table: Dict[str, AnchorPosition] = {}
        for anchor in anchors:
            if anchor.anchor_id in table:
                raise ValueError(f"Duplicate anchor id: {anchor.anchor_id}")
            table[anchor.anchor_id] = anchor
        self._anchors = MappingProxyType(table)

    def get(self, anchor_id: str) -> Optional[AnchorPosition]:
        return self._anchors.get(anchor_id)

    def __contains__(self, anchor_id: str) -> bool:
        return anchor_id in self._anchors

    def __len__(self) -> int:
        return len(self._anchors)

    def __iter__(self) -> Iterator[AnchorPosition]:
        return iter(self._anchors.values())

    def ids(self) -> List[str]:
        return list(self._anchors.keys())

    def with_anchor(self, anchor: AnchorPosition) -> "AnchorRegistry":
        """New registry with anchor added or replaced."""
        table = dict(self._anchors)
        table[anchor.anchor_id] = anchor
        return AnchorRegistry(table.values())
