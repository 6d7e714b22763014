"""
Sample Gate for Raw Location Fixes.

Rejects implausible location fixes before they reach the smoother:
excessive reported accuracy radius, excessive reported speed, and
"teleports" whose implied speed from the last accepted fix is impossible.

Checks run in a fixed order and the first failure decides the reason:
    1. malformed_sample   (non-finite or out-of-range coordinates/accuracy)
    2. accuracy_exceeded  (accuracy_m > max_accuracy_m)
    3. speed_exceeded     (reported speed > max_speed_m_s)
    4. out_of_order       (timestamp not after the last accepted fix)
    5. jump_detected      (haversine distance / elapsed > max_speed_m_s)

The gate is stateless: the caller owns the last accepted sample and only
advances it when the gate accepts.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from courier_core.proto.samples import RawSample
from courier_core.localization.geodesy import haversine_m, is_valid_coordinate
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass
class SampleGateConfig:
    """
    Configuration for the sample gate.

    Attributes:
        max_accuracy_m: Accuracy radius ceiling (m)
        max_speed_m_s: Maximum plausible speed, reported or implied (m/s)
    """

    max_accuracy_m: float = 25.0
    max_speed_m_s: float = 50.0

    def __post_init__(self):
        """Validate configuration."""
        assert self.max_accuracy_m > 0, "max_accuracy_m must be positive"
        assert self.max_speed_m_s > 0, "max_speed_m_s must be positive"


class RejectReason(Enum):
    """Why a sample was rejected; values are metrics drop reason codes."""
    MALFORMED = 'malformed_sample'
    ACCURACY_EXCEEDED = 'accuracy_exceeded'
    SPEED_EXCEEDED = 'speed_exceeded'
    OUT_OF_ORDER = 'out_of_order'
    JUMP_DETECTED = 'jump_detected'


@dataclass(frozen=True)
class GateResult:
    """
    Outcome of gating one sample.

    Attributes:
        accepted: True if the sample passed every check
        reason: Rejection reason (None when accepted)
        implied_speed_m_s: Speed implied by the previous accepted sample, if computed
    """

    accepted: bool
    reason: Optional[RejectReason] = None
    implied_speed_m_s: Optional[float] = None

    @property
    def rejected(self) -> bool:
        return not self.accepted

    @property
    def reason_code(self) -> Optional[str]:
        """Drop reason code for metrics/diagnostics."""
        return self.reason.value if self.reason else None


class SampleGate:
    """
    Validate raw location fixes against plausibility bounds.

    Usage:
        gate = SampleGate(SampleGateConfig(max_accuracy_m=25.0))

        result = gate.accept(sample, last_accepted)
        if result.accepted:
            last_accepted = sample
        else:
            log(result.reason_code)

    Rejection has no side effects beyond metrics; the caller's history
    is only updated on acceptance.
    """

    def __init__(self, config: Optional[SampleGateConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        """
        Initialize sample gate.

        Args:
            config: Gate configuration (uses defaults if None)
            metrics: Metrics collector (private collector if None)
        """
        self.config = config or SampleGateConfig()
        self.metrics = metrics or MetricsCollector()

    def accept(self, sample: RawSample, previous: Optional[RawSample] = None) -> GateResult:
        """
        Check a sample against the last accepted sample.

        Args:
            sample: Candidate location fix
            previous: Last accepted fix for the same entity, if any

        Returns:
            GateResult (accepted, or rejected with a reason)
        """
        self.metrics.increment('samples_in')

        if not is_valid_coordinate(sample.latitude, sample.longitude) or \
                not math.isfinite(sample.accuracy_m):
            return self._reject(sample, RejectReason.MALFORMED)

        if sample.accuracy_m > self.config.max_accuracy_m:
            return self._reject(sample, RejectReason.ACCURACY_EXCEEDED)

        if sample.speed_m_s is not None and math.isfinite(sample.speed_m_s) and \
                sample.speed_m_s > self.config.max_speed_m_s:
            return self._reject(sample, RejectReason.SPEED_EXCEEDED)

        implied_speed = None
        if previous is not None:
            elapsed_ms = sample.timestamp_ms - previous.timestamp_ms
            if elapsed_ms <= 0:
                return self._reject(sample, RejectReason.OUT_OF_ORDER)

            distance = haversine_m(previous.latitude, previous.longitude,
                                   sample.latitude, sample.longitude)
            implied_speed = distance / (elapsed_ms / 1000.0)
            self.metrics.record_histogram('implied_speed_m_s', implied_speed)

            if implied_speed > self.config.max_speed_m_s:
                return self._reject(sample, RejectReason.JUMP_DETECTED, implied_speed)

        self.metrics.increment('samples_accepted')
        return GateResult(accepted=True, implied_speed_m_s=implied_speed)

    def _reject(self, sample: RawSample, reason: RejectReason,
                implied_speed: Optional[float] = None) -> GateResult:
        self.metrics.increment_drop(reason.value)
        logger.debug("Sample at t=%d rejected: %s", sample.timestamp_ms, reason.value)
        return GateResult(accepted=False, reason=reason, implied_speed_m_s=implied_speed)
