"""
Positioning metrics: input counters, drop reasons and histograms.

Tracks, per engine:
- Location fixes received and accepted by the sample gate
- Inputs dropped, keyed by reason code (accuracy_exceeded, queue_full, ...)
- Source selection mix of fused records (blended, gnss_only, anchors_only)
- Histograms (anchor residuals, smoother gain, arrival dwell time)

Every dropped measurement is counted under a reason code; rejections are
advisory, never fatal.
"""

import logging
import statistics
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

SELECTION_PREFIX = 'selection_'


@dataclass
class CounterSnapshot:
    """
    Frozen copy of a collector's state.

    Attributes:
        timestamp: Wall-clock time the snapshot was taken (s)
        counters: Counter name -> value
        drop_reasons: Drop reason code -> count
        histograms: Histogram name -> retained samples
    """

    timestamp: float
    counters: Dict[str, int]
    drop_reasons: Dict[str, int]
    histograms: Dict[str, List[float]]

    def total_dropped(self) -> int:
        return sum(self.drop_reasons.values())

    def drop_rate(self, total_inputs: int) -> float:
        """Dropped inputs as a percentage of total_inputs (0 when nothing came in)."""
        if total_inputs <= 0:
            return 0.0
        return 100.0 * self.total_dropped() / total_inputs

    def acceptance_rate(self) -> float:
        """Percentage of location fixes that passed the sample gate."""
        received = self.counters.get('samples_in', 0)
        if received == 0:
            return 0.0
        return 100.0 * self.counters.get('samples_accepted', 0) / received

    def selection_mix(self) -> Dict[str, int]:
        """Fused record count per source selection, e.g. {'blended': 12}."""
        return {name[len(SELECTION_PREFIX):]: value
                for name, value in self.counters.items()
                if name.startswith(SELECTION_PREFIX)}


class MetricsCollector:
    """
    Counters shared by the components of one positioning engine.

    Constructed explicitly and handed to each component; a component given
    no collector makes a private one.

    Usage:
        metrics = MetricsCollector()
        gate = SampleGate(metrics=metrics)
        solver = AnchorSolver(metrics=metrics)

        metrics.get_drop_count('jump_detected')
        for line in metrics.summary_lines():
            print(line)

    All methods are safe to call from several threads.
    """

    # Drop reason code -> description
    DROP_REASONS = {
        'malformed_sample': 'Non-finite or out-of-range coordinates',
        'accuracy_exceeded': 'Reported accuracy above ceiling',
        'speed_exceeded': 'Reported speed above maximum',
        'jump_detected': 'Implied speed from last accepted sample above maximum',
        'out_of_order': 'Timestamp not after last accepted sample',
        'unknown_anchor': 'Anchor id not in registry',
        'stale_reading': 'Anchor reading too old',
        'insufficient_anchors': 'Fewer than 3 usable anchors',
        'low_anchor_confidence': 'Anchor solution below confidence floor',
        'queue_full': 'Bounded channel overflow',
    }

    # Reported even while zero
    STANDARD_COUNTERS = (
        'samples_in',
        'samples_accepted',
        'ranging_in',
        'barometric_in',
        'fusion_ticks',
        'fused_positions',
        'arrivals_confirmed',
        'no_source_ticks',
        'uncalibrated_floor_resolutions',
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._drop_reasons: Dict[str, int] = defaultdict(int)
        self._histograms: Dict[str, List[float]] = defaultdict(list)
        self._start_time = time.time()
        self._seed_standard_keys()

    def _seed_standard_keys(self):
        with self._lock:
            for name in self.STANDARD_COUNTERS:
                self._counters.setdefault(name, 0)
            for reason in self.DROP_REASONS:
                self._drop_reasons.setdefault(reason, 0)

    # =========================================================================
    # Recording
    # =========================================================================

    def increment(self, counter_name: str, value: int = 1):
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Count dropped inputs under a reason code.

        Unknown codes are still counted, with a warning so typos surface.
        The 'inputs_dropped' counter tracks the total across reasons.
        """
        if reason not in self.DROP_REASONS:
            logger.warning("Unknown drop reason '%s'", reason)

        with self._lock:
            self._drop_reasons[reason] += value
            self._counters['inputs_dropped'] += value

    def record_histogram(self, histogram_name: str, value: float, max_samples: int = 10000):
        """
        Append a sample to a histogram.

        Args:
            histogram_name: Histogram to append to (created on first use)
            value: Sample value
            max_samples: Retention bound; past it only the newest half is kept
        """
        with self._lock:
            samples = self._histograms[histogram_name]
            samples.append(value)
            if len(samples) > max_samples:
                del samples[:len(samples) - max_samples // 2]

    # =========================================================================
    # Reading
    # =========================================================================

    def get_counter(self, counter_name: str) -> int:
        with self._lock:
            return self._counters.get(counter_name, 0)

    def get_drop_count(self, reason: str) -> int:
        with self._lock:
            return self._drop_reasons.get(reason, 0)

    def get_histogram_stats(self, histogram_name: str) -> Optional[Dict[str, float]]:
        """
        Summary statistics of a histogram.

        Returns:
            count, min, max, mean, median, p95 and p99; None if no samples
        """
        with self._lock:
            samples = self._histograms.get(histogram_name)
            if not samples:
                return None
            ordered = sorted(samples)

        return {
            'count': len(ordered),
            'min': ordered[0],
            'max': ordered[-1],
            'mean': statistics.mean(ordered),
            'median': statistics.median(ordered),
            'p95': _percentile(ordered, 0.95),
            'p99': _percentile(ordered, 0.99),
        }

    def snapshot(self) -> CounterSnapshot:
        """Independent copy of every counter, drop reason and histogram."""
        with self._lock:
            return CounterSnapshot(
                timestamp=time.time(),
                counters=dict(self._counters),
                drop_reasons=dict(self._drop_reasons),
                histograms={name: list(samples) for name, samples in self._histograms.items()},
            )

    def reset(self):
        """Zero everything and restart the uptime clock."""
        with self._lock:
            self._counters.clear()
            self._drop_reasons.clear()
            self._histograms.clear()
            self._start_time = time.time()
        self._seed_standard_keys()

    def get_uptime(self) -> float:
        """Seconds since construction or the last reset."""
        return time.time() - self._start_time

    def summary_lines(self) -> List[str]:
        """Human-readable report, one line per entry."""
        snapshot = self.snapshot()
        lines = [f"METRICS SUMMARY (uptime: {self.get_uptime():.1f}s)", "COUNTERS:"]

        for name, value in sorted(snapshot.counters.items()):
            if not name.startswith(SELECTION_PREFIX):
                lines.append(f"  {name:30s}: {value:8d}")

        lines.append(f"FIX ACCEPTANCE: {snapshot.acceptance_rate():.1f}%")

        mix = snapshot.selection_mix()
        if mix:
            lines.append("SOURCE SELECTION:")
            for selection, count in sorted(mix.items()):
                lines.append(f"  {selection:30s}: {count:8d}")

        dropped = snapshot.total_dropped()
        if dropped:
            lines.append("DROP REASONS:")
            for reason, count in sorted(snapshot.drop_reasons.items()):
                if count:
                    lines.append(f"  {reason:30s}: {count:8d} ({100.0 * count / dropped:5.1f}%)")

        if snapshot.histograms:
            lines.append("HISTOGRAMS:")
            for name in sorted(snapshot.histograms):
                stats = self.get_histogram_stats(name)
                if stats:
                    lines.append(f"  {name}: count={stats['count']}, mean={stats['mean']:.3f}, "
                                 f"p95={stats['p95']:.3f}, p99={stats['p99']:.3f}")

        return lines


def _percentile(ordered: List[float], fraction: float) -> float:
    """Nearest-rank percentile of an already sorted, non-empty list."""
    if len(ordered) == 1:
        return ordered[0]
    return ordered[min(len(ordered) - 1, int(len(ordered) * fraction))]
