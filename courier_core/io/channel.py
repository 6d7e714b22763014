"""
Bounded per-entity input channels.

Sensor adapters push into these buffers; the fusion tick drains them.
Capacity is fixed so a stalled consumer cannot grow memory without bound:
on overflow the oldest buffered input is dropped and counted as
'queue_full'.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Generic, List, Optional, Tuple, TypeVar

from courier_core.proto.samples import BarometricReading, RangingSample, RawSample
from courier_core.metrics import MetricsCollector

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SampleChannel(Generic[T]):
    """
    Bounded FIFO that drops the oldest item on overflow.

    Usage:
        channel = SampleChannel(capacity=64, name="gnss")
        if not channel.push(sample):
            ...  # an older sample was dropped

        for sample in channel.drain():
            ...
    """

    def __init__(self, capacity: int = 64, name: str = "",
                 metrics: Optional[MetricsCollector] = None):
        if capacity < 1:
            raise ValueError(f"Channel capacity must be at least 1: {capacity}")
        self.capacity = capacity
        self.name = name
        self.metrics = metrics or MetricsCollector()
        self._items: Deque[T] = deque(maxlen=capacity)
        self.dropped = 0

    def push(self, item: T) -> bool:
        """
        Append an item.

        Returns:
            False if the channel was full and the oldest item was dropped
        """
        overflow = len(self._items) == self.capacity
        self._items.append(item)

        if overflow:
            self.dropped += 1
            self.metrics.increment_drop('queue_full')
            logger.debug("Channel %s full (%d), dropped oldest input", self.name, self.capacity)
        return not overflow

    def drain(self) -> List[T]:
        """Remove and return all buffered items, oldest first."""
        items = list(self._items)
        self._items.clear()
        return items

    def clear(self):
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class DrainedInputs:
    """Everything buffered for one entity since the previous tick."""

    samples: List[RawSample]
    ranging: List[RangingSample]
    barometric: List[BarometricReading]

    @property
    def is_empty(self) -> bool:
        return not (self.samples or self.ranging or self.barometric)


class EntityChannels:
    """
    The three input channels of one tracked entity.

    Usage:
        channels = EntityChannels(capacity=64, metrics=metrics)
        channels.samples.push(raw_sample)
        channels.ranging.push(ranging_sample)

        inputs = channels.drain()
    """

    def __init__(self, capacity: int = 64, metrics: Optional[MetricsCollector] = None):
        metrics = metrics or MetricsCollector()
        self.samples: SampleChannel[RawSample] = SampleChannel(capacity, "gnss", metrics)
        self.ranging: SampleChannel[RangingSample] = SampleChannel(capacity, "ranging", metrics)
        self.barometric: SampleChannel[BarometricReading] = SampleChannel(capacity, "barometric", metrics)

    def drain(self) -> DrainedInputs:
        return DrainedInputs(
            samples=self.samples.drain(),
            ranging=self.ranging.drain(),
            barometric=self.barometric.drain(),
        )

    def clear(self):
        for channel in self.channels():
            channel.clear()

    def channels(self) -> Tuple[SampleChannel, SampleChannel, SampleChannel]:
        return (self.samples, self.ranging, self.barometric)
