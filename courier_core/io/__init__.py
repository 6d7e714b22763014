"""
I/O Module: Bounded input channels and cancellable timers.

- Bounded per-entity queues (no unbounded RAM growth, oldest dropped)
- Deterministic and asyncio-backed schedulers for debounce timers
"""

from .channel import (
    SampleChannel,
    EntityChannels,
    DrainedInputs,
)
from .scheduler import (
    Scheduler,
    TimerHandle,
    ManualScheduler,
    AsyncioScheduler,
)

__all__ = [
    'SampleChannel',
    'EntityChannels',
    'DrainedInputs',
    'Scheduler',
    'TimerHandle',
    'ManualScheduler',
    'AsyncioScheduler',
]
