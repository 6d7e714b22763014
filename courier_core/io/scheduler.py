"""
Cancellable delayed callbacks.

The arrival debounce timer needs a clock and a way to run a callback
later that can be cancelled. Two schedulers provide that:
- ManualScheduler: deterministic virtual clock advanced explicitly
  (tests, offline replay)
- AsyncioScheduler: wraps an asyncio event loop (live operation)

Times are milliseconds.
"""

import asyncio
import heapq
import itertools
import time
from typing import Callable, List, Optional, Tuple


class TimerHandle:
    """
    Handle for a pending callback.

    cancel() is idempotent and safe after the callback has fired.
    """

    def __init__(self, due_ms: int, callback: Callable[[], None]):
        self.due_ms = due_ms
        self._callback = callback
        self._cancelled = False
        self._fired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self):
        self._cancelled = True

    def _run(self):
        if not self.pending:
            return
        self._fired = True
        self._callback()


class Scheduler:
    """Clock plus cancellable delayed callbacks."""

    def now_ms(self) -> int:
        raise NotImplementedError

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class ManualScheduler(Scheduler):
    """
    Virtual-time scheduler.

    Usage:
        scheduler = ManualScheduler(start_ms=0)
        handle = scheduler.call_later(3000, on_timer)

        scheduler.advance(2999)   # nothing fires
        scheduler.advance(3000)   # on_timer runs with now_ms() == 3000

    Callbacks fire in due-time order (ties in scheduling order), with the
    clock set to their due time while they run. Callbacks may schedule
    further timers; those fire within the same advance() if due.
    """

    def __init__(self, start_ms: int = 0):
        self._now_ms = start_ms
        self._queue: List[Tuple[int, int, TimerHandle]] = []
        self._sequence = itertools.count()

    def now_ms(self) -> int:
        return self._now_ms

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now_ms + max(0, int(delay_ms)), callback)
        heapq.heappush(self._queue, (handle.due_ms, next(self._sequence), handle))
        return handle

    def advance(self, to_ms: int) -> int:
        """
        Move the clock forward to to_ms, firing due callbacks.

        Args:
            to_ms: Target time; earlier than now is a no-op

        Returns:
            Number of callbacks fired
        """
        fired = 0
        while self._queue and self._queue[0][0] <= to_ms:
            due_ms, _, handle = heapq.heappop(self._queue)
            if not handle.pending:
                continue
            self._now_ms = max(self._now_ms, due_ms)
            handle._run()
            fired += 1

        self._now_ms = max(self._now_ms, to_ms)
        return fired

    def advance_by(self, delta_ms: int) -> int:
        return self.advance(self._now_ms + delta_ms)

    def pending_count(self) -> int:
        return sum(1 for _, _, handle in self._queue if handle.pending)


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by an asyncio event loop.

    Usage:
        scheduler = AsyncioScheduler(asyncio.get_running_loop())
        engine = PositioningEngine(venue_store, scheduler=scheduler)

    now_ms() reads the wall clock in epoch milliseconds so it compares
    directly with device sample timestamps; the loop's monotonic clock
    only drives the delays.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None,
                 clock_ms: Optional[Callable[[], int]] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._clock_ms = clock_ms or _epoch_ms

    def now_ms(self) -> int:
        return int(self._clock_ms())

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        handle = _AsyncioTimerHandle(self.now_ms() + max(0, int(delay_ms)), callback)
        handle._loop_handle = self._loop.call_later(max(0, delay_ms) / 1000.0, handle._run)
        return handle


class _AsyncioTimerHandle(TimerHandle):

    _loop_handle: Optional[asyncio.TimerHandle] = None

    def cancel(self):
        super().cancel()
        if self._loop_handle is not None:
            self._loop_handle.cancel()


def _epoch_ms() -> int:
    return int(time.time() * 1000)
