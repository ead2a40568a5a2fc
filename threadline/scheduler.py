"""Cancellable delayed-task queue driven by an injectable clock.

Every task belongs to a lane (one per contact thread). Tasks in the same lane
fire in the order they were scheduled: a task's due time is never earlier than
the previous task in its lane, and ties are broken by scheduling order.

cancel_all() bumps the scheduler epoch. A task from an older epoch that is
still in the heap is discarded instead of fired.

Clocks report milliseconds:

    MonotonicClock: due times for the running service.
    WallClock:      epoch ms, for timestamps that outlive the process.
    ManualClock:    virtual time; tests call scheduler.advance(ms).

run_due() fires whatever is due now. The service drives it with run(), an
asyncio loop that sleeps until the next due time.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


# ── Clocks ──────────────────────────────────────────────

class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic() * 1000


class WallClock:
    """Epoch milliseconds."""

    def now(self) -> float:
        return time.time() * 1000


class ManualClock:
    """Virtual clock. Time only moves when told to."""

    def __init__(self, start: float = 0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, value: float) -> None:
        if value < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = float(value)


# ── Tasks ───────────────────────────────────────────────

@dataclass(order=True)
class ScheduledTask:
    due: float
    seq: int
    lane: str = field(compare=False)
    callback: Callable[[], None] = field(compare=False, repr=False)
    epoch: int = field(compare=False, default=0)
    cancelled: bool = field(compare=False, default=False)

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    def __init__(self, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or MonotonicClock()
        self._heap: list[ScheduledTask] = []
        self._seq = itertools.count()
        self._epoch = 0
        self._lane_tail: dict[str, float] = {}
        self._wakeup: asyncio.Event | None = None

    @property
    def epoch(self) -> int:
        return self._epoch

    def now(self) -> float:
        return self.clock.now()

    def schedule(self, lane: str, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        """Run callback `delay` ms from now, after everything already queued in lane."""
        return self.schedule_at(lane, self.now() + max(0.0, delay), callback)

    def schedule_at(self, lane: str, due: float, callback: Callable[[], None]) -> ScheduledTask:
        due = max(due, self._lane_tail.get(lane, due))
        self._lane_tail[lane] = due
        task = ScheduledTask(
            due=due, seq=next(self._seq), lane=lane, callback=callback, epoch=self._epoch
        )
        heapq.heappush(self._heap, task)
        logger.debug("scheduled lane=%s due=%.0f seq=%d", lane, due, task.seq)
        if self._wakeup is not None:
            self._wakeup.set()
        return task

    def lane_tail(self, lane: str) -> float | None:
        """Due time of the last task scheduled in lane, if any is pending."""
        return self._lane_tail.get(lane)

    def cancel_all(self) -> None:
        """Drop every pending task. Callbacks already queued will not fire."""
        dropped = sum(1 for t in self._heap if not t.cancelled)
        self._heap.clear()
        self._lane_tail.clear()
        self._epoch += 1
        logger.debug("cancelled %d pending tasks (epoch %d)", dropped, self._epoch)

    def pending(self, lane: str | None = None) -> int:
        return sum(
            1 for t in self._heap
            if not t.cancelled and t.epoch == self._epoch and (lane is None or t.lane == lane)
        )

    def next_due(self) -> float | None:
        self._discard_dead()
        return self._heap[0].due if self._heap else None

    def run_due(self) -> int:
        """Fire every task due at or before now, in (due, seq) order. Returns count fired."""
        fired = 0
        while True:
            self._discard_dead()
            if not self._heap or self._heap[0].due > self.now():
                break
            task = heapq.heappop(self._heap)
            if self._lane_tail.get(task.lane) == task.due and not self.pending(task.lane):
                del self._lane_tail[task.lane]
            try:
                task.callback()
            except Exception:
                logger.exception("Scheduled task in lane %s failed", task.lane)
            fired += 1
        return fired

    def advance(self, ms: float) -> int:
        """Move a ManualClock forward, firing each task at its own due time."""
        if not isinstance(self.clock, ManualClock):
            raise TypeError("advance() needs a ManualClock")
        target = self.clock.now() + ms
        fired = self.run_due()
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            self.clock.set(due)
            fired += self.run_due()
        self.clock.set(target)
        return fired

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Fire tasks as they come due until stop is set."""
        self._wakeup = asyncio.Event()
        try:
            while stop is None or not stop.is_set():
                self.run_due()
                due = self.next_due()
                timeout = 0.5 if due is None else max(0.0, (due - self.now()) / 1000)
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._wakeup = None

    def _discard_dead(self) -> None:
        while self._heap and (self._heap[0].cancelled or self._heap[0].epoch != self._epoch):
            heapq.heappop(self._heap)
