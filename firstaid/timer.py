from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable, List, Literal, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

TimerStatus = Literal["idle", "running", "paused", "expired"]


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Source of monotonic time and absolute-deadline callbacks."""

    def time(self) -> float: ...

    def call_at(self, when: float, callback: Callable[[], None]) -> Handle: ...


class AsyncioScheduler:
    """Schedules on an asyncio loop using its monotonic clock."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop if self._loop is not None else asyncio.get_running_loop()

    def time(self) -> float:
        return self.loop.time()

    def call_at(self, when: float, callback: Callable[[], None]) -> Handle:
        return self.loop.call_at(when, callback)


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual clock. Callbacks run only when ``advance`` moves time past them."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, Callable[[], None], _ManualHandle]] = []

    def time(self) -> float:
        return self._now

    def call_at(self, when: float, callback: Callable[[], None]) -> Handle:
        handle = _ManualHandle()
        heapq.heappush(self._queue, (when, next(self._seq), callback, handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[3].cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, callback, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            callback()
        self._now = target


class PollingScheduler(ManualScheduler):
    """Manual scheduler that catches up with a monotonic clock on ``poll``.

    For blocking front ends (prompt loops) that cannot run an event loop:
    every due tick fires, in order, the next time the caller polls.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        super().__init__(start=clock())

    def poll(self) -> None:
        self.advance(max(0.0, self._clock() - self.time()))


class IntervalTimer:
    """Countdown of whole seconds: idle -> running <-> paused, running -> expired.

    Each tick is scheduled at ``anchor + n * interval`` where the anchor is the
    monotonic time of the most recent start/resume, so late callbacks never
    push later ones back.
    """

    def __init__(
        self,
        total_seconds: int,
        scheduler: Optional[Scheduler] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
        interval: float = 1.0,
    ):
        if total_seconds <= 0:
            raise ValueError("total_seconds must be positive")
        self.total = total_seconds
        self.remaining = total_seconds
        self.state: TimerStatus = "idle"
        self.scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.interval = interval
        self._handle: Optional[Handle] = None
        self._anchor = 0.0
        self._fired = 0
        self._disposed = False

    @property
    def is_running(self) -> bool:
        return self.state == "running"

    @property
    def is_expired(self) -> bool:
        return self.state == "expired"

    def start(self) -> None:
        if self._disposed or self.state in ("running", "expired"):
            return
        self.state = "running"
        self._anchor = self.scheduler.time()
        self._fired = 0
        self._schedule_next()

    def stop(self) -> None:
        if self.state != "running":
            return
        self._cancel()
        self.state = "paused"

    def tick(self) -> None:
        if self._disposed or self.state != "running":
            return
        self.remaining = max(0, self.remaining - 1)
        if self.on_tick is not None:
            self.on_tick(self.remaining)
        if self.remaining == 0:
            self._cancel()
            self.state = "expired"
            logger.debug("timer of %ds expired", self.total)
            if self.on_expire is not None:
                self.on_expire()

    def reset(self) -> None:
        self._cancel()
        self.remaining = self.total
        self.state = "idle"

    def restart(self) -> None:
        self.reset()
        self.start()

    def formatted_remaining(self) -> str:
        minutes, seconds = divmod(self.remaining, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def dispose(self) -> None:
        self._cancel()
        self._disposed = True
        if self.state == "running":
            self.state = "paused"

    def _schedule_next(self) -> None:
        when = self._anchor + (self._fired + 1) * self.interval
        self._handle = self.scheduler.call_at(when, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._disposed or self.state != "running":
            return
        self._fired += 1
        self.tick()
        if self.state == "running":
            self._schedule_next()

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def __repr__(self) -> str:
        return f"IntervalTimer({self.formatted_remaining()} of {self.total}s, {self.state})"
