"""Scheduling primitives for banner deferral and periodic enforcement.

Everything runs in a single cooperative context. :class:`AsyncioScheduler`
drives callbacks from an asyncio event loop; :class:`ManualScheduler` is
driven explicitly by tests through ``advance()`` and ``run_idle()``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], None]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


class ScheduledHandle:
    """Cancellable handle for a scheduled callback."""

    def __init__(self, on_cancel: Optional[Callback] = None):
        self._cancelled = False
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()


def _run_safely(callback: Callback, label: str) -> None:
    try:
        callback()
    except Exception as e:
        logger.error(f"Scheduled {label} callback failed: {e}")


class Scheduler(ABC):
    """Idle and interval scheduling."""

    @abstractmethod
    def call_when_idle(self, callback: Callback, timeout: float) -> ScheduledHandle:
        """Run ``callback`` once when the context is idle, or after ``timeout`` seconds at the latest."""
        pass

    @abstractmethod
    def call_every(self, interval: float, callback: Callback) -> ScheduledHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        pass


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_when_idle(self, callback: Callback, timeout: float) -> ScheduledHandle:
        timers: List[asyncio.Handle] = []
        fired = False

        def fire() -> None:
            nonlocal fired
            if fired or handle.cancelled:
                return
            fired = True
            for timer in timers:
                timer.cancel()
            _run_safely(callback, "idle")

        def cancel_timers() -> None:
            for timer in timers:
                timer.cancel()

        handle = ScheduledHandle(on_cancel=cancel_timers)
        # Idle: next loop turn; the timer bounds the wait if the loop stays busy
        timers.append(self.loop.call_soon(fire))
        timers.append(self.loop.call_later(timeout, fire))
        return handle

    def call_every(self, interval: float, callback: Callback) -> ScheduledHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")

        current: List[asyncio.TimerHandle] = []

        def tick() -> None:
            current.clear()
            if handle.cancelled:
                return
            _run_safely(callback, "interval")
            if not handle.cancelled:
                current.append(self.loop.call_later(interval, tick))

        def cancel_timer() -> None:
            for timer in current:
                timer.cancel()
            current.clear()

        handle = ScheduledHandle(on_cancel=cancel_timer)
        current.append(self.loop.call_later(interval, tick))
        return handle


class _Timer:
    def __init__(self, due: float, callback: Callback, handle: ScheduledHandle,
                 interval: Optional[float] = None, idle: bool = False):
        self.due = due
        self.callback = callback
        self.handle = handle
        self.interval = interval
        self.idle = idle
        self.fired = False


class ManualScheduler(Scheduler):
    """Deterministic scheduler for tests.

    Idle callbacks run on ``run_idle()`` or when ``advance()`` passes their
    timeout; interval callbacks run each time ``advance()`` crosses a due
    time. An optional :class:`ManualClock` is advanced in step.
    """

    def __init__(self, clock: Optional[ManualClock] = None):
        self.clock = clock
        self.time = 0.0
        self._timers: List[_Timer] = []

    def call_when_idle(self, callback: Callback, timeout: float) -> ScheduledHandle:
        handle = ScheduledHandle()
        self._timers.append(_Timer(self.time + timeout, callback, handle, idle=True))
        return handle

    def call_every(self, interval: float, callback: Callback) -> ScheduledHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = ScheduledHandle()
        self._timers.append(_Timer(self.time + interval, callback, handle, interval=interval))
        return handle

    @property
    def pending(self) -> int:
        return len([t for t in self._timers if not t.handle.cancelled and not t.fired])

    def run_idle(self) -> int:
        """Run every pending idle callback. Returns how many ran."""
        ran = 0
        for timer in list(self._timers):
            if timer.idle and not timer.fired and not timer.handle.cancelled:
                self._fire(timer)
                ran += 1
        self._prune()
        return ran

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due callbacks in due order. Returns how many ran."""
        target = self.time + seconds
        ran = 0

        while True:
            due = [
                t for t in self._timers
                if not t.fired and not t.handle.cancelled and t.due <= target
            ]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._step_to(timer.due)
            self._fire(timer)
            ran += 1

        self._step_to(target)
        self._prune()
        return ran

    def _step_to(self, when: float) -> None:
        if when > self.time:
            if self.clock is not None:
                self.clock.advance(when - self.time)
            self.time = when

    def _fire(self, timer: _Timer) -> None:
        if timer.interval is not None:
            timer.due += timer.interval
            _run_safely(timer.callback, "interval")
        else:
            timer.fired = True
            _run_safely(timer.callback, "idle")

    def _prune(self) -> None:
        self._timers = [t for t in self._timers if not t.fired and not t.handle.cancelled]
