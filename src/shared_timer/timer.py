"""
Stopwatch and countdown timers.

A Timer knows nothing about connections or groups. It keeps two clock
references and, while running, samples its elapsed time every tick and
hands it to the registered observers in registration order.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

from .config import TICK_INTERVAL_MS

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Observer = Callable[[float], Awaitable[None] | None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class TimerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


# ============================================================
# REPEATING TASK
# ============================================================


class RepeatingTask:
    """Awaits ``callback`` every ``interval_ms`` until cancelled."""

    def __init__(self, interval_ms: float, callback: Callable[[], Awaitable[None]]):
        self.interval_ms = interval_ms
        self._callback = callback
        self._task: asyncio.Task | None = asyncio.create_task(self._run())

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self):
        """Stop repeating. Safe to call any number of times."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self):
        try:
            while True:
                await asyncio.sleep(self.interval_ms / 1000)
                await self._callback()
        except asyncio.CancelledError:
            pass


# ============================================================
# TIMER
# ============================================================


class Timer:
    """Elapsed-time stopwatch with pause/resume semantics. Times are in ms."""

    def __init__(self, clock: Clock | None = None, tick_interval_ms: float = TICK_INTERVAL_MS):
        self.clock = clock or monotonic_ms
        self.tick_interval_ms = tick_interval_ms

        self.start_reference: float | None = None
        self.stop_reference: float | None = None
        self.subscribers: list[Observer] = []

        self._ticker: RepeatingTask | None = None

    @property
    def running(self) -> bool:
        return self._ticker is not None

    @property
    def state(self) -> TimerState:
        if self.running:
            return TimerState.RUNNING
        if self.start_reference is None:
            return TimerState.IDLE
        return TimerState.STOPPED

    def start(self) -> bool:
        """Start, or resume from where the last stop() froze the time."""
        if self.running:
            return False

        now = self.clock()
        if self.stop_reference is not None:
            self.start_reference = now - self.elapsed()
        else:
            self.start_reference = now
        self.stop_reference = None

        self._ticker = RepeatingTask(self.tick_interval_ms, self._tick)
        return True

    def stop(self):
        """Freeze the elapsed time and cancel the tick.

        Stopping a timer that is not running changes nothing: a second stop
        keeps the value frozen by the first.
        """
        if self.running:
            self.stop_reference = self.clock()
        self._cancel_ticker()

    def reset(self):
        self._cancel_ticker()
        self.start_reference = None
        self.stop_reference = None

    def elapsed(self) -> float:
        if self.start_reference is None:
            return 0
        if self.stop_reference is not None:
            return self.stop_reference - self.start_reference
        return self.clock() - self.start_reference

    def subscribe(self, observer: Observer) -> bool:
        if not callable(observer):
            return False
        self.subscribers.append(observer)
        return True

    def _cancel_ticker(self):
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick(self):
        if self.start_reference is None:
            return

        elapsed = self.elapsed()
        for observer in list(self.subscribers):
            # An observer may have stopped the timer
            if not self.running:
                return
            try:
                result = observer(elapsed)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Timer observer %r failed", observer)


class DecrementingTimer:
    """Countdown over a fixed duration, built on top of a Timer."""

    def __init__(self, duration: float, timer: Timer | None = None, **timer_options):
        if duration < 0:
            raise ValueError(f"Duration {duration} must not be negative")
        self._duration = duration
        self.timer = timer if timer is not None else Timer(**timer_options)

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def running(self) -> bool:
        return self.timer.running

    @property
    def state(self) -> TimerState:
        return self.timer.state

    @property
    def expired(self) -> bool:
        return self.remaining() == 0

    def remaining(self) -> float:
        return max(0, self._duration - self.timer.elapsed())

    def start(self) -> bool:
        return self.timer.start()

    def stop(self):
        self.timer.stop()

    def reset(self):
        self.timer.reset()

    def elapsed(self) -> float:
        return self.timer.elapsed()

    def subscribe(self, observer: Observer) -> bool:
        return self.timer.subscribe(observer)
