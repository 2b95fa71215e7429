"""Periodic tick sources used by the capture session."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol

TickCallback = Callable[[], None]


class TickHandle(Protocol):
    def cancel(self) -> None:
        ...


class Clock(Protocol):
    """Schedules repeating callbacks and reports wall-clock time."""

    def every(self, interval: float, callback: TickCallback) -> TickHandle:
        ...

    def now(self) -> datetime:
        ...


class _LoopTicker:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: TickCallback) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._count = 0
        self._origin = loop.time()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._schedule()

    def _schedule(self) -> None:
        self._count += 1
        # Fixed-rate scheduling so slow callbacks do not make the ticker drift.
        deadline = self._origin + self._count * self._interval
        self._handle = self._loop.call_at(deadline, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._schedule()
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioClock:
    """Clock backed by the running asyncio event loop."""

    def every(self, interval: float, callback: TickCallback) -> TickHandle:
        if interval <= 0:
            raise ValueError("Tick interval must be positive.")
        return _LoopTicker(asyncio.get_running_loop(), interval, callback)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class _ManualTicker:
    def __init__(self, due: int, interval: int, callback: TickCallback, order: int) -> None:
        self.due = due
        self.interval = interval
        self.callback = callback
        self.order = order
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Simulated clock advanced explicitly.

    Time is tracked in integer microseconds so that repeated ticks never
    accumulate floating point error. Tickers due at the same instant fire in
    registration order.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._elapsed_us = 0
        self._tickers: List[_ManualTicker] = []
        self._order = itertools.count()

    @property
    def elapsed(self) -> float:
        return self._elapsed_us / 1_000_000

    def now(self) -> datetime:
        return self._start + timedelta(microseconds=self._elapsed_us)

    def every(self, interval: float, callback: TickCallback) -> TickHandle:
        interval_us = round(interval * 1_000_000)
        if interval_us <= 0:
            raise ValueError("Tick interval must be positive.")
        ticker = _ManualTicker(self._elapsed_us + interval_us, interval_us, callback, next(self._order))
        self._tickers.append(ticker)
        return ticker

    def advance(self, seconds: float) -> None:
        target = self._elapsed_us + round(seconds * 1_000_000)
        while True:
            self._tickers = [ticker for ticker in self._tickers if not ticker.cancelled]
            due = [ticker for ticker in self._tickers if ticker.due <= target]
            if not due:
                break
            ticker = min(due, key=lambda t: (t.due, t.order))
            self._elapsed_us = ticker.due
            ticker.due += ticker.interval
            ticker.callback()
        self._elapsed_us = target

    @property
    def active_tickers(self) -> int:
        return sum(1 for ticker in self._tickers if not ticker.cancelled)
