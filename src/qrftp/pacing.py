"""Cancellable timed suspensions used for automatic pacing.

Sequencers never sleep. They ask a scheduler to call them back after a delay
and keep the returned handle so a stop can cancel the pending emission.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, Protocol


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle: ...

    def time(self) -> float: ...


class AsyncioScheduler:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)

    def time(self) -> float:
        return self.loop.time()


@dataclass(order=True, slots=True)
class VirtualTimer:
    due: float
    order: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler on a virtual clock; nothing ever really waits."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._timers: list[VirtualTimer] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualTimer:
        timer = VirtualTimer(self.now + max(0.0, delay), next(self._counter), callback)
        heapq.heappush(self._timers, timer)
        return timer

    def time(self) -> float:
        return self.now

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    def run_next(self) -> bool:
        while self._timers:
            timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.now = max(self.now, timer.due)
            timer.callback()
            return True
        return False

    def advance(self, seconds: float) -> int:
        """Run every timer due within ``seconds`` of virtual time."""
        deadline = self.now + seconds
        fired = 0
        while self._timers and self._timers[0].due <= deadline:
            if self.run_next():
                fired += 1
        self.now = deadline
        return fired

    def run_until_idle(self, max_steps: int = 1_000_000) -> int:
        fired = 0
        while fired < max_steps and self.run_next():
            fired += 1
        return fired
