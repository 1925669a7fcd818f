"""
Layer 1 — Timers
Repeating callbacks returned as cancellable handles, plus a disposer that
cancels everything registered with it.

ThreadScheduler drives real hardware; ManualScheduler advances a virtual
clock for simulations and tests.
"""
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List

logger = logging.getLogger(__name__)


class TimerHandle:
    """Disposal handle for a repeating callback."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def fire(self) -> None:
        if self.cancelled:
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Timer callback failed")


class Scheduler(ABC):

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback every interval seconds until the handle is cancelled."""


class ThreadScheduler(Scheduler):
    """One daemon thread per repeating timer."""

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(interval, callback)

        def run():
            # Event.wait returns True once cancelled
            while not handle._cancelled.wait(interval):
                handle.fire()

        thread = threading.Thread(target=run, name=f"timer-{id(handle):x}", daemon=True)
        thread.start()
        return handle


class ManualScheduler(Scheduler):
    """Virtual clock; callbacks only run inside advance()."""

    def __init__(self):
        self.now = 0.0
        self._seq = itertools.count()
        self._timers = []  # [due, seq, handle]

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(interval, callback)
        self._timers.append([self.now + interval, next(self._seq), handle])
        return handle

    @property
    def active_timers(self) -> int:
        return sum(1 for _, _, handle in self._timers if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            self._timers = [entry for entry in self._timers if not entry[2].cancelled]
            due = [entry for entry in self._timers if entry[0] <= target + 1e-9]
            if not due:
                break
            entry = min(due, key=lambda item: (item[0], item[1]))
            self.now = max(self.now, entry[0])
            entry[0] += entry[2].interval
            entry[1] = next(self._seq)
            entry[2].fire()
        self.now = target


class Disposer:
    """Collects timer handles and cleanup callables; dispose() runs them all once."""

    def __init__(self):
        self._items: List = []
        self._lock = threading.Lock()

    def add(self, item):
        with self._lock:
            self._items.append(item)
        return item

    def dispose(self) -> None:
        with self._lock:
            items, self._items = self._items, []
        for item in reversed(items):
            try:
                if isinstance(item, TimerHandle):
                    item.cancel()
                else:
                    item()
            except Exception:
                logger.exception("Cleanup step failed")
