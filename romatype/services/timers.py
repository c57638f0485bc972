from __future__ import annotations

"""Cancellable delays and poll loops for the round machines.

A machine never holds loose timer handles. It owns one TimerGroup; every
countdown tick, reveal window and answer display is scheduled through it, and
``cancel_all()`` stops them as a unit. Each scheduled callback also carries the
group's generation number from when it was scheduled; callbacks from an older
generation are dropped even if the underlying timer still fires.

The scheduler is pluggable:
  - QtScheduler : QTimer based, used by the application.
  - anything else implementing ``call_later`` / ``call_every`` (tests drive a
    manual scheduler so phases advance deterministically).
"""

import logging
from typing import Callable, Optional, Protocol

from PyQt6.QtCore import QObject, QTimer

logger = logging.getLogger(__name__)


VoidFn = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def is_active(self) -> bool: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, fn: VoidFn) -> TimerHandle: ...

    def call_every(self, interval_ms: int, fn: VoidFn) -> TimerHandle: ...


class QtTimerHandle:
    def __init__(self, timer: QTimer) -> None:
        self._timer: Optional[QTimer] = timer

    def cancel(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is None:
            return
        try:
            timer.stop()
            timer.deleteLater()
        except RuntimeError:
            # Already deleted on the C++ side after a single-shot fired.
            pass

    def is_active(self) -> bool:
        if self._timer is None:
            return False
        try:
            return bool(self._timer.isActive())
        except RuntimeError:
            return False


class QtScheduler(QObject):
    """Schedules callbacks with QTimer objects parented to this scheduler."""

    def call_later(self, delay_ms: int, fn: VoidFn) -> QtTimerHandle:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(fn)  # type: ignore
        timer.timeout.connect(timer.deleteLater)  # type: ignore
        timer.start(max(0, int(delay_ms)))
        return QtTimerHandle(timer)

    def call_every(self, interval_ms: int, fn: VoidFn) -> QtTimerHandle:
        timer = QTimer(self)
        timer.setSingleShot(False)
        timer.timeout.connect(fn)  # type: ignore
        timer.start(max(1, int(interval_ms)))
        return QtTimerHandle(timer)


class TimerGroup:
    """All pending delays of one machine, cancelled together."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handles: list[TimerHandle] = []
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def pending(self) -> int:
        self._prune()
        return len(self._handles)

    def schedule(self, delay_ms: int, fn: VoidFn) -> TimerHandle:
        token = self._generation

        def _fire() -> None:
            if token != self._generation:
                logger.debug("Dropping stale timer from generation %d (now %d)", token, self._generation)
                return
            fn()

        handle = self._scheduler.call_later(max(0, int(delay_ms)), _fire)
        self._prune()
        self._handles.append(handle)
        return handle

    def cancel_all(self) -> None:
        self._generation += 1
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                handle.cancel()
            except RuntimeError:
                pass

    def _prune(self) -> None:
        self._handles = [h for h in self._handles if h.is_active()]


class PollDriver:
    """Calls ``poll`` on one or more fixed intervals until stopped.

    Beat-sync runs a fast primary interval plus a slow fallback one, so polling
    continues when the fast timer is throttled. ``poll`` must be safe to call
    repeatedly with no time elapsed.
    """

    def __init__(self, scheduler: Scheduler, poll: VoidFn, intervals_ms: tuple[int, ...] = (100,)) -> None:
        if not callable(poll):
            raise TypeError("poll must be callable")
        self._scheduler = scheduler
        self._poll = poll
        self._intervals = tuple(max(1, int(i)) for i in intervals_ms) or (100,)
        self._handles: list[TimerHandle] = []

    def is_running(self) -> bool:
        return bool(self._handles)

    def start(self) -> None:
        self.stop()
        for interval in self._intervals:
            self._handles.append(self._scheduler.call_every(interval, self._poll))

    def stop(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                handle.cancel()
            except RuntimeError:
                pass


__all__ = [
    "PollDriver",
    "QtScheduler",
    "QtTimerHandle",
    "Scheduler",
    "TimerGroup",
    "TimerHandle",
]
