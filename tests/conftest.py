# tests/conftest.py
import os
from typing import Callable, List, Optional

import pytest

# Qt needs a platform plugin even for QObject-only tests that touch qtbot.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from romatype.domain.models import LyricLine, Prompt
from romatype.services.clock import ClockSource


class FakeHandle:
    def __init__(self, due: int, seq: int, fn: Callable[[], None], interval: Optional[int] = None) -> None:
        self.due = due
        self.seq = seq
        self.fn = fn
        self.interval = interval
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def is_active(self) -> bool:
        return not self.cancelled and not self.fired


class FakeScheduler:
    """Manual stand-in for QtScheduler; time only moves on advance()."""

    def __init__(self) -> None:
        self.now_ms = 0
        self._seq = 0
        self._handles: List[FakeHandle] = []

    def _add(self, delay_ms: int, fn, interval: Optional[int]) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self.now_ms + max(0, int(delay_ms)), self._seq, fn, interval)
        self._handles.append(handle)
        return handle

    def call_later(self, delay_ms: int, fn) -> FakeHandle:
        return self._add(delay_ms, fn, None)

    def call_every(self, interval_ms: int, fn) -> FakeHandle:
        interval = max(1, int(interval_ms))
        return self._add(interval, fn, interval)

    def active(self) -> List[FakeHandle]:
        return [h for h in self._handles if h.is_active()]

    def advance(self, ms: int) -> None:
        target = self.now_ms + int(ms)
        while True:
            due = [h for h in self.active() if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            self.now_ms = handle.due
            if handle.interval is None:
                handle.fired = True
            else:
                handle.due += handle.interval
            handle.fn()
        self.now_ms = target


class ManualClock(ClockSource):
    """Clock that reads the fake scheduler's time, plus a settable shift."""

    def __init__(self, scheduler: FakeScheduler) -> None:
        self._scheduler = scheduler
        self.shift_ms = 0

    def now(self) -> int:
        return self._scheduler.now_ms + self.shift_ms


class FakePlayer:
    def __init__(self) -> None:
        self.position: Optional[float] = 0.0
        self.length = 300.0
        self.seeks: List[float] = []
        self.plays = 0
        self.pauses = 0
        self.fail = False
        # Wall seconds spent playing; a clock's time_fn can read this.
        self.elapsed = 0.0

    def play_to(self, seconds: float) -> None:
        """Move to ``seconds``; going forward takes as long as playing there would."""
        self.elapsed += max(0.0, seconds - (self.position or 0.0))
        self.position = seconds

    def current_time(self) -> Optional[float]:
        if self.fail:
            raise RuntimeError("player gone")
        return self.position

    def duration(self) -> float:
        return self.length

    def seek_to(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self.position = seconds

    def play_video(self) -> None:
        self.plays += 1

    def pause_video(self) -> None:
        self.pauses += 1


class FakeRecords:
    def __init__(self) -> None:
        self.records = []

    def append(self, record):
        self.records.append(record)
        return list(self.records)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def clock(scheduler) -> ManualClock:
    return ManualClock(scheduler)


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def records() -> FakeRecords:
    return FakeRecords()


@pytest.fixture
def prompts() -> List[Prompt]:
    return [
        Prompt(id=1, display_text="し", canonical_romaji="shi", difficulty_score=100),
        Prompt(id=2, display_text="つ", canonical_romaji="tsu", difficulty_score=300),
        Prompt(id=3, display_text="ふじ", canonical_romaji="fuji", difficulty_score=600),
    ]


@pytest.fixture
def one_line() -> List[LyricLine]:
    return [LyricLine(display_text="し", canonical_romaji="shi", start_ms=5000, end_ms=8000)]
