from __future__ import annotations

"""Clock sources for rounds, sessions and beat-sync tracks.

Two forms share one contract (``now()`` in milliseconds):

  - WallClockSource  : monotonic elapsed time, used by practice and flash.
  - VideoClockSource : an external video player's position plus a manual
                       calibration offset, used by beat-sync.

VideoClockSource is also the only object that talks to the player. It wraps the
player's five operations (position, duration, seek, play/pause, state
notifications) and queues a single pending intent while the player is not
ready yet.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Protocol

from romatype.domain.enums import PlayerState

logger = logging.getLogger(__name__)


TimeFn = Callable[[], float]
VoidFn = Callable[[], None]


def epoch_ms() -> int:
    return int(time.time() * 1000)


class ClockSource(ABC):
    drift_tolerant: bool = False

    @abstractmethod
    def now(self) -> int:
        """Current time in milliseconds."""


class WallClockSource(ClockSource):
    drift_tolerant = False

    def __init__(self, time_fn: TimeFn = time.monotonic) -> None:
        self._time_fn = time_fn
        self._origin = float(time_fn())

    def restart(self) -> None:
        self._origin = float(self._time_fn())

    def now(self) -> int:
        return int(round((float(self._time_fn()) - self._origin) * 1000.0))


class VideoPlayer(Protocol):
    def current_time(self) -> Optional[float]: ...

    def duration(self) -> float: ...

    def seek_to(self, seconds: float) -> None: ...

    def play_video(self) -> None: ...

    def pause_video(self) -> None: ...


class PendingIntent:
    """At most one deferred command; a newer one replaces the older."""

    def __init__(self) -> None:
        self._fn: Optional[VoidFn] = None
        self._label: str = ""

    @property
    def label(self) -> str:
        return self._label

    def is_set(self) -> bool:
        return self._fn is not None

    def set(self, fn: VoidFn, label: str = "") -> None:
        if self._fn is not None:
            logger.debug("Replacing pending intent %r with %r", self._label, label)
        self._fn = fn
        self._label = label

    def clear(self) -> None:
        self._fn = None
        self._label = ""

    def take(self) -> Optional[VoidFn]:
        fn = self._fn
        self.clear()
        return fn


class VideoClockSource(ClockSource):
    drift_tolerant = True

    def __init__(
        self,
        player: VideoPlayer,
        *,
        time_fn: TimeFn = time.monotonic,
        calibration_offset_ms: int = 0,
        seek_threshold_ms: int = 1000,
    ) -> None:
        self._player = player
        self._time_fn = time_fn
        self._offset_ms = int(calibration_offset_ms)
        self._seek_threshold_ms = max(0, int(seek_threshold_ms))

        self._ready = False
        self._state = PlayerState.UNSTARTED
        self._pending = PendingIntent()

        self._last_ms: float = 0.0
        self._last_reported_ms: Optional[float] = None
        self._last_wall: Optional[float] = None
        self._seek_count = 0

    # ----------------------------
    # Clock contract
    # ----------------------------

    def now(self) -> int:
        return int(round(self.position_ms())) + self._offset_ms

    def position_ms(self) -> float:
        """Player position in ms without the calibration offset."""
        wall = float(self._time_fn())
        reported = self._read_player_ms()

        if reported is not None:
            if self._last_reported_ms is not None and reported < self._last_reported_ms:
                if self._last_reported_ms - reported > self._seek_threshold_ms:
                    logger.debug("Backward jump %.0fms -> %.0fms treated as seek", self._last_reported_ms, reported)
                    self._seek_count += 1
                else:
                    reported = self._last_reported_ms
            elif self._last_reported_ms is not None and reported - self._expected_ms(wall) > self._seek_threshold_ms:
                # Scrubbed forward outside our own seek().
                logger.debug("Forward jump %.0fms -> %.0fms treated as seek", self._last_ms, reported)
                self._seek_count += 1
            self._last_reported_ms = reported
            self._last_ms = reported
            self._last_wall = wall
            return self._last_ms

        if self.is_playing and self._last_wall is not None:
            self._last_ms = max(0.0, self._last_ms + (wall - self._last_wall) * 1000.0)
            self._last_wall = wall
        return self._last_ms

    def _expected_ms(self, wall: float) -> float:
        if self.is_playing and self._last_wall is not None:
            return self._last_ms + (wall - self._last_wall) * 1000.0
        return self._last_ms

    def _read_player_ms(self) -> Optional[float]:
        try:
            value = self._player.current_time()
        except (RuntimeError, ValueError, TypeError, AttributeError) as e:
            logger.debug("Player did not report a time: %s", e)
            return None
        if value is None:
            return None
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(seconds):
            return None
        return max(0.0, seconds * 1000.0)

    # ----------------------------
    # Calibration
    # ----------------------------

    @property
    def calibration_offset_ms(self) -> int:
        return self._offset_ms

    def set_calibration_offset(self, offset_ms: int) -> None:
        self._offset_ms = int(offset_ms)

    @property
    def seek_count(self) -> int:
        return self._seek_count

    # ----------------------------
    # Player commands
    # ----------------------------

    def seek(self, seconds: float) -> None:
        target = max(0.0, float(seconds))
        self._player.seek_to(target)
        self._seek_count += 1
        self._last_ms = target * 1000.0
        self._last_reported_ms = None
        self._last_wall = float(self._time_fn())

    def play(self) -> None:
        self._player.play_video()

    def pause(self) -> None:
        self._player.pause_video()

    def duration_ms(self) -> int:
        try:
            return max(0, int(float(self._player.duration() or 0.0) * 1000))
        except (RuntimeError, ValueError, TypeError):
            return 0

    # ----------------------------
    # Readiness / state notifications
    # ----------------------------

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def state(self) -> PlayerState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlayerState.PLAYING

    @property
    def has_pending_intent(self) -> bool:
        return self._pending.is_set()

    def on_ready(self) -> None:
        self._ready = True
        fn = self._pending.take()
        if fn is not None:
            logger.debug("Player ready; replaying pending intent")
            fn()

    def on_state_change(self, state: PlayerState) -> None:
        previous = self._state
        self._state = state
        if state is PlayerState.PLAYING and previous is not PlayerState.PLAYING:
            # Restart extrapolation from this moment, not from when playback stopped.
            self._last_wall = float(self._time_fn())
        if not self._ready:
            self.on_ready()

    def run_when_ready(self, fn: VoidFn, label: str = "") -> bool:
        """Run ``fn`` now if the player is ready, else keep it as the pending intent.

        Returns True when it ran immediately.
        """
        if self._ready:
            fn()
            return True
        self._pending.set(fn, label)
        return False

    def cancel_pending(self) -> None:
        self._pending.clear()
