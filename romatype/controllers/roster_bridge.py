from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from romatype.domain.models import SessionStats
from romatype.services.clock import epoch_ms
from romatype.services.timers import Scheduler, TimerGroup

logger = logging.getLogger(__name__)

DEFAULT_START_DELAY_MS = 3000


class RosterChannel(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None: ...


def progress_payload(stats: SessionStats) -> dict[str, int]:
    return {
        "score": int(stats.points),
        "correctCount": int(stats.solved_count),
        "mistakeCount": int(stats.total_mistakes),
        "timeouts": int(stats.timed_out_count),
    }


@dataclass
class RosterBridge:
    """Connects one game machine to a multiplayer room channel.

    Responsibilities:
    - send ``progress_update`` with the running totals after every outcome
    - remember the latest room state pushed by the server
    - run the machine's own start command at the room's shared start time

    The bridge never drives rounds itself; the machine stays authoritative.
    """

    channel: RosterChannel
    machine: Any
    scheduler: Scheduler
    start: Optional[Callable[[], Any]] = None
    wall_time_fn: Callable[[], int] = epoch_ms
    room: Optional[dict[str, Any]] = None
    _timers: TimerGroup = field(init=False, repr=False)
    _wired: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._timers = TimerGroup(self.scheduler)
        if self.start is None:
            self.start = getattr(self.machine, "start_session", None) or self.machine.start

    def wire(self) -> None:
        """Attach to the machine's stats signal (idempotent)."""
        if self._wired:
            return
        self.machine.stats_changed.connect(self._on_stats_changed)
        self._wired = True

    def unwire(self) -> None:
        self.cancel_start()
        if not self._wired:
            return
        try:
            self.machine.stats_changed.disconnect(self._on_stats_changed)
        except (TypeError, RuntimeError):
            pass
        self._wired = False

    def on_room_state(self, room: dict[str, Any]) -> None:
        self.room = dict(room or {})

    def on_game_started(self, start_at: Optional[int] = None) -> int:
        """Schedule the local start. Returns the delay used, in ms."""
        now = int(self.wall_time_fn())
        if start_at is None:
            start_at = now + DEFAULT_START_DELAY_MS
        delay = max(0, int(start_at) - now)
        # A repeated announcement replaces the earlier one.
        self._timers.cancel_all()
        self._timers.schedule(delay, self._fire_start)
        logger.info("Room game starts in %dms", delay)
        return delay

    def cancel_start(self) -> None:
        self._timers.cancel_all()

    def send_progress(self, stats: SessionStats) -> None:
        try:
            self.channel.emit("progress_update", progress_payload(stats))
        except (OSError, RuntimeError, ValueError):
            logger.exception("Failed to send progress update")

    def _on_stats_changed(self, stats: SessionStats) -> None:
        self.send_progress(stats)

    def _fire_start(self) -> None:
        start = self.start
        if start is None:
            return
        if not start():
            logger.warning("Room start ignored by %s", type(self.machine).__name__)


__all__ = ["RosterBridge", "RosterChannel", "progress_payload"]
