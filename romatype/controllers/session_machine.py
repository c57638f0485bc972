from __future__ import annotations

"""Round machine with a session clock on top.

A session starts with the normal countdown. The session clock starts when that
countdown ends, rounds are chained by the subclass, and the session finishes
when the clock runs out (or the subclass ends it early). Finishing builds a
SessionRecord from the running stats and appends it to the records store.
"""

import logging
import random
from typing import Callable, Optional, Sequence

from PyQt6.QtCore import QObject, pyqtSignal

from romatype.domain.difficulty import PromptPool
from romatype.domain.enums import Difficulty, GameMode, RoundPhase, RoundTiming
from romatype.domain.errors import DataUnavailableError
from romatype.domain.models import Prompt, RoundOutcome, SessionRecord, SessionStats
from romatype.domain.romaji_matcher import RomajiMatcher
from romatype.domain.scoring import ScoreKeeper, ScoringRule
from romatype.controllers.round_machine import RoundMachine
from romatype.services.clock import ClockSource, epoch_ms
from romatype.services.records_store import RecordsStore
from romatype.services.timers import PollDriver, Scheduler

logger = logging.getLogger(__name__)


class SessionMachine(RoundMachine):
    session_started = pyqtSignal()
    session_finished = pyqtSignal(object)  # SessionRecord
    stats_changed = pyqtSignal(object)  # SessionStats

    mode: GameMode = GameMode.PRACTICE

    def __init__(
        self,
        prompts: Sequence[Prompt] = (),
        *,
        session_ms: int,
        rule: ScoringRule,
        difficulty: Difficulty = Difficulty.NORMAL,
        timing: Optional[RoundTiming] = None,
        poll_interval_ms: int = 100,
        clock: Optional[ClockSource] = None,
        scheduler: Optional[Scheduler] = None,
        matcher: Optional[RomajiMatcher] = None,
        records: Optional[RecordsStore] = None,
        rng: Optional[random.Random] = None,
        wall_time_fn: Callable[[], int] = epoch_ms,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(clock=clock, scheduler=scheduler, matcher=matcher, timing=timing, parent=parent)
        self._pool = PromptPool(prompts, rng=rng)
        self._session_ms = max(1, int(session_ms))
        self._difficulty = Difficulty.parse(difficulty)
        self._keeper = ScoreKeeper(rule)
        self._records = records
        self._wall_time_fn = wall_time_fn
        self._poller = PollDriver(self._scheduler, self.poll, (poll_interval_ms,))

        self._stats = SessionStats()
        self._session_active = False
        self._session_started_clock: Optional[int] = None
        self._session_started_at: Optional[int] = None
        self._last_record: Optional[SessionRecord] = None

    # ----------------------------
    # Read-only state
    # ----------------------------

    @property
    def difficulty(self) -> Difficulty:
        return self._difficulty

    @property
    def pool(self) -> PromptPool:
        return self._pool

    @property
    def can_start(self) -> bool:
        return bool(self._pool)

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def session_active(self) -> bool:
        return self._session_active

    @property
    def last_record(self) -> Optional[SessionRecord]:
        return self._last_record

    @property
    def poller(self) -> PollDriver:
        return self._poller

    def session_remaining_ms(self) -> Optional[int]:
        if not self._session_active:
            return None
        if self._session_started_clock is None:
            return self._session_ms
        return max(0, self._session_ms - (self._clock.now() - self._session_started_clock))

    # ----------------------------
    # Prompts
    # ----------------------------

    def load_prompts(self, prompts: Sequence[Prompt]) -> None:
        self._pool.replace(prompts)
        if self._phase is RoundPhase.IDLE and not self._session_active:
            self._prompt = self.next_prompt()

    def refresh_prompts(self, source) -> bool:
        """Reload the pool from a PromptSource. On failure the current pool stays."""
        try:
            prompts = source.fetch_prompts()
        except DataUnavailableError as e:
            logger.warning("Prompt refresh failed; keeping %d prompts: %s", len(self._pool), e)
            return False
        if not prompts:
            logger.warning("Prompt source returned no prompts; keeping %d prompts", len(self._pool))
            return False
        self.load_prompts(prompts)
        logger.info("Loaded %d prompts", len(prompts))
        return True

    def next_prompt(self) -> Optional[Prompt]:
        current = self._prompt.id if self._prompt is not None else None
        return self._pool.pick_random(exclude_id=current)

    # ----------------------------
    # Session lifecycle
    # ----------------------------

    def start_session(self) -> bool:
        if self._session_active or self._phase not in (RoundPhase.IDLE, RoundPhase.FINISHED):
            logger.debug("start_session() ignored in phase %s", self._phase.value)
            return False
        if not self.can_start:
            logger.warning("Cannot start a %s session: no prompts loaded", self.mode.value)
            return False

        self._stats = SessionStats()
        self.stats_changed.emit(self._stats)
        self._session_active = True
        self._session_started_clock = None
        self._session_started_at = None
        self._last_record = None
        self._enter_countdown(self.next_prompt(), self._timing.countdown_ticks)
        self._poller.start()
        return True

    def session_expired(self) -> bool:
        remaining = self.session_remaining_ms()
        return remaining is not None and self._session_started_clock is not None and remaining <= 0

    def poll(self) -> Optional[RoundOutcome]:
        outcome = super().poll()
        if self._session_active and self.session_expired():
            self._finish_session()
        return outcome

    def _on_countdown_finished(self) -> None:
        if self._session_active and self._session_started_clock is None:
            self._session_started_clock = self._clock.now()
            self._session_started_at = int(self._wall_time_fn())
            self.session_started.emit()

    def _record_outcome(self, outcome: RoundOutcome) -> None:
        self._stats = self._keeper.apply(self._stats, outcome)
        self.stats_changed.emit(self._stats)

    def _finish_session(self) -> SessionRecord:
        """End the session now. A round in progress is discarded, not scored."""
        self._timers.cancel_all()
        self._poller.stop()
        self._state = None
        self._set_countdown(None)
        self._session_active = False

        ended_at = int(self._wall_time_fn())
        started_at = self._session_started_at if self._session_started_at is not None else ended_at
        record = self._keeper.make_record(
            self._stats,
            mode=self.mode,
            difficulty=self._difficulty,
            started_at=started_at,
            ended_at=ended_at,
        )
        self._last_record = record
        if self._records is not None:
            self._records.append(record)
        logger.info(
            "%s session finished: %d solved, %d timed out, %d points",
            self.mode.value,
            record.solved,
            record.timed_out,
            record.points,
        )
        self._set_phase(RoundPhase.FINISHED)
        self.session_finished.emit(record)
        return record

    def _on_reset(self) -> None:
        self._poller.stop()
        self._session_active = False
        self._session_started_clock = None
        self._session_started_at = None
        if self._stats != SessionStats():
            self._stats = SessionStats()
            self.stats_changed.emit(self._stats)

    def _on_space(self) -> bool:
        if self._phase in (RoundPhase.IDLE, RoundPhase.FINISHED):
            return self.start_session()
        return False


__all__ = ["SessionMachine"]
