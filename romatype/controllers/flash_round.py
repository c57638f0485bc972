from __future__ import annotations

import logging
import random
from typing import Callable, Optional, Sequence

from PyQt6.QtCore import QObject, pyqtSignal

from romatype.domain.enums import FlashConfig, GameMode, OutcomeKind, RoundPhase, RoundTiming
from romatype.domain.models import Prompt, RoundOutcome
from romatype.domain.romaji_matcher import RomajiMatcher
from romatype.domain.scoring import ScoringRule
from romatype.controllers.session_machine import SessionMachine
from romatype.services.clock import ClockSource, epoch_ms
from romatype.services.records_store import RecordsStore
from romatype.services.timers import Scheduler

logger = logging.getLogger(__name__)


class FlashRoundMachine(SessionMachine):
    """Memorise-then-type.

    Each round shows the prompt for ``reveal_ms``, then hides it and gives
    ``per_prompt_seconds`` to type it. A timeout costs one life and shows the
    answer briefly; the session ends on the last life or when its clock runs
    out, whichever comes first.
    """

    lives_changed = pyqtSignal(int)
    answer_shown = pyqtSignal(object)  # Prompt

    mode = GameMode.FLASH

    def __init__(
        self,
        prompts: Sequence[Prompt] = (),
        *,
        config: Optional[FlashConfig] = None,
        clock: Optional[ClockSource] = None,
        scheduler: Optional[Scheduler] = None,
        matcher: Optional[RomajiMatcher] = None,
        records: Optional[RecordsStore] = None,
        rng: Optional[random.Random] = None,
        wall_time_fn: Callable[[], int] = epoch_ms,
        parent: Optional[QObject] = None,
    ) -> None:
        cfg = (config or FlashConfig()).normalised()
        super().__init__(
            prompts,
            session_ms=cfg.session_seconds * 1000,
            rule=ScoringRule.flat(cfg.points_per_solve),
            timing=RoundTiming(
                countdown_ticks=3,
                tick_ms=1000,
                reveal_ms=cfg.reveal_ms,
                round_limit_ms=cfg.per_prompt_seconds * 1000,
            ),
            poll_interval_ms=cfg.poll_interval_ms,
            clock=clock,
            scheduler=scheduler,
            matcher=matcher,
            records=records,
            rng=rng,
            wall_time_fn=wall_time_fn,
            parent=parent,
        )
        self._config = cfg

    @property
    def config(self) -> FlashConfig:
        return self._config

    @property
    def lives_remaining(self) -> int:
        return max(0, self._config.max_timeouts - self._stats.timed_out_count)

    @property
    def is_revealed(self) -> bool:
        """True while the prompt text may be shown."""
        return self._phase in (RoundPhase.REVEALING, RoundPhase.SHOWING_ANSWER)

    def start(self, prompt: Optional[Prompt] = None) -> bool:
        # Flash rounds only exist inside a session.
        return self.start_session()

    def start_session(self) -> bool:
        started = super().start_session()
        if started:
            self.lives_changed.emit(self.lives_remaining)
        return started

    def _after_outcome(self, outcome: RoundOutcome) -> None:
        self._state = None
        if not self._session_active:
            self._set_phase(RoundPhase.IDLE)
            return

        self._record_outcome(outcome)

        if outcome.kind is OutcomeKind.TIMED_OUT:
            self.lives_changed.emit(self.lives_remaining)
            if self.lives_remaining <= 0:
                logger.info("Out of lives after %d timeouts", self._stats.timed_out_count)
                self._finish_session()
                return
            if self.session_expired():
                self._finish_session()
                return
            self._set_phase(RoundPhase.SHOWING_ANSWER)
            self.answer_shown.emit(self._prompt)
            self._timers.schedule(self._config.answer_ms, self._on_answer_done)
            return

        if self.session_expired():
            self._finish_session()
            return
        self._chain_next()

    def _on_answer_done(self) -> None:
        if self._phase is not RoundPhase.SHOWING_ANSWER:
            return
        if self.session_expired():
            self._finish_session()
            return
        self._chain_next()

    def _chain_next(self) -> None:
        self._enter_countdown(self.next_prompt(), self._config.chain_countdown_ticks)


__all__ = ["FlashRoundMachine"]
