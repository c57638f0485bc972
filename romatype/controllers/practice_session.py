from __future__ import annotations

import logging
import random
from typing import Callable, Optional, Sequence

from PyQt6.QtCore import QObject, pyqtSignal

from romatype.domain.difficulty import DEFAULT_TARGET, time_limit_seconds, update_difficulty_target
from romatype.domain.enums import Difficulty, GameMode, PracticeConfig, RoundPhase, RoundTiming
from romatype.domain.models import Prompt, RoundOutcome, RoundResult
from romatype.domain.romaji_matcher import RomajiMatcher
from romatype.domain.scoring import ScoreKeeper, ScoringRule, compute_accuracy, compute_wpm
from romatype.controllers.session_machine import SessionMachine
from romatype.services.clock import ClockSource, epoch_ms
from romatype.services.records_store import RecordsStore
from romatype.services.timers import Scheduler

logger = logging.getLogger(__name__)


class PracticeSessionMachine(SessionMachine):
    """Self-paced practice.

    Free mode: ``start()`` plays a single round, then the machine goes back to
    idle with the next prompt preselected.

    Session mode: ``start_session()`` chains rounds without a countdown until
    the session clock runs out.
    """

    result_recorded = pyqtSignal(object)  # RoundResult

    mode = GameMode.PRACTICE

    def __init__(
        self,
        prompts: Sequence[Prompt] = (),
        *,
        config: Optional[PracticeConfig] = None,
        clock: Optional[ClockSource] = None,
        scheduler: Optional[Scheduler] = None,
        matcher: Optional[RomajiMatcher] = None,
        records: Optional[RecordsStore] = None,
        rng: Optional[random.Random] = None,
        wall_time_fn: Callable[[], int] = epoch_ms,
        parent: Optional[QObject] = None,
    ) -> None:
        cfg = (config or PracticeConfig()).normalised()
        super().__init__(
            prompts,
            session_ms=cfg.session_seconds * 1000,
            rule=ScoringRule.for_difficulty(cfg.difficulty),
            difficulty=cfg.difficulty,
            timing=RoundTiming(countdown_ticks=3, tick_ms=1000, reveal_ms=0),
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
        self._target = DEFAULT_TARGET
        self._history: list[RoundResult] = []
        self._prompt = self.next_prompt()

    @property
    def config(self) -> PracticeConfig:
        return self._config

    @property
    def difficulty_target(self) -> int:
        return self._target

    @property
    def history(self) -> list[RoundResult]:
        return list(self._history)

    def set_difficulty(self, difficulty: Difficulty) -> bool:
        """Change difficulty between rounds. Refused while a session or round runs."""
        if self._session_active or self._phase not in (RoundPhase.IDLE, RoundPhase.FINISHED):
            return False
        self._difficulty = Difficulty.parse(difficulty)
        self._keeper = ScoreKeeper(ScoringRule.for_difficulty(self._difficulty))
        return True

    def round_limit_ms(self, prompt: Prompt) -> int:
        return time_limit_seconds(prompt, self._difficulty) * 1000

    def next_prompt(self) -> Optional[Prompt]:
        if self._config.adaptive:
            current = self._prompt.id if self._prompt is not None else None
            return self._pool.pick_for_target(self._target, exclude_id=current)
        return super().next_prompt()

    def start(self, prompt: Optional[Prompt] = None) -> bool:
        """Free-mode round. Uses the preselected prompt unless one is given."""
        if self._session_active:
            return False
        if not self.can_start and prompt is None:
            logger.warning("Cannot start practice: no prompts loaded")
            return False
        chosen = prompt or self._prompt or self.next_prompt()
        started = super().start(chosen)
        if started:
            self._poller.start()
        return started

    def _after_outcome(self, outcome: RoundOutcome) -> None:
        if outcome.solved:
            self._record_result(outcome)

        self._state = None
        self._set_phase(RoundPhase.IDLE)

        if not self._session_active:
            self._poller.stop()
            self._prompt = self.next_prompt()
            return

        self._record_outcome(outcome)
        if self.session_expired():
            self._finish_session()
            return
        self._begin_round(self.next_prompt())

    def _record_result(self, outcome: RoundOutcome) -> None:
        keystrokes = outcome.typed_chars + outcome.mistakes
        wpm = compute_wpm(outcome.typed_chars, outcome.elapsed_ms)
        accuracy = compute_accuracy(keystrokes, outcome.mistakes)
        result = RoundResult(
            prompt_id=outcome.prompt_id if outcome.prompt_id is not None else -1,
            wpm=wpm,
            accuracy=accuracy,
            timestamp=int(self._wall_time_fn()),
        )
        self._history.append(result)
        if len(self._history) > self._config.history_cap:
            self._history = self._history[-self._config.history_cap:]

        previous = self._target
        self._target = update_difficulty_target(self._target, wpm, accuracy)
        logger.debug("Round %.1f wpm, %.1f%% accuracy; target %d -> %d", wpm, accuracy, previous, self._target)
        self.result_recorded.emit(result)

    def _on_space(self) -> bool:
        if self._phase is RoundPhase.IDLE and not self._session_active:
            return self.start()
        if self._phase is RoundPhase.FINISHED:
            return self.start_session()
        return False


__all__ = ["PracticeSessionMachine"]
