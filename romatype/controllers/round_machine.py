from __future__ import annotations

"""Generic state machine for one prompt attempt.

    idle -> countdown -> revealing -> active -> (resolved | timed_out) -> idle

Design goals:
- Every transition happens synchronously inside one call (a keystroke, a poll
  or a timer callback); nothing re-enters.
- All delays of the current round live in one TimerGroup. Any new round,
  skip or reset cancels the whole group, and the group's generation counter
  drops callbacks that were already queued.
- Outcomes are returned from the call that produced them *and* emitted on
  ``outcome_ready``; there are no global notifications.

Subclasses specialise the round limit, the reveal window and what happens
after an outcome (``_after_outcome``).
"""

import functools
import logging
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal

from romatype.domain.enums import KeyCommand, KeyResult, OutcomeKind, RoundPhase, RoundTiming
from romatype.domain.models import Prompt, RoundOutcome, RoundState
from romatype.domain.romaji_matcher import RomajiMatcher
from romatype.services.clock import ClockSource, WallClockSource
from romatype.services.timers import QtScheduler, Scheduler, TimerGroup

logger = logging.getLogger(__name__)


class RoundMachine(QObject):
    phase_changed = pyqtSignal(object)  # RoundPhase
    countdown_changed = pyqtSignal(object)  # int | None
    input_changed = pyqtSignal(str)
    mistake_made = pyqtSignal(int)  # mistakes so far in this round
    outcome_ready = pyqtSignal(object)  # RoundOutcome

    def __init__(
        self,
        *,
        clock: Optional[ClockSource] = None,
        scheduler: Optional[Scheduler] = None,
        matcher: Optional[RomajiMatcher] = None,
        timing: Optional[RoundTiming] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._clock: ClockSource = clock if clock is not None else WallClockSource()
        self._scheduler: Scheduler = scheduler if scheduler is not None else QtScheduler(self)
        self._timers = TimerGroup(self._scheduler)
        self._matcher = matcher or RomajiMatcher()
        self._timing = (timing or RoundTiming()).normalised()

        self._phase = RoundPhase.IDLE
        self._prompt: Optional[Prompt] = None
        self._state: Optional[RoundState] = None
        self._countdown: Optional[int] = None
        self._round_limit_ms: int = self._timing.round_limit_ms

    # ----------------------------
    # Read-only state
    # ----------------------------

    @property
    def phase(self) -> RoundPhase:
        return self._phase

    @property
    def prompt(self) -> Optional[Prompt]:
        return self._prompt

    @property
    def state(self) -> Optional[RoundState]:
        return self._state

    @property
    def input(self) -> str:
        return self._state.input if self._state is not None else ""

    @property
    def mistakes(self) -> int:
        return self._state.mistake_count if self._state is not None else 0

    @property
    def countdown(self) -> Optional[int]:
        return self._countdown

    @property
    def timing(self) -> RoundTiming:
        return self._timing

    @property
    def timers(self) -> TimerGroup:
        return self._timers

    @property
    def round_limit(self) -> int:
        return self._round_limit_ms

    def elapsed_ms(self) -> int:
        state = self._state
        if state is None or state.started_at_clock_time is None:
            return 0
        return max(0, self._clock.now() - state.started_at_clock_time)

    def remaining_ms(self) -> Optional[int]:
        if self._phase is not RoundPhase.ACTIVE:
            return None
        return max(0, self._round_limit_ms - self.elapsed_ms())

    def highlight(self):
        if self._prompt is None:
            return None
        return self._matcher.highlight_split(self.input, self._prompt.canonical_romaji)

    # ----------------------------
    # Overridable policy
    # ----------------------------

    def round_limit_ms(self, prompt: Prompt) -> int:
        return self._timing.round_limit_ms

    def reveal_ms(self) -> int:
        return self._timing.reveal_ms

    # ----------------------------
    # Commands
    # ----------------------------

    def start(self, prompt: Optional[Prompt]) -> bool:
        """Explicit start: idle -> countdown. Ignored in any other phase."""
        if self._phase not in (RoundPhase.IDLE, RoundPhase.FINISHED):
            logger.debug("start() ignored in phase %s", self._phase.value)
            return False
        if prompt is None:
            logger.warning("Cannot start a round without a prompt")
            return False
        self._enter_countdown(prompt, self._timing.countdown_ticks)
        return True

    def type_text(self, text: str) -> KeyResult:
        """Offer the full new contents of the input field.

        Deletions are always accepted. Anything else that is not a prefix of an
        accepted spelling is rejected (input unchanged) and counts one mistake.
        """
        state = self._state
        prompt = self._prompt
        if self._phase is not RoundPhase.ACTIVE or state is None or prompt is None:
            return KeyResult.IGNORED

        new = text or ""
        if new == state.input:
            return KeyResult.IGNORED

        if len(new) < len(state.input):
            state.input = new
            self.input_changed.emit(new)
            return KeyResult.ACCEPTED

        if not self._matcher.is_prefix_valid(new, prompt.canonical_romaji):
            state.mistake_count += 1
            self.mistake_made.emit(state.mistake_count)
            return KeyResult.REJECTED

        state.input = new
        self.input_changed.emit(new)
        if self._matcher.is_complete(new, prompt.canonical_romaji):
            self._resolve()
            return KeyResult.COMPLETED
        return KeyResult.ACCEPTED

    def type_char(self, ch: str) -> KeyResult:
        return self.type_text(self.input + (ch or ""))

    def backspace(self) -> KeyResult:
        if not self.input:
            return KeyResult.IGNORED
        return self.type_text(self.input[:-1])

    def poll(self) -> Optional[RoundOutcome]:
        """Clock tick. Completion is checked before the round limit."""
        state = self._state
        prompt = self._prompt
        if self._phase is not RoundPhase.ACTIVE or state is None or prompt is None:
            return None
        if self._matcher.is_complete(state.input, prompt.canonical_romaji):
            return self._resolve()
        if self.elapsed_ms() >= self._round_limit_ms:
            return self._time_out()
        return None

    def submit(self) -> Optional[RoundOutcome]:
        state = self._state
        prompt = self._prompt
        if self._phase is not RoundPhase.ACTIVE or state is None or prompt is None:
            return None
        if not self._matcher.is_complete(state.input, prompt.canonical_romaji):
            return None
        return self._resolve()

    def skip(self) -> Optional[RoundOutcome]:
        if self._phase not in (RoundPhase.ACTIVE, RoundPhase.REVEALING):
            return None
        return self._finish_round(OutcomeKind.SKIPPED, None)

    def reset(self) -> None:
        """Cancel everything and return to idle. Calling it twice is the same as once."""
        self._timers.cancel_all()
        self._state = None
        self._set_countdown(None)
        self._on_reset()
        self._set_phase(RoundPhase.IDLE)

    def handle_key(self, command: KeyCommand) -> bool:
        if command is KeyCommand.HARD_RESET:
            self.reset()
            return True
        if command is KeyCommand.ENTER:
            return self.submit() is not None
        if command is KeyCommand.ESCAPE:
            return self.skip() is not None
        if command is KeyCommand.SPACE:
            return self._on_space()
        return False

    # ----------------------------
    # Transitions
    # ----------------------------

    def _enter_countdown(self, prompt: Optional[Prompt], ticks: int) -> None:
        self._timers.cancel_all()
        self._prompt = prompt
        self._state = None
        self._set_phase(RoundPhase.COUNTDOWN)

        if ticks <= 0:
            self._set_countdown(None)
            self._timers.schedule(0, self._countdown_done)
            return

        self._set_countdown(ticks)
        tick_ms = self._timing.tick_ms
        for i in range(1, ticks + 1):
            self._timers.schedule(i * tick_ms, functools.partial(self._on_countdown_tick, ticks - i))

    def _on_countdown_tick(self, remaining: int) -> None:
        if self._phase is not RoundPhase.COUNTDOWN:
            return
        if remaining > 0:
            self._set_countdown(remaining)
            return
        self._set_countdown(None)
        self._countdown_done()

    def _countdown_done(self) -> None:
        if self._phase is not RoundPhase.COUNTDOWN:
            return
        self._on_countdown_finished()
        if self._phase is not RoundPhase.COUNTDOWN:
            return
        self._begin_round(self._prompt)

    def _begin_round(self, prompt: Optional[Prompt]) -> None:
        """Start a round without a countdown: reveal if configured, then activate."""
        self._timers.cancel_all()
        self._prompt = prompt
        self._state = None
        if prompt is None:
            logger.warning("No prompt available; round not started")
            self._set_phase(RoundPhase.IDLE)
            return

        reveal = self.reveal_ms()
        if reveal > 0:
            self._set_phase(RoundPhase.REVEALING)
            self._timers.schedule(reveal, self._on_reveal_done)
            return
        self._activate()

    def _on_reveal_done(self) -> None:
        if self._phase is RoundPhase.REVEALING:
            self._activate()

    def _activate(self) -> None:
        prompt = self._prompt
        self._round_limit_ms = max(1, int(self.round_limit_ms(prompt))) if prompt is not None else 1
        self._state = RoundState(phase=RoundPhase.ACTIVE, started_at_clock_time=self._clock.now())
        self._set_phase(RoundPhase.ACTIVE)
        self.input_changed.emit("")

    def _resolve(self) -> RoundOutcome:
        return self._finish_round(OutcomeKind.SOLVED, RoundPhase.RESOLVED)

    def _time_out(self) -> RoundOutcome:
        return self._finish_round(OutcomeKind.TIMED_OUT, RoundPhase.TIMED_OUT)

    def _finish_round(self, kind: OutcomeKind, phase: Optional[RoundPhase]) -> RoundOutcome:
        state = self._state
        prompt = self._prompt
        outcome = RoundOutcome(
            kind=kind,
            elapsed_ms=self.elapsed_ms(),
            mistakes=state.mistake_count if state is not None else 0,
            typed_chars=len(state.input) if state is not None else 0,
            prompt_id=prompt.id if prompt is not None else None,
        )
        self._timers.cancel_all()
        if state is not None and phase is not None:
            state.phase = phase
        if phase is not None:
            self._set_phase(phase)
        logger.debug("Round outcome: %s", outcome)
        self.outcome_ready.emit(outcome)
        self._after_outcome(outcome)
        return outcome

    # ----------------------------
    # Hooks
    # ----------------------------

    def _after_outcome(self, outcome: RoundOutcome) -> None:
        self._state = None
        self._set_phase(RoundPhase.IDLE)

    def _on_countdown_finished(self) -> None:
        pass

    def _on_reset(self) -> None:
        pass

    def _on_space(self) -> bool:
        if self._phase in (RoundPhase.IDLE, RoundPhase.FINISHED):
            return self.start(self._prompt)
        return False

    # ----------------------------
    # Helpers
    # ----------------------------

    def _set_phase(self, phase: RoundPhase) -> None:
        if self._phase is phase:
            return
        self._phase = phase
        self.phase_changed.emit(phase)

    def _set_countdown(self, value: Optional[int]) -> None:
        if self._countdown == value:
            return
        self._countdown = value
        self.countdown_changed.emit(value)


__all__ = ["RoundMachine"]
