from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RoundPhase(Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    REVEALING = "revealing"
    ACTIVE = "active"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    SHOWING_ANSWER = "showing_answer"
    FINISHED = "finished"


class BeatPhase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    ACTIVE = "active"
    CLEARED = "cleared"
    DEAD = "dead"


class OutcomeKind(Enum):
    SOLVED = "solved"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class Difficulty(Enum):
    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"

    @classmethod
    def parse(cls, value: object, default: "Difficulty" = None) -> "Difficulty":
        if isinstance(value, Difficulty):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return default if default is not None else cls.NORMAL


class GameMode(Enum):
    PRACTICE = "practice"
    FLASH = "flash"
    BEAT_SYNC = "beat_sync"


class KeyCommand(Enum):
    ENTER = "enter"
    ESCAPE = "escape"
    SPACE = "space"
    HARD_RESET = "hard_reset"


class KeyResult(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IGNORED = "ignored"
    COMPLETED = "completed"


class PlayerState(Enum):
    UNSTARTED = "unstarted"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


# -----------------------------------------------------------------------------
# Timing configuration
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RoundTiming:
    """Delays for one round. All values are milliseconds except the tick count."""

    countdown_ticks: int = 3
    tick_ms: int = 1000
    reveal_ms: int = 0
    round_limit_ms: int = 10_000

    def normalised(self) -> "RoundTiming":
        return RoundTiming(
            countdown_ticks=max(0, int(self.countdown_ticks)),
            tick_ms=max(0, int(self.tick_ms)),
            reveal_ms=max(0, int(self.reveal_ms)),
            round_limit_ms=max(1, int(self.round_limit_ms)),
        )


@dataclass(frozen=True)
class PracticeConfig:
    session_seconds: int = 120
    difficulty: Difficulty = Difficulty.NORMAL
    adaptive: bool = False
    history_cap: int = 100
    poll_interval_ms: int = 100

    def normalised(self) -> "PracticeConfig":
        return PracticeConfig(
            session_seconds=max(1, int(self.session_seconds)),
            difficulty=Difficulty.parse(self.difficulty),
            adaptive=bool(self.adaptive),
            history_cap=max(1, int(self.history_cap)),
            poll_interval_ms=max(1, int(self.poll_interval_ms)),
        )


@dataclass(frozen=True)
class FlashConfig:
    session_seconds: int = 120
    reveal_ms: int = 1500
    per_prompt_seconds: int = 10
    max_timeouts: int = 3
    answer_ms: int = 800
    chain_countdown_ticks: int = 0
    points_per_solve: int = 100
    poll_interval_ms: int = 100

    def normalised(self) -> "FlashConfig":
        return FlashConfig(
            session_seconds=max(1, int(self.session_seconds)),
            reveal_ms=max(0, int(self.reveal_ms)),
            per_prompt_seconds=max(1, int(self.per_prompt_seconds)),
            max_timeouts=max(1, int(self.max_timeouts)),
            answer_ms=max(0, int(self.answer_ms)),
            chain_countdown_ticks=max(0, int(self.chain_countdown_ticks)),
            points_per_solve=max(0, int(self.points_per_solve)),
            poll_interval_ms=max(1, int(self.poll_interval_ms)),
        )


@dataclass(frozen=True)
class BeatSyncConfig:
    pre_roll_ms: int = 3000
    intro_skip_guard_ms: int = 200
    primary_poll_ms: int = 16
    fallback_poll_ms: int = 400
    max_missed_lines: Optional[int] = None
    difficulty: Difficulty = Difficulty.NORMAL

    def normalised(self) -> "BeatSyncConfig":
        missed = self.max_missed_lines
        if missed is not None:
            missed = max(1, int(missed))
        return BeatSyncConfig(
            pre_roll_ms=max(0, int(self.pre_roll_ms)),
            intro_skip_guard_ms=max(0, int(self.intro_skip_guard_ms)),
            primary_poll_ms=max(1, int(self.primary_poll_ms)),
            fallback_poll_ms=max(1, int(self.fallback_poll_ms)),
            max_missed_lines=missed,
            difficulty=Difficulty.parse(self.difficulty),
        )
