from __future__ import annotations

"""Value types shared by the machines, the scorer and the stores.

Everything here is plain data with no Qt dependencies. API payloads are parsed
defensively: a malformed item yields None rather than an exception.
"""

from dataclasses import dataclass
from typing import Any, Optional

from romatype.domain.enums import Difficulty, GameMode, OutcomeKind, RoundPhase


@dataclass(frozen=True)
class Prompt:
    id: int
    display_text: str
    canonical_romaji: str
    difficulty_score: int = 0

    @classmethod
    def from_api(cls, raw: Any) -> Optional["Prompt"]:
        if not isinstance(raw, dict):
            return None
        romaji = raw.get("romaji")
        if not isinstance(romaji, str) or not romaji.strip():
            return None
        try:
            pid = int(raw.get("id"))
            difficulty = int(raw.get("difficulty", 0) or 0)
        except (TypeError, ValueError):
            return None
        return cls(
            id=pid,
            display_text=str(raw.get("text") or "").strip(),
            canonical_romaji=romaji.strip(),
            difficulty_score=difficulty,
        )


@dataclass(frozen=True)
class LyricLine:
    display_text: str
    canonical_romaji: str
    start_ms: int
    end_ms: int

    @property
    def span_ms(self) -> int:
        return self.end_ms - self.start_ms

    @classmethod
    def from_api(cls, raw: Any) -> Optional["LyricLine"]:
        if not isinstance(raw, dict):
            return None
        try:
            start = int(raw.get("startMs"))
            end = int(raw.get("endMs"))
        except (TypeError, ValueError):
            return None
        if end <= start:
            return None
        romaji = raw.get("romaji")
        if not isinstance(romaji, str):
            return None
        return cls(
            display_text=str(raw.get("text") or "").strip(),
            canonical_romaji=romaji.strip(),
            start_ms=start,
            end_ms=end,
        )


@dataclass(frozen=True)
class LyricTrack:
    title: str
    lines: tuple[LyricLine, ...]


@dataclass
class RoundState:
    """Mutable state of the round in progress; owned by exactly one machine."""

    phase: RoundPhase
    input: str = ""
    mistake_count: int = 0
    started_at_clock_time: Optional[int] = None


@dataclass(frozen=True)
class RoundOutcome:
    kind: OutcomeKind
    elapsed_ms: int
    mistakes: int
    typed_chars: int = 0
    prompt_id: Optional[int] = None
    line_index: Optional[int] = None

    @property
    def solved(self) -> bool:
        return self.kind is OutcomeKind.SOLVED

    @property
    def timed_out(self) -> bool:
        return self.kind is OutcomeKind.TIMED_OUT


@dataclass(frozen=True)
class SessionStats:
    solved_count: int = 0
    total_mistakes: int = 0
    timed_out_count: int = 0
    points: int = 0


@dataclass(frozen=True)
class SessionRecord:
    mode: GameMode
    difficulty: Difficulty
    started_at: int
    ended_at: int
    solved: int
    total_mistakes: int
    timed_out: int
    points: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "difficulty": self.difficulty.value,
            "started_at": int(self.started_at),
            "ended_at": int(self.ended_at),
            "solved": int(self.solved),
            "total_mistakes": int(self.total_mistakes),
            "timed_out": int(self.timed_out),
            "points": int(self.points),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["SessionRecord"]:
        if not isinstance(raw, dict):
            return None
        try:
            mode = GameMode(str(raw.get("mode", GameMode.PRACTICE.value)))
        except ValueError:
            return None
        try:
            return cls(
                mode=mode,
                difficulty=Difficulty.parse(raw.get("difficulty")),
                started_at=int(raw.get("started_at", 0)),
                ended_at=int(raw.get("ended_at", 0)),
                solved=int(raw.get("solved", 0)),
                total_mistakes=int(raw.get("total_mistakes", 0)),
                timed_out=int(raw.get("timed_out", 0)),
                points=int(raw.get("points", 0)),
            )
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class RoundResult:
    prompt_id: int
    wpm: float
    accuracy: float
    timestamp: int


@dataclass(frozen=True)
class HighlightSplit:
    matched: str
    next_char: str
    remainder: str
    is_mismatch: bool = False
