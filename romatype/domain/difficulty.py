from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Final, Optional, Sequence

from romatype.domain.enums import Difficulty
from romatype.domain.models import Prompt


@dataclass(frozen=True)
class TimeLimitPreset:
    per_char_seconds: float
    max_seconds: int


# Limits depend on the romaji length only, never on the prompt's difficulty score.
TIME_LIMIT_PRESETS: Final[dict[Difficulty, TimeLimitPreset]] = {
    Difficulty.EASY: TimeLimitPreset(per_char_seconds=0.5, max_seconds=45),
    Difficulty.NORMAL: TimeLimitPreset(per_char_seconds=0.4, max_seconds=34),
    Difficulty.HARD: TimeLimitPreset(per_char_seconds=0.3, max_seconds=20),
}

TARGET_MIN: Final[int] = 100
TARGET_MAX: Final[int] = 2000
DEFAULT_TARGET: Final[int] = 300


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def time_limit_seconds(prompt: Prompt, difficulty: Difficulty = Difficulty.EASY) -> int:
    """Per-round limit for practice mode.

    Counts every character of the canonical romaji (spaces and marks included).
    A prompt short enough to round to zero still gets one second.
    """
    preset = TIME_LIMIT_PRESETS[Difficulty.parse(difficulty)]
    seconds = min(float(preset.max_seconds), len(prompt.canonical_romaji) * preset.per_char_seconds)
    return max(1, int(round(seconds)))


def update_difficulty_target(current_target: int, wpm: float, accuracy: float) -> int:
    delta = (wpm - 45) * 4 + (accuracy - 95) * 6
    return int(clamp(round(current_target + delta), TARGET_MIN, TARGET_MAX))


class PromptPool:
    """The prompts a machine draws from. Prompts are shared, never copied."""

    def __init__(self, prompts: Sequence[Prompt] = (), *, rng: Optional[random.Random] = None) -> None:
        self._prompts: list[Prompt] = list(prompts)
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._prompts)

    def __bool__(self) -> bool:
        return bool(self._prompts)

    @property
    def prompts(self) -> list[Prompt]:
        return list(self._prompts)

    def replace(self, prompts: Sequence[Prompt]) -> None:
        self._prompts = list(prompts)

    def pick_random(self, exclude_id: Optional[int] = None) -> Optional[Prompt]:
        if not self._prompts:
            return None
        pool = self._prompts
        if exclude_id is not None:
            others = [p for p in self._prompts if p.id != exclude_id]
            if others:
                pool = others
        return pool[self._rng.randrange(len(pool))]

    def pick_for_target(self, target: int, exclude_id: Optional[int] = None) -> Optional[Prompt]:
        """Closest difficulty score to ``target``, with a little jitter to vary picks."""
        candidates = [p for p in self._prompts if p.id != exclude_id] or self._prompts
        if not candidates:
            return None
        scored = [(abs(p.difficulty_score - target) + self._rng.random() * 5, i) for i, p in enumerate(candidates)]
        scored.sort()
        return candidates[scored[0][1]]
