from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Final

from romatype.domain.enums import Difficulty, GameMode, OutcomeKind
from romatype.domain.models import RoundOutcome, SessionRecord, SessionStats


BASE_POINTS: Final[dict[Difficulty, int]] = {
    Difficulty.EASY: 100,
    Difficulty.NORMAL: 150,
    Difficulty.HARD: 200,
}

CLEAN_ROUND_BONUS: Final[int] = 10
PENALTY_PER_MISTAKE: Final[int] = 3


@dataclass(frozen=True)
class ScoringRule:
    base_points: int
    bonus: int = CLEAN_ROUND_BONUS
    penalty_per_mistake: int = PENALTY_PER_MISTAKE

    @classmethod
    def for_difficulty(cls, difficulty: Difficulty) -> "ScoringRule":
        return cls(base_points=base_points_for_difficulty(difficulty))

    @classmethod
    def flat(cls, points: int) -> "ScoringRule":
        """One fixed value per solved round; mistakes cost nothing."""
        return cls(base_points=int(points), bonus=0, penalty_per_mistake=0)


def base_points_for_difficulty(difficulty: Difficulty) -> int:
    return BASE_POINTS.get(Difficulty.parse(difficulty), BASE_POINTS[Difficulty.NORMAL])


class ScoreKeeper:
    """Reducer from round outcomes to session totals.

    ``apply`` never mutates: it returns a new SessionStats. The keeper only
    remembers which rule to use.
    """

    def __init__(self, rule: ScoringRule) -> None:
        self._rule = rule

    @property
    def rule(self) -> ScoringRule:
        return self._rule

    def round_points(self, outcome: RoundOutcome) -> int:
        if outcome.kind is not OutcomeKind.SOLVED:
            return 0
        rule = self._rule
        mistakes = max(0, int(outcome.mistakes))
        if mistakes == 0:
            points = rule.base_points + rule.bonus
        else:
            points = rule.base_points - rule.penalty_per_mistake * mistakes
        return max(0, points)

    def apply(self, stats: SessionStats, outcome: RoundOutcome) -> SessionStats:
        if outcome.kind is OutcomeKind.SKIPPED:
            return stats
        if outcome.kind is OutcomeKind.TIMED_OUT:
            return replace(
                stats,
                total_mistakes=stats.total_mistakes + max(0, int(outcome.mistakes)),
                timed_out_count=stats.timed_out_count + 1,
            )
        return replace(
            stats,
            solved_count=stats.solved_count + 1,
            total_mistakes=stats.total_mistakes + max(0, int(outcome.mistakes)),
            points=stats.points + self.round_points(outcome),
        )

    @staticmethod
    def make_record(
        stats: SessionStats,
        *,
        mode: GameMode,
        difficulty: Difficulty,
        started_at: int,
        ended_at: int,
    ) -> SessionRecord:
        return SessionRecord(
            mode=mode,
            difficulty=difficulty,
            started_at=int(started_at),
            ended_at=int(ended_at),
            solved=stats.solved_count,
            total_mistakes=stats.total_mistakes,
            timed_out=stats.timed_out_count,
            points=stats.points,
        )


# -----------------------------------------------------------------------------
# Typing statistics
# -----------------------------------------------------------------------------


def compute_wpm(typed_chars: int, elapsed_ms: float) -> float:
    """Words per minute with the usual five-characters-per-word convention."""
    if elapsed_ms <= 0:
        return 0.0
    words = typed_chars / 5.0
    minutes = elapsed_ms / 60000.0
    return max(0.0, round(words / minutes, 1))


def compute_accuracy(total_keystrokes: int, mistakes: int) -> float:
    if total_keystrokes <= 0:
        return 100.0
    correct = max(0, total_keystrokes - mistakes)
    return round(correct / total_keystrokes * 100.0, 1)


def progress_ratio(input_len: int, target_len: int) -> float:
    if target_len <= 0:
        return 0.0
    return min(1.0, max(0.0, input_len / target_len))
