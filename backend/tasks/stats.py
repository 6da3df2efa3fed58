"""
Streak and trust-score rules.

Pure transitions over an immutable ``StatsSnapshot``. The ledger applies
them optimistically and persists the result; nothing else mutates user
stats.
"""

from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Dict, Optional

TRUST_COMPLETION_BONUS = 2
TRUST_SKIP_PENALTY = 3
TRUST_MIN = 0
TRUST_MAX = 100
DEFAULT_TRUST_SCORE = 50


@dataclass(frozen=True)
class StatsSnapshot:
    total_completed: int = 0
    total_skipped: int = 0
    current_streak: int = 0
    streak_best: int = 0
    trust_score: int = DEFAULT_TRUST_SCORE
    last_completed_date: Optional[date] = None

    @classmethod
    def from_model(cls, stats) -> "StatsSnapshot":
        return cls(
            total_completed=stats.total_completed,
            total_skipped=stats.total_skipped,
            current_streak=stats.current_streak,
            streak_best=stats.streak_best,
            trust_score=stats.trust_score,
            last_completed_date=stats.last_completed_date,
        )

    def to_dict(self) -> Dict:
        return {
            'total_completed': self.total_completed,
            'total_skipped': self.total_skipped,
            'current_streak': self.current_streak,
            'streak_best': self.streak_best,
            'trust_score': self.trust_score,
            'last_completed_date': (
                self.last_completed_date.isoformat() if self.last_completed_date else None
            ),
        }


def clamp_trust(value: int) -> int:
    return max(TRUST_MIN, min(TRUST_MAX, value))


def next_streak(current_streak: int, last_completed_date: Optional[date], today: date) -> int:
    """
    Streak after a completion on ``today``.

    A completion the day after the last one extends the streak, another
    completion on the same day keeps it, and anything else starts over at 1.
    """
    yesterday = today - timedelta(days=1)
    is_consecutive = last_completed_date in (yesterday, today)
    is_new_day = last_completed_date != today
    if not is_consecutive:
        return 1
    return current_streak + 1 if is_new_day else current_streak


def apply_completion(stats: StatsSnapshot, today: date) -> StatsSnapshot:
    streak = next_streak(stats.current_streak, stats.last_completed_date, today)
    return replace(
        stats,
        total_completed=stats.total_completed + 1,
        current_streak=streak,
        streak_best=max(stats.streak_best, streak),
        trust_score=min(TRUST_MAX, stats.trust_score + TRUST_COMPLETION_BONUS),
        last_completed_date=today,
    )


def apply_skip(stats: StatsSnapshot) -> StatsSnapshot:
    return replace(
        stats,
        total_skipped=stats.total_skipped + 1,
        trust_score=max(TRUST_MIN, stats.trust_score - TRUST_SKIP_PENALTY),
    )


def effective_streak(stats: StatsSnapshot, today: date) -> int:
    """The streak as it should be shown: 0 once a full day has been missed."""
    if stats.last_completed_date is None:
        return 0
    if stats.last_completed_date < today - timedelta(days=1):
        return 0
    return stats.current_streak
