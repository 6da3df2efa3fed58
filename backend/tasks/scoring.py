"""
Task Scoring Model for the LifeOS planner.

This module turns a single task plus the user's current context into a
``ScoreBreakdown``: five additive integer sub-scores and their total. It has
no side effects and never touches the database, so every tier can be
exercised directly in tests.

Scoring Table:
-------------
deadline_urgency   past due 40 | today 35 | tomorrow 25 | <=7 days 15 |
                   <=30 days 5 | later or none 0
priority_match     high 30 | medium 15 | low 5   (unset counts as medium)
energy_match       same level 20 | one step apart 10 | opposite ends 0
time_fit           doesn't fit 0 | 30-70% of remaining budget 10 | else 5
aging              2 per full day since deferral, capped at 10

total = deadline_urgency + priority_match + energy_match + time_fit + aging

Days are counted between calendar dates in the active time zone, never
from wall-clock hours: a task due at 00:01 and one due at 23:59 on the same
day are both "due today".
"""

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from django.utils import timezone

from .vocabulary import (
    EnergyInput,
    EnergyLevel,
    Priority,
    PriorityInput,
    normalize_energy,
    normalize_priority,
)


DateLike = Union[date, datetime, None]

# Used as remaining_minutes when no time budget applies
UNLIMITED_MINUTES = math.inf


# ==================== Engine Task View ====================

@dataclass(frozen=True)
class TaskItem:
    """
    Immutable in-memory view of a task.

    The ranking engine and the session state work on these rather than on
    ORM rows so snapshots compare field by field.
    """
    id: Any
    title: str
    priority: Optional[str] = Priority.MEDIUM.value
    energy_level: Optional[str] = 'medium'
    estimated_minutes: int = 25
    deadline: Optional[datetime] = None
    completed: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    carried_from_date: Optional[date] = None
    position: int = 0
    archived: bool = False

    @classmethod
    def from_model(cls, task) -> "TaskItem":
        return cls(
            id=task.pk,
            title=task.title,
            priority=task.priority,
            energy_level=task.energy_level,
            estimated_minutes=task.estimated_minutes,
            deadline=task.deadline,
            completed=task.completed,
            skipped=task.skipped,
            skip_reason=task.skip_reason or None,
            carried_from_date=task.carried_from_date,
            position=task.position,
            archived=task.archived,
        )

    @property
    def is_open(self) -> bool:
        return not (self.completed or self.skipped or self.archived)

    def mark_completed(self) -> "TaskItem":
        return replace(self, completed=True, skipped=False, skip_reason=None)

    def mark_skipped(self, reason: Optional[str] = None) -> "TaskItem":
        return replace(self, skipped=True, completed=False, skip_reason=reason)


# ==================== Score Types ====================

@dataclass(frozen=True)
class ScoreContext:
    """What the scorer needs to know about the user right now."""
    user_energy: EnergyLevel = EnergyLevel.NORMAL
    remaining_minutes: float = UNLIMITED_MINUTES
    now: Optional[datetime] = None

    def resolved_now(self) -> datetime:
        return self.now if self.now is not None else timezone.now()


@dataclass(frozen=True)
class ScoreBreakdown:
    """The five sub-scores for one (task, context) pair."""
    deadline_urgency: int = 0
    priority_match: int = 0
    energy_match: int = 0
    time_fit: int = 0
    aging: int = 0

    @property
    def total(self) -> int:
        return (
            self.deadline_urgency +
            self.priority_match +
            self.energy_match +
            self.time_fit +
            self.aging
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            'deadline_urgency': self.deadline_urgency,
            'priority_match': self.priority_match,
            'energy_match': self.energy_match,
            'time_fit': self.time_fit,
            'aging': self.aging,
            'total': self.total,
        }


@dataclass(frozen=True)
class TaskScore:
    """A task paired with its breakdown; the unit the ranking engine sorts."""
    task: Any
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)

    @property
    def total(self) -> int:
        return self.breakdown.total

    @property
    def task_id(self) -> Any:
        return self.task.id

    @property
    def estimated_minutes(self) -> int:
        return self.task.estimated_minutes


# ==================== Date Helpers ====================

def local_date(value: DateLike) -> Optional[date]:
    """Calendar date of ``value`` in the active time zone."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            return timezone.localtime(value).date()
        return value.date()
    return value


def calendar_days_between(start: DateLike, end: DateLike) -> Optional[int]:
    """Whole calendar days from ``start`` to ``end`` (negative if end is earlier)."""
    start_day = local_date(start)
    end_day = local_date(end)
    if start_day is None or end_day is None:
        return None
    return (end_day - start_day).days


# ==================== Scorer ====================

class TaskScorer:
    """
    Computes the five sub-scores.

    Each ``calculate_*`` method is independent of the others; ``score``
    simply adds them up.
    """

    # Deadline urgency tiers
    OVERDUE_SCORE = 40
    DUE_TODAY_SCORE = 35
    DUE_TOMORROW_SCORE = 25
    DUE_THIS_WEEK_SCORE = 15
    DUE_THIS_MONTH_SCORE = 5
    NO_URGENCY_SCORE = 0
    WEEK_DAYS = 7
    MONTH_DAYS = 30

    PRIORITY_SCORES = {
        Priority.HIGH: 30,
        Priority.MEDIUM: 15,
        Priority.LOW: 5,
    }

    # Indexed by distance on the energy scale
    ENERGY_MATCH_SCORES = (20, 10, 0)

    # Time fit
    DOES_NOT_FIT_SCORE = 0
    WELL_SIZED_SCORE = 10
    FITS_SCORE = 5
    WELL_SIZED_MIN_PERCENT = 30
    WELL_SIZED_MAX_PERCENT = 70

    # Aging
    AGING_POINTS_PER_DAY = 2
    AGING_CAP = 10

    def calculate_deadline_urgency(self, deadline: DateLike, now: datetime) -> int:
        days = calendar_days_between(now, deadline)
        if days is None:
            return self.NO_URGENCY_SCORE
        if days < 0:
            return self.OVERDUE_SCORE
        if days == 0:
            return self.DUE_TODAY_SCORE
        if days == 1:
            return self.DUE_TOMORROW_SCORE
        if days <= self.WEEK_DAYS:
            return self.DUE_THIS_WEEK_SCORE
        if days <= self.MONTH_DAYS:
            return self.DUE_THIS_MONTH_SCORE
        return self.NO_URGENCY_SCORE

    def calculate_priority_match(self, priority: PriorityInput) -> int:
        return self.PRIORITY_SCORES[normalize_priority(priority)]

    def calculate_energy_match(self, task_energy: EnergyInput, user_energy: EnergyInput) -> int:
        distance = normalize_energy(task_energy).distance(normalize_energy(user_energy))
        return self.ENERGY_MATCH_SCORES[distance]

    def calculate_time_fit(self, estimated_minutes: int, remaining_minutes: float) -> int:
        """
        Score how well a task fills the remaining budget.

        With an unlimited budget every task fits but none is "well sized".
        The 30-70% band is inclusive at both ends.
        """
        if estimated_minutes > remaining_minutes:
            return self.DOES_NOT_FIT_SCORE
        if math.isinf(remaining_minutes):
            return self.FITS_SCORE
        # Integer cross-multiplication keeps the band edges exact
        scaled = estimated_minutes * 100
        if (self.WELL_SIZED_MIN_PERCENT * remaining_minutes <= scaled
                <= self.WELL_SIZED_MAX_PERCENT * remaining_minutes):
            return self.WELL_SIZED_SCORE
        return self.FITS_SCORE

    def calculate_aging(self, carried_from_date: DateLike, now: datetime) -> int:
        days = calendar_days_between(carried_from_date, now)
        if days is None or days <= 0:
            return 0
        return min(self.AGING_CAP, days * self.AGING_POINTS_PER_DAY)

    def score(self, task, context: ScoreContext) -> ScoreBreakdown:
        now = context.resolved_now()
        return ScoreBreakdown(
            deadline_urgency=self.calculate_deadline_urgency(task.deadline, now),
            priority_match=self.calculate_priority_match(task.priority),
            energy_match=self.calculate_energy_match(task.energy_level, context.user_energy),
            time_fit=self.calculate_time_fit(task.estimated_minutes, context.remaining_minutes),
            aging=self.calculate_aging(task.carried_from_date, now),
        )


DEFAULT_SCORER = TaskScorer()


def score_task(task, context: ScoreContext) -> ScoreBreakdown:
    """Score one task with the default scorer."""
    return DEFAULT_SCORER.score(task, context)


# ==================== Explanations ====================

def selection_reasons(breakdown: ScoreBreakdown) -> List[str]:
    """Short human-readable reasons, strongest first."""
    reasons = []

    if breakdown.deadline_urgency == TaskScorer.OVERDUE_SCORE:
        reasons.append("Overdue - needs attention")
    elif breakdown.deadline_urgency == TaskScorer.DUE_TODAY_SCORE:
        reasons.append("Due today")
    elif breakdown.deadline_urgency == TaskScorer.DUE_TOMORROW_SCORE:
        reasons.append("Due tomorrow")

    if breakdown.energy_match == TaskScorer.ENERGY_MATCH_SCORES[0]:
        reasons.append("Perfect energy match")
    elif breakdown.energy_match == TaskScorer.ENERGY_MATCH_SCORES[1]:
        reasons.append("Good energy fit")

    if breakdown.priority_match == TaskScorer.PRIORITY_SCORES[Priority.HIGH]:
        reasons.append("High priority")

    if breakdown.aging > 0:
        reasons.append("Carried over from an earlier day")

    if breakdown.time_fit == TaskScorer.WELL_SIZED_SCORE:
        reasons.append("Well sized for your time")

    return reasons


def explain(breakdown: ScoreBreakdown) -> str:
    """One-line explanation built from the two strongest reasons."""
    reasons = selection_reasons(breakdown)
    if not reasons:
        return "Next in your prioritized queue."
    return ". ".join(reasons[:2]) + "."


def task_score_to_dict(task_score: TaskScore, rank: Optional[int] = None) -> Dict:
    """Convert a TaskScore to a dictionary for JSON serialization."""
    task = task_score.task
    deadline = task.deadline
    carried = task.carried_from_date
    result = {
        'id': task.id,
        'title': task.title,
        'priority': normalize_priority(task.priority).value,
        'energy_level': task.energy_level,
        'estimated_minutes': task.estimated_minutes,
        'deadline': deadline.isoformat() if deadline else None,
        'carried_from_date': carried.isoformat() if carried else None,
        'position': task.position,
        'score': task_score.total,
        'score_breakdown': task_score.breakdown.to_dict(),
        'explanation': explain(task_score.breakdown),
    }
    if rank is not None:
        result['rank'] = rank
    return result
