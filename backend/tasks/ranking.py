"""
Ranking engine: orders open tasks by score.

Two modes share the same scorer:

- continuous mode has no time budget and yields the "do next" queue whose
  head is the single task surfaced to the user;
- planning mode scores time fit against the declared budget and hands the
  whole ranked list to the plan allocator.

Rankings are rebuilt from scratch on every call. Task lists are small, so
there is no incremental update path.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from .scoring import (
    DEFAULT_SCORER,
    UNLIMITED_MINUTES,
    ScoreContext,
    TaskScore,
    TaskScorer,
)
from .vocabulary import EnergyInput, normalize_energy


def open_tasks(tasks: Iterable) -> List:
    """Tasks still eligible for ranking, in insertion (position) order."""
    eligible = [
        task for task in tasks
        if not task.completed
        and not task.skipped
        and not getattr(task, 'archived', False)
    ]
    # Python's sort is stable, so equal positions keep their input order
    eligible.sort(key=lambda task: task.position)
    return eligible


class RankingEngine:
    """Scores and sorts tasks for the continuous queue and for planning."""

    def __init__(self, scorer: Optional[TaskScorer] = None):
        self.scorer = scorer or DEFAULT_SCORER

    def rank(self, tasks: Iterable, context: ScoreContext) -> List[TaskScore]:
        """
        Filter to open tasks, score each one and sort by total, highest
        first. Ties keep position order.
        """
        scored = [
            TaskScore(task=task, breakdown=self.scorer.score(task, context))
            for task in open_tasks(tasks)
        ]
        scored.sort(key=lambda task_score: task_score.total, reverse=True)
        return scored

    def continuous_queue(
        self,
        tasks: Iterable,
        user_energy: EnergyInput,
        now: Optional[datetime] = None
    ) -> List[TaskScore]:
        context = ScoreContext(
            user_energy=normalize_energy(user_energy),
            remaining_minutes=UNLIMITED_MINUTES,
            now=now,
        )
        return self.rank(tasks, context)

    def current_task(
        self,
        tasks: Iterable,
        user_energy: EnergyInput,
        now: Optional[datetime] = None
    ) -> Optional[TaskScore]:
        """Head of the continuous queue, or None when nothing is open."""
        queue = self.continuous_queue(tasks, user_energy, now)
        return queue[0] if queue else None

    def planning_ranking(
        self,
        tasks: Iterable,
        user_energy: EnergyInput,
        available_minutes: int,
        now: Optional[datetime] = None
    ) -> List[TaskScore]:
        context = ScoreContext(
            user_energy=normalize_energy(user_energy),
            remaining_minutes=available_minutes,
            now=now,
        )
        return self.rank(tasks, context)


DEFAULT_ENGINE = RankingEngine()
