"""
Plan allocation: choosing which ranked tasks make today's plan.

Algorithm Design:
----------------
1. Auto-selection walks the ranked list once, highest score first, and
   takes every task that still fits:

       running_minutes + task.estimated_minutes <= available_minutes

   A task that doesn't fit is passed over and the walk continues, so a
   shorter task further down can still fill the gap. This is a greedy
   knapsack approximation on purpose: the score already encodes deadline,
   priority and energy fit, so higher-ranked tasks win over packing more
   minutes.

2. The user may toggle tasks in and out. A toggle-in that would overflow
   the budget is refused and the selection stays as it was.

3. Each selected task keeps its rank index as its plan ``order``.

Progress metrics are derived from planned-task rows on demand and never
stored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import ErrorCode, OperationResult
from .scoring import TaskScore

logger = logging.getLogger(__name__)


class PlanSelection:
    """Selection state for one planning session."""

    def __init__(self, ranked: Sequence[TaskScore], available_minutes: int):
        self.ranked: List[TaskScore] = list(ranked)
        self.available_minutes = available_minutes
        self._rank_index: Dict = {
            task_score.task_id: index for index, task_score in enumerate(self.ranked)
        }
        self._selected: set = set()

    # -------------------- queries --------------------

    @property
    def selected_ids(self) -> List:
        """Selected task ids in rank order."""
        return [ts.task_id for ts in self.ranked if ts.task_id in self._selected]

    @property
    def selected_scores(self) -> List[TaskScore]:
        return [ts for ts in self.ranked if ts.task_id in self._selected]

    @property
    def selected_minutes(self) -> int:
        return sum(ts.estimated_minutes for ts in self.selected_scores)

    @property
    def remaining_minutes(self) -> int:
        return self.available_minutes - self.selected_minutes

    def is_selected(self, task_id) -> bool:
        return task_id in self._selected

    def order_for(self, task_id) -> int:
        """Plan order of a task: its index in the ranked list."""
        return self._rank_index[task_id]

    def can_add(self, task_id) -> bool:
        if task_id not in self._rank_index or task_id in self._selected:
            return False
        minutes = self.ranked[self._rank_index[task_id]].estimated_minutes
        return self.selected_minutes + minutes <= self.available_minutes

    # -------------------- mutations --------------------

    def auto_select(self) -> List:
        """Greedy fill from scratch. Returns the selected ids."""
        self._selected = set()
        running_minutes = 0
        for task_score in self.ranked:
            if running_minutes + task_score.estimated_minutes <= self.available_minutes:
                self._selected.add(task_score.task_id)
                running_minutes += task_score.estimated_minutes
        return self.selected_ids

    def toggle(self, task_id) -> OperationResult:
        """
        Flip one task in or out of the selection.

        Removing always succeeds. Adding a task that would push the total
        past the budget is refused with ERR_BUDGET_EXCEEDED and the
        selection is left untouched.
        """
        if task_id not in self._rank_index:
            return OperationResult.failure(
                ErrorCode.ERR_UNKNOWN_TASK,
                "Task is not part of this planning session",
                task_id=task_id,
                value=self.selected_ids
            )

        if task_id in self._selected:
            self._selected.discard(task_id)
            return OperationResult.success(self.selected_ids)

        if not self.can_add(task_id):
            minutes = self.ranked[self._rank_index[task_id]].estimated_minutes
            logger.debug(
                "Rejected toggle of task %s: %s + %s > %s minutes",
                task_id, self.selected_minutes, minutes, self.available_minutes
            )
            return OperationResult.failure(
                ErrorCode.ERR_BUDGET_EXCEEDED,
                f"Adding this task ({minutes} min) would exceed the "
                f"{self.available_minutes} minute budget",
                task_id=task_id,
                value=self.selected_ids
            )

        self._selected.add(task_id)
        return OperationResult.success(self.selected_ids)

    def apply_toggles(self, task_ids: Iterable) -> List[OperationResult]:
        """Apply toggles in order; returns the failed ones."""
        rejected = []
        for task_id in task_ids:
            result = self.toggle(task_id)
            if not result.ok:
                rejected.append(result)
        return rejected


def allocate(ranked: Sequence[TaskScore], available_minutes: int) -> PlanSelection:
    """Build a selection and run the greedy auto-selection pass."""
    selection = PlanSelection(ranked, available_minutes)
    selection.auto_select()
    return selection


# ==================== Progress ====================

@dataclass(frozen=True)
class PlanProgress:
    completed: int
    total: int
    elapsed_minutes: int
    remaining_minutes: int
    percentage: int

    def to_dict(self) -> Dict:
        return {
            'completed': self.completed,
            'total': self.total,
            'elapsed_minutes': self.elapsed_minutes,
            'remaining_minutes': self.remaining_minutes,
            'percentage': self.percentage,
        }


def _round_half_up_percentage(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def minutes_since(started_at: Optional[datetime], now: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((now - started_at).total_seconds() // 60))


def calculate_progress(planned_tasks: Iterable, available_minutes: int, now: datetime) -> PlanProgress:
    """
    Derive progress from planned-task rows.

    Completed and in-progress tasks contribute their recorded
    ``actual_minutes``; an in-progress task with nothing recorded yet counts
    the minutes since it started.
    """
    planned = list(planned_tasks)
    completed = 0
    elapsed = 0

    for item in planned:
        if item.status == 'completed':
            completed += 1
            elapsed += item.actual_minutes or 0
        elif item.status == 'in_progress':
            if item.actual_minutes is not None:
                elapsed += item.actual_minutes
            else:
                elapsed += minutes_since(item.started_at, now)

    return PlanProgress(
        completed=completed,
        total=len(planned),
        elapsed_minutes=elapsed,
        remaining_minutes=max(0, available_minutes - elapsed),
        percentage=_round_half_up_percentage(completed, len(planned)),
    )
