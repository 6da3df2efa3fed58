"""
Daily plan services.

Previewing a plan is pure: rank the open tasks against the declared
budget, auto-select, then apply the user's toggles. Finalizing writes the
``DailyPlan`` and one ``PlannedTask`` per selected task with its rank index
as ``order``.

Planned-task status only moves forward:

    pending -> in_progress -> completed | skipped | deferred
    pending --------------->  completed | skipped | deferred

Completing a planned task goes through the stats ledger so streak and
trust move the same way as a completion from the continuous queue, and the
planned row is written in the same transaction as the task.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from .allocation import PlanProgress, PlanSelection, calculate_progress, minutes_since
from .errors import ErrorCode, OperationResult, PersistenceError
from .ledger import InFlightRegistry, StatsLedger
from .models import DailyPlan, PlannedTask, Task
from .normalization import MicroStep
from .ranking import DEFAULT_ENGINE, RankingEngine
from .scoring import TaskItem, TaskScore, local_date, task_score_to_dict
from .store import (
    PlannedTaskStore,
    load_preferences,
    load_state,
    open_task_queryset,
    save_session,
    stuck_detector_for,
)
from .session import AppState
from .vocabulary import EnergyLevel, energy_to_plan_value, energy_to_task_value

logger = logging.getLogger(__name__)

Status = PlannedTask.Status

TERMINAL_STATUSES = frozenset({Status.COMPLETED, Status.SKIPPED, Status.DEFERRED})

ALLOWED_TRANSITIONS = {
    Status.PENDING: frozenset({Status.IN_PROGRESS, Status.COMPLETED, Status.SKIPPED, Status.DEFERRED}),
    Status.IN_PROGRESS: frozenset({Status.COMPLETED, Status.SKIPPED, Status.DEFERRED}),
}

ACTIONS = {
    'start': Status.IN_PROGRESS,
    'complete': Status.COMPLETED,
    'skip': Status.SKIPPED,
    'defer': Status.DEFERRED,
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


# ==================== Preview ====================

@dataclass
class PlanPreview:
    energy: EnergyLevel
    available_minutes: int
    ranked: List[TaskScore]
    selection: PlanSelection
    rejected: List[OperationResult] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'energy_level': energy_to_plan_value(self.energy),
            'available_minutes': self.available_minutes,
            'ranked_tasks': [
                dict(
                    task_score_to_dict(task_score, rank=index),
                    selected=self.selection.is_selected(task_score.task_id),
                )
                for index, task_score in enumerate(self.ranked)
            ],
            'selected_task_ids': self.selection.selected_ids,
            'selected_minutes': self.selection.selected_minutes,
            'remaining_minutes': self.selection.remaining_minutes,
            'rejected_toggles': [result.error.to_dict() for result in self.rejected],
        }


def build_preview(
    tasks: Iterable,
    energy: EnergyLevel,
    available_minutes: int,
    toggles: Iterable = (),
    now: Optional[datetime] = None,
    engine: Optional[RankingEngine] = None
) -> PlanPreview:
    """Rank, auto-select, then apply toggles in the order given."""
    ranked = (engine or DEFAULT_ENGINE).planning_ranking(tasks, energy, available_minutes, now)
    selection = PlanSelection(ranked, available_minutes)
    selection.auto_select()
    rejected = selection.apply_toggles(toggles)
    return PlanPreview(
        energy=energy,
        available_minutes=available_minutes,
        ranked=ranked,
        selection=selection,
        rejected=rejected,
    )


def preview_for_user(user, energy, available_minutes, toggles=(), now=None) -> PlanPreview:
    tasks = [TaskItem.from_model(task) for task in open_task_queryset(user)]
    return build_preview(tasks, energy, available_minutes, toggles, now)


# ==================== Finalize ====================

def get_plan(user, day: date) -> Optional[DailyPlan]:
    return DailyPlan.objects.filter(user=user, date=day).first()


def finalize_plan(
    user,
    energy: EnergyLevel,
    available_minutes: int,
    toggles: Iterable = (),
    now: Optional[datetime] = None
) -> OperationResult:
    """
    Persist today's plan from the same preview the user was shown.

    An active or completed plan for the day is left alone and
    ERR_PLAN_EXISTS is returned; an abandoned one is replaced.
    """
    now = now or timezone.now()
    today = local_date(now)

    if available_minutes <= 0:
        return OperationResult.failure(
            ErrorCode.ERR_INVALID_BUDGET,
            "Available minutes must be greater than zero",
            field='available_minutes'
        )

    existing = get_plan(user, today)
    if existing is not None and existing.status != DailyPlan.Status.ABANDONED:
        return OperationResult.failure(
            ErrorCode.ERR_PLAN_EXISTS,
            f"A plan for {today.isoformat()} already exists",
            value=existing
        )

    preview = preview_for_user(user, energy, available_minutes, toggles, now)
    selected = preview.selection.selected_scores
    if not selected:
        return OperationResult.failure(
            ErrorCode.ERR_EMPTY_TASKS,
            "No tasks fit into the available time",
            value=preview
        )

    try:
        with transaction.atomic():
            if existing is not None:
                existing.delete()
            plan = DailyPlan.objects.create(
                user=user,
                date=today,
                energy_level=energy_to_plan_value(energy),
                available_minutes=available_minutes,
            )
            PlannedTask.objects.bulk_create([
                PlannedTask(
                    plan=plan,
                    task_id=task_score.task_id,
                    order=preview.selection.order_for(task_score.task_id),
                )
                for task_score in selected
            ])
    except IntegrityError:
        return OperationResult.failure(
            ErrorCode.ERR_PLAN_EXISTS,
            f"A plan for {today.isoformat()} already exists",
        )
    except DatabaseError as exc:
        logger.warning("Could not save plan for %s: %s", today, exc)
        return OperationResult.failure(ErrorCode.ERR_PERSISTENCE, "Could not save the plan")

    state = AppState.from_persisted(load_preferences(user))
    state.complete_planning(energy, today)
    try:
        save_session(user, state)
    except PersistenceError as exc:
        logger.warning("Plan %s saved but session slice was not: %s", plan.pk, exc)

    logger.info(
        "Finalized plan %s for %s: %s tasks, %s of %s minutes",
        plan.pk, today, len(selected), preview.selection.selected_minutes, available_minutes
    )
    return OperationResult.success(plan)


# ==================== Plan lifecycle ====================

def reconcile_plan(plan: DailyPlan, now: Optional[datetime] = None) -> int:
    """
    Mark planned tasks completed when their task was completed outside
    the plan. Returns how many rows changed.
    """
    now = now or timezone.now()
    stale = plan.planned_tasks.select_related('task').filter(
        status__in=[Status.PENDING, Status.IN_PROGRESS],
        task__completed=True,
    )
    changed = 0
    for planned in stale:
        planned.status = Status.COMPLETED
        planned.completed_at = planned.task.completed_at or now
        if planned.started_at is not None and planned.actual_minutes is None:
            planned.actual_minutes = minutes_since(planned.started_at, planned.completed_at)
        planned.save(update_fields=['status', 'completed_at', 'actual_minutes'])
        changed += 1

    if changed:
        logger.info("Reconciled %s planned tasks in plan %s", changed, plan.pk)
    complete_plan_if_done(plan, now)
    return changed


def complete_plan_if_done(plan: DailyPlan, now: Optional[datetime] = None) -> bool:
    """Move an active plan to completed once every planned task is terminal."""
    if plan.status != DailyPlan.Status.ACTIVE:
        return False
    statuses = list(plan.planned_tasks.values_list('status', flat=True))
    if not statuses or any(status not in TERMINAL_STATUSES for status in statuses):
        return False
    plan.status = DailyPlan.Status.COMPLETED
    plan.completed_at = now or timezone.now()
    plan.save(update_fields=['status', 'completed_at'])
    logger.info("Plan %s completed", plan.pk)
    return True


def abandon_plan(plan: DailyPlan) -> OperationResult:
    if plan.status != DailyPlan.Status.ACTIVE:
        return OperationResult.failure(
            ErrorCode.ERR_INVALID_TRANSITION,
            f"Only an active plan can be abandoned (plan is {plan.status})"
        )
    plan.status = DailyPlan.Status.ABANDONED
    plan.save(update_fields=['status'])
    logger.info("Plan %s abandoned", plan.pk)
    return OperationResult.success(plan)


def plan_progress(plan: DailyPlan, now: Optional[datetime] = None) -> PlanProgress:
    return calculate_progress(plan.planned_tasks.all(), plan.available_minutes, now or timezone.now())


def planned_task_to_dict(planned: PlannedTask) -> Dict:
    task = planned.task
    return {
        'id': planned.pk,
        'order': planned.order,
        'status': planned.status,
        'started_at': planned.started_at.isoformat() if planned.started_at else None,
        'completed_at': planned.completed_at.isoformat() if planned.completed_at else None,
        'actual_minutes': planned.actual_minutes,
        'task': {
            'id': task.pk,
            'title': task.title,
            'priority': task.priority,
            'energy_level': task.energy_level,
            'estimated_minutes': task.estimated_minutes,
        },
    }


def plan_to_dict(plan: DailyPlan, now: Optional[datetime] = None) -> Dict:
    return {
        'id': plan.pk,
        'date': plan.date.isoformat(),
        'energy_level': plan.energy_level,
        'available_minutes': plan.available_minutes,
        'status': plan.status,
        'created_at': plan.created_at.isoformat() if plan.created_at else None,
        'completed_at': plan.completed_at.isoformat() if plan.completed_at else None,
        'tasks': [
            planned_task_to_dict(planned)
            for planned in plan.planned_tasks.select_related('task')
        ],
        'progress': plan_progress(plan, now).to_dict(),
    }


# ==================== Planned task transitions ====================

def _complete_planned(
    user,
    planned: PlannedTask,
    actual_minutes: Optional[int],
    now: datetime,
    in_flight: Optional[InFlightRegistry]
) -> OperationResult:
    if actual_minutes is None and planned.started_at is not None:
        actual_minutes = minutes_since(planned.started_at, now)

    state = load_state(user, now)
    if state.find_task(planned.task_id) is None and not planned.task.completed:
        # Skipped or archived since planning; the plan still owns it
        state.tasks.append(replace(
            TaskItem.from_model(planned.task), skipped=False, skip_reason=None, archived=False
        ))
    ledger = StatsLedger(
        state,
        PlannedTaskStore(user, planned, actual_minutes),
        stuck_detector=stuck_detector_for(planned.task),
        in_flight=in_flight,
    )
    result = ledger.complete_task(planned.task_id, now)
    if not result.ok:
        planned.refresh_from_db()
        return result
    return OperationResult.success(planned)


def _defer_planned(plan: DailyPlan, planned: PlannedTask, now: datetime) -> OperationResult:
    task = planned.task
    detector = stuck_detector_for(task)
    detector.record_defer(task.pk)
    try:
        with transaction.atomic():
            planned.status = Status.DEFERRED
            planned.save(update_fields=['status'])
            task.carried_from_date = plan.date
            update_fields = ['carried_from_date', 'updated_at']
            if detector.policy.reset_on_defer:
                task.stuck_reset_at = now
                update_fields.append('stuck_reset_at')
            task.save(update_fields=update_fields)
    except DatabaseError as exc:
        planned.refresh_from_db()
        logger.warning("Could not defer planned task %s: %s", planned.pk, exc)
        return OperationResult.failure(
            ErrorCode.ERR_PERSISTENCE, "Could not save the deferral", task_id=task.pk
        )
    return OperationResult.success(planned)


def advance_planned_task(
    user,
    plan: DailyPlan,
    planned: PlannedTask,
    action: str,
    actual_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
    in_flight: Optional[InFlightRegistry] = None
) -> OperationResult:
    """
    Apply ``action`` (start, complete, skip or defer) to one planned task.

    Backward or repeated moves are refused with ERR_INVALID_TRANSITION.
    """
    now = now or timezone.now()
    target = ACTIONS.get(action)
    if target is None:
        return OperationResult.failure(
            ErrorCode.ERR_INVALID_TRANSITION,
            f"Unknown action: {action}. Valid options: {list(ACTIONS)}",
            field='action'
        )
    if plan.status != DailyPlan.Status.ACTIVE:
        return OperationResult.failure(
            ErrorCode.ERR_INVALID_TRANSITION,
            f"Plan is {plan.status}; only active plans can change"
        )
    if not can_transition(planned.status, target):
        return OperationResult.failure(
            ErrorCode.ERR_INVALID_TRANSITION,
            f"Cannot move a planned task from {planned.status} to {target}",
            task_id=planned.task_id
        )
    if actual_minutes is not None and actual_minutes < 0:
        return OperationResult.failure(
            ErrorCode.ERR_INVALID_MINUTES,
            "Actual minutes cannot be negative",
            field='actual_minutes'
        )

    if target == Status.COMPLETED:
        result = _complete_planned(user, planned, actual_minutes, now, in_flight)
    elif target == Status.DEFERRED:
        result = _defer_planned(plan, planned, now)
    else:
        if target == Status.IN_PROGRESS:
            planned.started_at = now
        planned.status = target
        try:
            planned.save(update_fields=['status', 'started_at'])
        except DatabaseError as exc:
            planned.refresh_from_db()
            logger.warning("Could not update planned task %s: %s", planned.pk, exc)
            return OperationResult.failure(
                ErrorCode.ERR_PERSISTENCE, "Could not save the change", task_id=planned.task_id
            )
        result = OperationResult.success(planned)

    if result.ok:
        complete_plan_if_done(plan, now)
    return result


# ==================== Breakdown ====================

def create_breakdown_steps(parent: Task, steps: List[MicroStep]) -> List[Task]:
    """
    Create one child task per micro-step, appended after every existing
    task of the user. Steps inherit the parent's priority and deadline.
    """
    with transaction.atomic():
        last_position = Task.objects.filter(user=parent.user).aggregate(
            last=Max('position')
        )['last']
        start = 0 if last_position is None else last_position + 1
        children = [
            Task.objects.create(
                user=parent.user,
                parent=parent,
                title=step.title,
                description="\n".join(part for part in (step.starter_phrase, step.completion_cue) if part),
                priority=parent.priority,
                energy_level=energy_to_task_value(step.energy),
                estimated_minutes=step.estimated_minutes,
                deadline=parent.deadline,
                position=start + offset,
            )
            for offset, step in enumerate(steps)
        ]
    logger.info("Broke task %s down into %s steps", parent.pk, len(children))
    return children
