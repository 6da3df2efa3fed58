"""
Database side of the engine.

``DjangoTaskStore`` is the ``LedgerStore`` the ledger writes through. Every
write runs in one ``transaction.atomic()`` block and any ``DatabaseError``
comes back out as ``PersistenceError`` so the ledger can roll back its
optimistic change.

The loaders rebuild the per-request ``AppState`` and stuck counters from
the tables; nothing engine-related is cached between requests.
"""

import logging
from datetime import datetime
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.utils import timezone

from .conf import planner_setting
from .errors import PersistenceError
from .models import PlannedTask, PlannerPreferences, Task, TaskSkipEvent, UserStats
from .ranking import RankingEngine
from .scoring import TaskItem, local_date
from .session import AppState
from .stats import StatsSnapshot
from .stuck import StuckDetector, StuckInfo, StuckPolicy

logger = logging.getLogger(__name__)


# ==================== Users ====================

def get_personal_user():
    """The account used in single-user mode."""
    User = get_user_model()
    user, created = User.objects.get_or_create(username=planner_setting('PERSONAL_USERNAME'))
    if created:
        logger.info("Created personal planner user %s", user.username)
    return user


def resolve_user(request):
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return user
    return get_personal_user()


def get_user_stats(user) -> UserStats:
    stats, _ = UserStats.objects.get_or_create(user=user)
    return stats


# ==================== Loaders ====================

def open_task_queryset(user):
    return Task.objects.filter(user=user, completed=False, skipped=False, archived=False)


def load_preferences(user) -> dict:
    record = PlannerPreferences.objects.filter(user=user).first()
    return record.data if record else {}


def load_state(user, now: Optional[datetime] = None, engine: Optional[RankingEngine] = None) -> AppState:
    """
    Build the session state for ``user``: open tasks, stats, today's
    completion count and the persisted slice, with the current task
    already resolved.
    """
    now = now or timezone.now()
    state = AppState.from_persisted(
        load_preferences(user),
        tasks=[TaskItem.from_model(task) for task in open_task_queryset(user)],
        stats=StatsSnapshot.from_model(get_user_stats(user)),
        tasks_completed_today=Task.objects.filter(
            user=user, completed=True, completed_at__date=local_date(now)
        ).count(),
    )
    state.refresh_current_task(engine, now)
    return state


def save_session(user, state: AppState) -> None:
    try:
        PlannerPreferences.objects.update_or_create(
            user=user, defaults={'data': state.persisted_slice()}
        )
    except DatabaseError as exc:
        raise PersistenceError(str(exc), operation='save_session') from exc


def stuck_detector_for(task: Task, policy: Optional[StuckPolicy] = None) -> StuckDetector:
    """
    Rebuild the stuck counter of one task from its skip history.

    Only skips taken while the task was the current task count, and only
    those after the last reset point (completion, or keep/defer when the
    policy resets on them).
    """
    events = TaskSkipEvent.objects.filter(task=task, was_head=True)
    if task.stuck_reset_at is not None:
        events = events.filter(skipped_at__gt=task.stuck_reset_at)
    return StuckDetector.from_history(
        task.pk,
        events,
        blocker_note=task.blocker_note,
        policy=policy or StuckPolicy.from_settings(),
    )


def stuck_info_for(task: Task, policy: Optional[StuckPolicy] = None) -> StuckInfo:
    return stuck_detector_for(task, policy).get(task.pk)


def keep_with_reason(task: Task, reason: str, now: Optional[datetime] = None) -> StuckInfo:
    """Store the blocker note on a task and apply the keep reset policy."""
    now = now or timezone.now()
    detector = stuck_detector_for(task)
    info = detector.keep_with_reason(task.pk, reason)

    task.blocker_note = reason
    update_fields = ['blocker_note', 'updated_at']
    if detector.policy.reset_on_keep:
        task.stuck_reset_at = now
        update_fields.append('stuck_reset_at')
    try:
        task.save(update_fields=update_fields)
    except DatabaseError as exc:
        raise PersistenceError(str(exc), operation='keep') from exc
    return info


# ==================== Ledger store ====================

class DjangoTaskStore:
    """Persists ledger commands for one user."""

    def __init__(self, user):
        self.user = user

    def _save_stats(self, stats: StatsSnapshot) -> None:
        UserStats.objects.update_or_create(
            user=self.user,
            defaults={
                'total_completed': stats.total_completed,
                'total_skipped': stats.total_skipped,
                'current_streak': stats.current_streak,
                'streak_best': stats.streak_best,
                'trust_score': stats.trust_score,
                'last_completed_date': stats.last_completed_date,
            }
        )

    def _mark_completed(self, task_id, completed_at: datetime) -> None:
        updated = Task.objects.filter(pk=task_id, user=self.user).update(
            completed=True,
            skipped=False,
            skip_reason=None,
            completed_at=completed_at,
            stuck_reset_at=completed_at,
            updated_at=completed_at,
        )
        if not updated:
            raise PersistenceError(f"Task {task_id} no longer exists", operation='complete')

    def persist_completion(self, task_id, stats: StatsSnapshot, completed_at: datetime) -> None:
        try:
            with transaction.atomic():
                self._mark_completed(task_id, completed_at)
                self._save_stats(stats)
        except DatabaseError as exc:
            raise PersistenceError(str(exc), operation='complete') from exc

    def persist_skip(
        self,
        task_id,
        reason: Optional[str],
        stats: StatsSnapshot,
        was_head: bool,
        skipped_at: datetime
    ) -> None:
        try:
            with transaction.atomic():
                updated = Task.objects.filter(pk=task_id, user=self.user).update(
                    skipped=True,
                    skip_reason=reason,
                    updated_at=skipped_at,
                )
                if not updated:
                    raise PersistenceError(f"Task {task_id} no longer exists", operation='skip')
                TaskSkipEvent.objects.create(
                    task_id=task_id,
                    user=self.user,
                    reason=reason,
                    was_head=was_head,
                    skipped_at=skipped_at,
                )
                self._save_stats(stats)
        except DatabaseError as exc:
            raise PersistenceError(str(exc), operation='skip') from exc


class PlannedTaskStore(DjangoTaskStore):
    """
    Ledger store for completing a task from inside a daily plan.

    The planned-task row and the task itself are written in the same
    transaction: either both are completed or neither is.
    """

    def __init__(self, user, planned_task: PlannedTask, actual_minutes: Optional[int] = None):
        super().__init__(user)
        self.planned_task = planned_task
        self.actual_minutes = actual_minutes

    def persist_completion(self, task_id, stats: StatsSnapshot, completed_at: datetime) -> None:
        planned = self.planned_task
        try:
            with transaction.atomic():
                self._mark_completed(task_id, completed_at)
                self._save_stats(stats)
                planned.status = PlannedTask.Status.COMPLETED
                planned.completed_at = completed_at
                planned.actual_minutes = self.actual_minutes
                planned.save(update_fields=['status', 'completed_at', 'actual_minutes'])
        except DatabaseError as exc:
            raise PersistenceError(str(exc), operation='complete_planned') from exc
