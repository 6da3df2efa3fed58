"""
Models for the LifeOS planner.

Tasks, their skip history, daily plans and the per-user stats and
preferences records. The scoring and planning logic never imports these
models directly; it works on ``TaskItem`` views and plain attributes so it
can run without a database.
"""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from .stats import DEFAULT_TRUST_SCORE, TRUST_MAX, TRUST_MIN


class Task(models.Model):
    """
    A single to-do item.

    Attributes:
        priority: high | medium | low
        energy_level: stored task vocabulary peak | medium | low
        estimated_minutes: Expected minutes to finish (default 25)
        carried_from_date: Plan date the task was last deferred from
        position: Insertion order, used to break score ties
        blocker_note: Free-text reason recorded by "keep with reason"
        stuck_reset_at: Skips recorded before this moment no longer count
    """

    class Priority(models.TextChoices):
        HIGH = 'high', 'High'
        MEDIUM = 'medium', 'Medium'
        LOW = 'low', 'Low'

    class Energy(models.TextChoices):
        PEAK = 'peak', 'Peak'
        MEDIUM = 'medium', 'Medium'
        LOW = 'low', 'Low'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='planner_tasks'
    )
    title = models.CharField(max_length=255, help_text="Task title")
    description = models.TextField(blank=True, default='')
    priority = models.CharField(
        max_length=10,
        choices=Priority.choices,
        default=Priority.MEDIUM
    )
    energy_level = models.CharField(
        max_length=10,
        choices=Energy.choices,
        default=Energy.MEDIUM
    )
    estimated_minutes = models.PositiveIntegerField(
        default=25,
        validators=[MinValueValidator(1)],
        help_text="Estimated minutes to complete (minimum 1)"
    )
    deadline = models.DateTimeField(null=True, blank=True)
    completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    skipped = models.BooleanField(default=False)
    skip_reason = models.TextField(null=True, blank=True)
    carried_from_date = models.DateField(null=True, blank=True)
    position = models.IntegerField(default=0)
    archived = models.BooleanField(default=False)
    parent = models.ForeignKey(
        'self',
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='steps'
    )
    blocker_note = models.TextField(null=True, blank=True)
    stuck_reset_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['position', 'created_at']

    def __str__(self):
        return f"{self.title} ({self.priority}, {self.estimated_minutes} min)"

    def clean(self):
        """Validate the task data."""
        if self.completed and self.skipped:
            raise ValidationError('A task cannot be both completed and skipped')
        if not self.title or not self.title.strip():
            raise ValidationError({'title': 'Title cannot be empty'})


class TaskSkipEvent(models.Model):
    """One skip of one task; the audit trail stuck detection is rebuilt from."""

    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name='skip_events')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='task_skip_events'
    )
    reason = models.TextField(null=True, blank=True)
    was_head = models.BooleanField(
        default=True,
        help_text="Whether the task was the current task when it was skipped"
    )
    skipped_at = models.DateTimeField()

    class Meta:
        ordering = ['-skipped_at']

    def __str__(self):
        return f"Skip of task {self.task_id} at {self.skipped_at:%Y-%m-%d %H:%M}"


class DailyPlan(models.Model):
    """A user's plan for one calendar day."""

    class Energy(models.TextChoices):
        HIGH = 'high', 'High'
        NORMAL = 'normal', 'Normal'
        LOW = 'low', 'Low'

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        COMPLETED = 'completed', 'Completed'
        ABANDONED = 'abandoned', 'Abandoned'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='daily_plans'
    )
    date = models.DateField()
    energy_level = models.CharField(max_length=10, choices=Energy.choices)
    available_minutes = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-date']
        constraints = [
            models.UniqueConstraint(fields=['user', 'date'], name='unique_plan_per_user_per_date'),
        ]

    def __str__(self):
        return f"Plan {self.date} ({self.status})"


class PlannedTask(models.Model):
    """A task's slot in a daily plan."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        IN_PROGRESS = 'in_progress', 'In progress'
        COMPLETED = 'completed', 'Completed'
        SKIPPED = 'skipped', 'Skipped'
        DEFERRED = 'deferred', 'Deferred'

    plan = models.ForeignKey(DailyPlan, on_delete=models.CASCADE, related_name='planned_tasks')
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name='plan_entries')
    order = models.PositiveIntegerField()
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.PENDING)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    actual_minutes = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ['order']
        constraints = [
            models.UniqueConstraint(fields=['plan', 'order'], name='unique_order_per_plan'),
        ]

    def __str__(self):
        return f"#{self.order} {self.task_id} ({self.status})"


class UserStats(models.Model):
    """Streak, trust score and counters. Written only through the stats ledger."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='planner_stats'
    )
    total_completed = models.PositiveIntegerField(default=0)
    total_skipped = models.PositiveIntegerField(default=0)
    current_streak = models.PositiveIntegerField(default=0)
    streak_best = models.PositiveIntegerField(default=0)
    trust_score = models.IntegerField(
        default=DEFAULT_TRUST_SCORE,
        validators=[MinValueValidator(TRUST_MIN), MaxValueValidator(TRUST_MAX)]
    )
    last_completed_date = models.DateField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'user stats'

    def __str__(self):
        return f"Stats for user {self.user_id} (streak {self.current_streak}, trust {self.trust_score})"


class PlannerPreferences(models.Model):
    """The persisted slice of a user's session state."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='planner_preferences'
    )
    data = models.JSONField(default=dict, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'planner preferences'

    def __str__(self):
        return f"Preferences for user {self.user_id}"
