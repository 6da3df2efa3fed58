"""
Stuck-task detection.

A task is "stuck" when it keeps coming up as the current task and keeps
being skipped. Each skip taken while the task is the head of the
continuous queue bumps its count; completing the task resets it. Once the
count reaches the threshold the caller is offered ways out: break it
down, delegate it, hire it out, or keep it with a note about what blocks it.

Whether keeping or deferring a task also resets the count is not fixed;
it's a ``StuckPolicy`` chosen in settings.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from django.utils import timezone

from .conf import planner_setting

logger = logging.getLogger(__name__)

STUCK_OPTIONS: Tuple[str, ...] = ("breakdown", "delegate", "hire_out", "keep_with_reason")


@dataclass(frozen=True)
class StuckPolicy:
    threshold: int = 3
    reset_on_keep: bool = False
    reset_on_defer: bool = False

    @classmethod
    def from_settings(cls) -> "StuckPolicy":
        return cls(
            threshold=planner_setting('STUCK_THRESHOLD'),
            reset_on_keep=planner_setting('STUCK_RESET_ON_KEEP'),
            reset_on_defer=planner_setting('STUCK_RESET_ON_DEFER'),
        )


@dataclass(frozen=True)
class StuckInfo:
    task_id: object
    skip_count: int = 0
    last_skip_reason: Optional[str] = None
    last_skipped_at: Optional[datetime] = None
    blocker_note: Optional[str] = None
    threshold: int = 3

    @property
    def is_stuck(self) -> bool:
        return self.skip_count >= self.threshold

    def to_dict(self) -> Dict:
        return {
            'task_id': self.task_id,
            'skip_count': self.skip_count,
            'is_stuck': self.is_stuck,
            'threshold': self.threshold,
            'last_skip_reason': self.last_skip_reason,
            'last_skipped_at': self.last_skipped_at.isoformat() if self.last_skipped_at else None,
            'blocker_note': self.blocker_note,
            'options': list(STUCK_OPTIONS) if self.is_stuck else [],
        }


class StuckDetector:
    """Per-task skip counters with a configurable reset policy."""

    def __init__(self, policy: Optional[StuckPolicy] = None):
        self.policy = policy or StuckPolicy()
        self._info: Dict[object, StuckInfo] = {}

    def get(self, task_id) -> StuckInfo:
        return self._info.get(task_id, StuckInfo(task_id=task_id, threshold=self.policy.threshold))

    def is_stuck(self, task_id) -> bool:
        return self.get(task_id).is_stuck

    def record_skip(
        self,
        task_id,
        head_task_id,
        reason: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> StuckInfo:
        """
        Count a skip. Only skips of the current head task count toward
        being stuck; skipping something picked from a list does not.
        """
        info = self.get(task_id)
        if task_id != head_task_id:
            return info

        was_stuck = info.is_stuck
        info = replace(
            info,
            skip_count=info.skip_count + 1,
            last_skip_reason=reason,
            last_skipped_at=at or timezone.now(),
        )
        self._info[task_id] = info

        if info.is_stuck and not was_stuck:
            logger.info("Task %s is stuck after %s skips", task_id, info.skip_count)
        return info

    def record_completion(self, task_id) -> StuckInfo:
        self._info.pop(task_id, None)
        return self.get(task_id)

    def keep_with_reason(self, task_id, reason: str) -> StuckInfo:
        info = replace(self.get(task_id), blocker_note=reason)
        if self.policy.reset_on_keep:
            info = replace(info, skip_count=0)
        self._info[task_id] = info
        return info

    def record_defer(self, task_id) -> StuckInfo:
        info = self.get(task_id)
        if self.policy.reset_on_defer:
            info = replace(info, skip_count=0)
            self._info[task_id] = info
        return info

    @classmethod
    def from_history(
        cls,
        task_id,
        skip_events: Iterable,
        blocker_note: Optional[str] = None,
        policy: Optional[StuckPolicy] = None
    ) -> "StuckDetector":
        """
        Rebuild the counter for one task from its skip audit trail.

        ``skip_events`` are the skips recorded since the task was last
        completed or reset; each needs ``reason`` and ``skipped_at``.
        """
        detector = cls(policy)
        events = sorted(skip_events, key=lambda event: event.skipped_at)
        if events or blocker_note:
            latest = events[-1] if events else None
            detector._info[task_id] = StuckInfo(
                task_id=task_id,
                skip_count=len(events),
                last_skip_reason=latest.reason if latest else None,
                last_skipped_at=latest.skipped_at if latest else None,
                blocker_note=blocker_note,
                threshold=detector.policy.threshold,
            )
        return detector
