"""
Stats ledger: completing and skipping tasks with optimistic updates.

Every mutation is a ``LedgerCommand``. Applying it captures a snapshot of
the session state and then runs the forward change, so the user sees the
task disappear and the counters move straight away. The store write comes
second. If the write raises ``PersistenceError`` the command's ``undo``
puts the snapshot back, leaving the task list, current task and counters
exactly as they were.

The celebration raised on completion is not rolled back. It has already
been shown by the time the write fails; the mismatch is logged.

Duplicate requests for the same task are dropped while the first one is in
flight. In-flight markers expire after a fixed window so a lost
confirmation can't wedge a task forever.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from django.utils import timezone

from .conf import planner_setting
from .errors import ErrorCode, OperationResult, PersistenceError
from .ranking import DEFAULT_ENGINE, RankingEngine
from .scoring import ScoreContext, TaskScorer, local_date, score_task
from .session import AppState, Celebration, StateSnapshot
from .stats import StatsSnapshot, apply_completion, apply_skip
from .stuck import StuckDetector, StuckInfo

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    """What the ledger needs from persistence."""

    def persist_completion(self, task_id, stats: StatsSnapshot, completed_at: datetime) -> None:
        ...

    def persist_skip(
        self,
        task_id,
        reason: Optional[str],
        stats: StatsSnapshot,
        was_head: bool,
        skipped_at: datetime
    ) -> None:
        ...


# ==================== In-flight guard ====================

class InFlightRegistry:
    """Task ids with a mutation in progress, each with an expiry time."""

    def __init__(self, timeout_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        if timeout_seconds is None:
            timeout_seconds = planner_setting('IN_FLIGHT_TIMEOUT_SECONDS')
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._processing: Dict[Any, float] = {}
        self._lock = threading.Lock()

    def acquire(self, key) -> bool:
        """Mark ``key`` in flight. False if it already is and hasn't expired."""
        with self._lock:
            now = self._clock()
            started = self._processing.get(key)
            if started is not None and now - started < self.timeout_seconds:
                return False
            self._processing[key] = now
        if started is not None:
            logger.warning("In-flight marker for %s expired after %.1fs", key, now - started)
        return True

    def release(self, key) -> None:
        with self._lock:
            self._processing.pop(key, None)

    def is_in_flight(self, key) -> bool:
        with self._lock:
            started = self._processing.get(key)
            return started is not None and self._clock() - started < self.timeout_seconds


# ==================== Commands ====================

@dataclass
class LedgerCommand:
    """A forward change plus the snapshot needed to undo it."""
    name: str
    task_id: Any
    forward: Callable[[AppState], None]
    previous: Optional[StateSnapshot] = field(default=None, repr=False)

    def apply(self, state: AppState) -> None:
        self.previous = state.snapshot()
        self.forward(state)

    def undo(self, state: AppState) -> None:
        if self.previous is None:
            raise RuntimeError(f"{self.name} command for {self.task_id} was never applied")
        state.restore(self.previous)


def complete_command(
    task_id,
    today: date,
    engine: Optional[RankingEngine] = None,
    now: Optional[datetime] = None
) -> LedgerCommand:
    def forward(state: AppState) -> None:
        state.remove_task(task_id)
        state.stats = apply_completion(state.stats, today)
        state.tasks_completed_today += 1
        state.refresh_current_task(engine, now)

    return LedgerCommand(name='complete', task_id=task_id, forward=forward)


def skip_command(
    task_id,
    engine: Optional[RankingEngine] = None,
    now: Optional[datetime] = None
) -> LedgerCommand:
    def forward(state: AppState) -> None:
        state.remove_task(task_id)
        state.stats = apply_skip(state.stats)
        state.refresh_current_task(engine, now)

    return LedgerCommand(name='skip', task_id=task_id, forward=forward)


@dataclass(frozen=True)
class SkipOutcome:
    stats: StatsSnapshot
    stuck: StuckInfo


@dataclass(frozen=True)
class LogEntry:
    command: str
    task_id: Any
    committed: bool
    at: datetime


# ==================== Ledger ====================

class StatsLedger:
    """Runs ledger commands against one user's session state."""

    def __init__(
        self,
        state: AppState,
        store: LedgerStore,
        stuck_detector: Optional[StuckDetector] = None,
        in_flight: Optional[InFlightRegistry] = None,
        engine: Optional[RankingEngine] = None
    ):
        self.state = state
        self.store = store
        self.stuck_detector = stuck_detector or StuckDetector()
        self.in_flight = in_flight or InFlightRegistry()
        self.engine = engine or DEFAULT_ENGINE
        self.log: List[LogEntry] = []

    def _begin(self, task_id) -> Optional[OperationResult]:
        if self.state.find_task(task_id) is None:
            return OperationResult.failure(
                ErrorCode.ERR_UNKNOWN_TASK,
                "Task is not in the active list",
                task_id=task_id
            )
        if not self.in_flight.acquire(task_id):
            logger.info("Ignoring duplicate request for task %s", task_id)
            return OperationResult.failure(
                ErrorCode.ERR_DUPLICATE_REQUEST,
                "This task is already being updated",
                task_id=task_id
            )
        return None

    def _rollback(self, command: LedgerCommand, error: PersistenceError, now: datetime) -> OperationResult:
        command.undo(self.state)
        self.log.append(LogEntry(command.name, command.task_id, committed=False, at=now))
        logger.warning(
            "Rolled back %s of task %s: %s", command.name, command.task_id, error
        )
        return OperationResult.failure(
            ErrorCode.ERR_PERSISTENCE,
            f"Could not save the {command.name}. Your task list has been restored.",
            task_id=command.task_id
        )

    def complete_task(self, task_id, now: Optional[datetime] = None) -> OperationResult:
        now = now or timezone.now()
        rejected = self._begin(task_id)
        if rejected:
            return rejected

        try:
            task = self.state.find_task(task_id)
            was_overdue = (
                score_task(task, ScoreContext(now=now)).deadline_urgency == TaskScorer.OVERDUE_SCORE
            )
            command = complete_command(task_id, local_date(now), self.engine, now)
            command.apply(self.state)
            self.state.celebration = Celebration(
                task_id=task_id,
                task_title=task.title,
                was_overdue=was_overdue,
                streak=self.state.stats.current_streak,
            )

            try:
                self.store.persist_completion(task_id, self.state.stats, now)
            except PersistenceError as exc:
                logger.warning(
                    "Celebration for task %s was already shown and stays visible", task_id
                )
                return self._rollback(command, exc, now)

            self.log.append(LogEntry(command.name, task_id, committed=True, at=now))
            self.stuck_detector.record_completion(task_id)
            return OperationResult.success(self.state.stats)
        finally:
            self.in_flight.release(task_id)

    def skip_task(self, task_id, reason: Optional[str] = None, now: Optional[datetime] = None) -> OperationResult:
        now = now or timezone.now()
        rejected = self._begin(task_id)
        if rejected:
            return rejected

        try:
            head_task_id = self.state.current_task_id
            command = skip_command(task_id, self.engine, now)
            command.apply(self.state)

            try:
                self.store.persist_skip(
                    task_id,
                    reason,
                    self.state.stats,
                    was_head=task_id == head_task_id,
                    skipped_at=now
                )
            except PersistenceError as exc:
                return self._rollback(command, exc, now)

            self.log.append(LogEntry(command.name, task_id, committed=True, at=now))
            stuck = self.stuck_detector.record_skip(task_id, head_task_id, reason, now)
            return OperationResult.success(SkipOutcome(stats=self.state.stats, stuck=stuck))
        finally:
            self.in_flight.release(task_id)
