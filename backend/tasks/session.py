"""
Explicit per-user session state.

``AppState`` is what the ledger mutates optimistically: the open task list,
the task currently surfaced, the stats counters and a few session values.
It is passed around explicitly, never held globally. Only the slice
returned by ``persisted_slice()`` outlives a restart; the rest is rebuilt
from the store.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .conf import planner_setting
from .ranking import DEFAULT_ENGINE, RankingEngine
from .scoring import TaskItem
from .stats import StatsSnapshot
from .vocabulary import EnergyLevel, normalize_energy

DEFAULT_TIMER_MINUTES = 25


def default_preferences() -> Dict[str, Any]:
    return {
        'default_timer_minutes': DEFAULT_TIMER_MINUTES,
        'default_available_minutes': planner_setting('DEFAULT_AVAILABLE_MINUTES'),
    }


@dataclass(frozen=True)
class Celebration:
    task_id: Any
    task_title: str
    was_overdue: bool = False
    streak: int = 0

    def to_dict(self) -> Dict:
        return {
            'task_id': self.task_id,
            'task_title': self.task_title,
            'was_overdue': self.was_overdue,
            'streak': self.streak,
        }


@dataclass(frozen=True)
class StateSnapshot:
    """Everything a failed ledger command has to put back."""
    tasks: Tuple[TaskItem, ...]
    current_task_id: Any
    stats: StatsSnapshot
    tasks_completed_today: int


@dataclass
class AppState:
    tasks: List[TaskItem] = field(default_factory=list)
    current_task_id: Any = None
    user_energy: EnergyLevel = EnergyLevel.NORMAL
    stats: StatsSnapshot = field(default_factory=StatsSnapshot)
    tasks_completed_today: int = 0
    last_planning_date: Optional[date] = None
    preferences: Dict[str, Any] = field(default_factory=default_preferences)
    celebration: Optional[Celebration] = None

    # -------------------- task list --------------------

    def find_task(self, task_id) -> Optional[TaskItem]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def remove_task(self, task_id) -> Optional[TaskItem]:
        task = self.find_task(task_id)
        if task is not None:
            self.tasks = [t for t in self.tasks if t.id != task_id]
        return task

    def refresh_current_task(self, engine: Optional[RankingEngine] = None, now=None) -> Any:
        head = (engine or DEFAULT_ENGINE).current_task(self.tasks, self.user_energy, now)
        self.current_task_id = head.task_id if head else None
        return self.current_task_id

    # -------------------- rollback support --------------------

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            tasks=tuple(self.tasks),
            current_task_id=self.current_task_id,
            stats=self.stats,
            tasks_completed_today=self.tasks_completed_today,
        )

    def restore(self, snapshot: StateSnapshot) -> None:
        self.tasks = list(snapshot.tasks)
        self.current_task_id = snapshot.current_task_id
        self.stats = snapshot.stats
        self.tasks_completed_today = snapshot.tasks_completed_today

    # -------------------- daily planning --------------------

    def should_show_planning(self, today: date) -> bool:
        return self.last_planning_date != today

    def complete_planning(self, energy, today: date) -> None:
        self.user_energy = normalize_energy(energy)
        self.last_planning_date = today

    def reset_planning(self) -> None:
        self.last_planning_date = None
        self.user_energy = EnergyLevel.NORMAL

    # -------------------- persisted slice --------------------

    def persisted_slice(self) -> Dict[str, Any]:
        """The part of the session that survives restarts."""
        return {
            'preferences': dict(self.preferences),
            'last_planning_date': (
                self.last_planning_date.isoformat() if self.last_planning_date else None
            ),
            'user_energy': self.user_energy.value,
        }

    def load_persisted(self, data: Optional[Dict[str, Any]]) -> "AppState":
        """Apply a previously persisted slice; unknown keys are ignored."""
        data = data or {}
        preferences = default_preferences()
        stored_preferences = data.get('preferences')
        if isinstance(stored_preferences, dict):
            preferences.update(
                (key, value) for key, value in stored_preferences.items()
                if key in preferences
            )
        self.preferences = preferences

        last_planning = data.get('last_planning_date')
        try:
            self.last_planning_date = date.fromisoformat(last_planning) if last_planning else None
        except (TypeError, ValueError):
            self.last_planning_date = None

        self.user_energy = normalize_energy(data.get('user_energy'))
        return self

    @classmethod
    def from_persisted(cls, data: Optional[Dict[str, Any]], **kwargs) -> "AppState":
        return cls(**kwargs).load_persisted(data)
