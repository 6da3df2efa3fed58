"""
Tests for the ranking engine: filtering, stability and both modes.
"""

from datetime import datetime, timedelta

from django.test import TestCase
from django.utils import timezone

from tasks.ranking import RankingEngine, open_tasks
from tasks.scoring import TaskItem
from tasks.vocabulary import EnergyLevel


class RankingTests(TestCase):
    """Tests for continuous and planning rankings."""

    def setUp(self):
        self.engine = RankingEngine()
        self.now = timezone.make_aware(datetime(2025, 6, 2, 10, 0))

    def test_filters_closed_tasks(self):
        """Completed, skipped and archived tasks are never ranked."""
        tasks = [
            TaskItem(id=1, title='Open', position=0),
            TaskItem(id=2, title='Done', completed=True, position=1),
            TaskItem(id=3, title='Skipped', skipped=True, position=2),
            TaskItem(id=4, title='Archived', archived=True, position=3),
        ]
        queue = self.engine.continuous_queue(tasks, EnergyLevel.NORMAL, self.now)
        self.assertEqual([ts.task_id for ts in queue], [1])

    def test_ties_keep_position_order(self):
        """Equal totals sort by position, regardless of input order."""
        tasks = [
            TaskItem(id='c', title='Third', position=2),
            TaskItem(id='a', title='First', position=0),
            TaskItem(id='b', title='Second', position=1),
        ]
        queue = self.engine.continuous_queue(tasks, EnergyLevel.NORMAL, self.now)

        self.assertEqual(len({ts.total for ts in queue}), 1)
        self.assertEqual([ts.task_id for ts in queue], ['a', 'b', 'c'])

    def test_sorted_by_total_descending(self):
        """Higher totals come first."""
        tasks = [
            TaskItem(id=1, title='Low', priority='low', position=0),
            TaskItem(id=2, title='Due today', deadline=self.now + timedelta(hours=2), position=1),
            TaskItem(id=3, title='High', priority='high', position=2),
        ]
        queue = self.engine.continuous_queue(tasks, EnergyLevel.NORMAL, self.now)

        self.assertEqual([ts.task_id for ts in queue], [2, 3, 1])
        totals = [ts.total for ts in queue]
        self.assertEqual(totals, sorted(totals, reverse=True))

    def test_current_task_is_queue_head(self):
        """The current task is the head of the continuous queue."""
        tasks = [
            TaskItem(id=1, title='Low energy', energy_level='low', position=0),
            TaskItem(id=2, title='Peak energy', energy_level='peak', position=1),
        ]
        self.assertEqual(self.engine.current_task(tasks, 'peak', self.now).task_id, 2)
        self.assertEqual(self.engine.current_task(tasks, EnergyLevel.LOW, self.now).task_id, 1)

    def test_current_task_empty(self):
        """No open tasks means no current task."""
        self.assertIsNone(self.engine.current_task([], EnergyLevel.HIGH, self.now))
        done = [TaskItem(id=1, title='Done', completed=True)]
        self.assertIsNone(self.engine.current_task(done, EnergyLevel.HIGH, self.now))

    def test_continuous_mode_has_no_budget(self):
        """A very long task still fits in continuous mode."""
        tasks = [TaskItem(id=1, title='Marathon', estimated_minutes=900)]
        queue = self.engine.continuous_queue(tasks, EnergyLevel.NORMAL, self.now)
        self.assertEqual(queue[0].breakdown.time_fit, 5)

    def test_planning_mode_scores_against_budget(self):
        """Planning mode scores time fit against the declared minutes."""
        tasks = [
            TaskItem(id=1, title='Too long', estimated_minutes=150, position=0),
            TaskItem(id=2, title='Well sized', estimated_minutes=45, position=1),
            TaskItem(id=3, title='Tiny', estimated_minutes=10, position=2),
        ]
        ranking = self.engine.planning_ranking(tasks, EnergyLevel.NORMAL, 120, self.now)
        fits = {ts.task_id: ts.breakdown.time_fit for ts in ranking}

        self.assertEqual(fits, {1: 0, 2: 10, 3: 5})
        self.assertEqual([ts.task_id for ts in ranking], [2, 3, 1])

    def test_recomputed_each_call(self):
        """Changing the input list changes the result; nothing is cached."""
        tasks = [TaskItem(id=1, title='One', position=0)]
        self.assertEqual(len(self.engine.continuous_queue(tasks, None, self.now)), 1)
        tasks.append(TaskItem(id=2, title='Two', priority='high', position=1))
        self.assertEqual(self.engine.current_task(tasks, None, self.now).task_id, 2)

    def test_open_tasks_orders_by_position(self):
        tasks = [TaskItem(id=1, title='B', position=5), TaskItem(id=2, title='A', position=1)]
        self.assertEqual([task.id for task in open_tasks(tasks)], [2, 1])
