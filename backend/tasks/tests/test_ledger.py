"""
Tests for streak / trust rules and the optimistic stats ledger.

The ledger tests run against an in-memory store so persistence failures
can be injected without a database.
"""

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta

from django.test import TestCase, override_settings
from django.utils import timezone

from tasks.errors import ErrorCode, PersistenceError
from tasks.ledger import InFlightRegistry, StatsLedger, complete_command
from tasks.scoring import TaskItem
from tasks.session import AppState
from tasks.stats import (
    DEFAULT_TRUST_SCORE,
    StatsSnapshot,
    apply_completion,
    apply_skip,
    effective_streak,
    next_streak,
)
from tasks.stuck import StuckDetector


class MemoryStore:
    """Ledger store that records writes and can be told to fail."""

    def __init__(self, fail=False):
        self.fail = fail
        self.completions = []
        self.skips = []

    def persist_completion(self, task_id, stats, completed_at):
        if self.fail:
            raise PersistenceError('database is locked', operation='complete')
        self.completions.append((task_id, stats, completed_at))

    def persist_skip(self, task_id, reason, stats, was_head, skipped_at):
        if self.fail:
            raise PersistenceError('database is locked', operation='skip')
        self.skips.append((task_id, reason, stats, was_head, skipped_at))


class FakeClock:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


class StreakTests(TestCase):
    """Tests for the streak rule."""

    def setUp(self):
        self.today = date(2025, 6, 10)

    def test_first_completion_starts_streak(self):
        self.assertEqual(next_streak(0, None, self.today), 1)

    def test_consecutive_days(self):
        """Completing on the day after the last completion extends the streak."""
        self.assertEqual(next_streak(4, self.today - timedelta(days=1), self.today), 5)

    def test_same_day_keeps_streak(self):
        self.assertEqual(next_streak(4, self.today, self.today), 4)

    def test_gap_resets_to_one(self):
        """Missing a full day starts over."""
        self.assertEqual(next_streak(9, self.today - timedelta(days=2), self.today), 1)

    def test_round_trip_over_consecutive_days(self):
        """Each consecutive day adds exactly one; a gap of two days resets to 1."""
        stats = StatsSnapshot()
        day = self.today
        for expected in range(1, 6):
            stats = apply_completion(stats, day)
            stats = apply_completion(stats, day)
            self.assertEqual(stats.current_streak, expected)
            day += timedelta(days=1)

        stats = apply_completion(stats, day + timedelta(days=1))
        self.assertEqual(stats.current_streak, 1)
        self.assertEqual(stats.streak_best, 5)

    def test_effective_streak(self):
        """A streak whose last completion is older than yesterday shows as 0."""
        stats = StatsSnapshot(current_streak=3, last_completed_date=self.today - timedelta(days=1))
        self.assertEqual(effective_streak(stats, self.today), 3)
        self.assertEqual(effective_streak(stats, self.today + timedelta(days=1)), 0)
        self.assertEqual(effective_streak(StatsSnapshot(), self.today), 0)


class TrustTests(TestCase):
    """Tests for the trust score."""

    def test_completion_and_skip(self):
        stats = apply_completion(StatsSnapshot(), date(2025, 1, 1))
        self.assertEqual(stats.trust_score, DEFAULT_TRUST_SCORE + 2)
        self.assertEqual(apply_skip(stats).trust_score, DEFAULT_TRUST_SCORE - 1)

    def test_clamped_under_long_sequences(self):
        """Trust never leaves [0, 100] however completions and skips are mixed."""
        rng = random.Random(7)
        stats = StatsSnapshot()
        day = date(2025, 1, 1)
        for _ in range(2000):
            if rng.random() < 0.5:
                stats = apply_completion(stats, day)
            else:
                stats = apply_skip(stats)
            self.assertGreaterEqual(stats.trust_score, 0)
            self.assertLessEqual(stats.trust_score, 100)

    def test_saturates_at_bounds(self):
        stats = StatsSnapshot(trust_score=99)
        self.assertEqual(apply_completion(stats, date(2025, 1, 1)).trust_score, 100)
        self.assertEqual(apply_skip(StatsSnapshot(trust_score=1)).trust_score, 0)

    def test_counters_never_decrease(self):
        stats = apply_skip(apply_completion(StatsSnapshot(), date(2025, 1, 1)))
        self.assertEqual((stats.total_completed, stats.total_skipped), (1, 1))


class StatsLedgerTests(TestCase):
    """Tests for optimistic updates and rollback."""

    def setUp(self):
        self.now = timezone.make_aware(datetime(2025, 6, 10, 9, 30))
        self.state = AppState(
            tasks=[
                TaskItem(id=1, title='Write report', priority='high', position=0),
                TaskItem(id=2, title='Email', position=1),
                TaskItem(id=3, title='Tidy desk', priority='low', position=2),
            ],
            stats=StatsSnapshot(
                total_completed=4,
                current_streak=2,
                streak_best=5,
                trust_score=60,
                last_completed_date=date(2025, 6, 9),
            ),
            tasks_completed_today=0,
        )
        self.state.refresh_current_task(now=self.now)
        self.clock = FakeClock()
        self.in_flight = InFlightRegistry(timeout_seconds=5, clock=self.clock)

    def ledger(self, store):
        return StatsLedger(self.state, store, StuckDetector(), in_flight=self.in_flight)

    def test_complete_updates_state_and_persists(self):
        """Completing removes the task, bumps counters and moves the current task."""
        store = MemoryStore()
        result = self.ledger(store).complete_task(1, self.now)

        self.assertTrue(result.ok)
        self.assertEqual([task.id for task in self.state.tasks], [2, 3])
        self.assertEqual(self.state.current_task_id, 2)
        self.assertEqual(self.state.tasks_completed_today, 1)
        self.assertEqual(result.value.current_streak, 3)
        self.assertEqual(result.value.trust_score, 62)
        self.assertEqual(store.completions[0][0], 1)
        self.assertEqual(store.completions[0][1], self.state.stats)

    def test_complete_rollback_restores_exact_state(self):
        """A failed write puts back the exact task list, current task and counters."""
        before = self.state.snapshot()
        result = self.ledger(MemoryStore(fail=True)).complete_task(1, self.now)

        self.assertFalse(result.ok)
        self.assertEqual(result.error_code, ErrorCode.ERR_PERSISTENCE)
        self.assertEqual(self.state.snapshot(), before)
        self.assertEqual(self.state.tasks, list(before.tasks))
        self.assertEqual(self.state.stats, before.stats)

    def test_celebration_survives_rollback(self):
        """The celebration was already shown and is left in place."""
        self.ledger(MemoryStore(fail=True)).complete_task(1, self.now)
        self.assertIsNotNone(self.state.celebration)
        self.assertEqual(self.state.celebration.task_title, 'Write report')

    def test_skip_rollback_restores_exact_state(self):
        before = self.state.snapshot()
        result = self.ledger(MemoryStore(fail=True)).skip_task(2, 'later', self.now)

        self.assertEqual(result.error_code, ErrorCode.ERR_PERSISTENCE)
        self.assertEqual(self.state.snapshot(), before)

    def test_skip_of_head_counts_toward_stuck(self):
        """Skipping the current task is recorded as a head skip."""
        store = MemoryStore()
        ledger = self.ledger(store)
        result = ledger.skip_task(1, 'not now', self.now)

        self.assertTrue(result.ok)
        self.assertEqual(result.value.stuck.skip_count, 1)
        self.assertTrue(store.skips[0][3])
        self.assertEqual(result.value.stats.trust_score, 57)
        self.assertEqual(result.value.stats.total_skipped, 1)

    def test_skip_of_other_task_is_not_head(self):
        store = MemoryStore()
        result = self.ledger(store).skip_task(3, None, self.now)
        self.assertEqual(result.value.stuck.skip_count, 0)
        self.assertFalse(store.skips[0][3])

    def test_unknown_task(self):
        result = self.ledger(MemoryStore()).complete_task(42, self.now)
        self.assertEqual(result.error_code, ErrorCode.ERR_UNKNOWN_TASK)

    def test_duplicate_request_is_ignored(self):
        """A second request for a task already in flight is dropped."""
        self.in_flight.acquire(1)
        store = MemoryStore()
        result = self.ledger(store).complete_task(1, self.now)

        self.assertEqual(result.error_code, ErrorCode.ERR_DUPLICATE_REQUEST)
        self.assertEqual(store.completions, [])
        self.assertEqual(len(self.state.tasks), 3)

    def test_in_flight_marker_expires(self):
        """A stale marker stops blocking once the window has passed."""
        self.in_flight.acquire(1)
        self.clock.value = 6
        self.assertTrue(self.ledger(MemoryStore()).complete_task(1, self.now).ok)

    def test_marker_released_after_request(self):
        self.ledger(MemoryStore(fail=True)).complete_task(1, self.now)
        self.assertFalse(self.in_flight.is_in_flight(1))

    def test_command_undo_without_apply(self):
        command = complete_command(1, date(2025, 6, 10))
        with self.assertRaises(RuntimeError):
            command.undo(self.state)


class InFlightRegistryTests(TestCase):

    def test_concurrent_acquire_has_one_winner(self):
        """Only one of several simultaneous requests for a task gets the marker."""
        barrier = threading.Barrier(8)

        def slow_clock():
            time.sleep(0.001)
            return time.monotonic()

        registry = InFlightRegistry(timeout_seconds=5, clock=slow_clock)

        def attempt():
            barrier.wait()
            return registry.acquire(1)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: attempt(), range(8)))

        self.assertEqual(results.count(True), 1)
        self.assertTrue(registry.is_in_flight(1))


class SessionStateTests(TestCase):
    """Tests for the persisted slice of the session."""

    def test_round_trip(self):
        state = AppState()
        state.complete_planning('peak', date(2025, 6, 10))
        state.preferences['default_timer_minutes'] = 45

        restored = AppState.from_persisted(state.persisted_slice())
        self.assertEqual(restored.last_planning_date, date(2025, 6, 10))
        self.assertEqual(restored.user_energy.value, 'high')
        self.assertEqual(restored.preferences['default_timer_minutes'], 45)

    def test_should_show_planning_once_a_day(self):
        state = AppState()
        today = date(2025, 6, 10)
        self.assertTrue(state.should_show_planning(today))
        state.complete_planning('low', today)
        self.assertFalse(state.should_show_planning(today))
        self.assertTrue(state.should_show_planning(today + timedelta(days=1)))
        state.reset_planning()
        self.assertTrue(state.should_show_planning(today))

    @override_settings(PLANNER={'DEFAULT_AVAILABLE_MINUTES': 180})
    def test_default_budget_from_settings(self):
        """The default available minutes come from the PLANNER setting."""
        self.assertEqual(AppState().preferences['default_available_minutes'], 180)
        restored = AppState.from_persisted({'preferences': {'default_timer_minutes': 50}})
        self.assertEqual(restored.preferences, {'default_timer_minutes': 50, 'default_available_minutes': 180})

    def test_garbage_is_ignored(self):
        state = AppState.from_persisted({
            'last_planning_date': 'not a date',
            'user_energy': 'sleepy',
            'preferences': {'unknown': 1},
        })
        self.assertIsNone(state.last_planning_date)
        self.assertEqual(state.user_energy.value, 'normal')
        self.assertNotIn('unknown', state.preferences)
