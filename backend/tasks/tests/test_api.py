"""
API endpoint tests.

Requests are unauthenticated, so every call acts on the personal
single-user account.
"""

from datetime import timedelta

from django.core.cache import cache
from django.test import override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from tasks.models import DailyPlan, Task, TaskSkipEvent, UserStats
from tasks.store import get_personal_user


class APITestBase(APITestCase):

    def setUp(self):
        # Throttle counters live in the cache and would carry across tests
        cache.clear()
        self.user = get_personal_user()

    def make_task(self, title, **kwargs):
        kwargs.setdefault('position', Task.objects.filter(user=self.user).count())
        return Task.objects.create(user=self.user, title=title, **kwargs)


class InfoEndpointTests(APITestBase):
    """Tests for the info endpoints."""

    def test_api_info(self):
        """API info lists endpoints and error codes."""
        response = self.client.get('/api/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['name'], 'LifeOS Planner API')
        self.assertIn('ERR_BUDGET_EXCEEDED', response.data['error_codes'])

    def test_home(self):
        response = self.client.get('/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['endpoints']['API Root'], '/api/')


class TaskEndpointTests(APITestBase):
    """Tests for task CRUD."""

    def test_create_task(self):
        """Planning vocabulary is accepted and stored in task vocabulary."""
        response = self.client.post('/api/tasks/', {
            'title': '  Renew passport ',
            'priority': 'high',
            'energy_level': 'high',
            'estimated_minutes': 45,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        task = Task.objects.get(pk=response.data['task']['id'])
        self.assertEqual(task.title, 'Renew passport')
        self.assertEqual(task.energy_level, 'peak')
        self.assertEqual(task.user, self.user)

    def test_create_defaults(self):
        response = self.client.post('/api/tasks/', {'title': 'Water plants'}, format='json')
        self.assertEqual(response.data['task']['estimated_minutes'], 25)
        self.assertEqual(response.data['task']['priority'], 'medium')
        self.assertEqual(response.data['task']['energy_level'], 'medium')

    def test_create_appends_position(self):
        self.make_task('Existing', position=7)
        response = self.client.post('/api/tasks/', {'title': 'New'}, format='json')
        self.assertEqual(response.data['task']['position'], 8)

    def test_missing_title_rejected(self):
        response = self.client.post('/api/tasks/', {'priority': 'high'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_MISSING_FIELD')

    def test_invalid_energy_rejected(self):
        response = self.client.post('/api/tasks/', {'title': 'x', 'energy_level': 'sleepy'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_ENERGY')

    def test_invalid_minutes_rejected(self):
        response = self.client.post('/api/tasks/', {'title': 'x', 'estimated_minutes': 0}, format='json')
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_MINUTES')

    def test_list_open_tasks(self):
        self.make_task('Open')
        self.make_task('Done', completed=True)
        response = self.client.get('/api/tasks/')
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['tasks'][0]['title'], 'Open')

    def test_patch_and_restore_skipped(self):
        """Sending skipped=false brings a skipped task back."""
        task = self.make_task('Skipped', skipped=True, skip_reason='later')
        response = self.client.patch(
            f'/api/tasks/{task.pk}/', {'skipped': False, 'estimated_minutes': 15}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        task.refresh_from_db()
        self.assertFalse(task.skipped)
        self.assertIsNone(task.skip_reason)
        self.assertEqual(task.estimated_minutes, 15)

    def test_delete(self):
        task = self.make_task('Gone')
        response = self.client.delete(f'/api/tasks/{task.pk}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Task.objects.filter(pk=task.pk).exists())

    def test_unknown_task(self):
        response = self.client.patch('/api/tasks/9999/', {'title': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error_code'], 'ERR_UNKNOWN_TASK')

    def test_reset_archives_open_tasks(self):
        self.make_task('One')
        self.make_task('Two')
        done = self.make_task('Done', completed=True)

        response = self.client.post('/api/tasks/reset/')
        self.assertEqual(response.data['archived'], 2)
        self.assertEqual(Task.objects.filter(archived=True).count(), 2)
        done.refresh_from_db()
        self.assertFalse(done.archived)


class NextTaskEndpointTests(APITestBase):
    """Tests for the continuous queue endpoint."""

    def test_current_task_depends_on_energy(self):
        low = self.make_task('Sort mail', energy_level='low')
        peak = self.make_task('Write proposal', energy_level='peak')

        response = self.client.get('/api/tasks/next/', {'energy': 'peak'})
        self.assertEqual(response.data['current_task']['id'], peak.pk)
        self.assertEqual(response.data['count'], 2)

        response = self.client.get('/api/tasks/next/', {'energy': 'low'})
        self.assertEqual(response.data['current_task']['id'], low.pk)

    def test_overdue_first(self):
        self.make_task('High priority', priority='high')
        overdue = self.make_task('Overdue', deadline=timezone.now() - timedelta(days=2))
        response = self.client.get('/api/tasks/next/')
        self.assertEqual(response.data['current_task']['id'], overdue.pk)
        self.assertEqual(response.data['current_task']['score_breakdown']['deadline_urgency'], 40)

    def test_empty_queue(self):
        response = self.client.get('/api/tasks/next/')
        self.assertIsNone(response.data['current_task'])
        self.assertEqual(response.data['queue'], [])

    def test_invalid_energy(self):
        response = self.client.get('/api/tasks/next/', {'energy': 'hyper'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_ENERGY')


class CompleteSkipEndpointTests(APITestBase):
    """Tests for the ledger endpoints."""

    def test_complete(self):
        """Completing a task updates stats and returns a celebration."""
        task = self.make_task('Pay rent', priority='high')
        other = self.make_task('Laundry')

        response = self.client.post(f'/api/tasks/{task.pk}/complete/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stats']['current_streak'], 1)
        self.assertEqual(response.data['stats']['trust_score'], 52)
        self.assertEqual(response.data['celebration']['task_title'], 'Pay rent')
        self.assertEqual(response.data['current_task']['id'], other.pk)
        self.assertEqual(response.data['tasks_completed_today'], 1)
        task.refresh_from_db()
        self.assertTrue(task.completed)
        self.assertIsNotNone(task.completed_at)

    def test_complete_twice(self):
        """A completed task is no longer in the active list."""
        task = self.make_task('Once')
        self.client.post(f'/api/tasks/{task.pk}/complete/')
        response = self.client.post(f'/api/tasks/{task.pk}/complete/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(UserStats.objects.get(user=self.user).total_completed, 1)

    def test_skip_with_reason(self):
        task = self.make_task('Call plumber')
        response = self.client.post(f'/api/tasks/{task.pk}/skip/', {'reason': 'no signal'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stats']['trust_score'], 47)
        self.assertEqual(response.data['stuck']['skip_count'], 1)
        event = TaskSkipEvent.objects.get(task=task)
        self.assertTrue(event.was_head)
        self.assertEqual(event.reason, 'no signal')

    def test_stuck_after_three_head_skips(self):
        """Skip, restore, repeat: the third head skip reports the task as stuck."""
        task = self.make_task('Dreaded task')
        for _ in range(2):
            self.client.post(f'/api/tasks/{task.pk}/skip/', {}, format='json')
            self.client.patch(f'/api/tasks/{task.pk}/', {'skipped': False}, format='json')
        response = self.client.post(f'/api/tasks/{task.pk}/skip/', {'reason': 'too big'}, format='json')

        self.assertTrue(response.data['stuck']['is_stuck'])
        self.assertEqual(response.data['stuck']['options'], ['breakdown', 'delegate', 'hire_out', 'keep_with_reason'])

        response = self.client.get(f'/api/tasks/{task.pk}/stuck/')
        self.assertEqual(response.data['stuck']['skip_count'], 3)

    def test_keep_with_reason(self):
        task = self.make_task('Taxes')
        response = self.client.post(f'/api/tasks/{task.pk}/keep/', {'reason': 'Waiting for forms'}, format='json')
        self.assertEqual(response.data['stuck']['blocker_note'], 'Waiting for forms')
        task.refresh_from_db()
        self.assertEqual(task.blocker_note, 'Waiting for forms')

    def test_keep_requires_reason(self):
        task = self.make_task('Taxes')
        response = self.client.post(f'/api/tasks/{task.pk}/keep/', {'reason': '   '}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_stats(self):
        task = self.make_task('Walk')
        self.client.post(f'/api/tasks/{task.pk}/complete/')
        response = self.client.get('/api/stats/')
        self.assertEqual(response.data['stats']['total_completed'], 1)
        self.assertEqual(response.data['stats']['effective_streak'], 1)


class AIEndpointTests(APITestBase):
    """Tests for AI payload endpoints."""

    def test_parse_normalizes(self):
        response = self.client.post('/api/ai/parse/', {
            'result': {'task': {'title': 'Book flights', 'energy': 'wired', 'estimatedMinutes': 30}},
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        parsed = response.data['parsed']
        self.assertEqual(parsed['task']['energy'], 'normal')
        self.assertEqual(parsed['task']['estimated_minutes'], 25)
        self.assertIn('energy', parsed['degraded_fields'])
        self.assertFalse(Task.objects.exists())

    def test_parse_and_create(self):
        response = self.client.post('/api/ai/parse/', {
            'result': {'task': {'title': 'Gym', 'energy': 'peak', 'priority': 'low', 'estimatedMinutes': 60}},
            'create': True,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        task = Task.objects.get()
        self.assertEqual((task.title, task.energy_level, task.priority), ('Gym', 'peak', 'low'))

    def test_breakdown_creates_steps(self):
        parent = self.make_task('Clean garage')
        response = self.client.post(f'/api/tasks/{parent.pk}/breakdown/', {
            'steps': [
                {'title': 'Open the door', 'estimatedMinutes': 5, 'energyLevel': 'low'},
                {'title': ''},
                {'title': 'Sort one shelf', 'estimatedMinutes': 15, 'energyLevel': 'medium'},
            ]
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['tasks']), 2)
        self.assertEqual(parent.steps.count(), 2)

    def test_breakdown_without_usable_steps(self):
        parent = self.make_task('Clean garage')
        response = self.client.post(f'/api/tasks/{parent.pk}/breakdown/', {'steps': [{'title': ''}]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_EMPTY_TASKS')


class PlanEndpointTests(APITestBase):
    """Tests for daily planning endpoints."""

    def setUp(self):
        super().setUp()
        self.first = self.make_task('Deep work', priority='high', estimated_minutes=60)
        self.second = self.make_task('Admin', estimated_minutes=45)
        self.third = self.make_task('Errands', priority='low', estimated_minutes=30)

    def test_preview(self):
        """Preview ranks, auto-selects and reports rejected toggles."""
        response = self.client.post('/api/plans/preview/', {
            'energy_level': 'normal',
            'available_minutes': 120,
            'toggles': [self.third.pk],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['selected_task_ids'], [self.first.pk, self.second.pk])
        self.assertEqual(response.data['selected_minutes'], 105)
        self.assertEqual(len(response.data['rejected_toggles']), 1)
        self.assertEqual(response.data['rejected_toggles'][0]['error_code'], 'ERR_BUDGET_EXCEEDED')
        self.assertEqual(len(response.data['ranked_tasks']), 3)

    def test_preview_invalid_budget(self):
        response = self.client.post('/api/plans/preview/', {
            'energy_level': 'normal', 'available_minutes': 0,
        }, format='json')
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_BUDGET')

    def test_preview_invalid_energy(self):
        response = self.client.post('/api/plans/preview/', {
            'energy_level': 'ultra', 'available_minutes': 60,
        }, format='json')
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_ENERGY')

    def test_start_day_and_progress(self):
        response = self.client.post('/api/plans/', {
            'energy_level': 'high', 'available_minutes': 120,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        plan = response.data['plan']
        self.assertEqual(plan['energy_level'], 'high')
        self.assertEqual(plan['progress']['total'], 2)

        planned_id = plan['tasks'][0]['id']
        response = self.client.post(
            f"/api/plans/{plan['id']}/tasks/{planned_id}/",
            {'action': 'complete', 'actual_minutes': 50},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['plan']['progress']['completed'], 1)
        self.assertEqual(response.data['plan']['progress']['percentage'], 50)
        self.assertEqual(response.data['plan']['progress']['remaining_minutes'], 70)

        response = self.client.get('/api/plans/today/')
        self.assertEqual(response.data['plan']['id'], plan['id'])

        response = self.client.get('/api/session/')
        self.assertFalse(response.data['should_show_planning'])

    def test_second_plan_conflicts(self):
        self.client.post('/api/plans/', {'energy_level': 'low', 'available_minutes': 60}, format='json')
        response = self.client.post('/api/plans/', {'energy_level': 'low', 'available_minutes': 60}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error_code'], 'ERR_PLAN_EXISTS')

    def test_invalid_transition_conflicts(self):
        plan = self.client.post('/api/plans/', {'energy_level': 'low', 'available_minutes': 60}, format='json').data['plan']
        url = f"/api/plans/{plan['id']}/tasks/{plan['tasks'][0]['id']}/"
        self.client.post(url, {'action': 'skip'}, format='json')
        response = self.client.post(url, {'action': 'start'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_TRANSITION')

    def test_abandon(self):
        plan = self.client.post('/api/plans/', {'energy_level': 'low', 'available_minutes': 60}, format='json').data['plan']
        response = self.client.post(f"/api/plans/{plan['id']}/abandon/")
        self.assertEqual(response.data['plan']['status'], 'abandoned')
        self.assertEqual(DailyPlan.objects.get(pk=plan['id']).status, DailyPlan.Status.ABANDONED)

    def test_no_plan_today(self):
        response = self.client.get('/api/plans/today/')
        self.assertIsNone(response.data['plan'])

    def test_reconciles_on_read(self):
        plan = self.client.post('/api/plans/', {'energy_level': 'normal', 'available_minutes': 120}, format='json').data['plan']
        self.client.post(f'/api/tasks/{self.second.pk}/complete/')

        response = self.client.get('/api/plans/today/')
        statuses = {item['task']['id']: item['status'] for item in response.data['plan']['tasks']}
        self.assertEqual(statuses[self.second.pk], 'completed')
        self.assertEqual(response.data['plan']['id'], plan['id'])


class SessionEndpointTests(APITestBase):
    """Tests for the persisted session slice."""

    def test_defaults(self):
        response = self.client.get('/api/session/')
        self.assertTrue(response.data['should_show_planning'])
        self.assertEqual(response.data['preferences']['default_timer_minutes'], 25)
        self.assertEqual(response.data['user_energy'], 'normal')

    def test_update_and_reset(self):
        today = timezone.localdate()
        response = self.client.put('/api/session/', {
            'user_energy': 'peak',
            'last_planning_date': today.isoformat(),
            'default_timer_minutes': 45,
        }, format='json')

        self.assertEqual(response.data['user_energy'], 'high')
        self.assertFalse(response.data['should_show_planning'])
        self.assertEqual(response.data['preferences']['default_timer_minutes'], 45)

        response = self.client.put('/api/session/', {'reset_planning': True}, format='json')
        self.assertTrue(response.data['should_show_planning'])
        self.assertEqual(response.data['preferences']['default_timer_minutes'], 45)


@override_settings(PLANNER={'PERSONAL_USERNAME': 'someone-else'})
class PersonalUserTests(APITestBase):

    def test_personal_user_from_settings(self):
        self.assertEqual(self.user.username, 'someone-else')
        response = self.client.post('/api/tasks/', {'title': 'Mine'}, format='json')
        self.assertEqual(Task.objects.get(pk=response.data['task']['id']).user.username, 'someone-else')
