"""
URL configuration for the tasks app.
"""

from django.urls import path
from . import views

urlpatterns = [
    path('', views.api_info, name='api-info'),
    path('tasks/', views.task_list, name='task-list'),
    path('tasks/next/', views.next_task, name='next-task'),
    path('tasks/reset/', views.reset_tasks, name='reset-tasks'),
    path('tasks/<int:task_id>/', views.task_detail, name='task-detail'),
    path('tasks/<int:task_id>/complete/', views.complete_task, name='complete-task'),
    path('tasks/<int:task_id>/skip/', views.skip_task, name='skip-task'),
    path('tasks/<int:task_id>/keep/', views.keep_task, name='keep-task'),
    path('tasks/<int:task_id>/stuck/', views.task_stuck, name='task-stuck'),
    path('tasks/<int:task_id>/breakdown/', views.breakdown_task, name='breakdown-task'),
    # AI payloads
    path('ai/parse/', views.parse_task, name='parse-task'),
    # Daily plans
    path('plans/', views.create_plan, name='create-plan'),
    path('plans/preview/', views.preview_plan, name='preview-plan'),
    path('plans/today/', views.today_plan, name='today-plan'),
    path('plans/<int:plan_id>/tasks/<int:planned_id>/', views.update_planned_task, name='update-planned-task'),
    path('plans/<int:plan_id>/abandon/', views.abandon_plan_view, name='abandon-plan'),
    # Stats and session
    path('stats/', views.user_stats, name='user-stats'),
    path('session/', views.session_state, name='session-state'),
]
