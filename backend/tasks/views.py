"""
API Views for the LifeOS planner.

Thin adapters over the engine: each view validates its input with a
serializer, calls into ranking / ledger / planning, and renders the
result. Engine failures come back as ``OperationResult`` errors and are
rendered with the ``{success, error_code, message}`` envelope; nothing
expected is raised past this module.
"""

import logging

from django.db import DatabaseError, transaction
from django.db.models import Max
from django.utils import timezone
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, throttle_classes
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from .errors import ErrorCode, OperationResult, PersistenceError, ValidationError
from .ledger import InFlightRegistry, StatsLedger
from .models import DailyPlan, PlannedTask, Task
from .normalization import normalize_breakdown, normalize_parse_result
from .planning import (
    abandon_plan,
    advance_planned_task,
    create_breakdown_steps,
    finalize_plan,
    get_plan,
    plan_to_dict,
    preview_for_user,
    reconcile_plan,
)
from .ranking import DEFAULT_ENGINE
from .scoring import local_date, task_score_to_dict
from .serializers import (
    BreakdownPayloadSerializer,
    KeepInputSerializer,
    ParsePayloadSerializer,
    PlanInputSerializer,
    PlannedTaskActionSerializer,
    SessionInputSerializer,
    SkipInputSerializer,
    TaskInputSerializer,
    TaskOutputSerializer,
)
from .session import AppState
from .stats import StatsSnapshot, effective_streak
from .store import (
    DjangoTaskStore,
    keep_with_reason,
    load_preferences,
    load_state,
    resolve_user,
    save_session,
    stuck_detector_for,
    stuck_info_for,
)
from .vocabulary import energy_to_task_value, parse_energy

logger = logging.getLogger(__name__)

# Complete/skip requests for a task already being updated are dropped
IN_FLIGHT = InFlightRegistry()


# ============================================
# RATE LIMITING CLASSES
# ============================================

class TaskRateThrottle(AnonRateThrottle):
    """Rate limit for task endpoints - 120 requests per minute."""
    scope = 'tasks'
    rate = '120/min'


class PlanningRateThrottle(AnonRateThrottle):
    """Rate limit for planning endpoints - 30 requests per minute."""
    scope = 'planning'
    rate = '30/min'


class AIRateThrottle(AnonRateThrottle):
    """Rate limit for AI payload endpoints - 20 requests per minute."""
    scope = 'ai'
    rate = '20/min'


# ============================================
# RESPONSE HELPERS
# ============================================

HTTP_STATUS_FOR_ERROR = {
    ErrorCode.ERR_UNKNOWN_TASK: status.HTTP_404_NOT_FOUND,
    ErrorCode.ERR_DUPLICATE_REQUEST: status.HTTP_409_CONFLICT,
    ErrorCode.ERR_PLAN_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.ERR_INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.ERR_PERSISTENCE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(error: ValidationError, **extra) -> Response:
    body = {'success': False}
    body.update(error.to_dict())
    body.update(extra)
    return Response(body, status=HTTP_STATUS_FOR_ERROR.get(error.code, status.HTTP_400_BAD_REQUEST))


def result_error_response(result: OperationResult, **extra) -> Response:
    return error_response(result.error, **extra)


def invalid_input_response(serializer, message: str) -> Response:
    error_code = ErrorCode.ERR_MISSING_FIELD
    if 'energy_level' in serializer.errors or 'user_energy' in serializer.errors:
        error_code = ErrorCode.ERR_INVALID_ENERGY
    elif 'available_minutes' in serializer.errors:
        error_code = ErrorCode.ERR_INVALID_BUDGET
    elif 'estimated_minutes' in serializer.errors or 'actual_minutes' in serializer.errors:
        error_code = ErrorCode.ERR_INVALID_MINUTES
    return Response(
        {
            'success': False,
            'error_code': error_code.value,
            'errors': serializer.errors,
            'message': message
        },
        status=status.HTTP_400_BAD_REQUEST
    )


def not_found_response(message: str, task_id=None) -> Response:
    return error_response(ValidationError(ErrorCode.ERR_UNKNOWN_TASK, message, task_id=task_id))


def current_task_payload(state: AppState, now) -> dict:
    head = DEFAULT_ENGINE.current_task(state.tasks, state.user_energy, now)
    return task_score_to_dict(head, rank=0) if head else None


def stats_payload(stats: StatsSnapshot, today) -> dict:
    payload = stats.to_dict()
    payload['effective_streak'] = effective_streak(stats, today)
    return payload


def next_position(user) -> int:
    last = Task.objects.filter(user=user).aggregate(last=Max('position'))['last']
    return 0 if last is None else last + 1


def get_user_task(user, task_id):
    return Task.objects.filter(pk=task_id, user=user).first()


# ============================================
# INFO
# ============================================

@extend_schema(
    summary="API information",
    description="Get API information and available endpoints.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
def api_info(request: Request) -> Response:
    """
    Return API information and available endpoints.

    GET /api/
    """
    return Response({
        'name': 'LifeOS Planner API',
        'version': '1.0.0',
        'documentation': '/api/docs/',
        'features': [
            'Single "do next" task from a continuous ranking',
            'Energy- and time-aware daily planning',
            'Greedy plan allocation with manual overrides',
            'Streaks and trust score with optimistic updates',
            'Stuck-task detection',
            'AI parse and breakdown normalization',
            'OpenAPI/Swagger documentation',
        ],
        'endpoints': {
            'GET /api/tasks/': 'List open tasks',
            'POST /api/tasks/': 'Create a task',
            'PATCH /api/tasks/<id>/': 'Edit a task',
            'DELETE /api/tasks/<id>/': 'Delete a task',
            'GET /api/tasks/next/': 'Current task and continuous queue',
            'POST /api/tasks/<id>/complete/': 'Complete a task',
            'POST /api/tasks/<id>/skip/': 'Skip a task',
            'POST /api/tasks/<id>/keep/': 'Keep a stuck task with a blocker note',
            'GET /api/tasks/<id>/stuck/': 'Stuck status of a task',
            'POST /api/tasks/<id>/breakdown/': 'Create steps from an AI breakdown',
            'POST /api/tasks/reset/': 'Archive every open task',
            'POST /api/ai/parse/': 'Normalize an AI parse result',
            'POST /api/plans/preview/': 'Rank and auto-select for a plan',
            'POST /api/plans/': 'Start the day with a plan',
            'GET /api/plans/today/': "Today's plan and progress",
            'POST /api/plans/<id>/tasks/<planned_id>/': 'Advance a planned task',
            'POST /api/plans/<id>/abandon/': 'Abandon a plan',
            'GET /api/stats/': 'Streak, trust score and counters',
            'GET /api/session/': 'Persisted session state',
            'PUT /api/session/': 'Update persisted session state',
            'GET /api/docs/': 'Interactive API documentation',
            'GET /api/schema/': 'OpenAPI schema',
        },
        'error_codes': {
            code.value: code.name for code in ErrorCode
        }
    })


# ============================================
# TASKS
# ============================================

@extend_schema(
    summary="List or create tasks",
    description="GET lists the open tasks in position order. POST creates a task at the end of the list.",
    request=TaskInputSerializer,
    responses={200: TaskOutputSerializer(many=True), 201: TaskOutputSerializer},
    tags=['Tasks']
)
@api_view(['GET', 'POST'])
@throttle_classes([TaskRateThrottle])
def task_list(request: Request) -> Response:
    """
    GET  /api/tasks/
    POST /api/tasks/
    """
    user = resolve_user(request)

    if request.method == 'GET':
        tasks = Task.objects.filter(user=user, completed=False, skipped=False, archived=False)
        return Response({
            'success': True,
            'error_code': ErrorCode.SUCCESS.value,
            'count': tasks.count(),
            'tasks': TaskOutputSerializer(tasks, many=True).data,
        })

    serializer = TaskInputSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Invalid task data.')

    task = serializer.save(user=user, position=next_position(user))
    return Response(
        {
            'success': True,
            'error_code': ErrorCode.SUCCESS.value,
            'task': TaskOutputSerializer(task).data,
        },
        status=status.HTTP_201_CREATED
    )


@extend_schema(
    summary="Edit or delete a task",
    description="PATCH edits a task; sending skipped=false restores a skipped task. DELETE removes it.",
    request=TaskInputSerializer,
    responses={200: TaskOutputSerializer, 204: None},
    tags=['Tasks']
)
@api_view(['PATCH', 'DELETE'])
@throttle_classes([TaskRateThrottle])
def task_detail(request: Request, task_id: int) -> Response:
    """
    PATCH  /api/tasks/<id>/
    DELETE /api/tasks/<id>/
    """
    user = resolve_user(request)
    task = get_user_task(user, task_id)
    if task is None:
        return not_found_response('Task not found', task_id=task_id)

    if request.method == 'DELETE':
        task.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = TaskInputSerializer(task, data=request.data, partial=True)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Invalid task data.')
    task = serializer.save()
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'task': TaskOutputSerializer(task).data,
    })


@extend_schema(
    summary="Get the current task",
    description="""
    Rank every open task in continuous mode (no time budget) and return the
    head of the queue as the current task, with the full queue behind it.
    """,
    parameters=[
        OpenApiParameter(
            name='energy',
            type=str,
            required=False,
            description='peak/high, medium/normal or low. Defaults to the session energy.'
        ),
    ],
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['GET'])
@throttle_classes([TaskRateThrottle])
def next_task(request: Request) -> Response:
    """
    GET /api/tasks/next/?energy=high
    """
    user = resolve_user(request)
    now = timezone.now()
    today = local_date(now)
    state = load_state(user, now)

    raw_energy = request.query_params.get('energy')
    if raw_energy:
        energy = parse_energy(raw_energy)
        if energy is None:
            return error_response(ValidationError(
                ErrorCode.ERR_INVALID_ENERGY,
                f"Invalid energy level: {raw_energy}. Valid options: peak, high, medium, normal, low",
                field='energy'
            ))
        state.user_energy = energy

    queue = DEFAULT_ENGINE.continuous_queue(state.tasks, state.user_energy, now)
    current = queue[0] if queue else None
    stuck = None
    if current is not None:
        current_task = get_user_task(user, current.task_id)
        stuck = stuck_info_for(current_task).to_dict()

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'user_energy': state.user_energy.value,
        'current_task': task_score_to_dict(current, rank=0) if current else None,
        'stuck': stuck,
        'queue': [task_score_to_dict(ts, rank=index) for index, ts in enumerate(queue)],
        'count': len(queue),
        'tasks_completed_today': state.tasks_completed_today,
        'stats': stats_payload(state.stats, today),
        'should_show_planning': state.should_show_planning(today),
        'message': 'All clear. Nothing left to do.' if not queue else None,
    })


@extend_schema(
    summary="Complete a task",
    description="Mark a task completed and update streak, trust score and counters.",
    request=None,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['POST'])
@throttle_classes([TaskRateThrottle])
def complete_task(request: Request, task_id: int) -> Response:
    """
    POST /api/tasks/<id>/complete/
    """
    user = resolve_user(request)
    task = get_user_task(user, task_id)
    if task is None:
        return not_found_response('Task not found', task_id=task_id)

    now = timezone.now()
    state = load_state(user, now)
    ledger = StatsLedger(
        state,
        DjangoTaskStore(user),
        stuck_detector=stuck_detector_for(task),
        in_flight=IN_FLIGHT,
    )
    result = ledger.complete_task(task.pk, now)
    if not result.ok:
        return result_error_response(result)

    today = local_date(now)
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'celebration': state.celebration.to_dict() if state.celebration else None,
        'stats': stats_payload(result.value, today),
        'tasks_completed_today': state.tasks_completed_today,
        'current_task': current_task_payload(state, now),
    })


@extend_schema(
    summary="Skip a task",
    description="""
    Skip a task with an optional reason. Skipping the current task counts
    toward stuck detection; the response says whether the task is now stuck
    and which ways out are offered.
    """,
    request=SkipInputSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['POST'])
@throttle_classes([TaskRateThrottle])
def skip_task(request: Request, task_id: int) -> Response:
    """
    POST /api/tasks/<id>/skip/

    Request Body:
    {
        "reason": "Waiting on the landlord"    // Optional
    }
    """
    serializer = SkipInputSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Invalid skip request.')

    user = resolve_user(request)
    task = get_user_task(user, task_id)
    if task is None:
        return not_found_response('Task not found', task_id=task_id)

    now = timezone.now()
    state = load_state(user, now)
    ledger = StatsLedger(
        state,
        DjangoTaskStore(user),
        stuck_detector=stuck_detector_for(task),
        in_flight=IN_FLIGHT,
    )
    result = ledger.skip_task(task.pk, serializer.validated_data['reason'], now)
    if not result.ok:
        return result_error_response(result)

    outcome = result.value
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'stats': stats_payload(outcome.stats, local_date(now)),
        'stuck': outcome.stuck.to_dict(),
        'current_task': current_task_payload(state, now),
    })


@extend_schema(
    summary="Keep a stuck task",
    description="Record what is blocking a task and keep it in the list.",
    request=KeepInputSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['POST'])
@throttle_classes([TaskRateThrottle])
def keep_task(request: Request, task_id: int) -> Response:
    """
    POST /api/tasks/<id>/keep/
    """
    serializer = KeepInputSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'A blocker note is required.')

    user = resolve_user(request)
    task = get_user_task(user, task_id)
    if task is None:
        return not_found_response('Task not found', task_id=task_id)

    try:
        info = keep_with_reason(task, serializer.validated_data['reason'])
    except PersistenceError as exc:
        logger.warning("Could not keep task %s: %s", task_id, exc)
        return error_response(ValidationError(
            ErrorCode.ERR_PERSISTENCE, 'Could not save the blocker note', task_id=task_id
        ))

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'stuck': info.to_dict(),
    })


@extend_schema(
    summary="Get stuck status",
    description="Skip count, last skip and blocker note of a task.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['GET'])
@throttle_classes([TaskRateThrottle])
def task_stuck(request: Request, task_id: int) -> Response:
    """
    GET /api/tasks/<id>/stuck/
    """
    user = resolve_user(request)
    task = get_user_task(user, task_id)
    if task is None:
        return not_found_response('Task not found', task_id=task_id)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'stuck': stuck_info_for(task).to_dict(),
    })


@extend_schema(
    summary="Break a task down",
    description="""
    Normalize an AI breakdown result and create one task per micro-step,
    appended to the end of the list and linked to the parent.
    """,
    request=BreakdownPayloadSerializer,
    responses={201: OpenApiTypes.OBJECT},
    tags=['AI']
)
@api_view(['POST'])
@throttle_classes([AIRateThrottle])
def breakdown_task(request: Request, task_id: int) -> Response:
    """
    POST /api/tasks/<id>/breakdown/

    Request Body:
    {
        "steps": [{"title": "...", "estimatedMinutes": 15, "energyLevel": "low",
                   "starterPhrase": "...", "completionCue": "..."}]
    }
    """
    serializer = BreakdownPayloadSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Breakdown steps are required.')

    user = resolve_user(request)
    parent = get_user_task(user, task_id)
    if parent is None:
        return not_found_response('Task not found', task_id=task_id)

    steps = normalize_breakdown(serializer.validated_data['steps'])
    if not steps:
        return error_response(ValidationError(
            ErrorCode.ERR_EMPTY_TASKS,
            'The breakdown contained no usable steps',
            field='steps',
            task_id=task_id
        ))

    children = create_breakdown_steps(parent, steps)
    return Response(
        {
            'success': True,
            'error_code': ErrorCode.SUCCESS.value,
            'parent_id': parent.pk,
            'steps': [step.to_dict() for step in steps],
            'tasks': TaskOutputSerializer(children, many=True).data,
        },
        status=status.HTTP_201_CREATED
    )


@extend_schema(
    summary="Reset tasks",
    description="Archive every open task. Archived tasks are kept but never ranked.",
    request=None,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['POST'])
@throttle_classes([TaskRateThrottle])
def reset_tasks(request: Request) -> Response:
    """
    POST /api/tasks/reset/
    """
    user = resolve_user(request)
    try:
        with transaction.atomic():
            archived = Task.objects.filter(
                user=user, completed=False, skipped=False, archived=False
            ).update(archived=True, updated_at=timezone.now())
    except DatabaseError as exc:
        logger.warning("Could not archive tasks: %s", exc)
        return error_response(ValidationError(ErrorCode.ERR_PERSISTENCE, 'Could not reset tasks'))

    logger.info("Archived %s open tasks", archived)
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'archived': archived,
    })


# ============================================
# AI
# ============================================

@extend_schema(
    summary="Normalize an AI parse result",
    description="""
    Replace unknown or out-of-range values in an AI task-parsing result with
    safe defaults and lower the confidence of every field that was replaced.
    With "create": true the normalized task is also saved.
    """,
    request=ParsePayloadSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['AI']
)
@api_view(['POST'])
@throttle_classes([AIRateThrottle])
def parse_task(request: Request) -> Response:
    """
    POST /api/ai/parse/

    Request Body:
    {
        "result": {"task": {...}, "confidence": {...}, "reasoning": "..."},
        "create": false                         // Optional
    }
    """
    serializer = ParsePayloadSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'An AI parse result is required.')

    result = normalize_parse_result(serializer.validated_data['result'])
    body = {
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'parsed': result.to_dict(),
    }

    if serializer.validated_data['create']:
        user = resolve_user(request)
        parsed = result.task
        task = Task.objects.create(
            user=user,
            title=parsed.title,
            description=parsed.description or '',
            priority=parsed.priority.value,
            energy_level=energy_to_task_value(parsed.energy),
            estimated_minutes=parsed.estimated_minutes,
            deadline=parsed.deadline,
            position=next_position(user),
        )
        body['task'] = TaskOutputSerializer(task).data
        return Response(body, status=status.HTTP_201_CREATED)

    return Response(body)


# ============================================
# PLANS
# ============================================

@extend_schema(
    summary="Preview a daily plan",
    description="""
    Rank open tasks for the given energy and time budget, auto-select greedily,
    then apply the toggles in order. A toggle that would overflow the budget is
    reported in rejected_toggles and leaves the selection unchanged.
    """,
    request=PlanInputSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Plans']
)
@api_view(['POST'])
@throttle_classes([PlanningRateThrottle])
def preview_plan(request: Request) -> Response:
    """
    POST /api/plans/preview/

    Request Body:
    {
        "energy_level": "high",
        "available_minutes": 120,
        "toggles": [3, 7]                      // Optional task ids to flip
    }
    """
    serializer = PlanInputSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Invalid planning input.')

    data = serializer.validated_data
    preview = preview_for_user(
        resolve_user(request),
        data['energy_level'],
        data['available_minutes'],
        data['toggles'],
        timezone.now()
    )
    body = {
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
    }
    body.update(preview.to_dict())
    return Response(body)


@extend_schema(
    summary="Start the day",
    description="Persist today's plan from the same inputs the preview was built from.",
    request=PlanInputSerializer,
    responses={201: OpenApiTypes.OBJECT},
    tags=['Plans']
)
@api_view(['POST'])
@throttle_classes([PlanningRateThrottle])
def create_plan(request: Request) -> Response:
    """
    POST /api/plans/
    """
    serializer = PlanInputSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Invalid planning input.')

    data = serializer.validated_data
    now = timezone.now()
    result = finalize_plan(
        resolve_user(request),
        data['energy_level'],
        data['available_minutes'],
        data['toggles'],
        now
    )
    if not result.ok:
        extra = {}
        if result.error_code == ErrorCode.ERR_PLAN_EXISTS and result.value is not None:
            extra['plan_id'] = result.value.pk
        return result_error_response(result, **extra)

    return Response(
        {
            'success': True,
            'error_code': ErrorCode.SUCCESS.value,
            'plan': plan_to_dict(result.value, now),
        },
        status=status.HTTP_201_CREATED
    )


@extend_schema(
    summary="Get today's plan",
    description="Today's plan with its planned tasks and progress, or null when none exists.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Plans']
)
@api_view(['GET'])
@throttle_classes([PlanningRateThrottle])
def today_plan(request: Request) -> Response:
    """
    GET /api/plans/today/
    """
    user = resolve_user(request)
    now = timezone.now()
    plan = get_plan(user, local_date(now))
    if plan is not None and plan.status == DailyPlan.Status.ACTIVE:
        reconcile_plan(plan, now)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'plan': plan_to_dict(plan, now) if plan else None,
    })


@extend_schema(
    summary="Advance a planned task",
    description="""
    Move a planned task forward: start, complete, skip or defer. Completing
    also completes the task itself; deferring carries it over from the plan's
    date so it ages in later rankings.
    """,
    request=PlannedTaskActionSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Plans']
)
@api_view(['POST'])
@throttle_classes([PlanningRateThrottle])
def update_planned_task(request: Request, plan_id: int, planned_id: int) -> Response:
    """
    POST /api/plans/<id>/tasks/<planned_id>/

    Request Body:
    {
        "action": "complete",
        "actual_minutes": 30                   // Optional
    }
    """
    serializer = PlannedTaskActionSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_input_response(serializer, 'Invalid planned task action.')

    user = resolve_user(request)
    plan = DailyPlan.objects.filter(pk=plan_id, user=user).first()
    planned = None
    if plan is not None:
        planned = PlannedTask.objects.filter(pk=planned_id, plan=plan).select_related('task').first()
    if planned is None:
        return not_found_response('Planned task not found')

    now = timezone.now()
    if plan.status == DailyPlan.Status.ACTIVE:
        reconcile_plan(plan, now)
        planned.refresh_from_db()

    result = advance_planned_task(
        user,
        plan,
        planned,
        serializer.validated_data['action'],
        serializer.validated_data.get('actual_minutes'),
        now,
        in_flight=IN_FLIGHT
    )
    if not result.ok:
        return result_error_response(result)

    plan.refresh_from_db()
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'plan': plan_to_dict(plan, now),
    })


@extend_schema(
    summary="Abandon a plan",
    description="Give up on an active plan. A new plan can then be made for the same day.",
    request=None,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Plans']
)
@api_view(['POST'])
@throttle_classes([PlanningRateThrottle])
def abandon_plan_view(request: Request, plan_id: int) -> Response:
    """
    POST /api/plans/<id>/abandon/
    """
    user = resolve_user(request)
    plan = DailyPlan.objects.filter(pk=plan_id, user=user).first()
    if plan is None:
        return not_found_response('Plan not found')

    result = abandon_plan(plan)
    if not result.ok:
        return result_error_response(result)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'plan': plan_to_dict(plan),
    })


# ============================================
# STATS & SESSION
# ============================================

@extend_schema(
    summary="Get user stats",
    description="Streak (stored and effective), best streak, trust score and counters.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Stats']
)
@api_view(['GET'])
def user_stats(request: Request) -> Response:
    """
    GET /api/stats/
    """
    user = resolve_user(request)
    now = timezone.now()
    state = load_state(user, now)
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'stats': stats_payload(state.stats, local_date(now)),
        'tasks_completed_today': state.tasks_completed_today,
    })


@extend_schema(
    summary="Get or update the session",
    description="""
    The persisted part of the session: timer and budget preferences, the
    date planning was last completed and the declared energy. PUT with
    "reset_planning": true clears the planning date so the planning prompt
    shows again.
    """,
    request=SessionInputSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Stats']
)
@api_view(['GET', 'PUT'])
def session_state(request: Request) -> Response:
    """
    GET /api/session/
    PUT /api/session/
    """
    user = resolve_user(request)
    today = local_date(timezone.now())
    state = AppState.from_persisted(load_preferences(user))

    if request.method == 'PUT':
        serializer = SessionInputSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input_response(serializer, 'Invalid session data.')
        data = serializer.validated_data

        if data['reset_planning']:
            state.reset_planning()
        else:
            if 'user_energy' in data:
                state.user_energy = data['user_energy']
            if 'last_planning_date' in data:
                state.last_planning_date = data['last_planning_date']
        for key in ('default_timer_minutes', 'default_available_minutes'):
            if key in data:
                state.preferences[key] = data[key]

        try:
            save_session(user, state)
        except PersistenceError as exc:
            logger.warning("Could not save session: %s", exc)
            return error_response(ValidationError(ErrorCode.ERR_PERSISTENCE, 'Could not save the session'))

    body = {
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'should_show_planning': state.should_show_planning(today),
    }
    body.update(state.persisted_slice())
    return Response(body)
