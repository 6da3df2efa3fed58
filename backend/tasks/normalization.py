"""
Normalization of AI service payloads.

The parse and breakdown services answer in JSON that usually, but not
always, matches the vocabulary we asked for. Nothing here raises on bad AI
output: an unknown enum value or an out-of-range number is replaced by a
safe default, the field's confidence is lowered, and the field name is
listed in ``degraded_fields`` so the caller can show it as a guess.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Tuple

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .vocabulary import (
    EnergyLevel,
    Priority,
    energy_to_ai_value,
    parse_energy,
    parse_priority,
)

logger = logging.getLogger(__name__)

ALLOWED_ESTIMATES: Tuple[int, ...] = (15, 25, 45, 60, 90)
DEFAULT_ESTIMATE = 25
DEFAULT_TITLE = "Untitled task"
DEFAULT_CONFIDENCE = 0.5
DEFAULT_DEADLINE_CONFIDENCE = 1.0
# Ceiling applied to the confidence of any field we had to replace
DEGRADED_CONFIDENCE = 0.2

MAX_STEP_MINUTES = 240


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return clamp(float(value), 0.0, 1.0)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_deadline(value: Any) -> Optional[datetime]:
    """
    Accept an ISO datetime or a bare ISO date. Bare dates and naive
    datetimes are read in the active time zone.
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    try:
        day = parse_date(value)
    except ValueError:
        day = None
    if day is not None:
        # parse_datetime also accepts bare dates, as midnight
        parsed = datetime.combine(day, time(23, 59))
    else:
        try:
            parsed = parse_datetime(value)
        except ValueError:
            parsed = None
        if parsed is None:
            return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


@dataclass
class FieldConfidence:
    priority: float = DEFAULT_CONFIDENCE
    energy: float = DEFAULT_CONFIDENCE
    time: float = DEFAULT_CONFIDENCE
    deadline: float = DEFAULT_DEADLINE_CONFIDENCE

    def to_dict(self) -> Dict[str, float]:
        return {
            'priority': self.priority,
            'energy': self.energy,
            'time': self.time,
            'deadline': self.deadline,
        }


@dataclass
class ParsedTask:
    title: str = DEFAULT_TITLE
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    energy: EnergyLevel = EnergyLevel.NORMAL
    estimated_minutes: int = DEFAULT_ESTIMATE
    deadline: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            'title': self.title,
            'description': self.description,
            'priority': self.priority.value,
            'energy': energy_to_ai_value(self.energy),
            'estimated_minutes': self.estimated_minutes,
            'deadline': self.deadline.isoformat() if self.deadline else None,
        }


@dataclass
class ParseResult:
    task: ParsedTask = field(default_factory=ParsedTask)
    overall_confidence: float = DEFAULT_CONFIDENCE
    confidence: FieldConfidence = field(default_factory=FieldConfidence)
    reasoning: str = ""
    additional_tasks: List[str] = field(default_factory=list)
    degraded_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'task': self.task.to_dict(),
            'confidence': {
                'overall': self.overall_confidence,
                'fields': self.confidence.to_dict(),
            },
            'reasoning': self.reasoning,
            'additional_tasks_detected': list(self.additional_tasks),
            'degraded_fields': list(self.degraded_fields),
        }


def normalize_parse_result(raw: Any) -> ParseResult:
    """
    Turn a raw AI parse response into a ``ParseResult`` with only valid
    values in it.
    """
    raw = raw if isinstance(raw, dict) else {}
    task = raw.get('task') if isinstance(raw.get('task'), dict) else {}
    confidence = raw.get('confidence') if isinstance(raw.get('confidence'), dict) else {}
    fields = confidence.get('fields') if isinstance(confidence.get('fields'), dict) else {}

    result = ParseResult(
        overall_confidence=_confidence(confidence.get('overall'), DEFAULT_CONFIDENCE),
        confidence=FieldConfidence(
            priority=_confidence(fields.get('priority'), DEFAULT_CONFIDENCE),
            energy=_confidence(fields.get('energy'), DEFAULT_CONFIDENCE),
            time=_confidence(fields.get('time'), DEFAULT_CONFIDENCE),
            deadline=_confidence(fields.get('deadline'), DEFAULT_DEADLINE_CONFIDENCE),
        ),
        reasoning=raw.get('reasoning') if isinstance(raw.get('reasoning'), str) else "",
    )
    parsed = result.task

    title = task.get('title')
    if isinstance(title, str) and title.strip():
        parsed.title = title.strip()
    else:
        result.degraded_fields.append('title')

    description = task.get('description')
    parsed.description = description if isinstance(description, str) and description else None

    priority = parse_priority(task.get('priority'))
    if priority is None:
        result.degraded_fields.append('priority')
        result.confidence.priority = min(result.confidence.priority, DEGRADED_CONFIDENCE)
    else:
        parsed.priority = priority

    energy = parse_energy(task.get('energy'))
    if energy is None:
        result.degraded_fields.append('energy')
        result.confidence.energy = min(result.confidence.energy, DEGRADED_CONFIDENCE)
    else:
        parsed.energy = energy

    minutes = _as_int(task.get('estimatedMinutes'))
    if minutes in ALLOWED_ESTIMATES:
        parsed.estimated_minutes = minutes
    else:
        result.degraded_fields.append('estimated_minutes')
        result.confidence.time = min(result.confidence.time, DEGRADED_CONFIDENCE)

    raw_deadline = task.get('deadline')
    parsed.deadline = parse_deadline(raw_deadline)
    if raw_deadline and parsed.deadline is None:
        result.degraded_fields.append('deadline')
        result.confidence.deadline = min(result.confidence.deadline, DEGRADED_CONFIDENCE)

    additional = raw.get('additionalTasksDetected')
    if isinstance(additional, list):
        result.additional_tasks = [item for item in additional if isinstance(item, str) and item.strip()]

    if result.degraded_fields:
        result.overall_confidence = min(result.overall_confidence, DEGRADED_CONFIDENCE)
        logger.warning("AI parse result normalized fields: %s", ", ".join(result.degraded_fields))

    return result


# ==================== Breakdown ====================

@dataclass
class MicroStep:
    title: str
    estimated_minutes: int = DEFAULT_ESTIMATE
    energy: EnergyLevel = EnergyLevel.NORMAL
    starter_phrase: str = ""
    completion_cue: str = ""

    def to_dict(self) -> Dict:
        return {
            'title': self.title,
            'estimated_minutes': self.estimated_minutes,
            'energy': self.energy.value,
            'starter_phrase': self.starter_phrase,
            'completion_cue': self.completion_cue,
        }


def normalize_breakdown(raw: Any) -> List[MicroStep]:
    """
    Normalize an AI breakdown response (``{"steps": [...]}`` or a bare list)
    into micro-steps. Steps without a title are dropped; bad minute or energy
    values fall back to the defaults.
    """
    if isinstance(raw, dict):
        raw = raw.get('steps')
    if not isinstance(raw, list):
        return []

    steps = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        title = item.get('title')
        if not isinstance(title, str) or not title.strip():
            continue

        minutes = _as_int(item.get('estimatedMinutes'))
        if minutes is None or not 0 < minutes <= MAX_STEP_MINUTES:
            minutes = DEFAULT_ESTIMATE

        energy = parse_energy(item.get('energyLevel'))
        steps.append(MicroStep(
            title=title.strip(),
            estimated_minutes=minutes,
            energy=energy or EnergyLevel.NORMAL,
            starter_phrase=item.get('starterPhrase') if isinstance(item.get('starterPhrase'), str) else "",
            completion_cue=item.get('completionCue') if isinstance(item.get('completionCue'), str) else "",
        ))
    return steps
