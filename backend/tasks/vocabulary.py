"""
Canonical energy and priority vocabulary.

Tasks store their energy demand as ``peak | medium | low`` while the daily
planner asks the user for ``high | normal | low``. The AI parser answers in
yet another mix (``peak | normal | low``). Everything inside the engine works
on the single ``EnergyLevel`` enum below; the adapter functions are the only
places raw strings are interpreted.
"""

from enum import Enum
from typing import Optional, Union


class EnergyLevel(Enum):
    """Energy on the ordered planning scale (high -> normal -> low)."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return ENERGY_SCALE.index(self)

    def distance(self, other: "EnergyLevel") -> int:
        return abs(self.rank - other.rank)


ENERGY_SCALE = (EnergyLevel.HIGH, EnergyLevel.NORMAL, EnergyLevel.LOW)


class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Every spelling seen at a boundary, mapped onto the canonical level
_ENERGY_ALIASES = {
    'peak': EnergyLevel.HIGH,
    'high': EnergyLevel.HIGH,
    'normal': EnergyLevel.NORMAL,
    'medium': EnergyLevel.NORMAL,
    'low': EnergyLevel.LOW,
}

# Stored task vocabulary
_TASK_ENERGY_VALUES = {
    EnergyLevel.HIGH: 'peak',
    EnergyLevel.NORMAL: 'medium',
    EnergyLevel.LOW: 'low',
}

# Vocabulary the AI parser is asked to answer in
_AI_ENERGY_VALUES = {
    EnergyLevel.HIGH: 'peak',
    EnergyLevel.NORMAL: 'normal',
    EnergyLevel.LOW: 'low',
}

EnergyInput = Union[EnergyLevel, str, None]
PriorityInput = Union[Priority, str, None]


def parse_energy(value: EnergyInput) -> Optional[EnergyLevel]:
    """
    Interpret any known energy spelling.

    Returns None for unset or unrecognised values so callers can decide
    between rejecting the input and falling back to a default.
    """
    if isinstance(value, EnergyLevel):
        return value
    if value is None:
        return None
    return _ENERGY_ALIASES.get(str(value).strip().lower())


def normalize_energy(value: EnergyInput, default: EnergyLevel = EnergyLevel.NORMAL) -> EnergyLevel:
    """Interpret an energy value, substituting ``default`` when unknown."""
    level = parse_energy(value)
    return level if level is not None else default


def energy_to_task_value(level: EnergyInput) -> str:
    """Canonical level -> stored task vocabulary (peak/medium/low)."""
    return _TASK_ENERGY_VALUES[normalize_energy(level)]


def energy_to_plan_value(level: EnergyInput) -> str:
    """Canonical level -> planning vocabulary (high/normal/low)."""
    return normalize_energy(level).value


def energy_to_ai_value(level: EnergyInput) -> str:
    return _AI_ENERGY_VALUES[normalize_energy(level)]


def parse_priority(value: PriorityInput) -> Optional[Priority]:
    if isinstance(value, Priority):
        return value
    if value is None:
        return None
    try:
        return Priority(str(value).strip().lower())
    except ValueError:
        return None


def normalize_priority(value: PriorityInput) -> Priority:
    """Unset or unknown priority is treated as medium, never a fourth tier."""
    priority = parse_priority(value)
    return priority if priority is not None else Priority.MEDIUM
