"""
Access to the ``PLANNER`` settings dict with built-in defaults.
"""

from django.conf import settings

DEFAULTS = {
    'STUCK_THRESHOLD': 3,
    'STUCK_RESET_ON_KEEP': False,
    'STUCK_RESET_ON_DEFER': False,
    'IN_FLIGHT_TIMEOUT_SECONDS': 5.0,
    'PERSONAL_USERNAME': 'personal',
    'DEFAULT_AVAILABLE_MINUTES': 240,
}


def planner_setting(name: str):
    """Return a planner tunable, falling back to the built-in default."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown planner setting: {name}")
    return getattr(settings, 'PLANNER', {}).get(name, DEFAULTS[name])
