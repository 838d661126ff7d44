import enum
from typing import Dict, FrozenSet

from ..errors import InvalidTransition


class SessionStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_STATES: FrozenSet[SessionStatus] = frozenset({SessionStatus.COMPLETED, SessionStatus.EXPIRED})
OPEN_STATES: FrozenSet[SessionStatus] = frozenset({SessionStatus.NOT_STARTED, SessionStatus.IN_PROGRESS})

_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.NOT_STARTED: frozenset({SessionStatus.IN_PROGRESS, SessionStatus.EXPIRED}),
    SessionStatus.IN_PROGRESS: frozenset({SessionStatus.COMPLETED, SessionStatus.EXPIRED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}


def is_terminal(current: SessionStatus) -> bool:
    return current in TERMINAL_STATES


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """Check if moving from `current` to `target` is an allowed edge."""
    return target in _TRANSITIONS.get(current, frozenset())


def transition(current: SessionStatus, target: SessionStatus) -> SessionStatus:
    """
    Return the next status or raise InvalidTransition.

    Re-applying a terminal status onto itself is a no-op so retried
    completions don't fail.
    """
    if current == target and is_terminal(current):
        return current
    if not can_transition(current, target):
        raise InvalidTransition(f"Cannot move session from {current.value} to {target.value}")
    return target
