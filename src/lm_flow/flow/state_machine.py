from __future__ import annotations

from lm_flow.flow.errors import IllegalTransitionError
from lm_flow.flow.models import FlowStatus

__all__ = [
    "ACTION_PRECONDITIONS",
    "ALLOWED_TRANSITIONS",
    "CONTROL_ACTIONS",
    "IllegalTransitionError",
    "check_action",
    "transition",
]

_NON_TERMINAL: frozenset[FlowStatus] = frozenset(
    {
        FlowStatus.IDLE,
        FlowStatus.RUNNING,
        FlowStatus.PAUSED,
        FlowStatus.WAITING_OPERATION,
    }
)

ALLOWED_TRANSITIONS: dict[FlowStatus, set[FlowStatus]] = {
    FlowStatus.IDLE: {FlowStatus.RUNNING, FlowStatus.PAUSED, FlowStatus.COMPLETED},
    FlowStatus.RUNNING: {
        FlowStatus.RUNNING,
        FlowStatus.PAUSED,
        FlowStatus.WAITING_OPERATION,
        FlowStatus.COMPLETED,
        FlowStatus.ERROR,
    },
    FlowStatus.PAUSED: {
        FlowStatus.RUNNING,
        FlowStatus.PAUSED,
        FlowStatus.COMPLETED,
        FlowStatus.ERROR,
    },
    FlowStatus.WAITING_OPERATION: {
        FlowStatus.RUNNING,
        FlowStatus.PAUSED,
        FlowStatus.WAITING_OPERATION,
        FlowStatus.COMPLETED,
    },
    FlowStatus.COMPLETED: set(),
    FlowStatus.ERROR: set(),
}

CONTROL_ACTIONS: tuple[str, ...] = ("pause", "resume", "confirm", "reject", "restart")

# Statuses from which each control action may be applied.
ACTION_PRECONDITIONS: dict[str, frozenset[FlowStatus]] = {
    "pause": _NON_TERMINAL,
    "resume": frozenset({FlowStatus.PAUSED}),
    "confirm": frozenset({FlowStatus.WAITING_OPERATION}),
    "reject": frozenset(FlowStatus),
    "restart": _NON_TERMINAL,
}


def transition(*, current: FlowStatus, to: FlowStatus) -> FlowStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


def check_action(action: str, status: FlowStatus) -> None:
    """Raise :class:`IllegalTransitionError` if ``action`` is not allowed from ``status``."""
    allowed = ACTION_PRECONDITIONS[action]
    if status not in allowed:
        raise IllegalTransitionError(f"Cannot {action} a flow that is {status.value}")
