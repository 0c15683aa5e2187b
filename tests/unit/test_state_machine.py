"""Unit tests for status transitions and control preconditions."""

import pytest

from lm_flow.flow.models import FlowStatus
from lm_flow.flow.state_machine import (
    ALLOWED_TRANSITIONS,
    CONTROL_ACTIONS,
    IllegalTransitionError,
    check_action,
    transition,
)


def test_every_status_has_an_entry() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(FlowStatus)


@pytest.mark.parametrize("terminal", [FlowStatus.COMPLETED, FlowStatus.ERROR])
def test_terminal_statuses_have_no_exits(terminal: FlowStatus) -> None:
    for target in FlowStatus:
        with pytest.raises(IllegalTransitionError):
            transition(current=terminal, to=target)


def test_allowed_and_illegal_transitions() -> None:
    assert transition(current=FlowStatus.RUNNING, to=FlowStatus.WAITING_OPERATION) == (
        FlowStatus.WAITING_OPERATION
    )
    assert transition(current=FlowStatus.PAUSED, to=FlowStatus.RUNNING) == FlowStatus.RUNNING

    with pytest.raises(IllegalTransitionError, match="paused -> waiting-operation"):
        transition(current=FlowStatus.PAUSED, to=FlowStatus.WAITING_OPERATION)
    with pytest.raises(IllegalTransitionError):
        transition(current=FlowStatus.WAITING_OPERATION, to=FlowStatus.ERROR)


def test_illegal_transition_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        transition(current=FlowStatus.COMPLETED, to=FlowStatus.RUNNING)


@pytest.mark.parametrize(
    ("action", "status", "allowed"),
    [
        ("pause", FlowStatus.RUNNING, True),
        ("pause", FlowStatus.WAITING_OPERATION, True),
        ("pause", FlowStatus.COMPLETED, False),
        ("resume", FlowStatus.PAUSED, True),
        ("resume", FlowStatus.RUNNING, False),
        ("confirm", FlowStatus.WAITING_OPERATION, True),
        ("confirm", FlowStatus.PAUSED, False),
        ("reject", FlowStatus.ERROR, True),
        ("restart", FlowStatus.PAUSED, True),
        ("restart", FlowStatus.ERROR, False),
    ],
)
def test_action_preconditions(action: str, status: FlowStatus, allowed: bool) -> None:
    if allowed:
        check_action(action, status)
    else:
        with pytest.raises(IllegalTransitionError):
            check_action(action, status)


def test_control_actions() -> None:
    assert CONTROL_ACTIONS == ("pause", "resume", "confirm", "reject", "restart")
