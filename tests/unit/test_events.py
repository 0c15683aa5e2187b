"""Unit tests for event serialization."""

import dataclasses

import pytest

from lm_flow.flow.events import (
    FlowCompleted,
    FlowFailed,
    StatusChanged,
    StepCompleted,
    StepFailed,
    StepStarted,
)
from lm_flow.flow.models import FlowState, FlowStatus


@pytest.fixture
def state() -> FlowState:
    return FlowState(session_id="flow_abc", flow_id="chat", status=FlowStatus.RUNNING)


def test_event_envelope(state: FlowState) -> None:
    data = StepCompleted(state, step_index=0, node_id="A", output={"text": "hi"}).to_json()

    assert data["type"] == "step-complete"
    assert data["sessionId"] == "flow_abc"
    assert data["flowId"] == "chat"
    assert data["stepIndex"] == 0
    assert data["nodeId"] == "A"
    assert data["output"] == {"text": "hi"}
    assert data["state"]["status"] == "running"


def test_event_types(state: FlowState) -> None:
    events = [
        StatusChanged(state, status=FlowStatus.PAUSED),
        StepStarted(state, step_index=1, node_id="B"),
        StepFailed(state, step_index=1, node_id="B", error="boom"),
        FlowFailed(state, error="boom"),
        FlowCompleted(state),
    ]

    assert [e.to_json()["type"] for e in events] == [
        "status-change",
        "step-start",
        "step-error",
        "error",
        "complete",
    ]
    assert events[0].to_json()["status"] == "paused"
    assert events[3].to_json()["error"] == "boom"
    assert set(events[4].to_json()) == {"type", "sessionId", "flowId", "state"}


def test_events_are_immutable(state: FlowState) -> None:
    event = StepStarted(state, step_index=0, node_id="A")
    with pytest.raises(dataclasses.FrozenInstanceError):
        event.node_id = "B"  # type: ignore[misc]
