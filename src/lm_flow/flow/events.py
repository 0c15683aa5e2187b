"""Flow events emitted by the execution engine.

Events are write-once records. Each one carries a full state snapshot so a
consumer can render progress without polling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from lm_flow.flow.models import FlowState, FlowStatus


@dataclass(frozen=True, slots=True)
class FlowEvent:
    type: ClassVar[str] = "event"

    state: FlowState

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def flow_id(self) -> str:
        return self.state.flow_id

    def _fields(self) -> dict[str, Any]:
        return {}

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "sessionId": self.session_id,
            "flowId": self.flow_id,
        }
        out.update(self._fields())
        out["state"] = self.state.to_json()
        return out


@dataclass(frozen=True, slots=True)
class StatusChanged(FlowEvent):
    type: ClassVar[str] = "status-change"

    status: FlowStatus

    def _fields(self) -> dict[str, Any]:
        return {"status": self.status.value}


@dataclass(frozen=True, slots=True)
class StepStarted(FlowEvent):
    type: ClassVar[str] = "step-start"

    step_index: int
    node_id: str

    def _fields(self) -> dict[str, Any]:
        return {"stepIndex": self.step_index, "nodeId": self.node_id}


@dataclass(frozen=True, slots=True)
class StepCompleted(FlowEvent):
    type: ClassVar[str] = "step-complete"

    step_index: int
    node_id: str
    output: Any = None

    def _fields(self) -> dict[str, Any]:
        return {"stepIndex": self.step_index, "nodeId": self.node_id, "output": self.output}


@dataclass(frozen=True, slots=True)
class StepFailed(FlowEvent):
    type: ClassVar[str] = "step-error"

    step_index: int
    node_id: str
    error: str

    def _fields(self) -> dict[str, Any]:
        return {"stepIndex": self.step_index, "nodeId": self.node_id, "error": self.error}


@dataclass(frozen=True, slots=True)
class FlowFailed(FlowEvent):
    type: ClassVar[str] = "error"

    error: str

    def _fields(self) -> dict[str, Any]:
        return {"error": self.error}


@dataclass(frozen=True, slots=True)
class FlowCompleted(FlowEvent):
    type: ClassVar[str] = "complete"
