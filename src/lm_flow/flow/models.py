"""Pydantic models for flow definitions and execution state.

Everything here serializes with camelCase aliases because the same shapes
travel over the streaming and control transports.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from lm_flow.flow.context import validate_updates
from lm_flow.flow.errors import MalformedRequest


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class _Model(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FlowStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    WAITING_OPERATION = "waiting-operation"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStatus.COMPLETED, FlowStatus.ERROR)


class NodeDeclaration(_Model):
    """One step of a pipeline. ``config`` is opaque to the engine."""

    node_id: str = Field(min_length=1)
    node_type: str = Field(min_length=1)
    config: dict[str, Any] = Field(default_factory=dict)
    requires_confirmation: bool = False
    show_response: bool = False
    name: str = ""
    description: str | None = None

    @field_validator("config")
    @classmethod
    def _check_output_key(cls, value: dict[str, Any]) -> dict[str, Any]:
        output_key = value.get("outputKey")
        if output_key is not None:
            if not isinstance(output_key, str):
                raise ValueError("config.outputKey must be a string")
            try:
                validate_updates({output_key: None})
            except MalformedRequest as e:
                raise ValueError(e.message) from e
        return value

    @property
    def output_key(self) -> str | None:
        key = self.config.get("outputKey")
        return key if isinstance(key, str) else None


VALID_FIELDS: tuple[str, ...] = ("valid", "isValid", "is_valid")


class RetryRoute(_Model):
    """Send the flow back to an earlier node when a check node rejects its input.

    The check passes when its output is an object with one of ``valid_fields``
    set to ``true``. Otherwise the pointer moves back to ``retry_node_id``,
    at most ``max_retries`` times per session.
    """

    node_id: str = Field(min_length=1)
    retry_node_id: str = Field(min_length=1)
    max_retries: int = Field(default=3, ge=0)
    valid_fields: tuple[str, ...] = VALID_FIELDS

    def passes(self, output: Any) -> bool:
        if not isinstance(output, dict):
            return False
        return any(output.get(key) is True for key in self.valid_fields)


class FlowDefinition(_Model):
    flow_id: str = Field(min_length=1)
    name: str = ""
    description: str | None = None
    nodes: tuple[NodeDeclaration, ...]
    continue_on_failure: bool = False
    routes: tuple[RetryRoute, ...] = ()

    @model_validator(mode="after")
    def _check_nodes(self) -> FlowDefinition:
        if not self.nodes:
            raise ValueError("A flow needs at least one node")
        seen: set[str] = set()
        for node in self.nodes:
            if node.node_id in seen:
                raise ValueError(f"Duplicate node id: {node.node_id}")
            seen.add(node.node_id)
        checked: set[str] = set()
        for route in self.routes:
            check = self.index_of(route.node_id)
            target = self.index_of(route.retry_node_id)
            if check is None or target is None:
                raise ValueError(f"Retry route references an unknown node: {route.node_id}")
            if target >= check:
                raise ValueError(f"Retry target must come before {route.node_id}")
            if route.node_id in checked:
                raise ValueError(f"Duplicate retry route for {route.node_id}")
            checked.add(route.node_id)
        return self

    def __len__(self) -> int:
        return len(self.nodes)

    def index_of(self, node_id: str) -> int | None:
        for idx, node in enumerate(self.nodes):
            if node.node_id == node_id:
                return idx
        return None

    def route_for(self, node_id: str) -> RetryRoute | None:
        for route in self.routes:
            if route.node_id == node_id:
                return route
        return None

    def with_options(
        self,
        *,
        continue_on_failure: bool | None = None,
        confirmation_nodes: list[str] | None = None,
    ) -> FlowDefinition:
        """Derive a definition with per-request overrides applied."""
        nodes = self.nodes
        if confirmation_nodes is not None:
            unknown = [n for n in confirmation_nodes if self.index_of(n) is None]
            if unknown:
                raise MalformedRequest(f"Unknown confirmation nodes: {', '.join(unknown)}")
            wanted = set(confirmation_nodes)
            nodes = tuple(
                n.model_copy(update={"requires_confirmation": n.node_id in wanted})
                for n in self.nodes
            )
        return self.model_copy(
            update={
                "nodes": nodes,
                "continue_on_failure": (
                    self.continue_on_failure
                    if continue_on_failure is None
                    else continue_on_failure
                ),
            }
        )


class StepResult(_Model):
    """Outcome of one attempted node. Never mutated once recorded."""

    step_index: int = Field(ge=0)
    node_id: str
    output: Any = None
    error: str | None = None
    started_at: datetime
    finished_at: datetime

    @property
    def ok(self) -> bool:
        return self.error is None


class WaitingForOperation(_Model):
    step_index: int
    node_id: str


class FlowState(_Model):
    """Execution snapshot for one run.

    Instances are immutable; the session registry swaps whole snapshots.
    """

    session_id: str
    flow_id: str
    status: FlowStatus = FlowStatus.IDLE
    current_step_index: int = Field(default=0, ge=0)
    context: dict[str, Any] = Field(default_factory=dict)
    steps: tuple[StepResult, ...] = ()
    error: str | None = None
    waiting_for: WaitingForOperation | None = None
    confirmed_step_index: int | None = None
    retries: dict[str, int] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utc_now)

    def is_consistent(self, node_count: int) -> bool:
        """Check the pointer/steps invariants.

        Step indices strictly increase and never pass the pointer. Only the
        fatal failure of an errored flow may sit *at* the pointer; a confirmed
        node is recorded below it because confirm already advanced it.
        """
        if not 0 <= self.current_step_index <= node_count:
            return False
        last = -1
        for step in self.steps:
            if step.step_index <= last:
                return False
            last = step.step_index
            if step.step_index > self.current_step_index:
                return False
            if step.step_index == self.current_step_index and not (
                self.status == FlowStatus.ERROR and not step.ok
            ):
                return False
        if self.confirmed_step_index is not None:
            if self.confirmed_step_index != self.current_step_index - 1:
                return False
        return True


class Credentials(_Model):
    """Opaque credential bundle passed through to node executors."""

    provider: str | None = None
    api_key: SecretStr | None = None
    api_url: str | None = None
    model: str | None = None

    @property
    def has_key(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value().strip())

    def secrets(self) -> list[str]:
        """Secret values that must be redacted from any outgoing text."""
        if self.api_key is None:
            return []
        value = self.api_key.get_secret_value()
        return [value] if value else []
