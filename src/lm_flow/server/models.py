"""Pydantic models for the HTTP API.

Field names are camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel

from lm_flow.flow.models import Credentials, FlowDefinition


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class AIConfig(_ApiModel):
    provider: str | None = None
    api_key: SecretStr | None = None
    api_url: str | None = None
    model: str | None = None

    def to_credentials(self, cookie_key: str | None = None) -> Credentials:
        api_key = self.api_key
        if api_key is None and cookie_key:
            api_key = SecretStr(cookie_key)
        return Credentials(
            provider=self.provider,
            api_key=api_key,
            api_url=self.api_url,
            model=self.model,
        )


class ExecuteRequest(_ApiModel):
    flow_id: str | None = None
    input: Any = None
    context: dict[str, Any] | None = None
    session_id: str | None = None
    start_index: int | None = None
    partial_state: Any = None
    continue_on_failure: bool | None = None
    confirmation_nodes: list[str] | None = None
    ai_config: AIConfig | None = None

    @property
    def restarts(self) -> bool:
        """Whether this request starts a new run even though it names a session."""
        return self.start_index is not None or self.partial_state is not None


class ControlRequest(_ApiModel):
    session_id: str = Field(min_length=1)
    action: str
    data: Any = None
    operation_action: str | None = None


class ControlResponse(_ApiModel):
    success: bool
    state: dict[str, Any]


class NodeSummary(_ApiModel):
    node_id: str
    node_type: str
    name: str
    description: str | None = None
    requires_confirmation: bool
    show_response: bool


class FlowSummary(_ApiModel):
    flow_id: str
    name: str
    description: str | None = None
    continue_on_failure: bool
    nodes: list[NodeSummary] = Field(default_factory=list)

    @classmethod
    def from_definition(cls, definition: FlowDefinition) -> FlowSummary:
        return cls(
            flow_id=definition.flow_id,
            name=definition.name,
            description=definition.description,
            continue_on_failure=definition.continue_on_failure,
            nodes=[
                NodeSummary(
                    node_id=n.node_id,
                    node_type=n.node_type,
                    name=n.name,
                    description=n.description,
                    requires_confirmation=n.requires_confirmation,
                    show_response=n.show_response,
                )
                for n in definition.nodes
            ],
        )


class SessionSummary(_ApiModel):
    session_id: str
    flow_id: str
    status: str
    current_step_index: int
    closed: bool
