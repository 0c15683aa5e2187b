"""Control operations applied to a session between runs.

Control calls only prepare state. None of them executes a node; the caller
re-invokes the engine to continue streaming.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from lm_flow.flow.context import PREVIOUS_OUTPUT, merge_context, validate_updates
from lm_flow.flow.errors import MalformedRequest
from lm_flow.flow.models import FlowState, FlowStatus
from lm_flow.flow.registry import Session, SessionRegistry
from lm_flow.flow.state_machine import CONTROL_ACTIONS, check_action

logger = logging.getLogger(__name__)

TARGET_STEP_INDEX = "targetStepIndex"
TARGET_NODE_ID = "targetNodeId"


def normalize_data(data: Any) -> dict[str, Any]:
    """Coerce control payloads into a mapping; bare strings become ``userInput``."""
    if data is None:
        return {}
    if isinstance(data, str):
        return {"userInput": data}
    if isinstance(data, Mapping):
        return dict(data)
    raise MalformedRequest("Control data must be an object or a string")


class ControlSurface:
    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    def control(
        self,
        session_id: str,
        action: str,
        data: Any = None,
        operation_action: str | None = None,
    ) -> FlowState:
        """Apply ``action`` to a session and return the resulting state.

        Closed sessions are returned unchanged whatever the action.

        Raises:
            SessionNotFound: unknown session id.
            MalformedRequest: unknown action, bad data or restart target.
            IllegalTransitionError: the action is not allowed from the current status.
        """
        if action not in CONTROL_ACTIONS:
            raise MalformedRequest(
                f"Unknown action '{action}'. Expected one of: {', '.join(CONTROL_ACTIONS)}"
            )
        payload = normalize_data(data)
        session = self.registry.require(session_id)

        with session.lock:
            if session.closed:
                logger.info(
                    "Ignoring control action on closed session",
                    extra={"session_id": session_id, "action": action},
                )
                return session.state
            check_action(action, session.state.status)
            handler = getattr(self, f"_{action}")
            state: FlowState = handler(session, payload, operation_action)

        logger.info(
            "Control action applied",
            extra={
                "session_id": session_id,
                "action": action,
                "status": state.status.value,
                "step_index": state.current_step_index,
            },
        )
        return state

    def pause(self, session_id: str) -> FlowState:
        return self.control(session_id, "pause")

    def resume(self, session_id: str) -> FlowState:
        return self.control(session_id, "resume")

    def confirm(self, session_id: str, data: Any = None) -> FlowState:
        return self.control(session_id, "confirm", data)

    def reject(self, session_id: str) -> FlowState:
        return self.control(session_id, "reject")

    def restart(
        self, session_id: str, data: Any = None, operation_action: str | None = None
    ) -> FlowState:
        return self.control(session_id, "restart", data, operation_action)

    def _pause(self, session: Session, data: dict[str, Any], _op: str | None) -> FlowState:
        return self.registry.update(
            session.session_id, status=FlowStatus.PAUSED, waiting_for=None
        )

    def _resume(self, session: Session, data: dict[str, Any], _op: str | None) -> FlowState:
        return self.registry.update(session.session_id, status=FlowStatus.RUNNING)

    def _confirm(self, session: Session, data: dict[str, Any], _op: str | None) -> FlowState:
        state = session.state
        pointer = state.current_step_index
        return self.registry.update(
            session.session_id,
            context=merge_context(state.context, data),
            confirmed_step_index=pointer,
            current_step_index=pointer + 1,
            status=FlowStatus.RUNNING,
            waiting_for=None,
        )

    def _reject(self, session: Session, data: dict[str, Any], _op: str | None) -> FlowState:
        return self.registry.close(session.session_id)

    def _restart(
        self, session: Session, data: dict[str, Any], operation_action: str | None
    ) -> FlowState:
        state = session.state
        target = self._resolve_target(session, data, operation_action)
        updates = validate_updates(
            {k: v for k, v in data.items() if k not in (TARGET_STEP_INDEX, TARGET_NODE_ID)}
        )

        kept = tuple(s for s in state.steps if s.step_index < target)
        previous = next((s.output for s in reversed(kept) if s.ok), None)
        context = merge_context(state.context, updates)
        context = merge_context(context, {PREVIOUS_OUTPUT: previous}, allow_reserved=True)

        new_state = self.registry.update(
            session.session_id,
            current_step_index=target,
            steps=kept,
            context=context,
            status=FlowStatus.RUNNING,
            error=None,
            waiting_for=None,
            confirmed_step_index=None,
            retries={},
        )
        session.epoch += 1
        return new_state

    def _resolve_target(
        self, session: Session, data: dict[str, Any], operation_action: str | None
    ) -> int:
        definition = session.definition
        if TARGET_STEP_INDEX in data:
            target = data[TARGET_STEP_INDEX]
            if isinstance(target, bool) or not isinstance(target, int):
                raise MalformedRequest(f"{TARGET_STEP_INDEX} must be an integer")
        elif TARGET_NODE_ID in data:
            found = definition.index_of(str(data[TARGET_NODE_ID]))
            if found is None:
                raise MalformedRequest(f"Unknown node id: {data[TARGET_NODE_ID]}")
            target = found
        else:
            named = definition.index_of(operation_action) if operation_action else None
            if named is not None:
                target = named
            elif session.state.confirmed_step_index is not None:
                target = session.state.confirmed_step_index
            else:
                target = session.state.current_step_index

        if not 0 <= target < len(definition):
            raise MalformedRequest(
                f"Restart target {target} is outside [0, {len(definition)})"
            )
        return target
