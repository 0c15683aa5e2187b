"""The step loop that advances a flow.

A run is a lazy iterator of :class:`~lm_flow.flow.events.FlowEvent`. It never
blocks waiting for a human: at a confirmation gate it persists
``waiting-operation`` and simply stops producing events. A later run on the
same session id picks up from the persisted pointer.

Each iteration of the loop has three phases:

1. plan, under the session lock: read the snapshot, decide what to do,
   persist suspension if needed
2. execute the node with a copy of the context, outside the lock
3. commit, under the lock, unless a restart or close happened meanwhile
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lm_flow.flow.context import PREVIOUS_OUTPUT, merge_context, validate_updates, with_output
from lm_flow.flow.errors import (
    CredentialMissing,
    MalformedRequest,
    NodeExecutionError,
    SessionBusy,
    SessionNotFound,
)
from lm_flow.flow.events import (
    FlowCompleted,
    FlowEvent,
    FlowFailed,
    StatusChanged,
    StepCompleted,
    StepFailed,
    StepStarted,
)
from lm_flow.flow.models import (
    Credentials,
    FlowDefinition,
    FlowStatus,
    NodeDeclaration,
    RetryRoute,
    StepResult,
    WaitingForOperation,
    utc_now,
)
from lm_flow.flow.redaction import redact
from lm_flow.flow.registry import Session, SessionRegistry
from lm_flow.nodes.executor import ExecutorError, ExecutorRegistry

logger = logging.getLogger(__name__)


@dataclass
class _Plan:
    events: list[FlowEvent] = field(default_factory=list)
    step_index: int | None = None
    node: NodeDeclaration | None = None
    context: dict[str, Any] = field(default_factory=dict)
    epoch: int = 0


@dataclass
class _Outcome:
    started_at: datetime
    finished_at: datetime
    output: Any = None
    error: str | None = None


class FlowRun:
    """Iterator over the events of one advance of a session.

    The run owns the session from the moment it is created until it reaches a
    terminal or suspended state, or is closed. A later run may take the
    session over while this one is still held by its consumer.
    """

    def __init__(self, engine: FlowEngine, session: Session, credentials: Credentials | None):
        self.session = session
        self._engine = engine
        self._events = engine._advance(session, credentials, owner=self)

    @property
    def session_id(self) -> str:
        return self.session.session_id

    def __iter__(self) -> FlowRun:
        return self

    def __next__(self) -> FlowEvent:
        return next(self._events)

    def close(self) -> None:
        self._events.close()
        self._engine._release(self.session, owner=self)


class FlowEngine:
    def __init__(self, registry: SessionRegistry, executors: ExecutorRegistry) -> None:
        self.registry = registry
        self.executors = executors

    def run(
        self,
        definition: FlowDefinition | None = None,
        initial_context: Mapping[str, Any] | None = None,
        *,
        session_id: str | None = None,
        start_index: int | None = None,
        credentials: Credentials | None = None,
    ) -> FlowRun:
        """Start or continue a flow.

        All validation happens here, before any event is produced:

        - ``session_id`` alone continues that session
        - ``session_id`` with ``start_index`` closes that session and starts a
          new run at ``start_index``
        - no ``session_id`` starts a new run

        Raises:
            SessionNotFound: the session id is unknown.
            SessionBusy: another run is advancing the session.
            MalformedRequest: bad start index, context or node type.
            CredentialMissing: a node ahead needs credentials that were not given.
        """
        if session_id is not None and start_index is None:
            session = self.registry.require(session_id)
            self._check_resumable(session, credentials)
            return self._acquire(session, credentials)

        if session_id is not None:
            previous = self.registry.get(session_id)
            if definition is None and previous is None:
                raise SessionNotFound(session_id)
            if definition is None:
                definition = previous.definition
        else:
            previous = None

        if definition is None:
            raise MalformedRequest("A flow definition is required to start a run")
        start = 0 if start_index is None else start_index
        if not 0 <= start < len(definition):
            raise MalformedRequest(
                f"startIndex {start} is outside [0, {len(definition)}) for flow {definition.flow_id}"
            )
        context = validate_updates(initial_context)
        self._check_credentials(definition, start, credentials)

        if previous is not None:
            self.registry.close(previous.session_id)
            logger.info(
                "Closed session to restart at a new step",
                extra={"session_id": previous.session_id, "step_index": start},
            )

        session = self.registry.create(
            definition,
            context=context,
            current_step_index=start,
            status=FlowStatus.RUNNING,
        )
        return self._acquire(session, credentials)

    def start(
        self,
        definition: FlowDefinition,
        initial_context: Mapping[str, Any] | None = None,
        *,
        start_index: int | None = None,
        credentials: Credentials | None = None,
    ) -> FlowRun:
        return self.run(definition, initial_context, start_index=start_index, credentials=credentials)

    def resume(self, session_id: str, credentials: Credentials | None = None) -> FlowRun:
        return self.run(session_id=session_id, credentials=credentials)

    def _check_resumable(self, session: Session, credentials: Credentials | None) -> None:
        with session.lock:
            state = session.state
            if session.closed or state.status not in (FlowStatus.IDLE, FlowStatus.RUNNING):
                return
            start = (
                state.confirmed_step_index
                if state.confirmed_step_index is not None
                else state.current_step_index
            )
        self._check_credentials(session.definition, start, credentials)

    def _check_credentials(
        self, definition: FlowDefinition, start: int, credentials: Credentials | None
    ) -> None:
        has_key = credentials is not None and credentials.has_key
        missing = []
        for node in definition.nodes[start:]:
            if self.executors.requires_credentials(node, credentials) and not has_key:
                missing.append(node.node_id)
        if missing:
            raise CredentialMissing(missing)

    def _acquire(self, session: Session, credentials: Credentials | None) -> FlowRun:
        with session.lock:
            if session.advancing:
                raise SessionBusy(session.session_id)
            run = FlowRun(self, session, credentials)
            session.owner = run
        return run

    def _release(self, session: Session, owner: FlowRun) -> None:
        with session.lock:
            if session.owner is owner:
                session.owner = None

    def _advance(
        self, session: Session, credentials: Credentials | None, *, owner: FlowRun
    ) -> Iterator[FlowEvent]:
        # Ownership ends before the final events of a suspended or finished run.
        secrets = credentials.secrets() if credentials is not None else []
        try:
            while True:
                with session.lock:
                    plan = self._plan(session)
                    if plan.node is None:
                        self._release(session, owner)
                yield from plan.events
                if plan.node is None or plan.step_index is None:
                    return

                outcome = self._execute(session, plan, credentials, secrets)

                with session.lock:
                    events, stop = self._commit(session, plan, outcome)
                    if stop:
                        self._release(session, owner)
                yield from events
                if stop:
                    return
        finally:
            self._release(session, owner)

    def _plan(self, session: Session) -> _Plan:
        state = session.state
        definition = session.definition
        sid = session.session_id

        if session.closed or state.status.is_terminal:
            return _Plan(events=[StatusChanged(state=state, status=state.status)])

        if state.status == FlowStatus.PAUSED:
            return _Plan(events=[StatusChanged(state=state, status=FlowStatus.PAUSED)])

        if state.status == FlowStatus.WAITING_OPERATION:
            idx = state.current_step_index
            node = definition.nodes[idx]
            return _Plan(
                events=[
                    StepStarted(state=state, step_index=idx, node_id=node.node_id),
                    StatusChanged(state=state, status=FlowStatus.WAITING_OPERATION),
                ]
            )

        if state.status == FlowStatus.IDLE:
            state = self.registry.update(sid, status=FlowStatus.RUNNING)

        if state.confirmed_step_index is not None:
            idx = state.confirmed_step_index
            return _Plan(
                step_index=idx,
                node=definition.nodes[idx],
                context=copy.deepcopy(state.context),
                epoch=session.epoch,
            )

        idx = state.current_step_index
        if idx >= len(definition):
            final = self.registry.close(sid)
            logger.info("Flow completed", extra={"session_id": sid, "flow_id": state.flow_id})
            return _Plan(events=[FlowCompleted(state=final)])

        node = definition.nodes[idx]
        started = StepStarted(state=state, step_index=idx, node_id=node.node_id)
        if node.requires_confirmation:
            waiting = self.registry.update(
                sid,
                status=FlowStatus.WAITING_OPERATION,
                waiting_for=WaitingForOperation(step_index=idx, node_id=node.node_id),
            )
            logger.info(
                "Waiting for confirmation",
                extra={"session_id": sid, "node_id": node.node_id, "step_index": idx},
            )
            return _Plan(
                events=[
                    started,
                    StatusChanged(state=waiting, status=FlowStatus.WAITING_OPERATION),
                ]
            )

        return _Plan(
            events=[started],
            step_index=idx,
            node=node,
            context=copy.deepcopy(state.context),
            epoch=session.epoch,
        )

    def _execute(
        self,
        session: Session,
        plan: _Plan,
        credentials: Credentials | None,
        secrets: list[str],
    ) -> _Outcome:
        assert plan.node is not None
        node = plan.node
        log_extra = {
            "session_id": session.session_id,
            "node_id": node.node_id,
            "step_index": plan.step_index,
        }
        started_at = utc_now()
        try:
            output = self.executors.execute(node, plan.context, credentials)
            try:
                json.dumps(output)
            except (TypeError, ValueError) as e:
                raise ExecutorError(f"Node output is not JSON-compatible: {e}") from e
        except ExecutorError as e:
            failure = NodeExecutionError(node.node_id, redact(str(e) or type(e).__name__, secrets))
            logger.warning("Node failed: %s", failure.message, extra=log_extra)
            return _Outcome(started_at=started_at, finished_at=utc_now(), error=failure.message)
        except Exception as e:
            failure = NodeExecutionError(
                node.node_id, redact(f"{type(e).__name__}: {e}", secrets)
            )
            logger.error("Node executor raised unexpectedly: %s", failure.message, extra=log_extra)
            return _Outcome(started_at=started_at, finished_at=utc_now(), error=failure.message)

        logger.info("Node completed", extra=log_extra)
        return _Outcome(started_at=started_at, finished_at=utc_now(), output=output)

    def _commit(
        self, session: Session, plan: _Plan, outcome: _Outcome
    ) -> tuple[list[FlowEvent], bool]:
        assert plan.node is not None and plan.step_index is not None
        node = plan.node
        idx = plan.step_index
        sid = session.session_id

        if session.closed or session.epoch != plan.epoch:
            logger.info(
                "Discarding stale node result",
                extra={"session_id": sid, "node_id": node.node_id, "step_index": idx},
            )
            return [], False

        state = session.state
        result = StepResult(
            step_index=idx,
            node_id=node.node_id,
            output=outcome.output,
            error=outcome.error,
            started_at=outcome.started_at,
            finished_at=outcome.finished_at,
        )
        steps = (*state.steps, result)

        if outcome.error is None:
            route = session.definition.route_for(node.node_id)
            if route is not None and not route.passes(outcome.output):
                return self._retry(session, route, result, idx)
            new_state = self.registry.update(
                sid,
                steps=steps,
                context=with_output(state.context, outcome.output, output_key=node.output_key),
                current_step_index=max(state.current_step_index, idx + 1),
                confirmed_step_index=None,
            )
            return [
                StepCompleted(
                    state=new_state, step_index=idx, node_id=node.node_id, output=outcome.output
                )
            ], False

        if session.definition.continue_on_failure:
            new_state = self.registry.update(
                sid,
                steps=steps,
                current_step_index=max(state.current_step_index, idx + 1),
                confirmed_step_index=None,
            )
            return [
                StepFailed(state=new_state, step_index=idx, node_id=node.node_id, error=outcome.error)
            ], False

        self.registry.update(
            sid,
            steps=steps,
            status=FlowStatus.ERROR,
            error=outcome.error,
            current_step_index=idx,
            confirmed_step_index=None,
        )
        final = self.registry.close(sid)
        logger.error(
            "Flow failed",
            extra={"session_id": sid, "node_id": node.node_id, "step_index": idx},
        )
        return [
            StepFailed(state=final, step_index=idx, node_id=node.node_id, error=outcome.error),
            FlowFailed(state=final, error=outcome.error),
        ], True

    def _retry(
        self, session: Session, route: RetryRoute, result: StepResult, idx: int
    ) -> tuple[list[FlowEvent], bool]:
        """Move the pointer back to the retry node, or fail once retries run out."""
        state = session.state
        sid = session.session_id
        node = session.definition.nodes[idx]
        attempts = state.retries.get(node.node_id, 0) + 1
        retries = {**state.retries, node.node_id: attempts}
        context = with_output(state.context, result.output, output_key=node.output_key)
        log_extra = {"session_id": sid, "node_id": node.node_id, "step_index": idx}

        if attempts > route.max_retries:
            message = f"Validation failed after {route.max_retries} retries"
            self.registry.update(
                sid,
                steps=(*state.steps, result),
                context=context,
                retries=retries,
                status=FlowStatus.ERROR,
                error=message,
                current_step_index=max(state.current_step_index, idx + 1),
                confirmed_step_index=None,
            )
            final = self.registry.close(sid)
            logger.error("Flow failed: %s", message, extra=log_extra)
            return [
                StepCompleted(
                    state=final, step_index=idx, node_id=node.node_id, output=result.output
                ),
                FlowFailed(state=final, error=message),
            ], True

        target = session.definition.index_of(route.retry_node_id)
        assert target is not None
        kept = tuple(s for s in state.steps if s.step_index < target)
        previous = next((s.output for s in reversed(kept) if s.ok), None)
        new_state = self.registry.update(
            sid,
            steps=kept,
            context=merge_context(context, {PREVIOUS_OUTPUT: previous}, allow_reserved=True),
            retries=retries,
            current_step_index=target,
            confirmed_step_index=None,
        )
        logger.info(
            "Check rejected output, retrying from %s (%d/%d)",
            route.retry_node_id,
            attempts,
            route.max_retries,
            extra=log_extra,
        )
        return [
            StepCompleted(
                state=new_state, step_index=idx, node_id=node.node_id, output=result.output
            )
        ], False
