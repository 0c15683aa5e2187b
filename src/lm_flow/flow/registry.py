"""In-memory session registry.

The registry is the sole owner of sessions. It is an explicit object, so the
server, the CLI and every test build their own instance.

Nothing here survives a process restart. Closed sessions are kept for
``retention_seconds`` so status polling can still read the final state, then
reaped lazily on the next registry access.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from lm_flow.flow.context import new_context
from lm_flow.flow.errors import IllegalTransitionError, SessionNotFound
from lm_flow.flow.models import FlowDefinition, FlowState, FlowStatus, utc_now
from lm_flow.flow.state_machine import transition

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"flow_{uuid.uuid4().hex}"


@dataclass
class Session:
    """One Flow State plus the definition it runs.

    ``lock`` guards every read-modify-write of ``state``. ``epoch`` is bumped
    by restart and close so an executor call that was in flight can tell its
    result is stale. ``owner`` is the run currently advancing the session.
    """

    definition: FlowDefinition
    state: FlowState
    created_at: float
    closed_at: float | None = None
    owner: object | None = field(default=None, repr=False, compare=False)
    epoch: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def closed(self) -> bool:
        return self.closed_at is not None

    @property
    def advancing(self) -> bool:
        return self.owner is not None


@dataclass
class SessionRegistry:
    retention_seconds: float = 300.0
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(
        self,
        definition: FlowDefinition,
        *,
        context: Mapping[str, Any] | None = None,
        current_step_index: int = 0,
        status: FlowStatus = FlowStatus.RUNNING,
    ) -> Session:
        """Register a new session for ``definition`` and return it."""
        state = FlowState(
            session_id=new_session_id(),
            flow_id=definition.flow_id,
            status=status,
            current_step_index=current_step_index,
            context=new_context(context),
        )
        session = Session(definition=definition, state=state, created_at=self.clock())
        with self._lock:
            self._reap_unlocked()
            self._sessions[state.session_id] = session
        logger.info(
            "Session created",
            extra={
                "session_id": state.session_id,
                "flow_id": definition.flow_id,
                "step_index": current_step_index,
            },
        )
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            self._reap_unlocked()
            return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list(self) -> list[Session]:
        with self._lock:
            self._reap_unlocked()
            return list(self._sessions.values())

    def update(self, session_id: str, **changes: Any) -> FlowState:
        """Swap in a new snapshot with ``changes`` applied.

        Status changes go through the transition table. Closed sessions are
        immutable.
        """
        session = self.require(session_id)
        with session.lock:
            if session.closed:
                raise IllegalTransitionError(f"Session {session_id} is closed")
            current = session.state
            status = changes.get("status")
            if status is not None:
                transition(current=current.status, to=status)
            session.state = current.model_copy(update={"updated_at": utc_now(), **changes})
            return session.state

    def close(self, session_id: str) -> FlowState:
        """Close a session. Idempotent; an errored flow keeps its error status."""
        session = self.require(session_id)
        with session.lock:
            if session.closed:
                return session.state
            current = session.state
            final = FlowStatus.ERROR if current.status == FlowStatus.ERROR else FlowStatus.COMPLETED
            session.state = current.model_copy(
                update={
                    "status": final,
                    "waiting_for": None,
                    "confirmed_step_index": None,
                    "updated_at": utc_now(),
                }
            )
            session.closed_at = self.clock()
            session.epoch += 1
            logger.info(
                "Session closed",
                extra={"session_id": session_id, "status": final.value},
            )
            return session.state

    def get_flow_state(self, session_id: str) -> FlowState:
        """Read-only deep copy of the current snapshot."""
        session = self.require(session_id)
        with session.lock:
            return session.state.model_copy(deep=True)

    def reap(self) -> int:
        """Drop closed sessions past the retention window. Returns how many were dropped."""
        with self._lock:
            return self._reap_unlocked()

    def _reap_unlocked(self) -> int:
        now = self.clock()
        expired = [
            sid
            for sid, s in self._sessions.items()
            if s.closed_at is not None and now - s.closed_at >= self.retention_seconds
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Reaped sessions", extra={"count": len(expired)})
        return len(expired)
