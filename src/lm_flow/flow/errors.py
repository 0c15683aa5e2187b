"""Error taxonomy for the flow engine.

Every error carries an HTTP status hint so the server can map it without a
lookup table. Node-level failures never escape the engine as exceptions: they
are captured into Step Results (see :class:`NodeExecutionError`).
"""

from __future__ import annotations


class FlowError(Exception):
    """Base class for engine-level errors."""

    status_code: int = 500
    code: str = "FLOW_ERROR"

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"error": self.code, "message": self.message}
        if self.hint:
            out["hint"] = self.hint
        return out


class SessionNotFound(FlowError):
    """The registry has no record of the session (expired, reaped or never created).

    Callers must start a fresh run instead of retrying the same call.
    """

    status_code = 404
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session not found: {session_id}",
            hint=(
                "The session may have been cleaned up. "
                "Start a new workflow by calling execute without a sessionId."
            ),
        )
        self.session_id = session_id


class FlowNotFound(FlowError):
    status_code = 404
    code = "FLOW_NOT_FOUND"

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"Flow not found: {flow_id}")
        self.flow_id = flow_id


class CredentialMissing(FlowError):
    """A node needs credentials the caller did not supply.

    Raised before the step loop starts so no session is half-advanced.
    """

    status_code = 401
    code = "API_KEY_MISSING"

    def __init__(self, node_ids: list[str]) -> None:
        super().__init__(
            "API key not configured. Please fill in your API key in AI Settings.",
            hint=f"Nodes requiring credentials: {', '.join(node_ids)}",
        )
        self.node_ids = node_ids


class MalformedRequest(FlowError):
    status_code = 400
    code = "MALFORMED_REQUEST"


class SessionBusy(FlowError):
    """Another run is already advancing this session."""

    status_code = 409
    code = "SESSION_BUSY"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} is already being advanced by another run")
        self.session_id = session_id


class IllegalTransitionError(FlowError, ValueError):
    status_code = 409
    code = "ILLEGAL_TRANSITION"


class NodeExecutionError(FlowError):
    """A node executor failed.

    Only used to carry the (already redacted) failure into the Step Result and
    logs; the engine decides whether it is fatal based on continueOnFailure.
    """

    code = "NODE_EXECUTION_ERROR"

    def __init__(self, node_id: str, message: str) -> None:
        super().__init__(message)
        self.node_id = node_id
