"""SSE (Server-Sent Events) formatting and streaming.

Each flow event becomes one frame::

    event: step-complete
    data: {"type": "step-complete", "sessionId": "flow_...", ...}

"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator

from lm_flow.flow.engine import FlowRun
from lm_flow.flow.events import FlowEvent
from lm_flow.flow.redaction import redact

logger = logging.getLogger(__name__)


def format_sse(event_type: str, data: object) -> str:
    data_json = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event_type}\ndata: {data_json}\n\n"


def format_sse_event(event: FlowEvent) -> str:
    return format_sse(event.type, event.to_json())


def sse_stream(run: FlowRun, secrets: list[str] | None = None) -> Iterator[str]:
    """Yield SSE frames for a run.

    Starlette iterates sync generators in a worker thread, so the engine's
    blocking provider calls never stall the event loop. The run is closed when
    the client disconnects or the stream ends, which frees the session for the
    next request.
    """
    try:
        for event in run:
            yield format_sse_event(event)
    except Exception as e:
        logger.exception("Flow stream aborted", extra={"session_id": run.session_id})
        message = redact(str(e) or type(e).__name__, secrets or [])
        yield format_sse(
            "error",
            {"type": "error", "sessionId": run.session_id, "error": message, "message": message},
        )
    finally:
        run.close()
