"""FastAPI server adapter for lm-flow.

Design intent:
- Keep execution semantics in `lm_flow.flow.*`
- Keep transport concerns (SSE framing, cookies, status codes, CORS) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from lm_flow.server.app import create_app
