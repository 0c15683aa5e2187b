"""FastAPI app factory.

Endpoints are thin wrappers over the engine, the control surface and the
session registry. Every engine-level error maps to a JSON body and the
status code carried by the exception.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from lm_flow import __version__
from lm_flow.core.config import EngineConfig
from lm_flow.flow.catalog import FlowCatalog, default_catalog
from lm_flow.flow.context import INPUT
from lm_flow.flow.control import ControlSurface
from lm_flow.flow.engine import FlowEngine
from lm_flow.flow.errors import FlowError, MalformedRequest
from lm_flow.flow.models import Credentials
from lm_flow.flow.redaction import redact
from lm_flow.flow.registry import SessionRegistry
from lm_flow.nodes import default_executors
from lm_flow.server.config import ServerSettings
from lm_flow.server.models import (
    AIConfig,
    ControlRequest,
    ControlResponse,
    ExecuteRequest,
    FlowSummary,
    SessionSummary,
)
from lm_flow.server.sse import sse_stream

logger = logging.getLogger(__name__)

PARTIAL_STATE = "partialState"


def build_engine(config: EngineConfig) -> FlowEngine:
    registry = SessionRegistry(retention_seconds=config.session_retention_seconds)
    return FlowEngine(registry, default_executors(config.llm))


def create_app(
    engine: FlowEngine | None = None,
    catalog: FlowCatalog | None = None,
    *,
    settings: ServerSettings | None = None,
    config: EngineConfig | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    if engine is None:
        engine = build_engine(config or EngineConfig())
    catalog = catalog or default_catalog()
    control = ControlSurface(engine.registry)

    app = FastAPI(
        title="lm-flow",
        version=__version__,
        description="Resumable LLM pipeline execution with streaming progress.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.catalog = catalog

    # The browser client sends the API-key cookie, so credentials must be allowed.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FlowError)
    def flow_error_handler(request: Request, exc: FlowError) -> JSONResponse:
        body = {k: redact(v) if isinstance(v, str) else v for k, v in exc.to_json().items()}
        log = logger.warning if exc.status_code < 500 else logger.error
        log("Request failed: %s", body.get("message"), extra={"path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        err = MalformedRequest("Invalid request body")
        body = err.to_json()
        body["detail"] = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()
        ]
        return JSONResponse(status_code=err.status_code, content=body)

    def credentials_for(request: Request, ai_config: AIConfig | None) -> Credentials:
        cookie_key = request.cookies.get(settings.api_key_cookie)
        return (ai_config or AIConfig()).to_credentials(cookie_key)

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/api/flows", response_model=list[FlowSummary], response_model_by_alias=True)
    def list_flows() -> list[FlowSummary]:
        return [FlowSummary.from_definition(d) for d in catalog.list()]

    @app.get("/api/flows/{flow_id}", response_model=FlowSummary, response_model_by_alias=True)
    def get_flow(flow_id: str) -> FlowSummary:
        return FlowSummary.from_definition(catalog.get(flow_id))

    @app.post("/api/flow/execute")
    def execute_flow(req: ExecuteRequest, request: Request) -> StreamingResponse:
        credentials = credentials_for(request, req.ai_config)

        if req.session_id and not req.restarts:
            run = engine.run(session_id=req.session_id, credentials=credentials)
        else:
            definition = None
            if req.flow_id:
                definition = catalog.get(req.flow_id).with_options(
                    continue_on_failure=req.continue_on_failure,
                    confirmation_nodes=req.confirmation_nodes,
                )
            elif not req.session_id:
                raise MalformedRequest("flowId is required to start a new flow")

            context: dict[str, Any] = {INPUT: req.input, **(req.context or {})}
            if req.partial_state is not None:
                context[PARTIAL_STATE] = req.partial_state

            start_index = req.start_index
            if req.session_id and start_index is None:
                start_index = 0
            run = engine.run(
                definition,
                context,
                session_id=req.session_id,
                start_index=start_index,
                credentials=credentials,
            )

        logger.info("Streaming flow", extra={"session_id": run.session_id})
        return StreamingResponse(
            sse_stream(run, credentials.secrets()),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Session-Id": run.session_id,
            },
        )

    @app.post("/api/flow/control", response_model=ControlResponse, response_model_by_alias=True)
    def control_flow(req: ControlRequest) -> ControlResponse:
        state = control.control(req.session_id, req.action, req.data, req.operation_action)
        return ControlResponse(success=True, state=state.to_json())

    @app.get("/api/flow/control", response_model=ControlResponse, response_model_by_alias=True)
    def get_flow_state(session_id: str = Query(alias="sessionId", min_length=1)) -> ControlResponse:
        state = engine.registry.get_flow_state(session_id)
        return ControlResponse(success=True, state=state.to_json())

    @app.get(
        "/api/flow/sessions",
        response_model=list[SessionSummary],
        response_model_by_alias=True,
    )
    def list_sessions() -> list[SessionSummary]:
        return [
            SessionSummary(
                session_id=s.session_id,
                flow_id=s.state.flow_id,
                status=s.state.status.value,
                current_step_index=s.state.current_step_index,
                closed=s.closed,
            )
            for s in engine.registry.list()
        ]

    return app
