"""CLI entrypoint for lm-flow."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any

from pydantic import SecretStr, ValidationError

from lm_flow import __version__
from lm_flow.core.config import EngineConfig
from lm_flow.flow.catalog import default_catalog
from lm_flow.flow.context import INPUT
from lm_flow.flow.control import ControlSurface
from lm_flow.flow.errors import FlowError
from lm_flow.flow.events import FlowEvent, StatusChanged
from lm_flow.flow.models import Credentials, FlowStatus

logger = logging.getLogger(__name__)


def _parse_input(value: str | None) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lm-flow",
        description="Run resumable LLM pipelines",
    )
    parser.add_argument("--version", action="version", version=f"lm-flow {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", default=None, help="Bind host (default: LMFLOW_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: LMFLOW_PORT)")

    subparsers.add_parser("flows", help="List built-in flows")

    run = subparsers.add_parser("run", help="Run a built-in flow and print events as JSON lines")
    run.add_argument("flow_id", help="Flow id, e.g. 'chat'")
    run.add_argument("--input", default=None, help="Run input (JSON, or a plain string)")
    run.add_argument(
        "--context",
        default=None,
        help="Extra context entries as a JSON object, e.g. '{\"userLanguage\": \"en\"}'",
    )
    run.add_argument(
        "--auto-confirm",
        action="store_true",
        help="Confirm every gated node instead of stopping at it",
    )
    run.add_argument("--provider", default=None, help="LLM provider override")
    run.add_argument("--model", default=None, help="LLM model override")
    run.add_argument("--api-url", default=None, help="LLM endpoint override")
    run.add_argument(
        "--api-key",
        default=os.environ.get("LMFLOW_API_KEY"),
        help="LLM API key (default: LMFLOW_API_KEY)",
    )
    return parser


def _print_event(event: FlowEvent) -> None:
    print(json.dumps(event.to_json(), ensure_ascii=False, default=str), flush=True)


def _serve(args: argparse.Namespace, config: EngineConfig) -> int:
    import uvicorn

    from lm_flow.server.app import create_app
    from lm_flow.server.config import ServerSettings

    settings = ServerSettings()
    host = args.host or settings.host
    port = args.port or settings.port
    app = create_app(settings=settings, config=config)
    logger.info("Starting server", extra={"host": host, "port": port})
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    return 0


def _flows() -> int:
    for definition in default_catalog().list():
        gated = [n.node_id for n in definition.nodes if n.requires_confirmation]
        print(
            json.dumps(
                {
                    "flowId": definition.flow_id,
                    "name": definition.name,
                    "nodes": [n.node_id for n in definition.nodes],
                    "confirmationNodes": gated,
                },
                ensure_ascii=False,
            )
        )
    return 0


def _run(args: argparse.Namespace, config: EngineConfig) -> int:
    from lm_flow.server.app import build_engine

    engine = build_engine(config)
    control = ControlSurface(engine.registry)
    definition = default_catalog().get(args.flow_id)

    context = _parse_input(args.context) or {}
    if not isinstance(context, dict):
        print("--context must be a JSON object", file=sys.stderr)
        return 2
    context = {INPUT: _parse_input(args.input), **context}

    credentials = Credentials(
        provider=args.provider,
        api_key=SecretStr(args.api_key) if args.api_key else None,
        api_url=args.api_url,
        model=args.model,
    )

    run = engine.run(definition, context, credentials=credentials)
    session_id = run.session_id
    while True:
        last: FlowEvent | None = None
        for event in run:
            _print_event(event)
            last = event
        waiting = (
            isinstance(last, StatusChanged) and last.status == FlowStatus.WAITING_OPERATION
        )
        if not (waiting and args.auto_confirm):
            break
        control.confirm(session_id)
        run = engine.run(session_id=session_id, credentials=credentials)

    state = engine.registry.get_flow_state(session_id)
    return 1 if state.status == FlowStatus.ERROR else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    config.setup_logging()

    try:
        if args.command == "serve":
            return _serve(args, config)
        if args.command == "flows":
            return _flows()
        if args.command == "run":
            return _run(args, config)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except FlowError as e:
        logger.warning(e.message, extra={"code": e.code})
        print(json.dumps(e.to_json(), ensure_ascii=False), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
