#!/usr/bin/env python3
"""Programmatic flow execution example.

This demonstrates using the engine components directly:

* declare a flow in code with a confirmation gate
* stream its events until it suspends at the gate
* confirm with extra input and resume to completion

No model is called: a small executor uppercases its payload.
"""

from __future__ import annotations

import argparse
import json
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from lm_flow.core.config import EngineConfig
from lm_flow.flow.catalog import FlowBuilder
from lm_flow.flow.context import current_payload
from lm_flow.flow.control import ControlSurface
from lm_flow.flow.engine import FlowEngine
from lm_flow.flow.models import Credentials, NodeDeclaration
from lm_flow.flow.registry import SessionRegistry
from lm_flow.logging import configure_logging
from lm_flow.nodes import ExecutorRegistry, NodeExecutor, TransformExecutor


class ShoutExecutor(NodeExecutor):
    node_type: ClassVar[str] = "shout"

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        credentials: Credentials | None,
    ) -> Any:
        note = context.get("userInput")
        text = str(current_payload(context)).upper()
        return f"{text} ({note})" if note else text


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a gated flow (programmatic example).")
    parser.add_argument("--input", default="  hello there  ", help="Run input")
    parser.add_argument("--note", default="approved", help="Text sent with the confirmation")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = EngineConfig()
    configure_logging(config.log_level)

    definition = (
        FlowBuilder("shout", "Shout")
        .transform("tidy", "Tidy Input", "format", format="text")
        .add_node(
            NodeDeclaration(node_id="shout", node_type="shout", requires_confirmation=True)
        )
        .build()
    )
    registry = SessionRegistry(retention_seconds=config.session_retention_seconds)
    engine = FlowEngine(registry, ExecutorRegistry([TransformExecutor(), ShoutExecutor()]))
    control = ControlSurface(registry)

    run = engine.run(definition, {"input": args.input})
    for event in run:
        print(json.dumps({"type": event.type, "status": event.state.status.value}))

    control.confirm(run.session_id, args.note)
    for event in engine.run(session_id=run.session_id):
        print(json.dumps({"type": event.type, "status": event.state.status.value}))

    final = registry.get_flow_state(run.session_id)
    print(f"Final output: {final.context['previousOutput']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
