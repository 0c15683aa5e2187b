from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, ClassVar

import pytest

import lm_flow.server.app as server_app
from lm_flow import main as cli
from lm_flow.core.config import EngineConfig, LLMConfig
from lm_flow.flow.models import Credentials, NodeDeclaration
from lm_flow.nodes import default_executors
from lm_flow.nodes.executor import NodeExecutor


class CannedLLM(NodeExecutor):
    node_type: ClassVar[str] = "llm"

    def requires_credentials(
        self, node: NodeDeclaration, credentials: Credentials | None = None
    ) -> bool:
        return True

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        credentials: Credentials | None,
    ) -> Any:
        return "canned reply"


@pytest.fixture(autouse=True)
def _quiet(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LMFLOW_API_KEY", raising=False)
    monkeypatch.setattr(EngineConfig, "setup_logging", lambda self: None)

    def executors(config: LLMConfig | None = None):
        registry = default_executors(config)
        registry.register(CannedLLM())
        return registry

    monkeypatch.setattr(server_app, "default_executors", executors)


def _lines(out: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in out.splitlines() if line.strip()]


def test_flows_lists_builtins(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["flows"]) == 0

    flows = {f["flowId"]: f for f in _lines(capsys.readouterr().out)}
    assert set(flows) == {"chat", "extend-vocabulary", "simulate-dialog"}
    assert flows["simulate-dialog"]["confirmationNodes"] == ["dialog-audio"]


def test_run_requires_a_key(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["run", "chat", "--input", "hello"]) == 3

    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err["error"] == "API_KEY_MISSING"


def test_run_unknown_flow(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["run", "nope"]) == 3
    assert json.loads(capsys.readouterr().err.strip().splitlines()[-1])["error"] == "FLOW_NOT_FOUND"


def test_run_streams_events(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", "chat", "--input", "  hello  ", "--api-key", "k-123"])

    assert code == 0
    events = _lines(capsys.readouterr().out)
    assert [e["type"] for e in events] == [
        "step-start",
        "step-complete",
        "step-start",
        "step-complete",
        "complete",
    ]
    assert events[1]["output"] == "hello"
    assert events[3]["output"] == "canned reply"
    assert "k-123" not in json.dumps(events)


def test_run_auto_confirm(capsys: pytest.CaptureFixture[str]) -> None:
    payload = json.dumps({"words": ["mother"]})
    args = ["run", "extend-vocabulary", "--input", payload, "--api-key", "k-123"]

    assert cli.main(args) == 0
    stopped = _lines(capsys.readouterr().out)
    assert stopped[-1]["status"] == "waiting-operation"

    assert cli.main([*args, "--auto-confirm"]) == 0
    finished = _lines(capsys.readouterr().out)
    assert finished[-1]["type"] == "complete"
    assert finished[-1]["state"]["status"] == "completed"


def test_run_rejects_non_object_context(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["run", "chat", "--context", "[1, 2]", "--api-key", "k"]) == 2
