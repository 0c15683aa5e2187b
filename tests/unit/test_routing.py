"""Unit tests for check nodes that send the flow back to an earlier node."""

from __future__ import annotations

from flow_helpers import EchoExecutor, ScriptedExecutor, flow, node

from lm_flow.flow.engine import FlowEngine
from lm_flow.flow.models import FlowDefinition, FlowStatus, RetryRoute
from lm_flow.flow.registry import SessionRegistry


def _checked_flow(*outputs: object, max_retries: int = 3) -> FlowDefinition:
    return flow(
        node("A", output="a"),
        node("GEN", output="draft"),
        node("CHECK", "scripted", outputs=list(outputs), outputKey="review"),
        node("D", output="d"),
        routes=(RetryRoute(node_id="CHECK", retry_node_id="GEN", max_retries=max_retries),),
    )


def test_rejected_check_reruns_from_retry_node(
    engine: FlowEngine, registry: SessionRegistry, echo: EchoExecutor, scripted: ScriptedExecutor
) -> None:
    rejection = {"is_valid": False, "reasons": ["too short"]}
    definition = _checked_flow(rejection, {"isValid": True})

    run = engine.run(definition, {"input": "topic"})
    events = list(run)

    assert [(e.type, getattr(e, "node_id", None)) for e in events] == [
        ("step-start", "A"),
        ("step-complete", "A"),
        ("step-start", "GEN"),
        ("step-complete", "GEN"),
        ("step-start", "CHECK"),
        ("step-complete", "CHECK"),
        ("step-start", "GEN"),
        ("step-complete", "GEN"),
        ("step-start", "CHECK"),
        ("step-complete", "CHECK"),
        ("step-start", "D"),
        ("step-complete", "D"),
        ("complete", None),
    ]
    assert all(e.state.is_consistent(len(definition)) for e in events)

    retried = events[5].state
    assert retried.current_step_index == 1
    assert [s.node_id for s in retried.steps] == ["A"]
    assert retried.retries == {"CHECK": 1}

    regenerate = [c for c in echo.calls if c["config"].get("output") == "draft"][1]
    assert regenerate["context"]["previousOutput"] == "a"
    assert regenerate["context"]["review"] == rejection

    final = registry.get_flow_state(run.session_id)
    assert final.status == FlowStatus.COMPLETED
    assert [s.node_id for s in final.steps] == ["A", "GEN", "CHECK", "D"]
    assert final.context["review"] == {"isValid": True}
    assert scripted.calls == 2


def test_retries_are_capped(
    engine: FlowEngine, registry: SessionRegistry, scripted: ScriptedExecutor
) -> None:
    definition = _checked_flow({"valid": False}, max_retries=2)

    run = engine.run(definition)
    events = list(run)

    assert [e.type for e in events[-2:]] == ["step-complete", "error"]
    assert events[-1].error == "Validation failed after 2 retries"
    assert all(e.state.is_consistent(len(definition)) for e in events)
    assert scripted.calls == 3

    final = registry.get_flow_state(run.session_id)
    assert final.status == FlowStatus.ERROR
    assert final.error == "Validation failed after 2 retries"
    assert final.retries == {"CHECK": 3}
    assert "D" not in [s.node_id for s in final.steps]
    assert registry.require(run.session_id).closed


def test_output_without_a_validity_flag_fails_the_check(
    engine: FlowEngine, registry: SessionRegistry
) -> None:
    run = engine.run(_checked_flow("looks fine to me", max_retries=0))
    events = list(run)

    assert events[-1].type == "error"
    assert registry.get_flow_state(run.session_id).status == FlowStatus.ERROR


def test_nodes_without_a_route_ignore_validity(engine: FlowEngine) -> None:
    events = list(engine.run(flow(node("A", output={"valid": False}), node("B"))))

    assert events[-1].type == "complete"
