"""Fixtures for engine, registry and control tests."""

from __future__ import annotations

import pytest
from flow_helpers import BlockingExecutor, EchoExecutor, ScriptedExecutor, SecureExecutor

from lm_flow.flow.control import ControlSurface
from lm_flow.flow.engine import FlowEngine
from lm_flow.flow.registry import SessionRegistry
from lm_flow.nodes.executor import ExecutorRegistry
from lm_flow.nodes.transform import TransformExecutor


@pytest.fixture
def echo() -> EchoExecutor:
    return EchoExecutor()


@pytest.fixture
def blocker() -> BlockingExecutor:
    return BlockingExecutor()


@pytest.fixture
def scripted() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def executors(
    echo: EchoExecutor, blocker: BlockingExecutor, scripted: ScriptedExecutor
) -> ExecutorRegistry:
    return ExecutorRegistry([echo, SecureExecutor(), blocker, scripted, TransformExecutor()])


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(retention_seconds=60)


@pytest.fixture
def engine(registry: SessionRegistry, executors: ExecutorRegistry) -> FlowEngine:
    return FlowEngine(registry, executors)


@pytest.fixture
def control(registry: SessionRegistry) -> ControlSurface:
    return ControlSurface(registry)
