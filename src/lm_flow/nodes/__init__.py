"""Node executors."""

from lm_flow.core.config import LLMConfig
from lm_flow.nodes.executor import ExecutorError, ExecutorRegistry, NodeExecutor
from lm_flow.nodes.llm import LLMExecutor
from lm_flow.nodes.transform import TransformExecutor


def default_executors(config: LLMConfig | None = None) -> ExecutorRegistry:
    """Registry with the built-in ``transform`` and ``llm`` executors."""
    return ExecutorRegistry([TransformExecutor(), LLMExecutor(config)])


__all__ = [
    "ExecutorError",
    "ExecutorRegistry",
    "LLMExecutor",
    "NodeExecutor",
    "TransformExecutor",
    "default_executors",
]
