"""Node executor contract and per-type dispatch."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, ClassVar

from lm_flow.flow.errors import MalformedRequest
from lm_flow.flow.models import Credentials, NodeDeclaration

logger = logging.getLogger(__name__)


class ExecutorError(Exception):
    """Raised by an executor when a node cannot produce an output."""


class NodeExecutor(ABC):
    """Runs one kind of node.

    Executors are synchronous and stateless between calls. They receive a
    copy of the context and must not keep references to credentials after
    returning.
    """

    node_type: ClassVar[str]

    def requires_credentials(
        self, node: NodeDeclaration, credentials: Credentials | None = None
    ) -> bool:
        """Whether ``node`` needs an API key, given the caller's credential bundle."""
        return False

    @abstractmethod
    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        credentials: Credentials | None,
    ) -> Any:
        """Run the node and return a JSON-compatible output.

        Args:
            config: The node's opaque configuration.
            context: Read-only view of the flow context.
            credentials: Caller credentials, if any were supplied.

        Returns:
            The node output.

        Raises:
            ExecutorError: If the node fails.
        """


class ExecutorRegistry:
    """Maps node types to executors."""

    def __init__(self, executors: Iterable[NodeExecutor] = ()) -> None:
        self._executors: dict[str, NodeExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: NodeExecutor) -> None:
        if executor.node_type in self._executors:
            logger.warning("Replacing executor for node type %s", executor.node_type)
        self._executors[executor.node_type] = executor

    def types(self) -> list[str]:
        return sorted(self._executors)

    def get(self, node_type: str) -> NodeExecutor:
        try:
            return self._executors[node_type]
        except KeyError:
            raise MalformedRequest(f"No executor registered for node type '{node_type}'") from None

    def requires_credentials(
        self, node: NodeDeclaration, credentials: Credentials | None = None
    ) -> bool:
        return self.get(node.node_type).requires_credentials(node, credentials)

    def execute(
        self,
        node: NodeDeclaration,
        context: Mapping[str, Any],
        credentials: Credentials | None,
    ) -> Any:
        return self.get(node.node_type).execute(node.config, context, credentials)
