"""Reference model-call executor."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, ClassVar

from lm_flow.core.config import LLMConfig
from lm_flow.flow.models import Credentials, NodeDeclaration
from lm_flow.llm.factory import LLMFactory, resolve
from lm_flow.llm.provider import LLMError, LLMProvider
from lm_flow.nodes.executor import ExecutorError, NodeExecutor
from lm_flow.nodes.prompts import build_messages, parse_response

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[..., LLMProvider]


class LLMExecutor(NodeExecutor):
    """Calls a chat model with a templated prompt.

    Node config keys: ``provider``, ``model``, ``apiUrl``, ``systemPrompt``,
    ``userPromptTemplate``, ``responseFormat`` (``"json"`` or text),
    ``temperature``, ``maxTokens``.
    """

    node_type: ClassVar[str] = "llm"

    def __init__(
        self,
        config: LLMConfig | None = None,
        provider_builder: ProviderBuilder = LLMFactory.create,
    ) -> None:
        self.config = config or LLMConfig()
        self._build_provider = provider_builder

    def requires_credentials(
        self, node: NodeDeclaration, credentials: Credentials | None = None
    ) -> bool:
        choice = resolve(self.config, credentials, provider=node.config.get("provider"))
        return choice.provider != "custom"

    def execute(
        self,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        credentials: Credentials | None,
    ) -> Any:
        response_format = config.get("responseFormat")
        messages = build_messages(
            context,
            system_prompt=config.get("systemPrompt"),
            user_prompt_template=config.get("userPromptTemplate"),
            response_format=response_format,
        )
        try:
            provider = self._build_provider(
                self.config,
                credentials,
                provider=config.get("provider"),
                model=config.get("model"),
                api_url=config.get("apiUrl"),
            )
            text = provider.chat(
                messages,
                max_tokens=config.get("maxTokens"),
                temperature=config.get("temperature"),
                response_format=response_format,
            )
        except (LLMError, ValueError) as e:
            raise ExecutorError(str(e)) from e

        return parse_response(text, response_format)
