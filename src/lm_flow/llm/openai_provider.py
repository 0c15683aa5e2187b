"""OpenAI-compatible LLM provider (OpenAI, DeepSeek, custom endpoints)."""

import logging
from typing import Any

from openai import OpenAI, OpenAIError

from lm_flow.core.config import LLMConfig
from lm_flow.llm.provider import LLMError, LLMProvider

logger = logging.getLogger(__name__)

_COMPLETIONS_SUFFIX = "/chat/completions"


def normalize_base_url(url: str | None) -> str | None:
    """Accept either a base URL or a full ``.../chat/completions`` endpoint."""
    if not url:
        return None
    url = url.rstrip("/")
    if url.endswith(_COMPLETIONS_SUFFIX):
        url = url[: -len(_COMPLETIONS_SUFFIX)]
    return url


class OpenAIProvider(LLMProvider):
    """Chat completions through the ``openai`` SDK."""

    def __init__(
        self,
        config: LLMConfig,
        *,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        name: str = "openai",
    ) -> None:
        """Initialize the provider.

        Args:
            config: LLM configuration (defaults and timeouts).
            api_key: Caller API key. Custom endpoints may run without one.
            model: Model name to request.
            base_url: Endpoint override; ``None`` uses the SDK default.
            name: Provider label used in logs.
        """
        self.config = config
        self.name = name
        self.model = model
        self.client = OpenAI(
            # The SDK refuses an empty key even for endpoints that ignore it.
            api_key=api_key or "unused",
            base_url=normalize_base_url(base_url),
            timeout=config.timeout_seconds,
        )

        logger.debug(f"{name} provider initialized with model: {model}")

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        response_format: str | None = None,
        **kwargs: Any,
    ) -> str:
        temp = temperature if temperature is not None else self.config.temperature
        if response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        logger.debug(f"Generating chat completion with {len(messages)} messages")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore
                max_tokens=max_tokens or self.config.max_tokens,
                temperature=temp,
                **kwargs,
            )
        except OpenAIError as e:
            raise LLMError(f"LLM API error: {e}") from e

        content = response.choices[0].message.content or ""
        logger.debug(f"Generated {len(content)} characters")

        return content
