"""Anthropic Messages API provider.

Talks to the HTTP API directly with ``requests``; system messages are lifted
into the top-level ``system`` field as the Messages API expects.
"""

import logging
from typing import Any

import requests

from lm_flow.core.config import LLMConfig
from lm_flow.llm.provider import LLMError, LLMProvider

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(
        self,
        config: LLMConfig,
        *,
        api_key: str | None,
        model: str,
        url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Anthropic API key is required")
        self.config = config
        self.model = model
        self.url = url or config.anthropic_url
        self._api_key = api_key
        self._session = session or requests.Session()

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        response_format: str | None = None,
        **kwargs: Any,
    ) -> str:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.config.max_tokens,
            "messages": [m for m in messages if m.get("role") != "system"],
            "temperature": temperature if temperature is not None else self.config.temperature,
            **kwargs,
        }
        if system:
            body["system"] = system

        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": self.config.anthropic_version,
        }

        logger.debug(f"Posting {len(body['messages'])} messages to Anthropic")

        try:
            resp = self._session.post(
                self.url, json=body, headers=headers, timeout=self.config.timeout_seconds
            )
        except requests.RequestException as e:
            raise LLMError(f"LLM API error: {e}") from e

        if resp.status_code >= 400:
            raise LLMError(f"LLM API error: {resp.status_code} {resp.text}")

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError(f"LLM API returned invalid JSON: {e}") from e
        blocks = data.get("content") or []
        text = blocks[0].get("text", "") if blocks and isinstance(blocks[0], dict) else ""
        logger.debug(f"Generated {len(text)} characters")
        return text
