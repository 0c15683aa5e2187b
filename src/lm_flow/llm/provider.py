"""Abstract base class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Any


class LLMError(Exception):
    """A provider call failed (transport error, non-2xx status, empty reply)."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    This interface allows pluggable chat backends (OpenAI-compatible, Anthropic).
    Providers are built per call from the caller's credentials and are not
    shared between sessions.
    """

    name: str = "provider"

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        response_format: str | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate chat completion from messages.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            response_format: ``"json"`` to request a JSON object reply.
            **kwargs: Additional provider-specific parameters.

        Returns:
            Generated chat response text.

        Raises:
            LLMError: If the provider call fails.
        """
        pass
