"""LLM package initialization."""

from lm_flow.llm.factory import LLMFactory
from lm_flow.llm.provider import LLMError, LLMProvider

__all__ = [
    "LLMError",
    "LLMFactory",
    "LLMProvider",
]
