"""Core configuration for lm-flow."""

from lm_flow.core.config import EngineConfig, LLMConfig

__all__ = [
    "EngineConfig",
    "LLMConfig",
]
