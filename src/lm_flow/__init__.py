"""lm-flow.

A small execution engine for LLM pipelines that can pause for a human:
- pipelines are ordered node declarations (transform, llm, ...)
- runs stream progress events and suspend at confirmation gates
- suspended runs live in an in-memory session registry and are resumed
  by later requests
"""

__version__ = "0.1.0"

from lm_flow.core.config import EngineConfig

__all__ = ["__version__", "EngineConfig"]
