"""Test configuration and fixtures."""

import pytest

from lm_flow.core.config import LLMConfig
from lm_flow.flow.models import Credentials


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        default_provider="deepseek",
        deepseek_model="deepseek-chat",
        temperature=0.2,
    )


@pytest.fixture
def api_key() -> str:
    return "sk-" + "a1B2" * 8


@pytest.fixture
def credentials(api_key: str) -> Credentials:
    """Provide caller credentials with a realistic-looking key."""
    return Credentials(provider="deepseek", api_key=api_key)
