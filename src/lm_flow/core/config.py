"""Core configuration for the flow engine."""

import logging
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["deepseek", "openai", "anthropic", "custom"]


class LLMConfig(BaseSettings):
    """Configuration for the reference LLM node executor.

    Credentials are NOT configured here: they are supplied per request and
    passed straight through to the provider client.
    """

    default_provider: ProviderName = Field(
        default="deepseek",
        description="Provider used when neither the node nor the caller names one",
    )

    deepseek_url: str = Field(
        default="https://api.deepseek.com/v1",
        description="DeepSeek OpenAI-compatible base URL",
    )
    deepseek_model: str = Field(
        default="deepseek-chat",
        description="DeepSeek model to use",
    )

    openai_url: str | None = Field(
        default=None,
        description="OpenAI base URL override (None = SDK default)",
    )
    openai_model: str = Field(
        default="gpt-4",
        description="OpenAI model to use",
    )

    anthropic_url: str = Field(
        default="https://api.anthropic.com/v1/messages",
        description="Anthropic Messages API endpoint",
    )
    anthropic_model: str = Field(
        default="claude-3-5-sonnet-20241022",
        description="Anthropic model to use",
    )
    anthropic_version: str = Field(
        default="2023-06-01",
        description="Value of the anthropic-version header",
    )

    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature when the node does not set one",
    )
    max_tokens: int = Field(
        default=4096,
        gt=0,
        description="Max tokens when the node does not set one",
    )
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Provider request timeout",
    )

    model_config = SettingsConfigDict(
        env_prefix="LMFLOW_LLM_",
        env_file=".env",
        extra="ignore",
    )

    def default_model_for(self, provider: str) -> str | None:
        """Return the configured default model for a provider."""
        return {
            "deepseek": self.deepseek_model,
            "openai": self.openai_model,
            "anthropic": self.anthropic_model,
        }.get(provider)


class EngineConfig(BaseSettings):
    """Main configuration for the flow engine."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    json_logs: bool = Field(
        default=True,
        description="Emit structured JSON logs instead of plain text",
    )

    session_retention_seconds: float = Field(
        default=300.0,
        ge=0,
        description="How long closed sessions stay readable before they are reaped",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="LLM configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="LMFLOW_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        from lm_flow.logging import configure_logging

        if self.json_logs:
            configure_logging(self.log_level)
        else:
            level = getattr(logging, self.log_level.upper(), logging.INFO)
            logging.basicConfig(
                level=level,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )

        if self.debug:
            logging.getLogger("lm_flow").setLevel(logging.DEBUG)
