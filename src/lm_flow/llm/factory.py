"""Factory for creating LLM providers."""

import logging
from dataclasses import dataclass

from lm_flow.core.config import LLMConfig
from lm_flow.flow.models import Credentials
from lm_flow.llm.anthropic_provider import AnthropicProvider
from lm_flow.llm.openai_provider import OpenAIProvider
from lm_flow.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("deepseek", "openai", "anthropic", "custom")


@dataclass(frozen=True, slots=True)
class ProviderChoice:
    provider: str
    model: str | None
    url: str | None


def resolve(
    config: LLMConfig,
    credentials: Credentials | None,
    *,
    provider: str | None = None,
    model: str | None = None,
    api_url: str | None = None,
) -> ProviderChoice:
    """Pick provider, model and URL.

    Caller credentials win over the node's settings, which win over
    configured defaults.
    """
    creds = credentials or Credentials()
    name = creds.provider or provider or config.default_provider
    return ProviderChoice(
        provider=name,
        model=creds.model or model or config.default_model_for(name),
        url=creds.api_url or api_url,
    )


class LLMFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create(
        config: LLMConfig,
        credentials: Credentials | None,
        *,
        provider: str | None = None,
        model: str | None = None,
        api_url: str | None = None,
    ) -> LLMProvider:
        """Create an LLM provider for one node call.

        Args:
            config: LLM configuration with defaults.
            credentials: Caller credentials (key and optional overrides).
            provider: Provider named by the node, if any.
            model: Model named by the node, if any.
            api_url: Endpoint named by the node, if any.

        Returns:
            Configured LLM provider instance.

        Raises:
            ValueError: If the provider is not supported or is missing a model or URL.
        """
        choice = resolve(config, credentials, provider=provider, model=model, api_url=api_url)
        api_key = (
            credentials.api_key.get_secret_value()
            if credentials is not None and credentials.api_key is not None
            else None
        )
        logger.info(f"Creating LLM provider: {choice.provider}")

        if choice.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {choice.provider}")
        if choice.provider == "custom" and not choice.url:
            raise ValueError("No API URL configured for provider: custom")
        if not choice.model:
            raise ValueError(f"No model configured for provider: {choice.provider}")

        if choice.provider == "anthropic":
            return AnthropicProvider(config, api_key=api_key, model=choice.model, url=choice.url)

        default_url = {"deepseek": config.deepseek_url, "openai": config.openai_url}
        return OpenAIProvider(
            config,
            api_key=api_key,
            model=choice.model,
            base_url=choice.url or default_url.get(choice.provider),
            name=choice.provider,
        )
