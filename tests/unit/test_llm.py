"""Unit tests for LLM providers, the provider factory and the model-call executor."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import Mock

import pytest
import requests
from openai import OpenAIError
from pydantic import SecretStr

from lm_flow.core.config import LLMConfig
from lm_flow.flow.models import Credentials, NodeDeclaration
from lm_flow.llm.anthropic_provider import AnthropicProvider
from lm_flow.llm.factory import LLMFactory, resolve
from lm_flow.llm.openai_provider import OpenAIProvider, normalize_base_url
from lm_flow.llm.provider import LLMError, LLMProvider
from lm_flow.nodes.executor import ExecutorError
from lm_flow.nodes.llm import LLMExecutor


class ScriptedProvider(LLMProvider):
    name = "scripted"

    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def chat(self, messages, max_tokens=None, temperature=None, response_format=None, **kwargs):
        self.calls.append(
            {
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "response_format": response_format,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


# --- factory ---------------------------------------------------------------


def test_resolve_precedence(llm_config: LLMConfig) -> None:
    assert resolve(llm_config, None).provider == "deepseek"
    assert resolve(llm_config, None).model == "deepseek-chat"

    node_choice = resolve(llm_config, None, provider="openai", model="gpt-4o-mini")
    assert (node_choice.provider, node_choice.model) == ("openai", "gpt-4o-mini")

    creds = Credentials(provider="anthropic", api_url="https://proxy.example/v1/messages")
    caller_choice = resolve(llm_config, creds, provider="openai")
    assert caller_choice.provider == "anthropic"
    assert caller_choice.model == llm_config.anthropic_model
    assert caller_choice.url == "https://proxy.example/v1/messages"


def test_factory_builds_openai_compatible_providers(
    llm_config: LLMConfig, credentials: Credentials
) -> None:
    provider = LLMFactory.create(llm_config, credentials)

    assert isinstance(provider, OpenAIProvider)
    assert provider.name == "deepseek"
    assert provider.model == "deepseek-chat"
    assert str(provider.client.base_url).rstrip("/") == llm_config.deepseek_url


def test_factory_builds_anthropic(llm_config: LLMConfig, api_key: str) -> None:
    creds = Credentials(provider="anthropic", api_key=SecretStr(api_key))

    provider = LLMFactory.create(llm_config, creds)

    assert isinstance(provider, AnthropicProvider)
    assert provider.url == llm_config.anthropic_url


def test_factory_rejects_bad_choices(llm_config: LLMConfig) -> None:
    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        LLMFactory.create(llm_config, None, provider="mystery")
    with pytest.raises(ValueError, match="No API URL"):
        LLMFactory.create(llm_config, None, provider="custom")
    with pytest.raises(ValueError, match="No model"):
        LLMFactory.create(llm_config, None, provider="custom", api_url="http://localhost:8080")
    with pytest.raises(ValueError, match="API key is required"):
        LLMFactory.create(llm_config, None, provider="anthropic")


def test_factory_custom_endpoint_without_key(llm_config: LLMConfig) -> None:
    provider = LLMFactory.create(
        llm_config,
        None,
        provider="custom",
        model="local-model",
        api_url="http://localhost:8080/v1/chat/completions",
    )

    assert isinstance(provider, OpenAIProvider)
    assert str(provider.client.base_url).rstrip("/") == "http://localhost:8080/v1"


# --- providers -------------------------------------------------------------


def test_normalize_base_url() -> None:
    assert normalize_base_url(None) is None
    assert normalize_base_url("https://api.example/v1/") == "https://api.example/v1"
    assert normalize_base_url("https://api.example/v1/chat/completions") == "https://api.example/v1"


def test_openai_provider_requests_json_mode(llm_config: LLMConfig) -> None:
    provider = OpenAIProvider(llm_config, api_key="sk-test", model="deepseek-chat")
    provider.client = Mock()
    provider.client.chat.completions.create.return_value = _completion('{"ok": true}')

    text = provider.chat([{"role": "user", "content": "json please"}], response_format="json")

    assert text == '{"ok": true}'
    kwargs = provider.client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["model"] == "deepseek-chat"
    assert kwargs["temperature"] == llm_config.temperature
    assert kwargs["max_tokens"] == llm_config.max_tokens


def test_openai_provider_wraps_sdk_errors(llm_config: LLMConfig) -> None:
    provider = OpenAIProvider(llm_config, api_key="sk-test", model="m")
    provider.client = Mock()
    provider.client.chat.completions.create.side_effect = OpenAIError("rate limited")

    with pytest.raises(LLMError, match="rate limited"):
        provider.chat([{"role": "user", "content": "hi"}])


def test_openai_provider_empty_content(llm_config: LLMConfig) -> None:
    provider = OpenAIProvider(llm_config, api_key="sk-test", model="m")
    provider.client = Mock()
    provider.client.chat.completions.create.return_value = _completion(None)

    assert provider.chat([{"role": "user", "content": "hi"}]) == ""


def test_anthropic_provider_lifts_system_messages(llm_config: LLMConfig) -> None:
    session = Mock(spec=requests.Session)
    session.post.return_value = Mock(
        status_code=200, json=Mock(return_value={"content": [{"type": "text", "text": "hola"}]})
    )
    provider = AnthropicProvider(llm_config, api_key="key-123", model="claude", session=session)

    text = provider.chat(
        [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Say hi"},
        ],
        max_tokens=64,
    )

    assert text == "hola"
    call = session.post.call_args
    assert call.args[0] == llm_config.anthropic_url
    assert call.kwargs["json"]["system"] == "Be brief."
    assert call.kwargs["json"]["messages"] == [{"role": "user", "content": "Say hi"}]
    assert call.kwargs["json"]["max_tokens"] == 64
    assert call.kwargs["headers"]["x-api-key"] == "key-123"
    assert call.kwargs["headers"]["anthropic-version"] == llm_config.anthropic_version


def test_anthropic_provider_errors(llm_config: LLMConfig) -> None:
    session = Mock(spec=requests.Session)
    provider = AnthropicProvider(llm_config, api_key="key-123", model="claude", session=session)
    messages = [{"role": "user", "content": "hi"}]

    session.post.return_value = Mock(status_code=401, text="invalid x-api-key")
    with pytest.raises(LLMError, match="401"):
        provider.chat(messages)

    session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(LLMError, match="refused"):
        provider.chat(messages)


# --- executor --------------------------------------------------------------


def _llm_node(**config: Any) -> NodeDeclaration:
    return NodeDeclaration(node_id="ask", node_type="llm", config=config)


def test_executor_renders_prompt_and_parses_json(
    llm_config: LLMConfig, credentials: Credentials
) -> None:
    provider = ScriptedProvider(reply='{"words": ["uncle", "aunt"]}')
    builder = Mock(return_value=provider)
    executor = LLMExecutor(llm_config, provider_builder=builder)
    node = _llm_node(
        systemPrompt="You are a tutor.",
        userPromptTemplate="Extend: {{input}}",
        responseFormat="json",
        maxTokens=200,
        model="deepseek-reasoner",
    )

    output = executor.execute(
        node.config,
        {"input": "family words", "previousOutput": None, "userLanguage": "zh"},
        credentials,
    )

    assert output == {"words": ["uncle", "aunt"]}
    builder.assert_called_once_with(
        llm_config, credentials, provider=None, model="deepseek-reasoner", api_url=None
    )
    call = provider.calls[0]
    assert call["max_tokens"] == 200
    assert call["response_format"] == "json"
    system, user = call["messages"]
    assert system["role"] == "system"
    assert "Chinese" in system["content"]
    assert "Extend: family words" in user["content"]


def test_executor_text_reply_is_returned_raw(llm_config: LLMConfig) -> None:
    executor = LLMExecutor(llm_config, provider_builder=Mock(return_value=ScriptedProvider("Hi!")))

    assert executor.execute({}, {"input": "hello", "previousOutput": None}, None) == "Hi!"


@pytest.mark.parametrize("error", [LLMError("upstream 500"), ValueError("no model")])
def test_executor_wraps_provider_failures(llm_config: LLMConfig, error: Exception) -> None:
    executor = LLMExecutor(llm_config, provider_builder=Mock(return_value=ScriptedProvider(error=error)))

    with pytest.raises(ExecutorError, match=str(error)):
        executor.execute({}, {"input": "hello", "previousOutput": None}, None)


def test_executor_credential_requirement(llm_config: LLMConfig) -> None:
    executor = LLMExecutor(llm_config)

    assert executor.requires_credentials(_llm_node())
    assert executor.requires_credentials(_llm_node(provider="anthropic"))
    assert not executor.requires_credentials(_llm_node(provider="custom"))
    assert not executor.requires_credentials(_llm_node(), Credentials(provider="custom"))
