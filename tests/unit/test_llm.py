"""Unit tests for the LLM provider layer."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from openai import OpenAIError

from task_flow_orchestrator.llm import LLMFactory, LLMProviderError
from task_flow_orchestrator.llm.openai_provider import OpenAIProvider
from task_flow_orchestrator.orchestrator.config import LLMConfig
from task_flow_orchestrator.orchestrator.errors import ConfigurationError


def _config(**overrides: object) -> LLMConfig:
    return LLMConfig(_env_file=None, **overrides)  # type: ignore[arg-type]


def _client(content: str | None) -> Mock:
    client = Mock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )
    return client


def test_openai_provider_requests_json_completion() -> None:
    client = _client('{"description": "x"}')
    provider = OpenAIProvider(_config(openai_api_key="sk-test"), client=client)

    reply = provider.chat([{"role": "user", "content": "hi"}], json_mode=True)

    assert reply == '{"description": "x"}'
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["max_tokens"] == 1200
    assert kwargs["temperature"] == 0.2
    assert kwargs["response_format"] == {"type": "json_object"}
    assert provider.model_name == "gpt-4o-mini"


def test_openai_provider_empty_content() -> None:
    provider = OpenAIProvider(_config(), client=_client(None))

    assert provider.chat([{"role": "user", "content": "hi"}], temperature=0.0) == ""


def test_openai_errors_become_provider_errors() -> None:
    client = Mock()
    client.chat.completions.create.side_effect = OpenAIError("quota exceeded")
    provider = OpenAIProvider(_config(), client=client)

    with pytest.raises(LLMProviderError, match="quota exceeded"):
        provider.chat([{"role": "user", "content": "hi"}])


def test_factory_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        LLMFactory.create(_config(openai_api_key=None))
