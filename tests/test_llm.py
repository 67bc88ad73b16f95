"""Tests for the LLM client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from hippo.core.config import Settings
from hippo.llm.base import LLMConfig, ModelClient
from hippo.llm.litellm_adapter import LiteLLMProvider


def completion(content: str | None, model: str = "gpt-4o-mini", usage=True):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model=model,
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=7) if usage else None,
    )


def test_llm_config_defaults():
    """LLMConfig has sensible defaults."""
    config = LLMConfig()
    assert config.model is None
    assert config.max_tokens == 1024
    assert config.temperature == 0.3
    assert not config.json_mode


def test_provider_is_a_model_client():
    assert isinstance(LiteLLMProvider("gpt-4o-mini"), ModelClient)


def test_from_settings(tmp_path):
    settings = Settings(
        _env_file=None,
        data_dir=tmp_path,
        llm_model="ollama/qwen2.5",
        llm_api_base="http://localhost:11434",
    )
    provider = LiteLLMProvider.from_settings(settings)
    assert provider.model == "ollama/qwen2.5"
    assert provider.api_key is None
    assert provider.api_base == "http://localhost:11434"


@pytest.mark.asyncio
async def test_complete_passes_parameters():
    provider = LiteLLMProvider("gpt-4o-mini", api_key="sk-test")
    messages = [{"role": "user", "content": "hi"}]

    with patch(
        "hippo.llm.litellm_adapter.acompletion", AsyncMock(return_value=completion('{"a": 1}'))
    ) as mock:
        response = await provider.complete(messages, LLMConfig(max_tokens=50, json_mode=True))

    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"] == messages
    assert kwargs["max_tokens"] == 50
    assert kwargs["api_key"] == "sk-test"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "api_base" not in kwargs

    assert response.content == '{"a": 1}'
    assert response.input_tokens == 12
    assert response.output_tokens == 7


@pytest.mark.asyncio
async def test_complete_model_override_and_empty_content():
    provider = LiteLLMProvider("gpt-4o-mini")

    with patch(
        "hippo.llm.litellm_adapter.acompletion",
        AsyncMock(return_value=completion(None, model="", usage=False)),
    ) as mock:
        response = await provider.complete([], LLMConfig(model="claude-3-haiku"))

    assert mock.call_args.kwargs["model"] == "claude-3-haiku"
    assert "response_format" not in mock.call_args.kwargs
    assert response.content == ""
    assert response.model == "claude-3-haiku"
    assert response.input_tokens == 0


@pytest.mark.asyncio
async def test_complete_propagates_errors():
    provider = LiteLLMProvider("gpt-4o-mini")

    with patch(
        "hippo.llm.litellm_adapter.acompletion", AsyncMock(side_effect=TimeoutError("slow"))
    ):
        with pytest.raises(TimeoutError):
            await provider.complete([{"role": "user", "content": "hi"}], LLMConfig())
