"""Tests for prompt_alchemy/providers -- structured parsing and SDK request shaping, no real API calls."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.config_loader import ModelConfig
from prompt_alchemy.models import LLMRequest, Message
from prompt_alchemy.providers.anthropic import AnthropicProvider
from prompt_alchemy.providers.base import ProviderError, StructuredOutputError, parse_structured_output
from prompt_alchemy.providers.gemini import GeminiProvider
from prompt_alchemy.providers.openai_provider import OpenAIProvider
from prompt_alchemy.schemas import GuardReview

_REVIEW_JSON = '{"passed": true, "issues": [], "revised_prompt": null, "variables": ["a"]}'


def _request(schema=GuardReview) -> LLMRequest:
    return LLMRequest(
        model="m",
        messages=[Message("system", "be strict"), Message("user", "hi"), Message("model", "hello")],
        output_schema=schema,
        stage="guard_review",
    )


def test_parse_plain_json():
    review = parse_structured_output("gpt", _REVIEW_JSON, GuardReview)
    assert review.passed is True
    assert review.variables == ["a"]


def test_parse_fenced_json():
    review = parse_structured_output("gpt", f"```json\n{_REVIEW_JSON}\n```", GuardReview)
    assert review.passed is True


def test_parse_json_with_leading_prose():
    review = parse_structured_output("gpt", f"Here you go: {_REVIEW_JSON} thanks", GuardReview)
    assert review.variables == ["a"]


def test_parse_invalid_json_raises():
    with pytest.raises(StructuredOutputError, match="not valid JSON"):
        parse_structured_output("gpt", "not json at all", GuardReview)


def test_parse_schema_mismatch_raises():
    with pytest.raises(StructuredOutputError, match="GuardReview validation"):
        parse_structured_output("gpt", '{"issues": []}', GuardReview)


def _cfg(provider: str) -> ModelConfig:
    return ModelConfig(
        id=provider,
        label=provider,
        provider=provider,
        model=f"{provider}-model",
        api_key_env="TEST_PROVIDER_KEY",
        max_tokens=256,
    )


@pytest.mark.parametrize("provider_cls", [OpenAIProvider, AnthropicProvider, GeminiProvider])
def test_missing_api_key_raises(monkeypatch, provider_cls):
    monkeypatch.delenv("TEST_PROVIDER_KEY", raising=False)
    with pytest.raises(ProviderError, match="Missing API key"):
        provider_cls(_cfg("x"))


async def test_openai_request_shape(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "sk-test")
    provider = OpenAIProvider(_cfg("openai"))
    create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=_REVIEW_JSON))],
        usage=SimpleNamespace(total_tokens=12),
    ))
    provider._client = MagicMock()
    provider._client.chat.completions.create = create

    response = await provider.generate(_request())

    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "openai-model"
    assert [m["role"] for m in kwargs["messages"]] == ["system", "user", "assistant"]
    assert kwargs["response_format"] == {"type": "json_object"}
    assert response.output.passed is True
    assert response.token_count == 12


async def test_openai_plain_text_has_no_response_format(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "sk-test")
    provider = OpenAIProvider(_cfg("openai"))
    create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="OK"))], usage=None,
    ))
    provider._client = MagicMock()
    provider._client.chat.completions.create = create

    response = await provider.generate(_request(schema=None))

    assert "response_format" not in create.await_args.kwargs
    assert response.content == "OK"
    assert response.output is None


async def test_openai_sdk_error_wrapped(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "sk-test")
    provider = OpenAIProvider(_cfg("openai"))
    provider._client = MagicMock()
    provider._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("503 overloaded"))

    with pytest.raises(ProviderError, match="API call failed: 503 overloaded"):
        await provider.generate(_request())


async def test_openai_empty_content_raises(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "sk-test")
    provider = OpenAIProvider(_cfg("openai"))
    provider._client = MagicMock()
    provider._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))

    with pytest.raises(ProviderError, match="Empty response"):
        await provider.generate(_request())


async def test_anthropic_request_shape(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "sk-ant-test")
    provider = AnthropicProvider(_cfg("anthropic"))
    create = AsyncMock(return_value=SimpleNamespace(
        content=[SimpleNamespace(type="text", text=_REVIEW_JSON)],
        usage=SimpleNamespace(input_tokens=5, output_tokens=7),
    ))
    provider._client = MagicMock()
    provider._client.messages.create = create

    response = await provider.generate(_request())

    kwargs = create.await_args.kwargs
    assert kwargs["system"] == "be strict"
    assert [m["role"] for m in kwargs["messages"]] == ["user", "assistant"]
    assert response.token_count == 12
    assert response.output.passed is True


async def test_gemini_request_shape(monkeypatch):
    monkeypatch.setenv("TEST_PROVIDER_KEY", "gm-test")
    provider = GeminiProvider(_cfg("google"))
    generate_content = AsyncMock(return_value=SimpleNamespace(text=_REVIEW_JSON, usage_metadata=None))
    provider._client = MagicMock()
    provider._client.aio.models.generate_content = generate_content

    response = await provider.generate(_request())

    kwargs = generate_content.await_args.kwargs
    assert kwargs["config"].system_instruction == "be strict"
    assert kwargs["config"].response_mime_type == "application/json"
    assert [c.role for c in kwargs["contents"]] == ["user", "model"]
    assert response.output.variables == ["a"]
