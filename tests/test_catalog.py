"""Tests for prompt_alchemy/catalog.py."""

from dataclasses import replace

import pytest

from prompt_alchemy.catalog import build_provider, resolve_model_config
from prompt_alchemy.errors import ConfigurationError
from prompt_alchemy.providers.anthropic import AnthropicProvider
from prompt_alchemy.providers.openai_provider import OpenAIProvider


def test_resolve_by_id_and_model_string(sample_app_config):
    assert resolve_model_config(sample_app_config, "claude").id == "claude"
    assert resolve_model_config(sample_app_config, "claude-test-1").id == "claude"


def test_unknown_or_missing_falls_back_to_default(sample_app_config):
    assert resolve_model_config(sample_app_config, "nope").id == "gpt"
    assert resolve_model_config(sample_app_config, None).id == "gpt"


def test_bad_default_falls_back_to_first(sample_app_config):
    config = replace(sample_app_config, defaults=replace(sample_app_config.defaults, model_id="gone"))
    assert resolve_model_config(config, None).id == "gpt"


def test_empty_catalog_raises(sample_app_config):
    with pytest.raises(ConfigurationError, match="Missing model catalog"):
        resolve_model_config(replace(sample_app_config, models={}), None)


def test_build_provider_picks_class(monkeypatch, sample_app_config):
    monkeypatch.setenv("TEST_OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("TEST_ANTHROPIC_API_KEY", "sk-ant-test")
    assert isinstance(build_provider(sample_app_config.models["gpt"]), OpenAIProvider)
    assert isinstance(build_provider(sample_app_config.models["claude"]), AnthropicProvider)


def test_build_provider_missing_key_is_configuration_error(monkeypatch, sample_model_config):
    monkeypatch.delenv("TEST_OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError, match="Missing API key"):
        build_provider(sample_model_config)


def test_build_provider_unknown_kind(sample_model_config):
    with pytest.raises(ConfigurationError, match="Unknown provider"):
        build_provider(replace(sample_model_config, provider="mystery"))
