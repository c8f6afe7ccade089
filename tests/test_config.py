"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, ModelConfig, OrchestrationSettings, load_config

_ENV_NAMES = (
    "OPENAI_TIMEOUT_MS",
    "OPENAI_MAX_RETRIES",
    "MAX_HISTORY_ITEMS",
    "MAX_QUESTION_ROUNDS",
    "MIN_PROMPT_VARIABLES",
    "TEST_GPT_KEY",
    "TEST_GEMINI_KEY",
    "TEST_BASE_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, settings: dict) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings, allow_unicode=True), encoding="utf-8")
    return path


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    return _write(tmp_path, {
        "defaults": {"model_id": "gemini", "output_format": "xml", "store_dir": "./s", "artifact_dir": "./a"},
        "orchestration": {"max_question_rounds": 4, "variable_count_policy": "strict"},
        "models": {
            "gpt": {
                "label": "GPT",
                "provider": "openai",
                "model": "gpt-test",
                "api_key_env": "TEST_GPT_KEY",
                "base_url_env": "TEST_BASE_URL",
            },
            "gemini": {
                "provider": "google",
                "model": "gemini-test",
                "api_key_env": "TEST_GEMINI_KEY",
                "max_tokens": 4096,
            },
        },
    })


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)
    assert isinstance(config.models["gpt"], ModelConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.model_id == "gemini"
    assert config.defaults.output_format == "xml"
    assert config.defaults.store_dir == Path("./s")
    assert isinstance(config.defaults.artifact_dir, Path)


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    gemini = config.models["gemini"]
    assert gemini.label == "gemini"
    assert gemini.max_tokens == 4096
    assert config.models["gpt"].max_tokens == 8192
    assert config.models["gpt"].base_url is None


def test_orchestration_merges_defaults(minimal_settings):
    settings = load_config(minimal_settings).orchestration
    assert settings.max_question_rounds == 4
    assert settings.variable_count_policy == "strict"
    assert settings.max_retries == OrchestrationSettings().max_retries
    assert settings.min_prompt_variables == 3


def test_available_models_follow_keys(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_GPT_KEY", "sk-test")
    monkeypatch.setenv("TEST_GEMINI_KEY", "   ")
    config = load_config(minimal_settings)
    assert config.available_models == frozenset({"gpt"})


def test_base_url_from_env(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_BASE_URL", "https://proxy.example/v1")
    config = load_config(minimal_settings)
    assert config.models["gpt"].base_url == "https://proxy.example/v1"


def test_env_overrides(minimal_settings, monkeypatch):
    monkeypatch.setenv("OPENAI_TIMEOUT_MS", "2500")
    monkeypatch.setenv("OPENAI_MAX_RETRIES", "5")
    monkeypatch.setenv("MAX_QUESTION_ROUNDS", "0")
    monkeypatch.setenv("MIN_PROMPT_VARIABLES", "abc")
    settings = load_config(minimal_settings).orchestration
    assert settings.request_timeout_sec == 2.5
    assert settings.max_retries == 5
    assert settings.max_question_rounds == 0
    assert settings.min_prompt_variables == 3


def test_default_model_falls_back_to_first(tmp_path):
    path = _write(tmp_path, {"models": {"a": {"model": "m", "api_key_env": "TEST_GPT_KEY"}}})
    config = load_config(path)
    assert config.defaults.model_id == "a"
    assert config.defaults.output_format == "markdown"
    assert config.models["a"].provider == "openai"


def test_bad_variable_policy_rejected(tmp_path):
    path = _write(tmp_path, {"orchestration": {"variable_count_policy": "loose"}, "models": {}})
    with pytest.raises(ValueError, match="variable_count_policy"):
        load_config(path)


def test_history_shorter_than_round_limit_rejected(tmp_path):
    path = _write(tmp_path, {"orchestration": {"max_history_items": 4, "max_question_rounds": 3}, "models": {}})
    with pytest.raises(ValueError, match="max_history_items"):
        load_config(path)


def test_round_limit_override_checked_against_history(minimal_settings, monkeypatch):
    monkeypatch.setenv("MAX_HISTORY_ITEMS", "8")
    assert load_config(minimal_settings).orchestration.max_history_items == 8

    monkeypatch.setenv("MAX_QUESTION_ROUNDS", "5")
    with pytest.raises(ValueError, match="max_history_items"):
        load_config(minimal_settings)


def test_bad_output_format_rejected(tmp_path):
    path = _write(tmp_path, {"defaults": {"output_format": "json"}, "models": {}})
    with pytest.raises(ValueError, match="output_format"):
        load_config(path)


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_bundled_settings_load():
    config = load_config()
    assert set(config.models) == {"gpt", "gemini", "claude"}
    assert config.defaults.model_id == "gpt"
