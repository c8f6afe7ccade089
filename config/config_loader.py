"""Load settings.yaml into typed dataclasses. Numeric knobs may be overridden from env."""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

OUTPUT_FORMATS = ("markdown", "xml")
VARIABLE_COUNT_POLICIES = ("lenient", "strict")

# env var -> (OrchestrationSettings field, converter)
_ENV_OVERRIDES = {
    "OPENAI_TIMEOUT_MS": ("request_timeout_sec", lambda raw: float(raw) / 1000),
    "OPENAI_MAX_RETRIES": ("max_retries", int),
    "MAX_HISTORY_ITEMS": ("max_history_items", int),
    "MAX_QUESTION_ROUNDS": ("max_question_rounds", int),
    "MIN_PROMPT_VARIABLES": ("min_prompt_variables", int),
}


@dataclass(frozen=True)
class ModelConfig:
    id: str
    label: str
    provider: str          # "openai", "google", "anthropic"
    model: str
    api_key_env: str
    max_tokens: int = 8192
    base_url: str | None = None


@dataclass(frozen=True)
class OrchestrationSettings:
    request_timeout_sec: float = 180.0
    max_retries: int = 2
    retry_backoff_sec: float = 0.4
    max_history_items: int = 60
    max_question_rounds: int = 3
    min_prompt_variables: int = 3
    variable_count_policy: str = "lenient"


@dataclass(frozen=True)
class DefaultsConfig:
    model_id: str
    output_format: str = "markdown"
    store_dir: Path = Path("./sessions")
    artifact_dir: Path = Path("./artifacts")


@dataclass(frozen=True)
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    orchestration: OrchestrationSettings = field(default_factory=OrchestrationSettings)
    available_models: frozenset[str] = frozenset()


def _apply_env_overrides(settings: OrchestrationSettings) -> OrchestrationSettings:
    overrides: dict[str, object] = {}
    for env_name, (attr, convert) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name, "").strip()
        if not raw:
            continue
        try:
            overrides[attr] = convert(raw)
        except ValueError:
            logger.warning("Ignoring non-numeric %s=%r", env_name, raw)
    return replace(settings, **overrides) if overrides else settings


def _load_orchestration(raw: dict) -> OrchestrationSettings:
    base = OrchestrationSettings()
    settings = OrchestrationSettings(
        request_timeout_sec=float(raw.get("request_timeout_sec", base.request_timeout_sec)),
        max_retries=int(raw.get("max_retries", base.max_retries)),
        retry_backoff_sec=float(raw.get("retry_backoff_sec", base.retry_backoff_sec)),
        max_history_items=int(raw.get("max_history_items", base.max_history_items)),
        max_question_rounds=int(raw.get("max_question_rounds", base.max_question_rounds)),
        min_prompt_variables=int(raw.get("min_prompt_variables", base.min_prompt_variables)),
        variable_count_policy=str(raw.get("variable_count_policy", base.variable_count_policy)),
    )
    if settings.variable_count_policy not in VARIABLE_COUNT_POLICIES:
        raise ValueError(
            f"variable_count_policy must be one of {VARIABLE_COUNT_POLICIES}, "
            f"got {settings.variable_count_policy!r}"
        )
    settings = _apply_env_overrides(settings)
    if 0 < settings.max_history_items < 2 * settings.max_question_rounds:
        raise ValueError(
            f"max_history_items ({settings.max_history_items}) must hold at least "
            f"2 * max_question_rounds ({settings.max_question_rounds}) entries"
        )
    return settings


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs which models have credentials but does not raise; callers check
    available_models, and a provider without a key fails when it is built.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    models: dict[str, ModelConfig] = {}
    available_models: set[str] = set()

    for model_id, model_raw in (raw.get("models") or {}).items():
        base_url_env = model_raw.get("base_url_env")
        base_url = model_raw.get("base_url") or (
            os.environ.get(base_url_env, "").strip() or None if base_url_env else None
        )
        model_cfg = ModelConfig(
            id=model_id,
            label=str(model_raw.get("label", model_id)),
            provider=str(model_raw.get("provider", "openai")),
            model=str(model_raw["model"]),
            api_key_env=str(model_raw["api_key_env"]),
            max_tokens=int(model_raw.get("max_tokens", 8192)),
            base_url=base_url,
        )
        models[model_id] = model_cfg

        if os.environ.get(model_cfg.api_key_env, "").strip():
            available_models.add(model_id)
            logger.info("Model available: %s", model_id)
        else:
            logger.info(
                "Model skipped (no API key): %s; set %s in .env",
                model_id,
                model_cfg.api_key_env,
            )

    defaults_raw = raw.get("defaults") or {}
    default_model_id = str(defaults_raw.get("model_id") or next(iter(models), ""))
    output_format = str(defaults_raw.get("output_format", "markdown"))
    if output_format not in OUTPUT_FORMATS:
        raise ValueError(f"output_format must be one of {OUTPUT_FORMATS}, got {output_format!r}")

    defaults = DefaultsConfig(
        model_id=default_model_id,
        output_format=output_format,
        store_dir=Path(defaults_raw.get("store_dir", "./sessions")),
        artifact_dir=Path(defaults_raw.get("artifact_dir", "./artifacts")),
    )

    return AppConfig(
        defaults=defaults,
        models=models,
        orchestration=_load_orchestration(raw.get("orchestration") or {}),
        available_models=frozenset(available_models),
    )
