"""Model catalog lookup and provider construction."""

import logging

from config.config_loader import AppConfig, ModelConfig
from prompt_alchemy.errors import ConfigurationError
from prompt_alchemy.providers.anthropic import AnthropicProvider
from prompt_alchemy.providers.base import AIProvider, ProviderError
from prompt_alchemy.providers.gemini import GeminiProvider
from prompt_alchemy.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "google": GeminiProvider,
    "anthropic": AnthropicProvider,
}


def resolve_model_config(config: AppConfig, model_id: str | None) -> ModelConfig:
    """Find a model by catalog id or model string; fall back to the default, then the first entry."""
    if not config.models:
        raise ConfigurationError("Missing model catalog")
    if model_id:
        candidate = config.models.get(model_id) or next(
            (m for m in config.models.values() if m.model == model_id), None
        )
        if candidate is not None:
            return candidate
        logger.warning("Unknown model '%s', using default", model_id)
    return config.models.get(config.defaults.model_id) or next(iter(config.models.values()))


def build_provider(model_cfg: ModelConfig) -> AIProvider:
    """Instantiate the provider for a catalog entry.

    Raises:
        ConfigurationError: Unknown provider kind or missing credentials.
    """
    provider_cls = PROVIDER_CLASSES.get(model_cfg.provider)
    if provider_cls is None:
        raise ConfigurationError(f"Unknown provider '{model_cfg.provider}' for model {model_cfg.id}")
    try:
        return provider_cls(model_cfg)
    except ProviderError as exc:
        raise ConfigurationError(str(exc)) from exc
