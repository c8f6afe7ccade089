"""Anthropic Claude provider using anthropic SDK with native async."""

import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from prompt_alchemy.models import LLMRequest, ModelResponse
from prompt_alchemy.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.id, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key, base_url=config.base_url, max_retries=0)

    def name(self) -> str:
        return self._config.id

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, request: LLMRequest) -> ModelResponse:
        system_text = "\n\n".join(m.content for m in request.messages if m.role == "system")
        messages = [
            {"role": "assistant" if m.role == "model" else "user", "content": m.content}
            for m in request.messages
            if m.role != "system"
        ]
        start = time.monotonic()
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                system=system_text,
                messages=messages,
            )
        except Exception as exc:
            raise ProviderError(self._config.id, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.id, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.id, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %s tokens", request.stage, latency, token_count)

        return self._finish(request, "\n".join(text_blocks), latency, token_count)
