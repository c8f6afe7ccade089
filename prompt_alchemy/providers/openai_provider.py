"""OpenAI-compatible provider using openai SDK with native async."""

import logging
import os
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from prompt_alchemy.models import LLMRequest, ModelResponse
from prompt_alchemy.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

_ROLE_MAP = {"system": "system", "user": "user", "model": "assistant"}


class OpenAIProvider(AIProvider):
    """OpenAI (or any OpenAI-compatible endpoint) via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.id, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url, max_retries=0)

    def name(self) -> str:
        return self._config.id

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, request: LLMRequest) -> ModelResponse:
        start = time.monotonic()
        kwargs = {}
        if request.output_schema is not None:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[{"role": _ROLE_MAP[m.role], "content": m.content} for m in request.messages],
                max_tokens=self._config.max_tokens,
                **kwargs,
            )
        except Exception as exc:
            raise ProviderError(self._config.id, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.id, "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("OpenAI %s: %.2fs, %s tokens", request.stage, latency, token_count)

        return self._finish(request, choice.message.content, latency, token_count)
