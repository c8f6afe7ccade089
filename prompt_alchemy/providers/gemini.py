"""Gemini provider using google-genai SDK with native async."""

import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from prompt_alchemy.models import LLMRequest, ModelResponse
from prompt_alchemy.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.id, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.id

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, request: LLMRequest) -> ModelResponse:
        system_text = "\n\n".join(m.content for m in request.messages if m.role == "system")
        contents = [
            genai_types.Content(role=m.role, parts=[genai_types.Part(text=m.content)])
            for m in request.messages
            if m.role != "system"
        ]
        start = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=contents,
                config=genai_types.GenerateContentConfig(
                    system_instruction=system_text or None,
                    max_output_tokens=self._config.max_tokens,
                    response_mime_type="application/json" if request.output_schema else None,
                ),
            )
        except Exception as exc:
            raise ProviderError(self._config.id, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.id, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini %s: %.2fs, %s tokens", request.stage, latency, token_count)

        return self._finish(request, response.text, latency, token_count)
