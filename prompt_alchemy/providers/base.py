"""Abstract base for all AI model providers, plus structured-output parsing."""

import json
import re
from abc import ABC, abstractmethod

from pydantic import BaseModel, ValidationError

from prompt_alchemy.models import LLMRequest, ModelResponse

_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*\n?(.*?)\n?```\s*$", re.DOTALL)


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class LLMTimeoutError(ProviderError):
    """Raised when a call did not finish within the configured timeout."""


class StructuredOutputError(ProviderError):
    """Raised when a response does not parse into the requested schema. Never retried."""


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    fenced = _FENCE_RE.match(stripped)
    if fenced:
        return fenced.group(1).strip()
    start, end = stripped.find("{"), stripped.rfind("}")
    if start > 0 and end > start:
        return stripped[start:end + 1]
    return stripped


def parse_structured_output(provider_name: str, text: str, schema: type[BaseModel]) -> BaseModel:
    """Parse model text (optionally wrapped in a ```json fence) into ``schema``.

    Raises:
        StructuredOutputError: On invalid JSON or schema validation failure.
    """
    try:
        payload = json.loads(_strip_fences(text))
    except json.JSONDecodeError as exc:
        raise StructuredOutputError(provider_name, f"Response is not valid JSON: {exc}") from exc
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise StructuredOutputError(
            provider_name, f"Response failed {schema.__name__} validation: {exc}"
        ) from exc


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the catalog id of the model (e.g. 'gpt', 'gemini')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, request: LLMRequest) -> ModelResponse:
        """Run one model call.

        Args:
            request: Ordered messages plus an optional output schema. When the
                schema is set, ``ModelResponse.output`` holds the validated object.

        Returns:
            ModelResponse dataclass with content and metadata.

        Raises:
            ProviderError: On API failure or empty response.
            StructuredOutputError: When the output does not match the schema.
        """
        ...

    def _finish(self, request: LLMRequest, content: str, latency: float, token_count: int | None) -> ModelResponse:
        """Build the response, validating structured output when a schema was requested."""
        output = None
        if request.output_schema is not None:
            output = parse_structured_output(self.name(), content, request.output_schema)
        return ModelResponse(
            provider=self.name(),
            model=self.model_string(),
            content=content,
            output=output,
            latency_sec=latency,
            token_count=token_count,
        )
