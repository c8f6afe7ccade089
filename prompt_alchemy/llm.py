"""Single entry point for model calls: timeout per attempt, bounded retry with linear backoff."""

import asyncio
import logging
import socket
from collections.abc import Callable

from config.config_loader import OrchestrationSettings
from prompt_alchemy.models import LLMRequest, ModelResponse
from prompt_alchemy.providers.base import AIProvider, LLMTimeoutError, ProviderError, StructuredOutputError

logger = logging.getLogger(__name__)

_RETRYABLE_MESSAGES = ("timeout", "timed out", "econnreset", "connection reset", "eai_again", "etimedout")
_RETRYABLE_CODES = ("etimedout", "econnreset", "err_socket_timeout", "eai_again")


def _exception_chain(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_retryable_error(exc: BaseException) -> bool:
    """Timeouts, connection resets and DNS try-again failures are retryable; nothing else is."""
    if isinstance(exc, StructuredOutputError):
        return False
    for err in _exception_chain(exc):
        if isinstance(err, (TimeoutError, ConnectionResetError)):
            return True
        if isinstance(err, socket.gaierror) and err.errno == socket.EAI_AGAIN:
            return True
        code = str(getattr(err, "code", "") or "").lower()
        if "timeout" in code or code in _RETRYABLE_CODES:
            return True
        message = str(err).lower()
        if any(token in message for token in _RETRYABLE_MESSAGES):
            return True
    return False


async def generate_with_retry(
    provider: AIProvider,
    request: LLMRequest,
    settings: OrchestrationSettings,
    on_retry: Callable[[int, ProviderError], None] | None = None,
) -> ModelResponse:
    """Call ``provider.generate`` with a timeout, retrying transient failures.

    Args:
        provider: The model to call.
        request: Messages and optional output schema.
        settings: Timeout, attempt count and backoff base.
        on_retry: Optional callback invoked before each retry with (attempt, error).

    Raises:
        LLMTimeoutError: Last attempt timed out.
        StructuredOutputError: Output did not match the schema (not retried).
        ProviderError: Any other failure, after retries for retryable ones.
    """
    attempts = max(1, settings.max_retries)
    timeout = settings.request_timeout_sec if settings.request_timeout_sec > 0 else 60.0

    for attempt in range(1, attempts + 1):
        try:
            response = await asyncio.wait_for(provider.generate(request), timeout=timeout)
            logger.debug("%s attempt %d ok via %s", request.stage, attempt, provider.name())
            return response
        except TimeoutError as exc:
            error: ProviderError = LLMTimeoutError(provider.name(), f"Request timed out after {timeout}s")
            error.__cause__ = exc
        except ProviderError as exc:
            error = exc
        except Exception as exc:
            error = ProviderError(provider.name(), f"Unexpected error: {exc}")
            error.__cause__ = exc

        retryable = is_retryable_error(error)
        logger.warning(
            "%s attempt %d/%d failed via %s (retryable=%s): %s",
            request.stage, attempt, attempts, provider.name(), retryable, error,
        )
        if not retryable or attempt == attempts:
            if retryable and not isinstance(error, LLMTimeoutError):
                timeout_error = LLMTimeoutError(provider.name(), f"Request failed after {attempts} attempts: {error}")
                raise timeout_error from error
            raise error
        if on_retry:
            on_retry(attempt, error)
        await asyncio.sleep(settings.retry_backoff_sec * attempt)

    raise AssertionError("unreachable")
