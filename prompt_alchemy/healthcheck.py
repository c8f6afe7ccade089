"""Connectivity check for catalog models, used by `chat` and `models --check`."""

import asyncio
import logging
import time
from dataclasses import dataclass

from prompt_alchemy.models import LLMRequest, Message
from prompt_alchemy.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


@dataclass(frozen=True)
class HealthStatus:
    ok: bool
    error: str = ""
    latency_sec: float = 0.0


async def check_model(provider: AIProvider, timeout: float | None = None) -> HealthStatus:
    """Send one plain-text ping. Never raises; failures come back as ``ok=False``."""
    request = LLMRequest(
        model=provider.model_string(),
        messages=[Message("user", _PING_PROMPT)],
        stage="healthcheck",
    )
    started = time.monotonic()
    try:
        response = await asyncio.wait_for(provider.generate(request), timeout=timeout or _TIMEOUT_SEC)
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", provider.name(), exc)
        return HealthStatus(ok=False, error=str(exc) or type(exc).__name__, latency_sec=time.monotonic() - started)
    if not response.content.strip():
        return HealthStatus(ok=False, error="Empty reply", latency_sec=time.monotonic() - started)
    return HealthStatus(ok=True, latency_sec=time.monotonic() - started)


async def run_health_checks(providers: dict[str, AIProvider]) -> dict[str, HealthStatus]:
    """Ping all providers concurrently, keyed by catalog model id."""
    statuses = await asyncio.gather(*(check_model(p) for p in providers.values()))
    return dict(zip(providers, statuses))
