"""Startup ping of every enabled participant's provider."""

import asyncio
import logging
import time
from dataclasses import dataclass

from party.providers.base import TIMEOUT, AIProvider, categorize_error

logger = logging.getLogger(__name__)

_PING_SYSTEM = "You are a connectivity check."
_PING_PROMPT = "Reply with the word OK only."
_PING_MAX_TOKENS = 16
_TIMEOUT_SEC = 15.0


@dataclass
class HealthResult:
    participant_id: str
    ok: bool
    latency_sec: float = 0.0
    error: str = ""
    category: str | None = None  # provider error category when not ok


async def _ping(participant_id: str, provider: AIProvider, timeout_sec: float) -> HealthResult:
    start = time.monotonic()
    try:
        await asyncio.wait_for(
            provider.complete(_PING_SYSTEM, _PING_PROMPT, max_tokens=_PING_MAX_TOKENS),
            timeout=timeout_sec,
        )
    except TimeoutError:
        return HealthResult(participant_id, False, timeout_sec, f"No reply within {timeout_sec:.0f}s", TIMEOUT)
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", participant_id, exc)
        return HealthResult(participant_id, False, time.monotonic() - start, str(exc), categorize_error(exc))
    return HealthResult(participant_id, True, time.monotonic() - start)


async def run_health_checks(
    providers: dict[str, AIProvider],
    timeout_sec: float = _TIMEOUT_SEC,
) -> dict[str, HealthResult]:
    """Ping all providers concurrently, keyed by participant id."""
    results = await asyncio.gather(*(_ping(pid, p, timeout_sec) for pid, p in providers.items()))
    return {r.participant_id: r for r in results}
