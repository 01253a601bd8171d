"""OpenAI provider using openai SDK with native async.

Also serves any OpenAI-compatible endpoint (DeepSeek, Doubao, Grok, local
servers) through the participant's base_url.
"""

import asyncio
import logging
import os
import time

from openai import AsyncOpenAI

from party.models import Completion, Participant, TokenUsage
from party.providers.base import AUTH, TIMEOUT, AIProvider, ProviderError, categorize_error

logger = logging.getLogger(__name__)


def normalize_base_url(url: str | None) -> str | None:
    """Strip trailing slashes and a pasted /chat/completions suffix."""
    if not url or not url.strip():
        return None
    clean = url.strip().rstrip("/")
    if clean.endswith("/chat/completions"):
        clean = clean[: -len("/chat/completions")]
    return clean


class OpenAIProvider(AIProvider):
    """OpenAI / OpenAI-compatible provider via openai SDK."""

    def __init__(self, participant: Participant) -> None:
        self._participant = participant
        api_key = os.environ.get(participant.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(participant.id, f"Missing API key: {participant.api_key_env}", AUTH)
        self._client = AsyncOpenAI(api_key=api_key, base_url=normalize_base_url(participant.base_url))

    def name(self) -> str:
        return self._participant.id

    def model_string(self) -> str:
        return self._participant.model

    async def complete(
        self,
        system_prompt: str,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        p = self._participant
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=p.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=p.temperature if temperature is None else temperature,
                    max_tokens=max_tokens or p.max_tokens,
                ),
                timeout=p.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(p.id, f"Request timed out after {p.timeout_sec}s", TIMEOUT) from exc
        except Exception as exc:
            raise ProviderError(p.id, f"API call failed: {exc}", categorize_error(exc)) from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice and choice.message else None

        usage: TokenUsage | None = None
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        logger.info("OpenAI %s: %.2fs, %s tokens", p.id, latency, usage.total_tokens if usage else None)

        return Completion(
            provider=p.id,
            model=p.model,
            content=content or "",
            latency_sec=latency,
            usage=usage,
        )
