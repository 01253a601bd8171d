"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time

import anthropic as anthropic_sdk

from party.models import Completion, Participant, TokenUsage
from party.providers.base import AUTH, TIMEOUT, AIProvider, ProviderError, categorize_error

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, participant: Participant) -> None:
        self._participant = participant
        api_key = os.environ.get(participant.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(participant.id, f"Missing API key: {participant.api_key_env}", AUTH)
        kwargs = {"api_key": api_key}
        if participant.base_url:
            kwargs["base_url"] = participant.base_url.rstrip("/")
        self._client = anthropic_sdk.AsyncAnthropic(**kwargs)

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
        # Anthropic caps temperature at 1.0
        effective_temperature = min(p.temperature if temperature is None else temperature, 1.0)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=p.model,
                    max_tokens=max_tokens or p.max_tokens,
                    system=system_prompt,
                    temperature=effective_temperature,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=p.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(p.id, f"Request timed out after {p.timeout_sec}s", TIMEOUT) from exc
        except Exception as exc:
            raise ProviderError(p.id, f"API call failed: {exc}", categorize_error(exc)) from exc

        latency = time.monotonic() - start

        text_blocks = [b.text for b in response.content or [] if b.type == "text"]
        content = "\n".join(text_blocks)

        usage: TokenUsage | None = None
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )

        logger.info("Anthropic %s: %.2fs, %s tokens", p.id, latency, usage.total_tokens if usage else None)

        return Completion(
            provider=p.id,
            model=p.model,
            content=content,
            latency_sec=latency,
            usage=usage,
        )
