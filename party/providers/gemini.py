"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from party.models import Completion, Participant, TokenUsage
from party.providers.base import AUTH, TIMEOUT, AIProvider, ProviderError, categorize_error

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, participant: Participant) -> None:
        self._participant = participant
        api_key = os.environ.get(participant.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(participant.id, f"Missing API key: {participant.api_key_env}", AUTH)
        http_options = None
        if participant.base_url and participant.base_url.strip():
            http_options = genai_types.HttpOptions(base_url=participant.base_url.strip().rstrip("/"))
        self._client = genai.Client(api_key=api_key, http_options=http_options)

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
        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=p.temperature if temperature is None else temperature,
            max_output_tokens=max_tokens or p.max_tokens,
        )

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=p.model,
                    contents=prompt,
                    config=config,
                ),
                timeout=p.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(p.id, f"Request timed out after {p.timeout_sec}s", TIMEOUT) from exc
        except Exception as exc:
            raise ProviderError(p.id, f"API call failed: {exc}", categorize_error(exc)) from exc

        latency = time.monotonic() - start

        usage: TokenUsage | None = None
        if response.usage_metadata:
            meta = response.usage_metadata
            usage = TokenUsage(
                prompt_tokens=meta.prompt_token_count or 0,
                completion_tokens=meta.candidates_token_count or 0,
                total_tokens=meta.total_token_count or 0,
            )

        logger.info("Gemini %s: %.2fs, %s tokens", p.id, latency, usage.total_tokens if usage else None)

        return Completion(
            provider=p.id,
            model=p.model,
            content=response.text or "",
            latency_sec=latency,
            usage=usage,
        )
