"""Generation capability: turn a participant and its view into response text."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from config.config_loader import PromptsConfig
from party.cancellation import CancelToken, RoundCancelled
from party.models import Message, ModeFlags, Participant, RefereeContext, Role, TokenUsage
from party.prompts import build_summary_prompt, build_system_prompt, build_turn_prompt
from party.providers.anthropic import AnthropicProvider
from party.providers.base import RETRYABLE, UNKNOWN, AIProvider, ProviderError, categorize_error
from party.providers.gemini import GeminiProvider
from party.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}

_SUMMARY_SYSTEM_PROMPT = "You condense group conversations into faithful, compact summaries."
_SUMMARY_TEMPERATURE = 0.3


@dataclass
class GenerationRequest:
    participant: Participant
    role: Role
    history: list[Message]
    roster: list[Participant]
    flags: ModeFlags = field(default_factory=ModeFlags)
    referee_context: RefereeContext | None = None
    special_role_id: str | None = None
    memory: str | None = None


@dataclass
class GenerationResult:
    text: str
    usage: TokenUsage | None = None
    media: list[str] = field(default_factory=list)


class TurnGenerator(ABC):
    """What the Round Processor needs from the outside world."""

    @abstractmethod
    async def generate(self, request: GenerationRequest, token: CancelToken) -> GenerationResult:
        """Produce one turn.

        Raises:
            ProviderError: On transport, timeout, auth or rate-limit failure.
            RoundCancelled: When token fires while the call is in flight.
        """
        ...

    @abstractmethod
    async def summarize(self, prior_summary: str, messages: list[Message], roster: list[Participant]) -> str:
        """Fold messages into prior_summary and return the new summary."""
        ...


def build_provider(participant: Participant) -> AIProvider:
    if participant.sdk not in PROVIDER_CLASSES:
        raise ProviderError(participant.id, f"Unknown sdk '{participant.sdk}'")
    return PROVIDER_CLASSES[participant.sdk](participant)


def _fingerprint(participant: Participant) -> tuple:
    return (participant.sdk, participant.model, participant.api_key_env, participant.base_url)


class ProviderTurnGenerator(TurnGenerator):
    """TurnGenerator backed by the configured SDK providers."""

    def __init__(
        self,
        prompts: PromptsConfig,
        summarizer_id: str | None = None,
        provider_factory: Callable[[Participant], AIProvider] = build_provider,
        retry_delay_sec: float = 1.0,
    ) -> None:
        self._prompts = prompts
        self._summarizer_id = summarizer_id
        self._factory = provider_factory
        self._retry_delay_sec = retry_delay_sec
        self._providers: dict[str, tuple[tuple, AIProvider]] = {}

    def provider_for(self, participant: Participant) -> AIProvider:
        """Cached provider, rebuilt when the participant's model settings change."""
        fingerprint = _fingerprint(participant)
        cached = self._providers.get(participant.id)
        if cached and cached[0] == fingerprint:
            return cached[1]
        provider = self._factory(participant)
        self._providers[participant.id] = (fingerprint, provider)
        return provider

    async def _attempt(
        self,
        provider: AIProvider,
        system_prompt: str,
        prompt: str,
        token: CancelToken | None,
        **kwargs,
    ):
        call = provider.complete(system_prompt, prompt, **kwargs)
        try:
            return await (token.guard(call) if token else call)
        except (ProviderError, RoundCancelled):
            raise
        except Exception as exc:
            raise ProviderError(provider.name(), f"Unexpected error: {exc}", categorize_error(exc)) from exc

    async def _call_provider(
        self,
        provider: AIProvider,
        system_prompt: str,
        prompt: str,
        token: CancelToken | None = None,
        **kwargs,
    ):
        """Call a provider, retrying once on timeout, network or rate-limit errors."""
        try:
            return await self._attempt(provider, system_prompt, prompt, token, **kwargs)
        except ProviderError as exc:
            if exc.category not in RETRYABLE:
                raise
            logger.warning(
                "Provider %s failed (%s), retrying in %.1fs: %s",
                provider.name(), exc.category, self._retry_delay_sec, exc,
            )
        if token:
            await token.sleep(self._retry_delay_sec)
        return await self._attempt(provider, system_prompt, prompt, token, **kwargs)

    async def generate(self, request: GenerationRequest, token: CancelToken) -> GenerationResult:
        participant = request.participant
        try:
            provider = self.provider_for(participant)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(participant.id, f"Provider setup failed: {exc}", UNKNOWN) from exc

        system_prompt = build_system_prompt(
            participant,
            request.role,
            request.roster,
            request.flags,
            self._prompts,
            referee_context=request.referee_context,
            special_role_id=request.special_role_id,
        )
        prompt = build_turn_prompt(participant, request.history, request.roster, memory=request.memory)
        logger.debug(
            "Generating %s turn for %s over %d messages",
            request.role.value, participant.id, len(request.history),
        )
        completion = await self._call_provider(provider, system_prompt, prompt, token)
        return GenerationResult(text=completion.content, usage=completion.usage)

    def _pick_summarizer(self, roster: list[Participant]) -> Participant:
        enabled = [p for p in roster if p.enabled]
        for p in enabled:
            if p.id == self._summarizer_id:
                return p
        if not enabled:
            raise ProviderError("summarizer", "No enabled participant available for summarization")
        return enabled[0]

    async def summarize(self, prior_summary: str, messages: list[Message], roster: list[Participant]) -> str:
        participant = self._pick_summarizer(roster)
        provider = self.provider_for(participant)
        prompt = build_summary_prompt(self._prompts, prior_summary, messages, roster)
        completion = await self._call_provider(
            provider, _SUMMARY_SYSTEM_PROMPT, prompt, temperature=_SUMMARY_TEMPERATURE,
        )
        return completion.content
