"""Shared pytest fixtures."""

import inspect
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DefaultsConfig, PromptsConfig
from party.cancellation import CancelToken
from party.generation import GenerationRequest, GenerationResult, TurnGenerator
from party.models import (
    USER_ID,
    CompressionSettings,
    Completion,
    GameMode,
    Message,
    Participant,
    TokenUsage,
)
from party.providers.base import AIProvider
from party.state import PartyState


def make_participant(participant_id: str, **overrides) -> Participant:
    fields = {
        "id": participant_id,
        "name": participant_id.capitalize(),
        "sdk": "openai",
        "model": "mock-model",
        "api_key_env": f"{participant_id.upper()}_API_KEY",
    }
    fields.update(overrides)
    return Participant(**fields)


class FakeClock:
    """Deterministic clock; every reading advances by step seconds."""

    def __init__(self, start: float = 1_000_000.0, step: float = 0.5) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenerator(TurnGenerator):
    """Scripted TurnGenerator.

    script maps participant id -> list of items, consumed in order. An
    item is a str, a GenerationResult, an Exception to raise, or a
    callable (request, token) returning one of those (may be async).
    Once a participant's script runs out it answers "<id> turn <n>".
    """

    def __init__(self, script: dict[str, list] | None = None) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.requests: list[GenerationRequest] = []
        self.summaries: list[tuple[str, list[Message]]] = []
        self.summary_text = "They met and talked."
        self.summary_error: Exception | None = None

    @property
    def speakers(self) -> list[str]:
        return [r.participant.id for r in self.requests]

    def request_for(self, participant_id: str, index: int = 0) -> GenerationRequest:
        return [r for r in self.requests if r.participant.id == participant_id][index]

    async def generate(self, request: GenerationRequest, token: CancelToken) -> GenerationResult:
        self.requests.append(request)
        pid = request.participant.id
        queue = self.script.get(pid)
        item = queue.pop(0) if queue else f"{pid} turn {self.speakers.count(pid)}"
        if callable(item):
            item = item(request, token)
            if inspect.isawaitable(item):
                item = await item
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, GenerationResult):
            return item
        return GenerationResult(text=item, usage=TokenUsage(1, 1, 2))

    async def summarize(self, prior_summary: str, messages: list[Message], roster: list[Participant]) -> str:
        self.summaries.append((prior_summary, list(messages)))
        if self.summary_error:
            raise self.summary_error
        return self.summary_text


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because complete is defined in the class body below.
        self.complete = AsyncMock(  # type: ignore[assignment]
            return_value=Completion(
                provider=provider_name,
                model="mock-model",
                content=response_content,
                latency_sec=0.1,
                usage=TokenUsage(5, 5, 10),
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def complete(self, system_prompt, prompt, temperature=None, max_tokens=None) -> Completion:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return Completion(
            provider=self._name,
            model="mock-model",
            content=self._response_content,
            latency_sec=0.1,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def roster() -> list[Participant]:
    return [
        make_participant("judge", name="Judge", nickname="The Host"),
        make_participant("alice", nickname="Ally", alliance="wolf"),
        make_participant("bob", alliance="wolf"),
        make_participant("carol", alliance="village"),
    ]


@pytest.fixture
def state(roster: list[Participant], clock: FakeClock) -> PartyState:
    return PartyState(roster, clock=clock)


@pytest.fixture
def free_session(state: PartyState):
    session = state.create_session("free")
    state.post(session.id, USER_ID, "Hello everyone")
    return session


@pytest.fixture
def judge_session(state: PartyState):
    session = state.create_session("judged", mode=GameMode.JUDGE, special_role_id="judge")
    state.post(session.id, USER_ID, "Let's play")
    return session


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        system="{persona}\nYou are {name} ({id}). Others: {others}\n{role_instruction}\n{mode_instructions}\n{referee_context}",
        player="Speak as yourself.",
        judge="You are the REFEREE.",
        narrator="You are the NARRATOR.",
        protocol="Directives: [[NEXT: ...]]",
        summary="Participants: {participants}\nSummary: {prior_summary}\nNew:\n{transcript}",
        modes={"logic": "Be rigorous.", "human": "Be casual."},
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        session_dir=tmp_path / "sessions",
        output_dir=tmp_path / "output",
        summarizer="alice",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    return AppConfig(
        defaults=sample_defaults_config,
        compression=CompressionSettings(),
        prompts=sample_prompts_config,
        participants=[make_participant("alice"), make_participant("bob"), make_participant("judge")],
        available_participants={"alice", "judge"},
    )


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
