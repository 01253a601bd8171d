"""Pure dataclasses for the party conversation engine. No logic, no deps."""

from dataclasses import dataclass, field
from enum import Enum

USER_ID = "user"
SYSTEM_ID = "system"
RESERVED_IDS = frozenset({USER_ID, SYSTEM_ID})


class GameMode(str, Enum):
    FREE_CHAT = "FREE_CHAT"
    JUDGE = "JUDGE"
    NARRATOR = "NARRATOR"


class Role(str, Enum):
    PLAYER = "PLAYER"
    JUDGE = "JUDGE"
    NARRATOR = "NARRATOR"


class RefereeMode(str, Enum):
    GENERAL = "GENERAL"
    GAME = "GAME"
    DEBATE = "DEBATE"


class RefereeStatus(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens


@dataclass
class Participant:
    id: str
    name: str
    sdk: str                       # "openai", "anthropic", "gemini"
    model: str
    api_key_env: str
    nickname: str | None = None
    alliance: str | None = None    # e.g. "wolf", "villager"
    enabled: bool = True
    base_url: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2048
    timeout_sec: int = 120
    system_instruction: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def display_name(self) -> str:
        return self.nickname or self.name


@dataclass
class Message:
    id: str
    sender_id: str                 # participant id, USER_ID or SYSTEM_ID
    text: str
    timestamp: float
    recipient_id: str | None = None  # participant id or alliance tag
    media: list[str] = field(default_factory=list)
    is_error: bool = False
    annotation: str | None = None  # view-only, never persisted

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.media


@dataclass
class KickRequest:
    target_id: str
    reason: str


@dataclass
class RefereeContext:
    mode: RefereeMode = RefereeMode.GENERAL
    status: RefereeStatus = RefereeStatus.IDLE
    game_name: str | None = None
    topic: str | None = None


@dataclass
class VoteState:
    active: bool = False
    title: str = ""
    candidates: list[str] = field(default_factory=list)
    votes: dict[str, str] = field(default_factory=dict)  # voter id -> candidate
    result: str | None = None


@dataclass
class CompressionSettings:
    enabled: bool = False
    window_size: int = 30
    margin: int = 10


@dataclass
class ModeFlags:
    deep_thinking: bool = False
    human: bool = False
    logic: bool = False
    social: bool = False


@dataclass
class Session:
    id: str
    name: str
    created_at: float
    messages: list[Message] = field(default_factory=list)
    mode: GameMode = GameMode.FREE_CHAT
    special_role_id: str | None = None
    referee: RefereeContext = field(default_factory=RefereeContext)
    vote: VoteState = field(default_factory=VoteState)
    pending_kick: KickRequest | None = None
    compression: CompressionSettings = field(default_factory=CompressionSettings)
    summary: str = ""
    summary_cursor: str | None = None  # id of the last message folded into summary
    flags: ModeFlags = field(default_factory=ModeFlags)
    auto_loop: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)
    last_modified: float = 0.0
    # Runtime-only
    processing: bool = False
    current_speaker_id: str | None = None
    user_stopped: bool = False


@dataclass
class Completion:
    provider: str          # participant id the call was made for
    model: str
    content: str
    latency_sec: float
    usage: TokenUsage | None = None
