"""Load settings.yaml into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from party.models import CompressionSettings, Participant

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class PromptsConfig:
    system: str
    player: str
    judge: str
    narrator: str
    protocol: str
    summary: str
    modes: dict[str, str] = field(default_factory=dict)


@dataclass
class DefaultsConfig:
    session_dir: Path
    output_dir: Path
    auto_loop_min_sec: float = 5.0
    auto_loop_max_sec: float = 10.0
    continuation_delay_sec: float = 1.5
    max_auto_rounds: int = 8
    dedup_window_sec: float = 2.0
    referee_timeout_sec: float = 180.0
    summarizer: str | None = None


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    compression: CompressionSettings
    prompts: PromptsConfig
    participants: list[Participant] = field(default_factory=list)
    available_participants: set[str] = field(default_factory=set)


def _parse_participant(raw: dict) -> Participant:
    return Participant(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        nickname=raw.get("nickname"),
        alliance=raw.get("alliance"),
        enabled=bool(raw.get("enabled", True)),
        sdk=str(raw["sdk"]),
        model=str(raw["model"]),
        api_key_env=str(raw["api_key_env"]),
        base_url=raw.get("base_url"),
        temperature=float(raw.get("temperature", 0.7)),
        max_tokens=int(raw.get("max_tokens", 2048)),
        timeout_sec=int(raw.get("timeout_sec", 120)),
        system_instruction=str(raw.get("system_instruction", "")),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs participants with missing API keys but does not raise; callers
    check available_participants.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        session_dir=Path(defaults_raw["session_dir"]),
        output_dir=Path(defaults_raw["output_dir"]),
        auto_loop_min_sec=float(defaults_raw.get("auto_loop_min_sec", 5.0)),
        auto_loop_max_sec=float(defaults_raw.get("auto_loop_max_sec", 10.0)),
        continuation_delay_sec=float(defaults_raw.get("continuation_delay_sec", 1.5)),
        max_auto_rounds=int(defaults_raw.get("max_auto_rounds", 8)),
        dedup_window_sec=float(defaults_raw.get("dedup_window_sec", 2.0)),
        referee_timeout_sec=float(defaults_raw.get("referee_timeout_sec", 180.0)),
        summarizer=defaults_raw.get("summarizer"),
    )
    if defaults.auto_loop_min_sec > defaults.auto_loop_max_sec:
        raise ValueError("auto_loop_min_sec must not exceed auto_loop_max_sec")

    compression_raw = raw.get("compression", {})
    compression = CompressionSettings(
        enabled=bool(compression_raw.get("enabled", False)),
        window_size=int(compression_raw.get("window_size", 30)),
        margin=int(compression_raw.get("margin", 10)),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        system=prompts_raw["system"],
        player=prompts_raw["player"],
        judge=prompts_raw["judge"],
        narrator=prompts_raw["narrator"],
        protocol=prompts_raw["protocol"],
        summary=prompts_raw["summary"],
        modes={k: str(v) for k, v in prompts_raw.get("modes", {}).items()},
    )

    participants: list[Participant] = []
    available_participants: set[str] = set()

    for participant_raw in raw.get("participants", []):
        participant = _parse_participant(participant_raw)
        participants.append(participant)

        api_key = os.environ.get(participant.api_key_env, "").strip()
        if api_key:
            available_participants.add(participant.id)
            logger.info("Participant available: %s", participant.id)
        else:
            logger.info(
                "Participant skipped (no API key): %s; set %s in .env",
                participant.id,
                participant.api_key_env,
            )

    return AppConfig(
        defaults=defaults,
        compression=compression,
        prompts=prompts,
        participants=participants,
        available_participants=available_participants,
    )
