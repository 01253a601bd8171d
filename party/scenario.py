"""Scenario files: markdown with YAML frontmatter that bootstrap a session.

Example::

    ---
    mode: JUDGE
    referee: claude
    participants: gemini, chatgpt, deepseek
    alliances: {gemini: wolf, deepseek: wolf}
    game: Werewolf
    auto_loop: false
    compression: true
    flags: [logic]
    ---
    Night falls on the village. Referee, begin the game.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import frontmatter

from party.models import (
    CompressionSettings,
    GameMode,
    ModeFlags,
    RefereeMode,
    RefereeStatus,
    Session,
)
from party.state import PartyState

logger = logging.getLogger(__name__)


@dataclass
class Scenario:
    opening: str
    mode: GameMode = GameMode.FREE_CHAT
    referee: str | None = None
    participants: list[str] | None = None  # None keeps the roster as configured
    alliances: dict[str, str] = field(default_factory=dict)
    game: str | None = None
    auto_loop: bool = False
    compression: bool | None = None
    flags: ModeFlags = field(default_factory=ModeFlags)
    source: str = ""


def _as_list(value) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value or [] if str(v).strip()]


def parse_scenario(file_path: Path) -> Scenario:
    """Parse a scenario file.

    Raises:
        ValueError: Unknown mode, or JUDGE/NARRATOR mode without a referee.
    """
    post = frontmatter.load(str(file_path))
    meta = dict(post.metadata)

    mode_raw = str(meta.get("mode", GameMode.FREE_CHAT.value)).upper()
    try:
        mode = GameMode(mode_raw)
    except ValueError:
        raise ValueError(f"{file_path.name}: unknown mode '{mode_raw}'") from None

    referee = meta.get("referee")
    if mode != GameMode.FREE_CHAT and not referee:
        raise ValueError(f"{file_path.name}: mode {mode.value} needs a referee")

    flag_names = set(_as_list(meta.get("flags", [])))
    unknown = flag_names - set(ModeFlags.__dataclass_fields__)
    if unknown:
        logger.warning("%s: unknown flags ignored: %s", file_path.name, ", ".join(sorted(unknown)))

    return Scenario(
        opening=post.content.strip(),
        mode=mode,
        referee=str(referee) if referee else None,
        participants=_as_list(meta["participants"]) if "participants" in meta else None,
        alliances={str(k): str(v) for k, v in (meta.get("alliances") or {}).items()},
        game=str(meta["game"]) if meta.get("game") else None,
        auto_loop=bool(meta.get("auto_loop", False)),
        compression=bool(meta["compression"]) if "compression" in meta else None,
        flags=ModeFlags(**{name: True for name in flag_names if name in ModeFlags.__dataclass_fields__}),
        source=str(file_path),
    )


def apply_scenario(
    scenario: Scenario,
    state: PartyState,
    compression: CompressionSettings | None = None,
) -> Session:
    """Configure the roster for scenario and create its session.

    Participants not listed are disabled (listed ones keep their current
    state). Listed ids missing from the roster are logged and skipped.
    The opening text is not posted here.
    """
    if scenario.participants is not None:
        wanted = set(scenario.participants)
        if scenario.referee:
            wanted.add(scenario.referee)
        for participant in state.roster:
            if participant.id not in wanted:
                participant.enabled = False
        for missing in wanted - {p.id for p in state.roster}:
            logger.warning("Scenario participant %s not configured; skipped", missing)

    for participant_id, alliance in scenario.alliances.items():
        participant = state.find_participant(participant_id)
        if participant:
            participant.alliance = alliance

    settings = CompressionSettings(**vars(compression)) if compression else CompressionSettings()
    if scenario.compression is not None:
        settings.enabled = scenario.compression

    session = state.create_session(
        name=Path(scenario.source).stem if scenario.source else "",
        mode=scenario.mode,
        special_role_id=scenario.referee,
        compression=settings,
        flags=scenario.flags,
        auto_loop=scenario.auto_loop or scenario.flags.social,
    )
    if scenario.game:
        session.referee.mode = RefereeMode.GAME
        session.referee.status = RefereeStatus.ACTIVE
        session.referee.game_name = scenario.game
    logger.info("Scenario %s loaded into session %s", scenario.source or "(inline)", session.id)
    return session
