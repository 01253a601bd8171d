"""Map a human message to the Round it should start."""

import logging

from party.models import GameMode, Participant, Session
from party.rounds import RoundRequest

logger = logging.getLogger(__name__)

REFEREE_KEYWORDS = ("referee", "judge", "host", "admin", "裁判", "法官")


def _first_mention(text: str, participant: Participant) -> int:
    """Index of the first mention of participant's name or nickname, or -1."""
    positions = [text.find(alias.lower()) for alias in (participant.name, participant.nickname) if alias]
    found = [i for i in positions if i != -1]
    return min(found) if found else -1


def calls_referee(text: str, session: Session, special: Participant | None) -> bool:
    if session.mode == GameMode.FREE_CHAT or special is None:
        return False
    lowered = text.lower()
    if any(keyword in lowered for keyword in REFEREE_KEYWORDS):
        return True
    return _first_mention(lowered, special) != -1


def addressed_participants(text: str, eligible: list[Participant]) -> list[str]:
    """Ids of eligible participants mentioned in text, in order of first mention."""
    lowered = text.lower()
    mentions = [(_first_mention(lowered, p), p.id) for p in eligible]
    return [pid for index, pid in sorted(m for m in mentions if m[0] != -1)]


def route_user_message(
    text: str,
    session: Session,
    roster: list[Participant],
) -> RoundRequest:
    """Decide who answers a human message.

    Addressing the referee forces a referee turn. Otherwise the
    participants named in the message answer, in order of mention.
    Otherwise everyone the mode allows speaks.
    """
    special = next(
        (p for p in roster if p.id == session.special_role_id and p.enabled),
        None,
    )
    if calls_referee(text, session, special):
        logger.debug("Message addresses the referee")
        return RoundRequest(speakers=[], force_referee=True)

    eligible = [p for p in roster if p.enabled and p.id != session.special_role_id]
    addressed = addressed_participants(text, eligible)
    if addressed:
        logger.debug("Message addresses %s", addressed)
        return RoundRequest(speakers=addressed)
    return RoundRequest()
