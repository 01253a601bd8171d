"""Directly-owned state store: sessions and the live participant roster.

The Round Processor and Scheduler receive a PartyState handle and read
participant configuration from it at every step, so a participant
disabled mid-round drops out of its remaining turns.
"""

import logging
import time
import uuid
from collections.abc import Callable

from party.models import (
    SYSTEM_ID,
    GameMode,
    KickRequest,
    Message,
    Participant,
    Session,
    TokenUsage,
)

logger = logging.getLogger(__name__)

# Identical sender+content arriving this close to the previous entry is a doubled response.
DEFAULT_DEDUP_WINDOW_SEC = 2.0


class PartyStateError(KeyError):
    """Unknown session or participant id."""


class PartyState:
    def __init__(
        self,
        participants: list[Participant] | None = None,
        dedup_window_sec: float = DEFAULT_DEDUP_WINDOW_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._participants: dict[str, Participant] = {p.id: p for p in participants or []}
        self._sessions: dict[str, Session] = {}
        self.dedup_window_sec = dedup_window_sec
        self.clock = clock
        # Called with (session_id, message) after every stored message.
        self.listeners: list[Callable[[str, Message], None]] = []

    # --- roster -------------------------------------------------------

    @property
    def roster(self) -> list[Participant]:
        """Participants in configuration order."""
        return list(self._participants.values())

    def participant(self, participant_id: str) -> Participant:
        try:
            return self._participants[participant_id]
        except KeyError:
            raise PartyStateError(f"Unknown participant: {participant_id}") from None

    def find_participant(self, participant_id: str | None) -> Participant | None:
        if participant_id is None:
            return None
        return self._participants.get(participant_id)

    def upsert_participant(self, participant: Participant) -> None:
        self._participants[participant.id] = participant

    def set_enabled(self, participant_id: str, enabled: bool) -> None:
        self.participant(participant_id).enabled = enabled
        logger.info("Participant %s %s", participant_id, "enabled" if enabled else "disabled")

    def eligible_players(self, session: Session) -> list[Participant]:
        """Enabled participants other than the session's special role, roster order."""
        return [p for p in self._participants.values()
                if p.enabled and p.id != session.special_role_id]

    def special_participant(self, session: Session) -> Participant | None:
        """The enabled referee/narrator, or None in free chat."""
        if session.mode == GameMode.FREE_CHAT:
            return None
        special = self.find_participant(session.special_role_id)
        return special if special and special.enabled else None

    # --- sessions -----------------------------------------------------

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def session(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise PartyStateError(f"Unknown session: {session_id}") from None

    def add_session(self, session: Session) -> Session:
        self._sessions[session.id] = session
        return session

    def create_session(self, name: str = "", **fields) -> Session:
        now = self.clock()
        session = Session(
            id=uuid.uuid4().hex[:12],
            name=name or time.strftime("Party %H:%M", time.localtime(now)),
            created_at=now,
            last_modified=now,
            **fields,
        )
        logger.info("Session created: %s (%s)", session.id, session.mode.value)
        return self.add_session(session)

    def remove_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def new_message(
        self,
        sender_id: str,
        text: str,
        recipient_id: str | None = None,
        media: list[str] | None = None,
        is_error: bool = False,
    ) -> Message:
        return Message(
            id=uuid.uuid4().hex,
            sender_id=sender_id,
            text=text,
            timestamp=self.clock(),
            recipient_id=recipient_id,
            media=list(media or []),
            is_error=is_error,
        )

    def append_message(self, session_id: str, message: Message) -> bool:
        """Append to the session log.

        Returns False when the message is a ghost (no text, no media) or a
        duplicate of the previous entry within the dedup window.
        """
        session = self.session(session_id)
        if message.is_empty:
            logger.debug("Ghost message from %s dropped", message.sender_id)
            return False
        if session.messages:
            last = session.messages[-1]
            if (
                last.sender_id == message.sender_id
                and last.text == message.text
                and abs(message.timestamp - last.timestamp) <= self.dedup_window_sec
            ):
                logger.warning("Duplicate message from %s dropped", message.sender_id)
                return False
        session.messages.append(message)
        session.last_modified = message.timestamp
        for listener in self.listeners:
            listener(session_id, message)
        return True

    def post(self, session_id: str, sender_id: str, text: str, **kwargs) -> Message | None:
        """Build and append a message; returns it, or None if it was dropped."""
        message = self.new_message(sender_id, text, **kwargs)
        return message if self.append_message(session_id, message) else None

    def record_usage(self, session_id: str, participant_id: str, usage: TokenUsage) -> None:
        self.session(session_id).usage.add(usage)
        participant = self.find_participant(participant_id)
        if participant:
            participant.usage.add(usage)

    def clear_history(self, session_id: str) -> None:
        session = self.session(session_id)
        session.messages.clear()
        session.pending_kick = None
        session.summary = ""
        session.summary_cursor = None
        session.usage = TokenUsage()
        session.user_stopped = False

    # --- kicks --------------------------------------------------------

    def stage_kick(self, session_id: str, request: KickRequest) -> None:
        self.session(session_id).pending_kick = request
        logger.info("Kick staged for %s: %s", request.target_id, request.reason)

    def confirm_kick(self, session_id: str) -> Message | None:
        """Apply the pending kick: disable the target and announce it."""
        session = self.session(session_id)
        request = session.pending_kick
        if request is None:
            return None
        session.pending_kick = None
        target = self.find_participant(request.target_id)
        if target is None:
            logger.warning("Pending kick target %s no longer exists", request.target_id)
            return None
        self.set_enabled(target.id, False)
        return self.post(
            session_id,
            SYSTEM_ID,
            f"**[System]** {target.display_name} has been removed by the referee "
            f"({request.reason}) and can no longer speak.",
        )

    def dismiss_kick(self, session_id: str) -> None:
        session = self.session(session_id)
        if session.pending_kick:
            logger.info("Kick of %s dismissed", session.pending_kick.target_id)
        session.pending_kick = None
