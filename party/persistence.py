"""JSON persistence of the roster and sessions, enough to resume a party.

Layout under the store root::

    participants.json          {participant_id: participant}
    sessions/<session_id>.json one session each
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path

from party.models import (
    CompressionSettings,
    GameMode,
    KickRequest,
    Message,
    ModeFlags,
    Participant,
    RefereeContext,
    RefereeMode,
    RefereeStatus,
    Session,
    TokenUsage,
    VoteState,
)

logger = logging.getLogger(__name__)

_RUNTIME_FIELDS = ("processing", "current_speaker_id", "user_stopped")


def message_to_dict(message: Message) -> dict:
    data = asdict(message)
    data.pop("annotation", None)
    return data


def message_from_dict(data: dict) -> Message:
    return Message(
        id=data["id"],
        sender_id=data["sender_id"],
        text=data.get("text", ""),
        timestamp=float(data["timestamp"]),
        recipient_id=data.get("recipient_id"),
        media=list(data.get("media", [])),
        is_error=bool(data.get("is_error", False)),
    )


def session_to_dict(session: Session) -> dict:
    data = asdict(session)
    for name in _RUNTIME_FIELDS:
        data.pop(name, None)
    data["messages"] = [message_to_dict(m) for m in session.messages]
    return data


def session_from_dict(data: dict) -> Session:
    referee = data.get("referee") or {}
    kick = data.get("pending_kick")
    return Session(
        id=data["id"],
        name=data.get("name", ""),
        created_at=float(data.get("created_at", 0.0)),
        messages=[message_from_dict(m) for m in data.get("messages", [])],
        mode=GameMode(data.get("mode", GameMode.FREE_CHAT.value)),
        special_role_id=data.get("special_role_id"),
        referee=RefereeContext(
            mode=RefereeMode(referee.get("mode", RefereeMode.GENERAL.value)),
            status=RefereeStatus(referee.get("status", RefereeStatus.IDLE.value)),
            game_name=referee.get("game_name"),
            topic=referee.get("topic"),
        ),
        vote=VoteState(**data.get("vote", {})),
        pending_kick=KickRequest(**kick) if kick else None,
        compression=CompressionSettings(**data.get("compression", {})),
        summary=data.get("summary", ""),
        summary_cursor=data.get("summary_cursor"),
        flags=ModeFlags(**data.get("flags", {})),
        auto_loop=bool(data.get("auto_loop", False)),
        usage=TokenUsage(**data.get("usage", {})),
        last_modified=float(data.get("last_modified", 0.0)),
    )


def participant_from_dict(data: dict) -> Participant:
    fields = dict(data)
    fields["usage"] = TokenUsage(**fields.get("usage", {}))
    return Participant(**fields)


class JsonStore:
    """Directory-backed key-value store for Session and Participant records."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.sessions_dir = root / "sessions"

    def _participants_path(self) -> Path:
        return self.root / "participants.json"

    def _session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    def save_participants(self, participants: list[Participant]) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._participants_path()
        payload = {p.id: asdict(p) for p in participants}
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Saved %d participants to %s", len(participants), path)
        return path

    def load_participants(self) -> list[Participant]:
        """Stored roster, or [] if nothing has been saved yet."""
        path = self._participants_path()
        if not path.exists():
            return []
        raw = json.loads(path.read_text(encoding="utf-8"))
        return [participant_from_dict(data) for data in raw.values()]

    def save_session(self, session: Session) -> Path:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        path = self._session_path(session.id)
        path.write_text(json.dumps(session_to_dict(session), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Saved session %s (%d messages)", session.id, len(session.messages))
        return path

    def load_session(self, session_id: str) -> Session:
        """Load one session. Runtime-only fields come back at their defaults.

        Raises:
            FileNotFoundError: No session with that id has been saved.
        """
        path = self._session_path(session_id)
        if not path.exists():
            raise FileNotFoundError(f"Session not found: {session_id}")
        return session_from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list_sessions(self) -> list[str]:
        """Saved session ids, most recently written first."""
        if not self.sessions_dir.exists():
            return []
        files = sorted(self.sessions_dir.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.stem for p in files]

    def delete_session(self, session_id: str) -> None:
        self._session_path(session_id).unlink(missing_ok=True)
