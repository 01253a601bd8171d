"""Per-participant projection of the shared message log.

A participant only ever sees:
- its own messages, unchanged;
- restricted messages addressed to it, to its alliance, or written by it;
- broadcast messages, with internal-state fields redacted unless the
  author is an ally.

The referee/narrator receives the full log annotated with alliance tags.
All functions here are pure.
"""

import re
from dataclasses import replace

from party.models import Message, Participant

REDACTION_PLACEHOLDER = "[Hidden Logic/Thought]"

_THOUGHT_BLOCK = re.compile(r"\[\[THOUGHT\]\](.*?)\[\[/THOUGHT\]\]", re.DOTALL)
_STATE_FIELD = re.compile(r'("Psychological State"\s*:\s*")((?:[^"\\]|\\.)*)(")')


def redact_internal_state(text: str) -> str:
    """Replace every internal-state field in text with the placeholder."""
    text = _THOUGHT_BLOCK.sub(f"[[THOUGHT]]{REDACTION_PLACEHOLDER}[[/THOUGHT]]", text)
    return _STATE_FIELD.sub(lambda m: f"{m.group(1)}{REDACTION_PLACEHOLDER}{m.group(3)}", text)


def has_internal_state(text: str) -> bool:
    return bool(_THOUGHT_BLOCK.search(text) or _STATE_FIELD.search(text))


def _alliance_of(participant_id: str, roster: dict[str, Participant]) -> str | None:
    participant = roster.get(participant_id)
    return participant.alliance if participant else None


def can_see(viewer: Participant, message: Message) -> bool:
    """Return True if a restricted message is visible to viewer."""
    if message.recipient_id is None:
        return True
    if message.sender_id == viewer.id or message.recipient_id == viewer.id:
        return True
    return viewer.alliance is not None and viewer.alliance == message.recipient_id


def filter_history_for(
    viewer: Participant,
    messages: list[Message],
    roster: list[Participant],
) -> list[Message]:
    """Project messages into what viewer may see.

    Args:
        viewer: The participant whose turn is being prepared.
        messages: Full session log, in order.
        roster: All participants (used for alliance lookups).

    Returns:
        New list; messages needing redaction are copies, the originals
        are never mutated.
    """
    by_id = {p.id: p for p in roster}
    visible: list[Message] = []
    for msg in messages:
        if msg.sender_id == viewer.id:
            visible.append(msg)
            continue
        if not can_see(viewer, msg):
            continue
        sender_alliance = _alliance_of(msg.sender_id, by_id)
        is_ally = viewer.alliance is not None and viewer.alliance == sender_alliance
        if not is_ally and has_internal_state(msg.text):
            msg = replace(msg, text=redact_internal_state(msg.text).strip())
        if msg.is_empty:
            continue
        visible.append(msg)
    return visible


def omniscient_view(messages: list[Message], roster: list[Participant]) -> list[Message]:
    """Unfiltered log for the referee/narrator, annotated with alliance tags."""
    by_id = {p.id: p for p in roster}
    view: list[Message] = []
    for msg in messages:
        alliance = _alliance_of(msg.sender_id, by_id)
        view.append(replace(msg, annotation=f"alliance: {alliance}" if alliance else None))
    return view


def user_view(messages: list[Message]) -> list[Message]:
    """The human user sees everything, including every whisper."""
    return [m for m in messages if not m.is_empty]


def public_view(messages: list[Message]) -> list[Message]:
    """Only what every participant may see: broadcasts, with internal state redacted.

    Used for anything shared with all players at once, such as the
    compression summary.
    """
    view: list[Message] = []
    for msg in messages:
        if msg.recipient_id is not None:
            continue
        if has_internal_state(msg.text):
            msg = replace(msg, text=redact_internal_state(msg.text).strip())
        if not msg.is_empty:
            view.append(msg)
    return view
