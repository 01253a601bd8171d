"""Rolling context compression: fold old messages into a session summary.

Compression runs in the background at the start of a Round and never
blocks generation. Once a session has a summary, generation calls see
only the most recent window of raw messages plus the summary.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from party.models import Message, Participant, Session
from party.state import PartyState
from party.visibility import public_view

logger = logging.getLogger(__name__)

Summarizer = Callable[[str, list[Message], list[Participant]], Awaitable[str]]


def needs_compression(session: Session) -> bool:
    settings = session.compression
    return settings.enabled and len(session.messages) > settings.window_size + settings.margin


def pending_slice(session: Session) -> list[Message]:
    """Messages after the summary cursor, up to (total - window)."""
    messages = session.messages
    end = len(messages) - session.compression.window_size
    start = 0
    if session.summary_cursor is not None:
        ids = [m.id for m in messages]
        if session.summary_cursor in ids:
            start = ids.index(session.summary_cursor) + 1
        else:
            logger.warning("Summary cursor %s not found in session %s", session.summary_cursor, session.id)
    if end <= start:
        return []
    return messages[start:end]


def build_context(session: Session) -> tuple[list[Message], str | None]:
    """Return (raw messages, memory preamble) for a generation call."""
    if session.compression.enabled and session.summary:
        return session.messages[-session.compression.window_size:], session.summary
    return list(session.messages), None


class ContextCompressor:
    """Schedules at most one background compression per session."""

    def __init__(self, state: PartyState, summarize: Summarizer) -> None:
        self._state = state
        self._summarize = summarize
        self._in_flight: dict[str, asyncio.Task] = {}

    def schedule(self, session_id: str) -> asyncio.Task | None:
        """Start a background compression of the slice pending right now."""
        session = self._state.session(session_id)
        if session_id in self._in_flight or not needs_compression(session):
            return None
        batch = pending_slice(session)
        if not batch:
            return None
        task = asyncio.create_task(self.compress(session_id, batch))
        self._in_flight[session_id] = task
        task.add_done_callback(lambda _t: self._in_flight.pop(session_id, None))
        return task

    async def compress(self, session_id: str, batch: list[Message] | None = None) -> bool:
        """Summarise batch (default: the pending slice). Returns True if the summary advanced."""
        session = self._state.session(session_id)
        if batch is None:
            batch = pending_slice(session)
        if not batch:
            return False

        # The summary reaches every player, so it may only draw on public content.
        public = public_view(batch)
        if not public:
            session.summary_cursor = batch[-1].id
            logger.debug("Session %s: no public messages to compress; cursor advanced", session_id)
            return False

        prior_summary, prior_cursor = session.summary, session.summary_cursor
        logger.info("Compressing %d messages in session %s", len(public), session_id)
        try:
            summary = await self._summarize(prior_summary, public, self._state.roster)
        except Exception as exc:
            logger.warning("Compression failed for session %s: %s", session_id, exc)
            return False

        if not summary.strip():
            logger.warning("Compression for session %s returned an empty summary", session_id)
            return False
        if session.summary_cursor != prior_cursor:
            logger.debug("Session %s summary moved during compression; result dropped", session_id)
            return False

        session.summary = summary.strip()
        session.summary_cursor = batch[-1].id
        logger.info("Session %s summary advanced to %s", session_id, session.summary_cursor)
        return True

    async def drain(self) -> None:
        """Wait for every in-flight compression (used on shutdown and in tests)."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
