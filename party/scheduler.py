"""Session Scheduler: per-session cancel tokens, Round queue, auto-loop timer.

Each session has at most one driver task. The driver pops Round requests
off the session's queue and runs them one at a time, so at most one
Round is ever active per session. Referee continuations are pushed back
onto the same queue instead of being fired from a timer callback.
"""

import asyncio
import logging
import random
from collections import deque
from collections.abc import Callable

from party.cancellation import CancelToken, RoundCancelled
from party.models import USER_ID, Message, Session
from party.rounds import RoundOutcome, RoundProcessor, RoundRequest
from party.routing import route_user_message
from party.state import PartyState, PartyStateError

logger = logging.getLogger(__name__)

RoundListener = Callable[[str, RoundOutcome], None]


class SessionScheduler:
    def __init__(
        self,
        state: PartyState,
        processor: RoundProcessor,
        continuation_delay_sec: float = 1.5,
        auto_loop_min_sec: float = 5.0,
        auto_loop_max_sec: float = 10.0,
        max_auto_rounds: int = 8,
        rng: random.Random | None = None,
    ) -> None:
        self._state = state
        self._processor = processor
        self.continuation_delay_sec = continuation_delay_sec
        self.auto_loop_range = (auto_loop_min_sec, auto_loop_max_sec)
        self.max_auto_rounds = max_auto_rounds
        self._rng = rng or random.Random()

        self._tokens: dict[str, CancelToken] = {}
        self._queues: dict[str, deque[tuple[RoundRequest, float]]] = {}
        self._drivers: dict[str, asyncio.Task] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._auto_rounds: dict[str, int] = {}
        self._listeners: list[RoundListener] = []

    def add_listener(self, listener: RoundListener) -> None:
        """Call listener(session_id, outcome) after every finished Round."""
        self._listeners.append(listener)

    def is_running(self, session_id: str) -> bool:
        return session_id in self._drivers

    def has_timer(self, session_id: str) -> bool:
        return session_id in self._timers

    # --- entry points -------------------------------------------------

    def submit_user_message(self, session_id: str, text: str, media: list[str] | None = None) -> Message | None:
        """Append a human message and start the Round it calls for.

        Clears the user-stopped flag and resets the automatic-round
        counter. An active Round is superseded.
        """
        session = self._state.session(session_id)
        session.user_stopped = False
        self._auto_rounds[session_id] = 0
        message = self._state.post(session_id, USER_ID, text, media=media)
        if message is None:
            return None
        self.start_round(session_id, route_user_message(text, session, self._state.roster))
        return message

    def start_round(self, session_id: str, request: RoundRequest) -> None:
        """Start request now, cancelling whatever the session was doing."""
        self._invalidate_timer(session_id)
        token = self._tokens.get(session_id)
        if token and not token.cancelled:
            logger.info("Superseding active round in session %s", session_id)
            token.cancel("superseded")
        queue = self._queues.get(session_id)
        if queue:
            queue.clear()
        self._enqueue(session_id, request)

    def stop(self, session_id: str) -> None:
        """Abort the active Round and keep the session quiet until new user input."""
        session = self._state.session(session_id)
        self._invalidate_timer(session_id)
        queue = self._queues.get(session_id)
        if queue:
            queue.clear()
        token = self._tokens.get(session_id)
        if token:
            token.cancel("stopped by user")
        session.processing = False
        session.current_speaker_id = None
        session.user_stopped = True
        logger.info("Session %s stopped by user", session_id)

    def set_auto_loop(self, session_id: str, enabled: bool) -> None:
        session = self._state.session(session_id)
        session.auto_loop = enabled
        if enabled:
            self._arm_timer(session_id)
        else:
            self._invalidate_timer(session_id)

    async def wait_idle(self, session_id: str) -> None:
        """Wait until the session has no queued or active Round."""
        while session_id in self._drivers:
            await asyncio.gather(self._drivers[session_id], return_exceptions=True)

    async def shutdown(self) -> None:
        for session_id in list(self._timers):
            self._invalidate_timer(session_id)
        for session_id, queue in self._queues.items():
            queue.clear()
        for token in self._tokens.values():
            token.cancel("shutdown")
        if self._drivers:
            await asyncio.gather(*self._drivers.values(), return_exceptions=True)
        # Drivers re-arm timers as they exit.
        for session_id in list(self._timers):
            self._invalidate_timer(session_id)

    # --- driver -------------------------------------------------------

    def _enqueue(self, session_id: str, request: RoundRequest, delay: float = 0.0) -> None:
        session = self._state.session(session_id)
        self._queues.setdefault(session_id, deque()).append((request, delay))
        session.processing = True
        if session_id not in self._drivers:
            self._drivers[session_id] = asyncio.create_task(self._drive(session_id))

    async def _drive(self, session_id: str) -> None:
        session = self._state.session(session_id)
        queue = self._queues[session_id]
        try:
            while queue:
                request, delay = queue.popleft()
                token = CancelToken()
                self._tokens[session_id] = token
                try:
                    if delay:
                        await token.sleep(delay)
                    if request.automatic and session.user_stopped:
                        logger.debug("Automatic round in session %s dropped: user stopped", session_id)
                        continue
                    outcome = await self._processor.run(session_id, request, token)
                except RoundCancelled as exc:
                    logger.info("Round in session %s cancelled (%s)", session_id, exc)
                    continue
                self._after_round(session, outcome, token)
        except Exception:
            logger.exception("Round driver for session %s failed", session_id)
        finally:
            self._drivers.pop(session_id, None)
            self._tokens.pop(session_id, None)
            session.processing = False
            session.current_speaker_id = None
            self._arm_timer(session_id)

    def _after_round(self, session: Session, outcome: RoundOutcome, token: CancelToken) -> None:
        for listener in self._listeners:
            listener(session.id, outcome)

        if not outcome.continuation or token.cancelled or session.user_stopped:
            return
        count = self._auto_rounds.get(session.id, 0) + 1
        if count > self.max_auto_rounds:
            logger.warning(
                "Session %s reached %d automatic rounds without user input; waiting for the user",
                session.id, self.max_auto_rounds,
            )
            return
        self._auto_rounds[session.id] = count
        logger.info("Requeueing round in session %s for %s", session.id, outcome.continuation)
        self._queues[session.id].append(
            (RoundRequest(speakers=outcome.continuation, automatic=True), self.continuation_delay_sec)
        )

    # --- ambient auto-loop ----------------------------------------------

    def _timer_ready(self, session: Session) -> bool:
        return (
            session.auto_loop
            and not session.processing
            and not session.user_stopped
            and bool(session.messages)
            and session.id not in self._drivers
        )

    def _arm_timer(self, session_id: str) -> None:
        try:
            session = self._state.session(session_id)
        except PartyStateError:
            return
        if session_id in self._timers or not self._timer_ready(session):
            return
        delay = self._rng.uniform(*self.auto_loop_range)
        loop = asyncio.get_running_loop()
        self._timers[session_id] = loop.call_later(delay, self._fire_timer, session_id)
        logger.debug("Auto-loop armed for session %s in %.1fs", session_id, delay)

    def _invalidate_timer(self, session_id: str) -> None:
        handle = self._timers.pop(session_id, None)
        if handle:
            handle.cancel()

    def _fire_timer(self, session_id: str) -> None:
        self._timers.pop(session_id, None)
        try:
            session = self._state.session(session_id)
        except PartyStateError:
            return
        if not self._timer_ready(session):
            return
        eligible = self._state.eligible_players(session)
        if not eligible:
            return
        speaker = self._rng.choice(eligible)
        logger.info("Auto-loop: %s speaks in session %s", speaker.id, session_id)
        self._enqueue(session_id, RoundRequest(speakers=[speaker.id], automatic=True))
