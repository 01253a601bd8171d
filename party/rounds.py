"""Round Processor: one pass of referee turn, player turns and resolution.

States::

    IDLE -> REFEREE_TURN -> (PLAYERS_TURN)? -> (REFEREE_RESOLUTION)? -> IDLE

Free chat (or a referee-less session) runs only PLAYERS_TURN. Narrator
sessions run the narrator first and never resolve.

Only the generation call suspends. Every state change after it is
synchronous and happens after the cancel token has been re-checked, so
a cancelled Round never appends anything.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from party.cancellation import CancelToken
from party.compression import ContextCompressor, build_context
from party.generation import GenerationRequest, GenerationResult, TurnGenerator
from party.models import (
    SYSTEM_ID,
    GameMode,
    KickRequest,
    Message,
    Participant,
    RefereeMode,
    RefereeStatus,
    Role,
    Session,
)
from party.protocol import (
    PASS_TOKEN,
    NextDirective,
    NextKind,
    RefereeDirectives,
    Segment,
    parse_player_output,
    parse_referee_output,
    resolve_recipient,
    resolve_target,
)
from party.providers.base import TIMEOUT, ProviderError
from party.state import PartyState
from party.visibility import filter_history_for, omniscient_view
from party.voting import cast_vote, start_vote

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "IDLE"
    REFEREE_TURN = "REFEREE_TURN"
    PLAYERS_TURN = "PLAYERS_TURN"
    REFEREE_RESOLUTION = "REFEREE_RESOLUTION"


@dataclass
class RoundRequest:
    """What to run.

    speakers: explicit subset in caller order, or None for "everyone the
    mode allows". force_referee: the human addressed the referee, so it
    speaks first even with an explicit subset and may not stay silent.
    """

    speakers: list[str] | None = None
    force_referee: bool = False
    automatic: bool = False


@dataclass
class RoundOutcome:
    messages: list[Message] = field(default_factory=list)
    continuation: list[str] | None = None  # speakers for a requeued Round
    error: ProviderError | None = None
    phases: list[Phase] = field(default_factory=list)


class RoundProcessor:
    def __init__(
        self,
        state: PartyState,
        generator: TurnGenerator,
        compressor: ContextCompressor | None = None,
        referee_timeout_sec: float | None = None,
    ) -> None:
        self._state = state
        self._generator = generator
        self._compressor = compressor
        self._referee_timeout_sec = referee_timeout_sec

    async def run(self, session_id: str, request: RoundRequest, token: CancelToken) -> RoundOutcome:
        """Run one Round for session_id.

        Provider failures end the Round with a single system error message.
        RoundCancelled propagates to the caller with nothing appended.
        """
        session = self._state.session(session_id)
        outcome = RoundOutcome()
        if self._compressor:
            self._compressor.schedule(session_id)

        logger.info(
            "Round started in session %s (%s, speakers=%s, referee=%s)",
            session_id, session.mode.value, request.speakers, request.force_referee,
        )
        try:
            special = self._state.special_participant(session)
            if special is None:
                speakers = self._explicit_or_all(session, request.speakers)
                await self._players_turn(session, speakers, token, outcome)
            elif session.mode == GameMode.NARRATOR:
                await self._narrator_round(session, special, request, token, outcome)
            else:
                await self._judge_round(session, special, request, token, outcome)
        except ProviderError as exc:
            outcome.error = exc
            self._report_error(session, exc, outcome)
        finally:
            session.current_speaker_id = None
            outcome.phases.append(Phase.IDLE)

        logger.info(
            "Round finished in session %s: %d message(s), continuation=%s",
            session_id, len(outcome.messages), outcome.continuation,
        )
        return outcome

    # --- flows --------------------------------------------------------

    async def _judge_round(
        self,
        session: Session,
        referee: Participant,
        request: RoundRequest,
        token: CancelToken,
        outcome: RoundOutcome,
    ) -> None:
        if request.speakers is None or request.force_referee:
            outcome.phases.append(Phase.REFEREE_TURN)
            directives = await self._referee_turn(session, referee, token, outcome, forced=request.force_referee)
            speakers = self._resolve_next(session, directives.next)
        else:
            speakers = self._explicit_or_all(session, request.speakers)

        acted = await self._players_turn(session, speakers, token, outcome)
        if not acted:
            return

        # Re-read: the referee may have been disabled while players spoke.
        referee = self._state.special_participant(session)
        if referee is None:
            return
        outcome.phases.append(Phase.REFEREE_RESOLUTION)
        directives = await self._referee_turn(session, referee, token, outcome)
        if directives.next.kind in (NextKind.ALL, NextKind.LIST):
            continuation = [p.id for p in self._resolve_next(session, directives.next)]
            outcome.continuation = continuation or None

    async def _narrator_round(
        self,
        session: Session,
        narrator: Participant,
        request: RoundRequest,
        token: CancelToken,
        outcome: RoundOutcome,
    ) -> None:
        if request.speakers is None or request.force_referee:
            outcome.phases.append(Phase.REFEREE_TURN)
            result = await self._generate(session, narrator, Role.NARRATOR, token, self._referee_timeout_sec)
            directives = parse_referee_output(result.text)
            self._append_segments(session, narrator, directives, result, outcome, request.force_referee)

        speakers = self._explicit_or_all(session, request.speakers)
        await self._players_turn(session, speakers, token, outcome)

    # --- turns --------------------------------------------------------

    async def _generate(
        self,
        session: Session,
        participant: Participant,
        role: Role,
        token: CancelToken,
        timeout: float | None = None,
    ) -> GenerationResult:
        raw, memory = build_context(session)
        roster = self._state.roster
        if role == Role.PLAYER:
            history = filter_history_for(participant, raw, roster)
            flags = session.flags
        else:
            history = omniscient_view(raw, roster)
            flags = replace(session.flags, deep_thinking=False)

        request = GenerationRequest(
            participant=participant,
            role=role,
            history=history,
            roster=roster,
            flags=flags,
            referee_context=session.referee,
            special_role_id=session.special_role_id,
            memory=memory,
        )
        session.current_speaker_id = participant.id
        logger.info("Turn: %s as %s (%d visible messages)", participant.id, role.value, len(history))

        call = self._generator.generate(request, token)
        if timeout:
            try:
                result = await asyncio.wait_for(call, timeout)
            except TimeoutError as exc:
                raise ProviderError(
                    participant.id, f"No response within {timeout:.0f}s", TIMEOUT,
                ) from exc
        else:
            result = await call

        token.raise_if_cancelled()
        if result.usage:
            self._state.record_usage(session.id, participant.id, result.usage)
        return result

    async def _referee_turn(
        self,
        session: Session,
        referee: Participant,
        token: CancelToken,
        outcome: RoundOutcome,
        forced: bool = False,
    ) -> RefereeDirectives:
        result = await self._generate(session, referee, Role.JUDGE, token, self._referee_timeout_sec)
        directives = parse_referee_output(result.text)
        self._apply_kick(session, referee, directives)
        self._apply_game(session, directives)
        self._apply_vote_start(session, directives, outcome)
        self._append_segments(session, referee, directives, result, outcome, forced)
        return directives

    async def _players_turn(
        self,
        session: Session,
        speakers: list[Participant],
        token: CancelToken,
        outcome: RoundOutcome,
    ) -> int:
        """Run each speaker in order; returns how many of them acted."""
        if speakers:
            outcome.phases.append(Phase.PLAYERS_TURN)
        acted = 0
        for speaker in speakers:
            token.raise_if_cancelled()
            participant = self._state.find_participant(speaker.id)
            if participant is None or not participant.enabled:
                logger.info("Skipping %s: disabled", speaker.id)
                continue
            if session.pending_kick and session.pending_kick.target_id == participant.id:
                logger.info("Skipping %s: pending kick", participant.id)
                continue

            result = await self._generate(session, participant, Role.PLAYER, token)
            if not participant.enabled:
                logger.info("Discarding turn of %s: disabled during generation", participant.id)
                continue

            parsed = parse_player_output(result.text)
            voted = False
            if parsed.vote:
                voted = cast_vote(session.vote, participant.id, parsed.vote, self._state.roster)
            recipient = None
            if parsed.whisper_to:
                recipient = resolve_recipient(parsed.whisper_to, self._state.roster)

            message = self._state.post(
                session.id, participant.id, parsed.text, recipient_id=recipient, media=result.media,
            )
            if message:
                outcome.messages.append(message)
            else:
                logger.debug("Empty or duplicate turn from %s skipped", participant.id)
            if message or voted:
                acted += 1
        return acted

    # --- directive application ----------------------------------------

    def _apply_kick(self, session: Session, referee: Participant, directives: RefereeDirectives) -> None:
        if directives.kick is None:
            return
        target = resolve_target(directives.kick.target, self._state.roster)
        if target is None:
            logger.warning("Kick target %r not found; ignored", directives.kick.target)
            return
        if target.id == referee.id:
            logger.warning("Referee %s tried to kick itself; ignored", referee.id)
            return
        self._state.stage_kick(session.id, KickRequest(target.id, directives.kick.reason))

    def _apply_game(self, session: Session, directives: RefereeDirectives) -> None:
        context = session.referee
        if directives.game_end:
            context.status = RefereeStatus.IDLE
            context.mode = RefereeMode.GENERAL
            logger.info("Game ended in session %s: %s", session.id, context.game_name)
        if directives.game_start:
            context.mode = RefereeMode.GAME
            context.status = RefereeStatus.ACTIVE
            context.game_name = directives.game_start
            logger.info("Game started in session %s: %s", session.id, context.game_name)

    def _apply_vote_start(self, session: Session, directives: RefereeDirectives, outcome: RoundOutcome) -> None:
        if not directives.vote_start:
            return
        if start_vote(session.vote, directives.vote_start, title=session.referee.game_name or ""):
            announcement = self._state.post(
                session.id,
                SYSTEM_ID,
                f"**[Vote started]** Candidates: {', '.join(session.vote.candidates)}",
            )
            if announcement:
                outcome.messages.append(announcement)

    def _append_segments(
        self,
        session: Session,
        speaker: Participant,
        directives: RefereeDirectives,
        result: GenerationResult,
        outcome: RoundOutcome,
        forced: bool,
    ) -> None:
        segments = list(directives.segments)
        if directives.passed:
            if not forced:
                logger.info("%s passed", speaker.id)
                return
            segments = [Segment(PASS_TOKEN)]
        if result.media and not segments:
            segments = [Segment("")]

        roster = self._state.roster
        for i, segment in enumerate(segments):
            recipient = resolve_recipient(segment.recipient, roster) if segment.recipient else None
            message = self._state.post(
                session.id,
                speaker.id,
                segment.text,
                recipient_id=recipient,
                media=result.media if i == 0 else None,
            )
            if message:
                outcome.messages.append(message)

    # --- speaker resolution -------------------------------------------

    def _explicit_or_all(self, session: Session, speaker_ids: list[str] | None) -> list[Participant]:
        eligible = self._state.eligible_players(session)
        if speaker_ids is None:
            return eligible
        by_id = {p.id: p for p in eligible}
        ordered: list[Participant] = []
        for speaker_id in speaker_ids:
            participant = by_id.get(speaker_id)
            if participant and participant not in ordered:
                ordered.append(participant)
        return ordered

    def _resolve_next(self, session: Session, directive: NextDirective) -> list[Participant]:
        kind = directive.kind
        if kind == NextKind.UNSPECIFIED:
            in_progress = session.vote.active or session.referee.status == RefereeStatus.ACTIVE
            kind = NextKind.ALL if in_progress else NextKind.NONE
        if kind == NextKind.NONE:
            return []

        eligible = self._state.eligible_players(session)
        if kind == NextKind.ALL:
            return eligible

        ordered: list[Participant] = []
        for token in directive.targets:
            participant = resolve_target(token, eligible)
            if participant is None:
                logger.warning("Next speaker %r not resolvable; ignored", token)
            elif participant not in ordered:
                ordered.append(participant)
        return ordered

    def _report_error(self, session: Session, exc: ProviderError, outcome: RoundOutcome) -> None:
        logger.error("Round in session %s aborted: %s (%s)", session.id, exc, exc.category)
        message = self._state.post(
            session.id,
            SYSTEM_ID,
            f"**[Error: {exc.category}]** {exc}",
            is_error=True,
        )
        if message:
            outcome.messages.append(message)
