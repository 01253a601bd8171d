"""Vote lifecycle on a session's VoteState: start, cast, tally, close."""

import logging

from party.models import Participant, VoteState
from party.protocol import resolve_target

logger = logging.getLogger(__name__)


def start_vote(vote: VoteState, candidates: list[str] | tuple[str, ...], title: str = "") -> bool:
    """Open a new vote, replacing any active one.

    Returns False (and leaves state untouched) when no usable candidate
    remains after trimming and de-duplication.
    """
    unique: list[str] = []
    for raw in candidates:
        name = raw.strip()
        if name and name not in unique:
            unique.append(name)
    if not unique:
        logger.warning("Vote start ignored: no candidates")
        return False

    if vote.active:
        logger.warning(
            "New vote replaces active vote %r (discarded tally: %s)",
            vote.title, tally(vote),
        )

    vote.active = True
    vote.title = title
    vote.candidates = unique
    vote.votes = {}
    vote.result = None
    logger.info("Vote started: %s", ", ".join(unique))
    return True


def match_candidate(vote: VoteState, choice: str, roster: list[Participant]) -> str | None:
    """Map a free-form choice to one of the vote's candidates."""
    lowered = choice.strip().lower()
    for candidate in vote.candidates:
        if candidate.lower() == lowered:
            return candidate

    participant = resolve_target(choice, roster)
    if participant is None:
        return None
    aliases = {participant.id.lower(), participant.name.lower()}
    if participant.nickname:
        aliases.add(participant.nickname.lower())
    for candidate in vote.candidates:
        if candidate.lower() in aliases:
            return candidate
    return None


def cast_vote(vote: VoteState, voter_id: str, choice: str, roster: list[Participant]) -> bool:
    """Record voter_id's choice. One vote per voter, last write wins."""
    if not vote.active:
        logger.debug("Vote from %s ignored: no active vote", voter_id)
        return False
    candidate = match_candidate(vote, choice, roster)
    if candidate is None:
        logger.warning("Vote from %s for unknown candidate %r ignored", voter_id, choice)
        return False
    vote.votes[voter_id] = candidate
    logger.info("Vote recorded: %s -> %s", voter_id, candidate)
    return True


def tally(vote: VoteState) -> dict[str, int]:
    """Votes per candidate, in candidate order."""
    counts = {c: 0 for c in vote.candidates}
    for candidate in vote.votes.values():
        if candidate in counts:
            counts[candidate] += 1
    return counts


def close_vote(vote: VoteState) -> str | None:
    """Deactivate the vote and record the winner (None on tie or no votes)."""
    counts = tally(vote)
    vote.active = False
    best = max(counts.values(), default=0)
    leaders = [c for c, n in counts.items() if n == best]
    vote.result = leaders[0] if best > 0 and len(leaders) == 1 else None
    logger.info("Vote closed: %s (result: %s)", counts, vote.result)
    return vote.result
