"""Control mini-protocol embedded in referee and player output.

Grammar (keywords case-insensitive, whitespace around tokens ignored)::

    kick        := "<<KICK:" target [ "|" reason ] ">>"
    vote_start  := "[[VOTE_START:" name { "," name } "]]"
    next        := "[[NEXT:" ( "ALL" | "NONE" | target { "," target } ) "]]"
    game_start  := "[[GAME_START:" name "]]"
    game_end    := "[[GAME_END]]"
    segment     := "[[PUBLIC]]" | "[[PRIVATE:" target "]]"
    vote        := "[[VOTE:" target "]]"          (players)
    whisper     := "[[PRIVATE:" target "]]" text  (players, leading only)

Bodies never contain "[", "]", "<" or ">". A backslash directly before
"[[" or "<<" makes the sequence literal text; the backslash is dropped
from the displayed text. Anything that does not match a complete
directive is left in place as plain text.

Only the first directive of each kind counts. Later repeats are removed
from the text and logged.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from party.models import Participant

logger = logging.getLogger(__name__)

DEFAULT_KICK_REASON = "removed by referee ruling"
PASS_TOKEN = "[PASS]"

# Private-use code points stand in for escaped openers while parsing.
_ESC_BRACKETS = "\ue000"
_ESC_ANGLES = "\ue001"

_KICK = re.compile(r"<<\s*KICK\s*:(?P<body>[^<>]*?)>>", re.IGNORECASE)
_VOTE_START = re.compile(r"\[\[\s*VOTE_START\s*:(?P<body>[^\[\]]*?)\]\]", re.IGNORECASE)
_NEXT = re.compile(r"\[\[\s*NEXT\s*:(?P<body>[^\[\]]*?)\]\]", re.IGNORECASE)
_GAME_START = re.compile(r"\[\[\s*GAME_START\s*:(?P<body>[^\[\]]*?)\]\]", re.IGNORECASE)
_GAME_END = re.compile(r"\[\[\s*GAME_END\s*\]\]", re.IGNORECASE)
_SEGMENT = re.compile(
    r"\[\[\s*(?:(?P<public>PUBLIC)|PRIVATE\s*:(?P<target>[^\[\]]*?))\s*\]\]",
    re.IGNORECASE,
)
_VOTE = re.compile(r"\[\[\s*VOTE\s*:(?P<body>[^\[\]]*?)\]\]", re.IGNORECASE)
_LEADING_PRIVATE = re.compile(r"^\s*\[\[\s*PRIVATE\s*:(?P<target>[^\[\]]*?)\]\]", re.IGNORECASE)


class NextKind(str, Enum):
    ALL = "ALL"
    NONE = "NONE"
    LIST = "LIST"
    UNSPECIFIED = "UNSPECIFIED"


@dataclass(frozen=True)
class NextDirective:
    kind: NextKind = NextKind.UNSPECIFIED
    targets: tuple[str, ...] = ()


@dataclass(frozen=True)
class KickDirective:
    target: str   # raw token, resolved later
    reason: str


@dataclass(frozen=True)
class Segment:
    text: str
    recipient: str | None = None  # raw token; None means public


@dataclass(frozen=True)
class RefereeDirectives:
    segments: tuple[Segment, ...] = ()
    kick: KickDirective | None = None
    vote_start: tuple[str, ...] | None = None
    next: NextDirective = NextDirective()
    game_start: str | None = None
    game_end: bool = False
    passed: bool = False


@dataclass(frozen=True)
class PlayerOutput:
    text: str
    vote: str | None = None
    whisper_to: str | None = None


def _protect(text: str) -> str:
    return text.replace("\\[[", _ESC_BRACKETS).replace("\\<<", _ESC_ANGLES)


def _restore(text: str) -> str:
    return text.replace(_ESC_BRACKETS, "[[").replace(_ESC_ANGLES, "<<")


def _take_first(pattern: re.Pattern[str], text: str, kind: str) -> tuple[re.Match[str] | None, str]:
    """Return the first match of pattern and text with every match removed."""
    matches = list(pattern.finditer(text))
    if not matches:
        return None, text
    if len(matches) > 1:
        logger.warning("Ignoring %d repeated %s directive(s)", len(matches) - 1, kind)
    return matches[0], pattern.sub("", text)


def _split_names(body: str) -> tuple[str, ...]:
    names: list[str] = []
    for raw in body.split(","):
        name = _restore(raw).strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def _parse_next(body: str) -> NextDirective:
    stripped = body.strip()
    if stripped.upper() == "ALL":
        return NextDirective(NextKind.ALL)
    if stripped.upper() == "NONE":
        return NextDirective(NextKind.NONE)
    targets = _split_names(stripped)
    if not targets:
        return NextDirective()
    return NextDirective(NextKind.LIST, targets)


def _segment(text: str) -> tuple[Segment, ...]:
    segments: list[Segment] = []
    markers = list(_SEGMENT.finditer(text))
    if not markers:
        body = _restore(text).strip()
        return (Segment(body),) if body else ()

    head = _restore(text[: markers[0].start()]).strip()
    if head:
        segments.append(Segment(head))
    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        body = _restore(text[marker.end():end]).strip()
        if not body:
            continue
        recipient = None if marker.group("public") else _restore(marker.group("target")).strip() or None
        segments.append(Segment(body, recipient))
    return tuple(segments)


def parse_referee_output(raw: str) -> RefereeDirectives:
    """Extract control directives from one raw referee response.

    Order: kick, vote start, next speaker, game start/end, then the
    remainder is split into public/private segments.
    """
    text = _protect(raw)

    kick: KickDirective | None = None
    match, text = _take_first(_KICK, text, "KICK")
    if match:
        target, _, reason = match.group("body").partition("|")
        target = _restore(target).strip()
        if target:
            kick = KickDirective(target, _restore(reason).strip() or DEFAULT_KICK_REASON)

    vote_start: tuple[str, ...] | None = None
    match, text = _take_first(_VOTE_START, text, "VOTE_START")
    if match:
        vote_start = _split_names(match.group("body")) or None

    next_directive = NextDirective()
    match, text = _take_first(_NEXT, text, "NEXT")
    if match:
        next_directive = _parse_next(match.group("body"))

    game_start: str | None = None
    match, text = _take_first(_GAME_START, text, "GAME_START")
    if match:
        game_start = _restore(match.group("body")).strip() or None

    match, text = _take_first(_GAME_END, text, "GAME_END")
    game_end = match is not None

    if _restore(text).strip() == PASS_TOKEN:
        segments: tuple[Segment, ...] = ()
        passed = True
    else:
        segments = _segment(text)
        passed = False

    directives = RefereeDirectives(
        segments=segments,
        kick=kick,
        vote_start=vote_start,
        next=next_directive,
        game_start=game_start,
        game_end=game_end,
        passed=passed,
    )
    logger.debug("Parsed referee directives: %s", directives)
    return directives


def parse_player_output(raw: str) -> PlayerOutput:
    """Detect an inline vote cast and a leading whisper marker."""
    text = _protect(raw)

    vote: str | None = None
    match, text = _take_first(_VOTE, text, "VOTE")
    if match:
        vote = _restore(match.group("body")).strip() or None

    whisper_to: str | None = None
    lead = _LEADING_PRIVATE.match(text)
    if lead:
        whisper_to = _restore(lead.group("target")).strip() or None
        text = text[lead.end():]

    return PlayerOutput(text=_restore(text).strip(), vote=vote, whisper_to=whisper_to)


def resolve_target(token: str, roster: list[Participant]) -> Participant | None:
    """Resolve an identifier: exact id, then name, then nickname (case-insensitive)."""
    token = token.strip().lstrip("@")
    if not token:
        return None
    for p in roster:
        if p.id == token:
            return p
    lowered = token.lower()
    for p in roster:
        if p.name.lower() == lowered:
            return p
    for p in roster:
        if p.nickname and p.nickname.lower() == lowered:
            return p
    return None


def resolve_recipient(token: str, roster: list[Participant]) -> str:
    """Resolve a whisper target to a participant id or an alliance tag.

    Unresolvable tokens are returned verbatim so the message stays
    restricted rather than becoming public.
    """
    participant = resolve_target(token, roster)
    if participant:
        return participant.id
    lowered = token.strip().lower()
    for p in roster:
        if p.alliance and p.alliance.lower() == lowered:
            return p.alliance
    logger.warning("Unresolved whisper target %r kept verbatim", token)
    return token.strip()
