"""Rich console output and markdown transcript save for party sessions."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from party.models import SYSTEM_ID, USER_ID, Message, Participant, Session
from party.prompts import speaker_label
from party.visibility import user_view
from party.voting import tally

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len] or "party"


def _title(message: Message, roster: list[Participant]) -> str:
    title = f"[bold]{speaker_label(message.sender_id, roster)}[/bold]"
    if message.recipient_id:
        title += f" -> {speaker_label(message.recipient_id, roster)} [magenta](private)[/magenta]"
    return title


def print_message(message: Message, roster: list[Participant]) -> None:
    """Print one message as the human user sees it."""
    if message.sender_id == USER_ID:
        return
    if message.sender_id == SYSTEM_ID:
        style = "red" if message.is_error else "yellow"
        console.print(Text(message.text.replace("**", ""), style=style))
        return
    body = message.text
    if message.media:
        body += "\n\n" + "\n".join(f"*attachment: {m}*" for m in message.media)
    console.print(
        Panel(
            Markdown(body),
            title=_title(message, roster),
            title_align="left",
            border_style="magenta" if message.recipient_id else "cyan",
        )
    )


def print_status(session: Session, roster: list[Participant]) -> None:
    """Print the roster with roles, alliances and token usage."""
    table = Table(title=f"{session.name} ({session.mode.value})", show_lines=False)
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Role")
    table.add_column("Alliance")
    table.add_column("Status")
    table.add_column("Tokens", justify="right")
    for p in roster:
        role = "referee" if p.id == session.special_role_id else "player"
        status = "[green]enabled[/green]" if p.enabled else "[dim]disabled[/dim]"
        if session.pending_kick and session.pending_kick.target_id == p.id:
            status = "[red]kick pending[/red]"
        table.add_row(p.id, p.display_name, role, p.alliance or "-", status, str(p.usage.total_tokens))
    console.print(table)

    if session.referee.game_name:
        console.print(f"Game: {session.referee.game_name} ({session.referee.status.value})")
    if session.vote.active:
        counts = ", ".join(f"{c}: {n}" for c, n in tally(session.vote).items())
        console.print(f"Vote open: {counts}")
    elif session.vote.result:
        console.print(f"Last vote result: {session.vote.result}")
    console.print(Text(f"Session tokens: {session.usage.total_tokens}", style="dim"))


def print_round_rule(label: str) -> None:
    console.print(Rule(f"[bold cyan]{label}[/bold cyan]"))


def save_transcript(session: Session, roster: list[Participant], output_dir: Path) -> Path:
    """Save the session as a markdown transcript (the human user's view).

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(session.name)}.md"

    players = [p for p in roster if p.id != session.special_role_id and p.enabled]
    lines: list[str] = [
        f"# Party: {session.name}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Mode:** {session.mode.value}",
    ]
    if session.special_role_id:
        lines.append(f"**Referee:** {speaker_label(session.special_role_id, roster)}")
    lines += [
        f"**Players:** {', '.join(p.display_name for p in players) or '-'}",
        f"**Messages:** {len(session.messages)}",
        f"**Tokens:** {session.usage.total_tokens}",
        "",
        "---",
        "",
    ]
    if session.summary:
        lines += ["## Memory", "", session.summary, "", "---", ""]

    for message in user_view(session.messages):
        when = datetime.fromtimestamp(message.timestamp).strftime("%H:%M:%S")
        heading = speaker_label(message.sender_id, roster)
        if message.recipient_id:
            heading += f" -> {speaker_label(message.recipient_id, roster)} (private)"
        lines.append(f"### {heading} *({when})*")
        lines.append("")
        lines.append(message.text)
        for media in message.media:
            lines.append(f"*attachment: {media}*")
        lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
