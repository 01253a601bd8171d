"""Click CLI: loads config, builds the roster and session, runs the chat loop."""

import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from party.compression import ContextCompressor
from party.generation import ProviderTurnGenerator
from party.healthcheck import run_health_checks
from party.models import SYSTEM_ID, USER_ID, GameMode, Participant, Session
from party.output import print_message, print_status, save_transcript
from party.persistence import JsonStore
from party.providers.base import AIProvider, ProviderError
from party.rounds import RoundProcessor
from party.scenario import apply_scenario, parse_scenario
from party.scheduler import SessionScheduler
from party.state import PartyState
from party.voting import cast_vote, close_vote, tally

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

HELP_TEXT = (
    "Commands: /stop, /kick confirm|dismiss, /vote CANDIDATE, /endvote, "
    "/auto on|off, /who, /export, /quit"
)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _parse_ids(arg: str | None) -> list[str] | None:
    if not arg:
        return None
    return [part.strip() for part in arg.split(",") if part.strip()]


def _build_roster(
    config: AppConfig,
    stored: list[Participant],
    only: list[str] | None = None,
) -> list[Participant]:
    """Configured participants, overlaid with stored ones, keyed by id.

    Participants without an API key are disabled. When only is given,
    everyone else is disabled too.
    """
    by_id = {p.id: p for p in config.participants}
    for participant in stored:
        by_id[participant.id] = participant
    roster = list(by_id.values())
    for participant in roster:
        if participant.id not in config.available_participants:
            participant.enabled = False
        elif only is not None:
            participant.enabled = participant.id in only
    return roster


def _check_and_filter_participants(
    state: PartyState,
    generator: ProviderTurnGenerator,
) -> None:
    """Ping every enabled participant, disable failures after asking the user."""
    providers: dict[str, AIProvider] = {}
    for participant in state.roster:
        if not participant.enabled:
            continue
        try:
            providers[participant.id] = generator.provider_for(participant)
        except ProviderError as exc:
            logger.warning("Failed to instantiate provider for '%s': %s", participant.id, exc)
            state.set_enabled(participant.id, False)

    console.print("\n[bold]Checking participants...[/bold]")
    results = asyncio.run(run_health_checks(providers))

    failed: list[str] = []
    for participant_id in sorted(results):
        result = results[participant_id]
        if result.ok:
            console.print(f"  [green]OK  [/green] {participant_id} [dim]({result.latency_sec:.1f}s)[/dim]")
        else:
            short_err = result.error.splitlines()[0][:120] if result.error else "unknown error"
            console.print(f"  [red]FAIL[/red] {participant_id} ({result.category}): {short_err}")
            failed.append(participant_id)

    if not failed:
        console.print()
        return

    if len(failed) == len(results):
        console.print("\n[bold red]Error:[/bold red] No participants passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed)} participant(s) failed:[/yellow] {', '.join(failed)}")
    if not click.confirm("Continue without them?", default=True):
        sys.exit(0)
    for participant_id in failed:
        state.set_enabled(participant_id, False)
    console.print()


def _create_session(
    state: PartyState,
    config: AppConfig,
    mode: str | None,
    referee: str | None,
    auto_loop: bool,
) -> Session:
    game_mode = GameMode(mode.upper()) if mode else GameMode.FREE_CHAT
    if game_mode != GameMode.FREE_CHAT:
        if not referee or state.find_participant(referee) is None:
            raise click.BadParameter(f"mode {game_mode.value} needs --referee with a configured id")
    return state.create_session(
        mode=game_mode,
        special_role_id=referee,
        compression=replace(config.compression),
        auto_loop=auto_loop,
    )


def handle_command(
    line: str,
    session_id: str,
    state: PartyState,
    scheduler: SessionScheduler,
    output_dir: Path,
) -> bool:
    """Run one slash command. Returns False when the user wants to leave."""
    command, _, arg = line.strip().partition(" ")
    command = command.lower()
    arg = arg.strip()
    session = state.session(session_id)

    if command in ("/quit", "/exit"):
        return False
    if command == "/stop":
        scheduler.stop(session_id)
        console.print("[yellow]Stopped. Send a message to continue.[/yellow]")
    elif command == "/kick":
        if session.pending_kick is None:
            console.print("No kick pending.")
        elif arg.lower() == "confirm":
            state.confirm_kick(session_id)
        elif arg.lower() == "dismiss":
            state.dismiss_kick(session_id)
            console.print("Kick dismissed.")
        else:
            kick = session.pending_kick
            console.print(f"Pending kick: {kick.target_id} ({kick.reason}). Use /kick confirm|dismiss.")
    elif command == "/vote":
        if not arg:
            console.print("Usage: /vote CANDIDATE")
        elif cast_vote(session.vote, USER_ID, arg, state.roster):
            console.print(f"Vote recorded for {session.vote.votes[USER_ID]}.")
        else:
            console.print("[yellow]No open vote or unknown candidate.[/yellow]")
    elif command == "/endvote":
        if not session.vote.active:
            console.print("No open vote.")
        else:
            counts = tally(session.vote)
            result = close_vote(session.vote)
            summary = ", ".join(f"{c}: {n}" for c, n in counts.items())
            outcome = result if result else "tie, no winner"
            state.post(session_id, SYSTEM_ID, f"**[Vote closed]** {summary}. Result: {outcome}")
    elif command == "/auto":
        if arg.lower() not in ("on", "off"):
            console.print("Usage: /auto on|off")
        else:
            scheduler.set_auto_loop(session_id, arg.lower() == "on")
            console.print(f"Auto-loop {arg.lower()}.")
    elif command == "/who":
        print_status(session, state.roster)
    elif command == "/export":
        path = save_transcript(session, state.roster, output_dir)
        console.print(f"[dim]Saved to: {path}[/dim]")
    else:
        console.print(HELP_TEXT)
    return True


async def _run_party(
    state: PartyState,
    session: Session,
    config: AppConfig,
    store: JsonStore,
    generator: ProviderTurnGenerator,
    opening: str | None,
    output_dir: Path,
) -> None:
    defaults = config.defaults
    compressor = ContextCompressor(state, generator.summarize)
    processor = RoundProcessor(state, generator, compressor, defaults.referee_timeout_sec)
    scheduler = SessionScheduler(
        state,
        processor,
        continuation_delay_sec=defaults.continuation_delay_sec,
        auto_loop_min_sec=defaults.auto_loop_min_sec,
        auto_loop_max_sec=defaults.auto_loop_max_sec,
        max_auto_rounds=defaults.max_auto_rounds,
    )

    def on_message(session_id: str, message) -> None:
        if session_id == session.id:
            print_message(message, state.roster)

    def on_round_end(session_id: str, outcome) -> None:
        store.save_session(state.session(session_id))
        if state.session(session_id).pending_kick:
            kick = state.session(session_id).pending_kick
            console.print(
                f"[red]Referee requests removal of {kick.target_id}: {kick.reason}. "
                "Use /kick confirm or /kick dismiss.[/red]"
            )

    state.listeners.append(on_message)
    scheduler.add_listener(on_round_end)

    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        if scheduler.is_running(session.id):
            scheduler.stop(session.id)
            console.print("\n[yellow]Round stopped.[/yellow]")
        else:
            console.print("\n[dim]Type /quit to leave.[/dim]")

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl-C ends the party.
        pass

    if session.auto_loop:
        scheduler.set_auto_loop(session.id, True)
    if opening:
        scheduler.submit_user_message(session.id, opening)

    try:
        while True:
            line = await asyncio.to_thread(console.input, "[bold green]You[/bold green] > ")
            if not line.strip():
                continue
            if line.startswith("/"):
                if not handle_command(line, session.id, state, scheduler, output_dir):
                    break
                continue
            scheduler.submit_user_message(session.id, line)
    except EOFError:
        pass
    finally:
        await scheduler.shutdown()
        await compressor.drain()
        store.save_session(session)
        store.save_participants(state.roster)
        console.print(f"[dim]Session {session.id} saved. Resume with --session {session.id}[/dim]")


@click.command()
@click.argument("message", required=False)
@click.option("--scenario", "scenario_file", type=click.Path(exists=True), help="Start from a scenario .md file")
@click.option("--session", "session_id", default=None, help="Resume a saved session by id")
@click.option("--mode", type=click.Choice([m.value for m in GameMode], case_sensitive=False), default=None,
              help="FREE_CHAT (default), JUDGE or NARRATOR")
@click.option("--referee", default=None, help="Participant id of the referee/narrator")
@click.option("--participants", default=None, help="Comma-separated participant ids to enable")
@click.option("--auto-loop", is_flag=True, default=False, help="Let participants keep talking while idle")
@click.option("--no-compress", is_flag=True, default=False, help="Disable context compression")
@click.option("--output", "output_path", default=None, help="Transcript directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    message: str | None,
    scenario_file: str | None,
    session_id: str | None,
    mode: str | None,
    referee: str | None,
    participants: str | None,
    auto_loop: bool,
    no_compress: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Party Line -- a group chat between several AI models and you.

    \b
    Examples:
      party "Hi everyone, what's the plan tonight?"
      party --mode judge --referee claude "Let's play werewolf"
      party --scenario scenarios/werewolf.md
      party --session 3f2a9c1b7d04
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    store = JsonStore(config.defaults.session_dir)
    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    roster = _build_roster(config, store.load_participants(), _parse_ids(participants))
    state = PartyState(roster, dedup_window_sec=config.defaults.dedup_window_sec)
    generator = ProviderTurnGenerator(config.prompts, summarizer_id=config.defaults.summarizer)

    opening = message
    try:
        if session_id:
            session = state.add_session(store.load_session(session_id))
        elif scenario_file:
            scenario = parse_scenario(Path(scenario_file))
            session = apply_scenario(scenario, state, config.compression)
            opening = message or scenario.opening or None
        else:
            session = _create_session(state, config, mode, referee, auto_loop)
    except (FileNotFoundError, ValueError, click.BadParameter) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if auto_loop:
        session.auto_loop = True
    if no_compress:
        session.compression.enabled = False

    if not any(p.enabled for p in state.roster):
        console.print("[bold red]Error:[/bold red] No participants available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        _check_and_filter_participants(state, generator)

    console.print(f"\n[bold cyan]Party Line[/bold cyan] -- {session.name} ({session.mode.value})")
    print_status(session, state.roster)
    console.print(f"[dim]{HELP_TEXT}[/dim]\n")

    asyncio.run(_run_party(state, session, config, store, generator, opening, output_dir))


if __name__ == "__main__":
    main()
