"""Tests for roster building and slash commands in party/cli.py."""

import click
import pytest
from click.testing import CliRunner

from party.cli import _build_roster, _create_session, _parse_ids, handle_command, main
from party.models import SYSTEM_ID, USER_ID, GameMode, KickRequest
from party.rounds import RoundProcessor
from party.scheduler import SessionScheduler
from party.voting import start_vote
from tests.conftest import FakeGenerator, make_participant


@pytest.fixture
def scheduler(state):
    return SessionScheduler(state, RoundProcessor(state, FakeGenerator()))


def test_parse_ids():
    assert _parse_ids(None) is None
    assert _parse_ids("") is None
    assert _parse_ids("alice, bob,,carol ") == ["alice", "bob", "carol"]


def test_build_roster_disables_keyless(sample_app_config):
    roster = _build_roster(sample_app_config, stored=[])
    enabled = {p.id: p.enabled for p in roster}
    assert enabled == {"alice": True, "bob": False, "judge": True}


def test_build_roster_prefers_stored_participants(sample_app_config):
    stored = [make_participant("alice", nickname="Al", alliance="wolf")]
    roster = _build_roster(sample_app_config, stored)
    alice = next(p for p in roster if p.id == "alice")
    assert alice.nickname == "Al"
    assert alice.alliance == "wolf"
    assert [p.id for p in roster] == ["alice", "bob", "judge"]


def test_build_roster_only_filter(sample_app_config):
    roster = _build_roster(sample_app_config, stored=[], only=["alice", "bob"])
    enabled = {p.id: p.enabled for p in roster}
    # bob has no key, so the filter cannot enable him
    assert enabled == {"alice": True, "bob": False, "judge": False}


def test_create_session_judge_mode(state, sample_app_config):
    session = _create_session(state, sample_app_config, "judge", "judge", auto_loop=True)
    assert session.mode == GameMode.JUDGE
    assert session.special_role_id == "judge"
    assert session.auto_loop
    assert session.compression == sample_app_config.compression
    assert session.compression is not sample_app_config.compression


def test_create_session_needs_referee(state, sample_app_config):
    with pytest.raises(click.BadParameter):
        _create_session(state, sample_app_config, "NARRATOR", None, auto_loop=False)
    with pytest.raises(click.BadParameter):
        _create_session(state, sample_app_config, "NARRATOR", "mallory", auto_loop=False)


def test_create_session_free_chat_default(state, sample_app_config):
    session = _create_session(state, sample_app_config, None, None, auto_loop=False)
    assert session.mode == GameMode.FREE_CHAT


def test_quit_returns_false(state, judge_session, scheduler, tmp_path):
    assert handle_command("/quit", judge_session.id, state, scheduler, tmp_path) is False
    assert handle_command("/EXIT", judge_session.id, state, scheduler, tmp_path) is False


def test_unknown_command_prints_help(state, judge_session, scheduler, tmp_path, capsys):
    assert handle_command("/dance", judge_session.id, state, scheduler, tmp_path) is True
    assert "/kick confirm|dismiss" in capsys.readouterr().out


def test_stop_command(state, judge_session, scheduler, tmp_path):
    handle_command("/stop", judge_session.id, state, scheduler, tmp_path)
    assert judge_session.user_stopped


def test_kick_confirm(state, judge_session, scheduler, tmp_path):
    state.stage_kick(judge_session.id, KickRequest("bob", "lying"))
    handle_command("/kick confirm", judge_session.id, state, scheduler, tmp_path)
    assert not state.participant("bob").enabled
    assert judge_session.messages[-1].sender_id == SYSTEM_ID


def test_kick_dismiss(state, judge_session, scheduler, tmp_path):
    state.stage_kick(judge_session.id, KickRequest("bob", "lying"))
    handle_command("/kick dismiss", judge_session.id, state, scheduler, tmp_path)
    assert judge_session.pending_kick is None
    assert state.participant("bob").enabled


def test_kick_without_pending(state, judge_session, scheduler, tmp_path, capsys):
    handle_command("/kick confirm", judge_session.id, state, scheduler, tmp_path)
    assert "No kick pending" in capsys.readouterr().out


def test_vote_and_endvote(state, judge_session, scheduler, tmp_path):
    start_vote(judge_session.vote, ["alice", "bob"])
    handle_command("/vote Ally", judge_session.id, state, scheduler, tmp_path)
    assert judge_session.vote.votes == {USER_ID: "alice"}

    handle_command("/endvote", judge_session.id, state, scheduler, tmp_path)
    assert not judge_session.vote.active
    assert judge_session.vote.result == "alice"
    last = judge_session.messages[-1]
    assert last.sender_id == SYSTEM_ID
    assert last.text == "**[Vote closed]** alice: 1, bob: 0. Result: alice"


def test_endvote_tie(state, judge_session, scheduler, tmp_path):
    start_vote(judge_session.vote, ["alice", "bob"])
    handle_command("/endvote", judge_session.id, state, scheduler, tmp_path)
    assert judge_session.messages[-1].text.endswith("Result: tie, no winner")


def test_vote_without_open_vote(state, judge_session, scheduler, tmp_path, capsys):
    handle_command("/vote bob", judge_session.id, state, scheduler, tmp_path)
    assert "No open vote" in capsys.readouterr().out
    assert judge_session.vote.votes == {}


async def test_auto_command(state, judge_session, scheduler, tmp_path):
    handle_command("/auto on", judge_session.id, state, scheduler, tmp_path)
    assert judge_session.auto_loop
    assert scheduler.has_timer(judge_session.id)
    handle_command("/auto off", judge_session.id, state, scheduler, tmp_path)
    assert not judge_session.auto_loop
    assert not scheduler.has_timer(judge_session.id)


def test_export_command(state, judge_session, scheduler, tmp_path):
    handle_command("/export", judge_session.id, state, scheduler, tmp_path / "out")
    files = list((tmp_path / "out").glob("*.md"))
    assert len(files) == 1


def test_main_help():
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "--referee" in result.output
    assert "--scenario" in result.output
