"""Tests for party/output.py."""

from pathlib import Path

import pytest

from party.models import SYSTEM_ID
from party.output import _slug, print_message, print_status, save_transcript


def test_slug_basic():
    assert _slug("Werewolf night: round 1?") == "werewolf-night-round-1"


def test_slug_max_len():
    long_text = "a" * 100
    assert len(_slug(long_text)) <= 40


def test_slug_special_chars():
    result = _slug("Chat vs. Debate (2024)")
    assert "." not in result
    assert "(" not in result
    assert ")" not in result


def test_slug_empty_falls_back():
    assert _slug("???") == "party"


@pytest.fixture
def played_session(state, judge_session):
    state.post(judge_session.id, "judge", "Night falls.")
    state.post(judge_session.id, "judge", "You are the wolf.", recipient_id="alice")
    state.post(judge_session.id, "bob", "I saw nothing.", media=["img://moon"])
    return judge_session


def test_save_transcript_creates_file(tmp_path: Path, state, played_session):
    saved = save_transcript(played_session, state.roster, tmp_path / "output")
    assert saved.exists()
    assert saved.suffix == ".md"
    assert saved.name.endswith("_judged.md")


def test_save_transcript_creates_output_dir(tmp_path: Path, state, played_session):
    output_dir = tmp_path / "nested" / "output"
    assert not output_dir.exists()
    save_transcript(played_session, state.roster, output_dir)
    assert output_dir.exists()


def test_save_transcript_content(tmp_path: Path, state, played_session):
    played_session.summary = "Earlier they argued about bread."
    content = save_transcript(played_session, state.roster, tmp_path).read_text(encoding="utf-8")
    assert "# Party: judged" in content
    assert "**Mode:** JUDGE" in content
    assert "**Referee:** The Host" in content
    assert "## Memory" in content
    assert "Earlier they argued about bread." in content
    assert "### The Host -> Ally (private)" in content
    assert "You are the wolf." in content
    assert "*attachment: img://moon*" in content
    assert "### User" in content


def test_print_message_variants(state, played_session, capsys):
    for message in played_session.messages:
        print_message(message, state.roster)
    error = state.post(played_session.id, SYSTEM_ID, "**[Error: timeout]** slow", is_error=True)
    print_message(error, state.roster)
    out = capsys.readouterr().out
    assert "Let's play" not in out
    assert "Night falls." in out
    assert "[Error: timeout] slow" in out


def test_print_status(state, played_session, capsys):
    print_status(played_session, state.roster)
    out = capsys.readouterr().out
    assert "judged" in out
    assert "referee" in out
