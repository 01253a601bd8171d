"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, load_config


@pytest.fixture
def settings_dict() -> dict:
    return {
        "defaults": {
            "session_dir": "./sessions",
            "output_dir": "./transcripts",
            "auto_loop_min_sec": 3,
            "auto_loop_max_sec": 6,
            "max_auto_rounds": 4,
            "summarizer": "gemini",
        },
        "compression": {"enabled": True, "window_size": 20},
        "participants": [
            {
                "id": "gemini",
                "name": "Gemini",
                "nickname": "Google Gemini",
                "sdk": "gemini",
                "model": "gemini-2.5-flash",
                "api_key_env": "TEST_GEMINI_KEY",
                "temperature": 1.0,
            },
            {
                "id": "deepseek",
                "name": "DeepSeek",
                "sdk": "openai",
                "model": "deepseek-chat",
                "api_key_env": "TEST_DEEPSEEK_KEY",
                "base_url": "https://api.deepseek.com",
                "alliance": "wolf",
                "enabled": False,
            },
        ],
        "prompts": {
            "system": "{persona}\n{name} ({id}); others: {others}\n{role_instruction}",
            "player": "Speak as yourself.",
            "judge": "You are the referee.",
            "narrator": "You narrate.",
            "protocol": "[[NEXT: ...]]",
            "summary": "{participants}\n{prior_summary}\n{transcript}",
            "modes": {"logic": "Be rigorous."},
        },
    }


def _write(tmp_path: Path, settings: dict) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


@pytest.fixture
def minimal_settings(tmp_path: Path, settings_dict: dict) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    return _write(tmp_path, settings_dict)


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.auto_loop_min_sec == 3.0
    assert config.defaults.auto_loop_max_sec == 6.0
    assert config.defaults.max_auto_rounds == 4
    assert config.defaults.continuation_delay_sec == 1.5
    assert config.defaults.summarizer == "gemini"
    assert isinstance(config.defaults.session_dir, Path)
    assert isinstance(config.defaults.output_dir, Path)


def test_load_config_compression(minimal_settings):
    compression = load_config(minimal_settings).compression
    assert compression.enabled
    assert compression.window_size == 20
    assert compression.margin == 10


def test_load_config_participants(minimal_settings):
    gemini, deepseek = load_config(minimal_settings).participants
    assert gemini.sdk == "gemini"
    assert gemini.display_name == "Google Gemini"
    assert gemini.temperature == 1.0
    assert gemini.base_url is None
    assert deepseek.base_url == "https://api.deepseek.com"
    assert deepseek.alliance == "wolf"
    assert not deepseek.enabled


def test_load_config_prompts(minimal_settings):
    prompts = load_config(minimal_settings).prompts
    assert "{persona}" in prompts.system
    assert prompts.modes == {"logic": "Be rigorous."}


def test_available_participants_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_GEMINI_KEY", "fake-key")
    monkeypatch.delenv("TEST_DEEPSEEK_KEY", raising=False)
    assert load_config(minimal_settings).available_participants == {"gemini"}


def test_no_available_participants_without_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_GEMINI_KEY", "  ")
    monkeypatch.delenv("TEST_DEEPSEEK_KEY", raising=False)
    assert load_config(minimal_settings).available_participants == set()


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_auto_loop_range_validated(tmp_path, settings_dict):
    settings_dict["defaults"]["auto_loop_min_sec"] = 20
    with pytest.raises(ValueError, match="auto_loop_min_sec"):
        load_config(_write(tmp_path, settings_dict))


def test_bundled_settings_load():
    config = load_config()
    assert {p.id for p in config.participants} >= {"gemini", "claude"}
    assert "{others}" in config.prompts.system
    assert set(config.prompts.modes) == {"deep_thinking", "human", "logic", "social"}
