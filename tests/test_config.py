"""Tests for configuration loading."""

import json

import pytest

from boltloop.config import Config
from boltloop.constants import DEFAULT_MAX_TURNS


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("ANTHROPIC_API_KEY", "BOLT_MAX_TURNS", "BOLT_DEFAULT_MODEL", "BOLT_WEB_MAX_CHARS"):
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the tests
    monkeypatch.setattr("boltloop.config.load_dotenv", lambda: None)
    return monkeypatch


def test_defaults(clean_env):
    config = Config.load()

    assert config.anthropic_api_key is None
    assert config.max_turns == DEFAULT_MAX_TURNS
    assert config.mode == "build"


def test_environment_overrides(clean_env):
    clean_env.setenv("ANTHROPIC_API_KEY", "sk-test")
    clean_env.setenv("BOLT_MAX_TURNS", "7")

    config = Config.load()

    assert config.anthropic_api_key == "sk-test"
    assert config.max_turns == 7


def test_project_config(clean_env, temp_dir):
    """Test that .bolt/config.json adjusts the loop settings."""
    (temp_dir / ".bolt").mkdir()
    (temp_dir / ".bolt" / "config.json").write_text(json.dumps({
        "max_turns": 5,
        "mode": "fix",
        "commands": {"test": "npm test"},
    }))

    config = Config.load(temp_dir)

    assert config.max_turns == 5
    assert config.mode == "fix"
    assert config.custom_commands == {"test": "npm test"}


def test_invalid_project_config_ignored(clean_env, temp_dir):
    (temp_dir / ".bolt").mkdir()
    (temp_dir / ".bolt" / "config.json").write_text("{broken")

    config = Config.load(temp_dir)

    assert config.max_turns == DEFAULT_MAX_TURNS


def test_validate(mock_config):
    assert mock_config.validate() == []

    mock_config.anthropic_api_key = None
    mock_config.max_turns = 0
    mock_config.mode = "party"

    errors = mock_config.validate()

    assert len(errors) == 3
    assert any("API key" in e for e in errors)


def test_to_dict_hides_key(mock_config):
    data = mock_config.to_dict()

    assert data["has_anthropic_key"] is True
    assert "anthropic_api_key" not in data
