"""Tests for REPL rendering and commands."""

import pytest
from rich.console import Console

from boltloop.cli import REPL
from boltloop.graph import EpisodeResult
from boltloop.state import LoopStatus

REPLY = (
    "Added a header.\n"
    "### FILE: src/App.tsx\n```tsx\nexport default () => <h1>Hi</h1>;\n```\n"
    '<bolt_tool type="shell">Build\nnpm run build\n</bolt_tool>\n'
)


@pytest.fixture
def recorder(monkeypatch):
    console = Console(record=True, width=120)
    monkeypatch.setattr("boltloop.cli.console", console)
    return console


@pytest.fixture
def repl(temp_dir, mock_config):
    return REPL(temp_dir, mock_config)


def test_result_shows_clean_reply_and_edited_paths(repl, recorder):
    repl.show_result(EpisodeResult(
        status=LoopStatus.DONE, turns=1, model_calls=1, files_changed=["src/App.tsx"], output=REPLY
    ))

    text = recorder.export_text()
    assert "Added a header." in text
    assert "Last reply edited: src/App.tsx" in text
    assert "<bolt_tool" not in text
    assert "### FILE" not in text


def test_history_strips_markup(repl, recorder):
    repl.session.conversation.add("user", "Add a header")
    repl.session.conversation.add("assistant", REPLY)

    repl.handle_command("/history")

    text = recorder.export_text()
    assert "> Add a header" in text
    assert "Added a header." in text
    assert "Edited: src/App.tsx" in text
    assert "npm run build" not in text


def test_run_lists_commands(repl, recorder):
    repl.config.custom_commands = {"test": "npm test"}

    repl.handle_command("/run")

    assert "test: npm test" in recorder.export_text()


def test_run_unknown_command_reports_error(repl, recorder):
    repl.handle_command("/run lint")

    assert "No command named 'lint'" in recorder.export_text()
