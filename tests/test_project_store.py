"""Tests for project persistence and directory loading."""

import os

import pytest

from boltloop.models import Message
from boltloop.tools.project_store import DirectoryLoader, FileProjectStore, ProjectRecord
from boltloop.utils.ignore import IgnoreRules


def test_save_and_load(temp_dir):
    """Test that a saved project loads back with files and history."""
    store = FileProjectStore(temp_dir)
    record = ProjectRecord(
        id="demo",
        name="Demo",
        files={"src/App.tsx": "app"},
        messages=[Message(role="user", content="hi"), Message(role="assistant", content="hello", checkpoint_ref="cp")],
    )

    store.save(record)
    loaded = store.load("demo")

    assert loaded.name == "Demo"
    assert loaded.files == {"src/App.tsx": "app"}
    assert loaded.messages == record.messages
    assert not (temp_dir / ".bolt" / "projects" / "demo.json.tmp").exists()


def test_load_missing(temp_dir):
    assert FileProjectStore(temp_dir).load("nothing") is None


def test_load_corrupt(temp_dir):
    store = FileProjectStore(temp_dir)
    store.projects_dir.mkdir(parents=True)
    (store.projects_dir / "broken.json").write_text("{not json")

    assert store.load("broken") is None


def test_invalid_project_id(temp_dir):
    store = FileProjectStore(temp_dir)

    with pytest.raises(ValueError):
        store.load("../escape")


def test_list_ids_newest_first(temp_dir):
    store = FileProjectStore(temp_dir)
    store.save(ProjectRecord(id="old"))
    store.save(ProjectRecord(id="new"))
    os.utime(store.projects_dir / "old.json", (1, 1))

    assert store.list_ids() == ["new", "old"]


def test_list_ids_empty(temp_dir):
    assert FileProjectStore(temp_dir).list_ids() == []


def test_load_directory(test_project):
    """Test reading a project directory into a file set."""
    loader = DirectoryLoader(test_project, IgnoreRules(test_project))

    files = loader.load()

    assert sorted(files) == ["README.md", "package.json", "src/App.tsx", "src/main.tsx"]
    assert files["README.md"] == "# Test Project\n"


def test_ignore_rules_applied(test_project):
    """Test that ignored and binary files are skipped."""
    (test_project / "node_modules" / "react").mkdir(parents=True)
    (test_project / "node_modules" / "react" / "index.js").write_text("module.exports = {}")
    (test_project / "logo.bin").write_bytes(b"\x89PNG\x00\x01\x02")

    files = DirectoryLoader(test_project, IgnoreRules(test_project)).load()

    assert "node_modules/react/index.js" not in files
    assert "logo.bin" not in files


def test_large_files_skipped(test_project):
    (test_project / "big.txt").write_text("x" * 2048)

    files = DirectoryLoader(test_project, IgnoreRules(test_project), max_file_size_mb=0).load()

    assert "big.txt" not in files
