"""Tests for ignore rules."""

from boltloop.utils.ignore import IgnoreRules


def test_builtin_ignores(test_project):
    """Test that built-in patterns are ignored."""
    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project / ".git" / "config")
    assert rules.should_ignore(test_project / "node_modules" / "react" / "index.js")
    assert rules.should_ignore(test_project / "dist" / "bundle.js")
    assert rules.should_ignore(test_project / ".bolt" / "projects" / "demo.json")
    assert rules.should_ignore(test_project / "package-lock.json")


def test_gitignore_respected(test_project):
    """Test that .gitignore is respected."""
    (test_project / ".gitignore").write_text("*.local\ncoverage/\n")

    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project / ".env.local")
    assert rules.should_ignore(test_project / "coverage" / "index.html")
    assert not rules.should_ignore(test_project / "src" / "main.tsx")


def test_boltignore_respected(test_project):
    """Test that .boltignore is respected."""
    (test_project / ".boltignore").write_text("# generated\n*.tmp\npublic/assets/\n")

    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project / "temp.tmp")
    assert rules.should_ignore(test_project / "public" / "assets" / "logo.png")
    assert not rules.should_ignore(test_project / "public" / "index.html")


def test_relative_paths(test_project):
    rules = IgnoreRules(test_project)

    assert rules.should_ignore("node_modules/react/index.js")
    assert not rules.should_ignore("src/App.tsx")


def test_paths_outside_root_ignored(test_project):
    rules = IgnoreRules(test_project)

    assert rules.should_ignore(test_project.parent / "elsewhere.txt")


def test_normal_files_not_ignored(test_project):
    """Test that normal files are not ignored."""
    rules = IgnoreRules(test_project)

    assert not rules.should_ignore(test_project / "src" / "main.tsx")
    assert not rules.should_ignore(test_project / "README.md")
    assert not rules.should_ignore(test_project / "package.json")
