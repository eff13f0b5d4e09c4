"""Pytest configuration and fixtures."""

import tempfile
from pathlib import Path

import pytest

from boltloop.config import Config
from boltloop.errors import SandboxError
from boltloop.tools.dispatcher import ToolDispatcher
from boltloop.tools.sandbox import DirEntry, SpawnResult
from boltloop.utils.ignore import IgnoreRules
from boltloop.workspace import WorkspaceStore


class FakeSandbox:
    """In-memory sandbox recording every command it is asked to run."""

    def __init__(self, files=None, results=None):
        self.files = dict(files or {})
        self.results = dict(results or {})
        self.commands = []

    def spawn(self, command):
        self.commands.append(command)
        result = self.results.get(command)
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return SpawnResult(output=f"ran: {command}", exit_code=0, command=command)

    def read(self, path):
        if path not in self.files:
            raise SandboxError(f"File not found: {path}")
        return self.files[path]

    def write(self, path, content):
        self.files[path] = content

    def mkdir(self, path):
        pass

    def rm(self, path, recursive=False):
        matches = [p for p in self.files if p == path or p.startswith(path.rstrip("/") + "/")]
        if not matches:
            raise SandboxError(f"No such file or directory: {path}")
        for p in matches:
            del self.files[p]

    def readdir(self, path):
        prefix = "" if path in ("", ".") else path.rstrip("/") + "/"
        entries = {}
        for p in self.files:
            if not p.startswith(prefix):
                continue
            name, _, rest = p[len(prefix):].partition("/")
            entries[name] = entries.get(name, False) or bool(rest)
        if not entries:
            raise SandboxError(f"Cannot read directory: {path}")
        return sorted(
            (DirEntry(name=n, is_dir=d) for n, d in entries.items()),
            key=lambda e: (not e.is_dir, e.name),
        )


class ScriptedModel:
    """Model double replaying one scripted response per call.

    A response is a string, a list of chunks, or an exception to raise. Once
    the script runs out the last response is repeated.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = 0

    def stream(self, messages, cancel=None):
        self.calls.append(messages)
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        return self._generate(response)

    def _generate(self, response):
        try:
            if isinstance(response, Exception):
                raise response
            chunks = [response] if isinstance(response, str) else response
            for chunk in chunks:
                yield chunk
        finally:
            self.closed += 1


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_project(temp_dir):
    """Create a test project structure."""
    (temp_dir / "src").mkdir()
    (temp_dir / "src" / "main.tsx").write_text("import App from './App';\n")
    (temp_dir / "src" / "App.tsx").write_text("export default function App() {\n  return null;\n}\n")
    (temp_dir / "package.json").write_text('{"name": "demo", "private": true}\n')
    (temp_dir / "README.md").write_text("# Test Project\n")

    yield temp_dir


@pytest.fixture
def mock_config():
    """Create a mock configuration."""
    return Config(
        anthropic_api_key="test_key",
        max_turns=3,
    )


@pytest.fixture
def ignore_rules(temp_dir):
    """Create ignore rules for temp directory."""
    return IgnoreRules(temp_dir)


@pytest.fixture
def store():
    """Workspace with a small canonical file set."""
    return WorkspaceStore({
        "package.json": '{"name": "demo"}',
        "src/App.tsx": "export default function App() {}",
    })


@pytest.fixture
def sandbox(store):
    """Fake sandbox mirroring the store's files."""
    return FakeSandbox(store.files)


@pytest.fixture
def dispatcher(sandbox, store):
    return ToolDispatcher(sandbox, store)
