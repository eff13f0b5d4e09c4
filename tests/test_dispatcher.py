"""Tests for the tool dispatcher."""

import json

import httpx
import pytest

from boltloop.errors import SandboxError
from boltloop.tools.dispatcher import ToolDispatcher, strip_html
from boltloop.tools.extractor import ToolDirective, ToolKind
from boltloop.tools.sandbox import SpawnResult
from boltloop.tools.web import WebProxy


def tool(kind, args, description="test"):
    return ToolDirective(kind=kind, description=description, args=args)


def make_web(handler):
    return WebProxy(
        search_endpoint="https://search.example/api",
        client=httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True),
        resolve_hosts=False,
    )


def test_shell_success(dispatcher, sandbox):
    result = dispatcher.execute(tool(ToolKind.SHELL, "npm run build"))

    assert result == "ran: npm run build"
    assert sandbox.commands == ["npm run build"]


def test_shell_nonzero_exit(dispatcher, sandbox):
    """Test that a failing command reports its exit code and output."""
    sandbox.results["npm test"] = SpawnResult(output="1 failing", exit_code=1)

    result = dispatcher.execute(tool(ToolKind.SHELL, "npm test"))

    assert result == "[Error] Exit code 1: 1 failing"


def test_shell_spawn_failure(dispatcher, sandbox):
    sandbox.results["rm -rf /"] = SandboxError("Command blocked: recursive delete")

    result = dispatcher.execute(tool(ToolKind.SHELL, "rm -rf /"))

    assert result.startswith("[Execution Error]")
    assert "blocked" in result


def test_shell_without_output(dispatcher, sandbox):
    sandbox.results["true"] = SpawnResult(output="", exit_code=0)

    assert dispatcher.execute(tool(ToolKind.SHELL, "true")) == "Done (no output)"


def test_npm_installs_packages(dispatcher, sandbox):
    """Test that npm packages are installed in one quoted command."""
    dispatcher.execute(tool(ToolKind.NPM, "react-router-dom  zod"))

    assert sandbox.commands == ["npm install react-router-dom zod"]


def test_npm_quotes_package_names(dispatcher, sandbox):
    dispatcher.execute(tool(ToolKind.NPM, "evil;rm"))

    assert sandbox.commands == ["npm install 'evil;rm'"]


def test_npm_without_packages(dispatcher, sandbox):
    assert dispatcher.execute(tool(ToolKind.NPM, "  ")).startswith("[Execution Error]")
    assert sandbox.commands == []


def test_search_no_matches(dispatcher, sandbox):
    """Test that grep's no-match exit code is reported as no matches."""
    command = "grep -rn --exclude-dir=node_modules --exclude-dir=.git -e useState ."
    sandbox.results[command] = SpawnResult(output="", exit_code=1)

    result = dispatcher.execute(tool(ToolKind.SEARCH, "useState"))

    assert result == "No matches found for: useState"


def test_search_quotes_pattern(dispatcher, sandbox):
    dispatcher.execute(tool(ToolKind.SEARCH, "it's"))

    assert sandbox.commands[0].endswith("-e 'it'\"'\"'s' .")


def test_read_file(dispatcher):
    assert dispatcher.execute(tool(ToolKind.FILE, "package.json")) == '{"name": "demo"}'


def test_read_missing_file(dispatcher):
    result = dispatcher.execute(tool(ToolKind.FILE, "nope.ts"))

    assert result == "[File Error] Could not read file: nope.ts"


def test_read_dir(dispatcher):
    """Test that directories are listed first with type markers."""
    result = dispatcher.execute(tool(ToolKind.READ_DIR, ""))

    assert result.splitlines() == ["[DIR]  src", "[FILE] package.json"]


def test_read_missing_dir(dispatcher):
    result = dispatcher.execute(tool(ToolKind.READ_DIR, "nowhere"))

    assert result == "[FS Error] Could not read directory: nowhere"


def test_find(dispatcher, sandbox):
    sandbox.results[
        "find . -maxdepth 4 -not -path './node_modules/*' -not -path './.git/*' -name '*.tsx'"
    ] = SpawnResult(output="./src/App.tsx\n", exit_code=0)

    assert dispatcher.execute(tool(ToolKind.FIND, "*.tsx")) == "./src/App.tsx"


def test_delete_file_syncs_store(dispatcher, sandbox, store):
    """Test that a successful delete also removes the path from the store."""
    store.set_pending("src/App.tsx", "proposed")

    result = dispatcher.execute(tool(ToolKind.DELETE_FILE, "src/App.tsx"))

    assert result == "Successfully deleted: src/App.tsx"
    assert "src/App.tsx" not in sandbox.files
    assert store.get_file("src/App.tsx") is None
    assert store.get_pending("src/App.tsx") is None


@pytest.mark.parametrize("path", ["./src/App.tsx", "src//App.tsx", "src/../src/App.tsx"])
def test_delete_file_normalises_path(dispatcher, sandbox, store, path):
    """Test that sandbox and store stay in sync for equivalent spellings of a path."""
    result = dispatcher.execute(tool(ToolKind.DELETE_FILE, path))

    assert result == "Successfully deleted: src/App.tsx"
    assert "src/App.tsx" not in sandbox.files
    assert store.get_file("src/App.tsx") is None
    assert store.files.keys() == {"package.json"}


def test_delete_project_root_refused(dispatcher, store):
    assert dispatcher.execute(tool(ToolKind.DELETE_FILE, "./")) == "[Delete Error] Could not delete: ./"
    assert store.files.keys() == {"package.json", "src/App.tsx"}


def test_failed_delete_leaves_store(dispatcher, store):
    result = dispatcher.execute(tool(ToolKind.DELETE_FILE, "missing.ts"))

    assert result == "[Delete Error] Could not delete: missing.ts"
    assert store.files.keys() == {"package.json", "src/App.tsx"}


def test_never_raises(store):
    """Test that unexpected sandbox failures come back as text."""

    class BrokenSandbox:
        def __getattr__(self, name):
            def fail(*args, **kwargs):
                raise RuntimeError("sandbox crashed")
            return fail

    broken = ToolDispatcher(BrokenSandbox(), store)

    for kind in ToolKind:
        result = broken.execute(tool(kind, "x"))
        assert isinstance(result, str)
        assert result


def test_web_without_proxy(dispatcher):
    assert dispatcher.execute(tool(ToolKind.WEB_READ, "https://example.com")).startswith("[Web Error]")
    assert dispatcher.execute(tool(ToolKind.WEB_SEARCH, "react")).startswith("[Search Error]")


def test_web_read_strips_html(sandbox, store):
    """Test that fetched HTML is reduced to visible text."""

    def handler(request):
        body = "<html><script>x()</script><style>p{}</style><p>Hello &amp; <b>welcome</b></p></html>"
        return httpx.Response(200, text=body, headers={"content-type": "text/html"})

    dispatcher = ToolDispatcher(sandbox, store, web=make_web(handler))

    assert dispatcher.execute(tool(ToolKind.WEB_READ, "https://example.com")) == "Hello & welcome"


def test_web_read_json_is_pretty_printed(sandbox, store):
    def handler(request):
        return httpx.Response(200, json={"a": 1})

    dispatcher = ToolDispatcher(sandbox, store, web=make_web(handler))

    result = dispatcher.execute(tool(ToolKind.WEB_READ, "https://api.example.com/x"))

    assert result == '[JSON Data]\n```json\n{\n  "a": 1\n}\n```'


def test_web_read_truncates(sandbox, store):
    def handler(request):
        return httpx.Response(200, text="a" * 100, headers={"content-type": "text/plain"})

    dispatcher = ToolDispatcher(sandbox, store, web=make_web(handler), max_chars=10)

    assert dispatcher.execute(tool(ToolKind.WEB_READ, "https://example.com")) == "a" * 10


def test_web_read_http_error(sandbox, store):
    def handler(request):
        return httpx.Response(404, text="missing")

    dispatcher = ToolDispatcher(sandbox, store, web=make_web(handler))

    result = dispatcher.execute(tool(ToolKind.WEB_READ, "https://example.com/gone"))

    assert result.startswith("[Web Error] Could not fetch URL via proxy")
    assert "404" in result


def test_web_search(sandbox, store):
    """Test that search results are flattened into a readable summary."""
    payload = {
        "AbstractText": "A JavaScript library",
        "RelatedTopics": [
            {"Text": "React hooks"},
            {"Name": "Group", "Topics": [{"Text": "React DOM"}]},
        ],
    }

    def handler(request):
        assert request.url.params["q"] == "react"
        return httpx.Response(200, text=json.dumps(payload))

    dispatcher = ToolDispatcher(sandbox, store, web=make_web(handler))

    result = dispatcher.execute(tool(ToolKind.WEB_SEARCH, "react"))

    assert result == (
        '[Search Results for "react"]\n'
        "Abstract: A JavaScript library\n"
        "Results: React hooks\nReact DOM"
    )


@pytest.mark.parametrize("text,expected", [
    ("<p>a</p>\n\n<p>b</p>", "a b"),
    ("plain", "plain"),
    ("<div>unterminated <b", "unterminated"),
])
def test_strip_html(text, expected):
    assert strip_html(text) == expected
