"""Tool dispatcher: runs tool directives and reports results as text."""

import html
import json
import posixpath
import re
import shlex
from typing import Any, Callable, Optional

from boltloop.constants import DEFAULT_WEB_MAX_CHARS, SEARCH_RESULT_LIMIT
from boltloop.tools.extractor import ToolDirective, ToolKind
from boltloop.tools.sandbox import Sandbox
from boltloop.tools.web import WebProxy
from boltloop.workspace import WorkspaceStore

_SCRIPT = re.compile(r"<script\b[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE = re.compile(r"<style\b[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]*>?")
_WHITESPACE = re.compile(r"\s+")


class ToolDispatcher:
    """Executes tool directives against the sandbox and the network proxy.

    ``execute`` never raises. Every failure comes back as a descriptive
    string so the agent loop always has something to feed into the next turn.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        store: WorkspaceStore,
        web: Optional[WebProxy] = None,
        max_chars: int = DEFAULT_WEB_MAX_CHARS,
    ):
        """Initialize dispatcher.

        Args:
            sandbox: Execution sandbox
            store: Workspace store, kept in sync on deletes
            web: Network proxy for webRead/webSearch
            max_chars: Length bound for fetched web content
        """
        self.sandbox = sandbox
        self.store = store
        self.web = web
        self.max_chars = max_chars

        self._handlers: dict[ToolKind, Callable[[str], str]] = {
            ToolKind.SHELL: self._shell,
            ToolKind.NPM: self._npm,
            ToolKind.SEARCH: self._search,
            ToolKind.FILE: self._read_file,
            ToolKind.READ_DIR: self._read_dir,
            ToolKind.FIND: self._find,
            ToolKind.WEB_READ: self._web_read,
            ToolKind.WEB_SEARCH: self._web_search,
            ToolKind.DELETE_FILE: self._delete_file,
        }

    def execute(self, directive: ToolDirective) -> str:
        """Run one tool directive.

        Args:
            directive: Parsed tool call

        Returns:
            Result text, or an error description
        """
        handler = self._handlers.get(directive.kind)
        if handler is None:
            return f"[Tool Error] Unknown tool type: {directive.kind}"
        try:
            return handler(directive.args)
        except Exception as e:
            return f"[Tool Error] {directive.kind.value} failed: {e}"

    def _shell(self, command: str) -> str:
        if not command.strip():
            return "[Execution Error] Empty command"
        try:
            result = self.sandbox.spawn(command)
        except Exception as e:
            return f"[Execution Error] {e}"

        if result.exit_code != 0:
            return f"[Error] Exit code {result.exit_code}: {result.output}"
        return result.output or "Done (no output)"

    def _npm(self, packages: str) -> str:
        names = packages.split()
        if not names:
            return "[Execution Error] No packages given"
        return self._shell("npm install " + " ".join(shlex.quote(n) for n in names))

    def _search(self, pattern: str) -> str:
        if not pattern.strip():
            return "[Search Error] Empty pattern"
        command = (
            f"grep -rn --exclude-dir=node_modules --exclude-dir=.git -e {shlex.quote(pattern)} ."
        )
        try:
            result = self.sandbox.spawn(command)
        except Exception as e:
            return f"[Search Error] {e}"

        # grep exits 1 when nothing matched
        if result.exit_code == 1 and not result.output.strip():
            return f"No matches found for: {pattern}"
        if result.exit_code not in (0, 1):
            return f"[Search Error] Exit code {result.exit_code}: {result.output}"
        return result.output

    def _read_file(self, path: str) -> str:
        try:
            return self.sandbox.read(path)
        except Exception:
            return f"[File Error] Could not read file: {path}"

    def _read_dir(self, path: str) -> str:
        target = path or "."
        try:
            entries = self.sandbox.readdir(target)
        except Exception:
            return f"[FS Error] Could not read directory: {target}"
        if not entries:
            return f"(empty directory: {target})"
        return "\n".join(f"{'[DIR] ' if e.is_dir else '[FILE]'} {e.name}" for e in entries)

    def _find(self, pattern: str) -> str:
        if not pattern.strip():
            return "[Find Error] Empty pattern"
        command = (
            f"find . -maxdepth 4 -not -path './node_modules/*' -not -path './.git/*' "
            f"-name {shlex.quote(pattern)}"
        )
        try:
            result = self.sandbox.spawn(command)
        except Exception as e:
            return f"[Find Error] {e}"
        if result.exit_code != 0:
            return f"[Find Error] Exit code {result.exit_code}: {result.output}"
        return result.output.strip() or f"No files matching: {pattern}"

    def _web_read(self, url: str) -> str:
        if self.web is None:
            return "[Web Error] Could not fetch URL via proxy: no network proxy configured"
        try:
            fetched = self.web.fetch(url.strip())
        except Exception as e:
            return f"[Web Error] Could not fetch URL via proxy: {e}"

        if "application/json" in fetched.content_type.lower():
            try:
                pretty = json.dumps(json.loads(fetched.content), indent=2)
            except ValueError:
                return fetched.content[: self.max_chars]
            return f"[JSON Data]\n```json\n{pretty[: self.max_chars]}\n```"

        return strip_html(fetched.content)[: self.max_chars]

    def _web_search(self, query: str) -> str:
        if self.web is None:
            return f"[Search Error] Could not perform search: {query}"
        try:
            data = self.web.search(query.strip())
        except Exception:
            return f"[Search Error] Could not perform search: {query}"

        results = _related_texts(data.get("RelatedTopics") or [])[:SEARCH_RESULT_LIMIT]
        return (
            f'[Search Results for "{query}"]\n'
            f"Abstract: {data.get('AbstractText') or ''}\n"
            f"Results: {chr(10).join(results)}"
        )

    def _delete_file(self, path: str) -> str:
        target = path.strip()
        if not target:
            return "[Delete Error] Could not delete: no path given"
        # Sandbox and store must agree on the key, so "./src/a.ts" becomes "src/a.ts"
        target = posixpath.normpath(target)
        if target == ".":
            return f"[Delete Error] Could not delete: {path.strip()}"
        try:
            self.sandbox.rm(target, recursive=True)
        except Exception:
            return f"[Delete Error] Could not delete: {target}"
        # Only reached once the sandbox removal succeeded
        self.store.delete_file(target)
        return f"Successfully deleted: {target}"


def strip_html(text: str) -> str:
    """Reduce an HTML page to its visible text."""
    text = _SCRIPT.sub("", text)
    text = _STYLE.sub("", text)
    text = _TAG.sub("", text)
    return _WHITESPACE.sub(" ", html.unescape(text)).strip()


def _related_texts(topics: list[Any]) -> list[str]:
    """Flatten related topics, which may be grouped under ``Topics``."""
    texts = []
    for topic in topics:
        if not isinstance(topic, dict):
            continue
        if topic.get("Text"):
            texts.append(topic["Text"])
        elif isinstance(topic.get("Topics"), list):
            texts.extend(_related_texts(topic["Topics"]))
    return texts
