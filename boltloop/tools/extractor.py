"""Directive extraction from streamed model output.

The model embeds three kinds of directives in ordinary prose:

* a plan block::

      <bolt_plan>
        <step id="1" title="Scaffold" description="Create the entry point" />
      </bolt_plan>

* file directives, a ``### FILE: <path>`` line immediately followed by a
  fenced block holding the complete new file content;

* tool calls::

      <bolt_tool type="shell">Install dependencies
      npm install
      </bolt_tool>

``extract`` is a pure function of the buffer. It keeps no state between calls,
so the loop can call it on every chunk and always get the result for the text
received so far. Incomplete or malformed markup produces no directive; it is
picked up on a later call once the buffer has grown enough.

Scanning happens in two passes. The first pass walks the buffer line by line
and cuts out file blocks, tracking whether a fence is open. The second pass
scans the remaining prose for plan and tool tags with a quote-aware tag reader.
Tags inside file blocks are file content and never become directives.
"""

import html
import re
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from boltloop.models import PlanStep
from boltloop.utils.diffs import normalize_line_endings


class ToolKind(str, Enum):
    """Tool call types understood by the dispatcher."""

    SHELL = "shell"
    NPM = "npm"
    SEARCH = "search"
    FILE = "file"
    READ_DIR = "readDir"
    FIND = "find"
    WEB_READ = "webRead"
    WEB_SEARCH = "webSearch"
    DELETE_FILE = "deleteFile"


class PlanDirective(BaseModel):
    """A complete plan block."""

    directive: Literal["plan"] = "plan"
    steps: list[PlanStep] = Field(default_factory=list)


class FileDirective(BaseModel):
    """Full replacement content for one file."""

    model_config = ConfigDict(frozen=True)

    directive: Literal["file"] = "file"
    path: str
    full_content: str


class ToolDirective(BaseModel):
    """A side effect requested from the sandbox or the network."""

    model_config = ConfigDict(frozen=True)

    directive: Literal["tool"] = "tool"
    kind: ToolKind
    args: str = ""
    description: str = ""


Directive = Annotated[
    Union[PlanDirective, FileDirective, ToolDirective],
    Field(discriminator="directive"),
]


class Extraction(BaseModel):
    """Everything recognised in a buffer, in order of appearance."""

    plan: Optional[PlanDirective] = None
    files: list[FileDirective] = Field(default_factory=list)
    tools: list[ToolDirective] = Field(default_factory=list)

    @property
    def plan_steps(self) -> list[PlanStep]:
        return list(self.plan.steps) if self.plan else []

    @property
    def is_empty(self) -> bool:
        return self.plan is None and not self.files and not self.tools

    def directives(self) -> list[Directive]:
        """All directives as one tagged sequence: plan first, then files, then tools."""
        result: list[Directive] = []
        if self.plan is not None:
            result.append(self.plan)
        result.extend(self.files)
        result.extend(self.tools)
        return result


# Line grammar for file directives
_FILE_MARKER = re.compile(r"^[ \t]*###[ \t]*FILE(?=[\s:`])(?:[ \t]*:)?[ \t]*`?([^\s`:][^\s`]*)`?", re.IGNORECASE)
_FENCE_OPEN = re.compile(r"^[ \t]{0,3}(`{3,}|~{3,})([^`]*)$")

# Tag grammar
_PLAN_OPEN = re.compile(r"<bolt_plan(?=[\s>/])", re.IGNORECASE)
_PLAN_CLOSE = re.compile(r"</bolt_plan\s*>", re.IGNORECASE)
_TOOL_OPEN = re.compile(r"<bolt_tool(?=[\s>/])", re.IGNORECASE)
_TOOL_CLOSE = re.compile(r"</bolt_tool\s*>", re.IGNORECASE)
_STEP_OPEN = re.compile(r"<step(?=[\s>/])", re.IGNORECASE)

# Attributes may come in any order, single- or double-quoted or bare
_ATTRIBUTE = re.compile(
    r"""([A-Za-z_:][-\w:.]*)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?"""
)

_STEP_FIELDS = ("id", "title", "description")


def extract(buffer: str) -> Extraction:
    """Derive all directives present in ``buffer``.

    Args:
        buffer: Model output received so far

    Returns:
        Extraction with the plan (only once its block is closed), file
        directives and complete tool directives
    """
    files, prose = _split_file_blocks(normalize_line_endings(buffer))

    plan: Optional[PlanDirective] = None
    tools: list[ToolDirective] = []
    for segment in prose:
        segment_plan, segment_tools, _ = _scan_prose(segment)
        if plan is None and segment_plan is not None:
            plan = segment_plan
        tools.extend(segment_tools)

    return Extraction(plan=plan, files=files, tools=tools)


def clean_message(text: str) -> str:
    """Strip directive markup from assistant text, keeping the narrative.

    Args:
        text: Assistant message content

    Returns:
        Prose without plan blocks, file blocks or tool calls
    """
    _, prose = _split_file_blocks(normalize_line_endings(text))
    parts = []
    for segment in prose:
        _, _, residue = _scan_prose(segment)
        parts.append(residue)
    cleaned = "\n".join(parts)
    return re.sub(r"\n{3,}", "\n\n", cleaned).strip()


def edited_paths(text: str) -> list[str]:
    """List the paths of file directives in ``text``, first occurrence order."""
    seen: list[str] = []
    for directive in extract(text).files:
        if directive.path not in seen:
            seen.append(directive.path)
    return seen


def _split_file_blocks(buffer: str) -> tuple[list[FileDirective], list[str]]:
    """Cut file blocks out of the buffer.

    Returns:
        Tuple of (file directives, prose segments between them)
    """
    lines = buffer.split("\n")
    # The final element is a partial line unless the buffer ends with a newline
    last = len(lines) - 1

    files: list[FileDirective] = []
    prose: list[str] = []
    current: list[str] = []

    i = 0
    while i <= last:
        line = lines[i]
        marker = _FILE_MARKER.match(line)
        if not marker or i == last:
            current.append(line)
            i += 1
            continue

        # The marker must be followed (blank lines aside) by a complete fence line
        j = i + 1
        while j < last and not lines[j].strip():
            j += 1
        if j == last:
            # Fence line not complete yet
            current.extend(lines[i:])
            break
        fence = _FENCE_OPEN.match(lines[j])
        if fence is None:
            current.append(line)
            i += 1
            continue

        fence_chars = fence.group(1)
        body: list[str] = []
        k = j + 1
        closed = False
        while k <= last:
            candidate = lines[k]
            if _is_closing_fence(candidate, fence_chars):
                closed = True
                break
            if _FILE_MARKER.match(candidate):
                # Another file starts before this block was closed
                break
            body.append(candidate)
            k += 1

        files.append(FileDirective(path=marker.group(1), full_content=_trim_blank_lines(body)))
        prose.append("\n".join(current))
        current = []
        i = k + 1 if closed else k

    prose.append("\n".join(current))
    return files, prose


def _is_closing_fence(line: str, fence_chars: str) -> bool:
    stripped = line.strip()
    if len(line) - len(line.lstrip(" ")) > 3 or not stripped:
        return False
    char = fence_chars[0]
    return len(stripped) >= len(fence_chars) and stripped == char * len(stripped)


def _trim_blank_lines(lines: list[str]) -> str:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[start:end])


def _scan_prose(text: str) -> tuple[Optional[PlanDirective], list[ToolDirective], str]:
    """Find the first complete plan block and every complete tool tag.

    Returns:
        Tuple of (plan or None, tool directives, text with complete tags removed)
    """
    plan: Optional[PlanDirective] = None
    tools: list[ToolDirective] = []
    residue: list[str] = []

    pos = 0
    while pos < len(text):
        plan_match = _PLAN_OPEN.search(text, pos)
        tool_match = _TOOL_OPEN.search(text, pos)
        candidates = [m for m in (plan_match, tool_match) if m is not None]
        if not candidates:
            break
        opening = min(candidates, key=lambda m: m.start())
        is_plan = opening is plan_match

        head = _read_tag_head(text, opening.end())
        if head is None:
            if not is_plan:
                # Tag still streaming
                break
            # An open plan block does not hide the tool tags after it
            residue.append(text[pos:opening.end()])
            pos = opening.end()
            continue
        attributes, body_start, self_closing = head
        if self_closing:
            # No body, so no directive
            residue.append(text[pos:opening.start()])
            pos = body_start
            continue

        closing = (_PLAN_CLOSE if is_plan else _TOOL_CLOSE).search(text, body_start)
        if closing is None:
            if not is_plan:
                break
            residue.append(text[pos:body_start])
            pos = body_start
            continue

        residue.append(text[pos:opening.start()])
        body = text[body_start:closing.start()]
        pos = closing.end()

        if is_plan:
            if plan is None:
                plan = PlanDirective(steps=_parse_steps(body))
        else:
            directive = _build_tool(attributes, body)
            if directive is not None:
                tools.append(directive)

    residue.append(text[pos:])
    return plan, tools, "".join(residue)


def _read_tag_head(text: str, start: int) -> Optional[tuple[dict[str, str], int, bool]]:
    """Read attributes from ``start`` up to the closing ``>`` of a tag.

    Quoted values may contain ``>``.

    Returns:
        Tuple of (attributes, index after the tag, self-closing flag), or None
        when the tag is not closed yet
    """
    quote = None
    i = start
    while i < len(text):
        char = text[i]
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == ">":
            head = text[start:i].rstrip()
            self_closing = head.endswith("/")
            if self_closing:
                head = head[:-1]
            return _parse_attributes(head), i + 1, self_closing
        i += 1
    return None


def _parse_attributes(head: str) -> dict[str, str]:
    attributes: dict[str, str] = {}
    for match in _ATTRIBUTE.finditer(head):
        name = match.group(1).lower()
        if name in attributes:
            continue
        value = next((g for g in match.groups()[1:] if g is not None), "")
        attributes[name] = html.unescape(value)
    return attributes


def _parse_steps(body: str) -> list[PlanStep]:
    steps: list[PlanStep] = []
    seen_ids: set[str] = set()
    pos = 0
    while True:
        opening = _STEP_OPEN.search(body, pos)
        if opening is None:
            break
        head = _read_tag_head(body, opening.end())
        if head is None:
            break
        attributes, pos, _ = head
        if not all(attributes.get(name, "").strip() for name in _STEP_FIELDS):
            continue
        step_id = attributes["id"].strip()
        if step_id in seen_ids:
            continue
        seen_ids.add(step_id)
        steps.append(PlanStep(
            id=step_id,
            title=attributes["title"].strip(),
            description=attributes["description"].strip(),
        ))
    return steps


def _build_tool(attributes: dict[str, str], body: str) -> Optional[ToolDirective]:
    try:
        kind = ToolKind(attributes.get("type", "").strip())
    except ValueError:
        return None

    lines = body.strip().split("\n")
    description = lines[0].strip()
    args = "\n".join(lines[1:]).strip()
    return ToolDirective(kind=kind, args=args, description=description)
