"""Workspace index rendered into the model's environment snapshot."""

from boltloop.constants import INDEX_CORE_LIMIT, INDEX_FILE_LIMIT

TRUNCATION_MARKER = "\n... [TRUNCATED FOR TOKENS] ...\n"


def build_tree(paths: list[str]) -> str:
    """Render paths as an explorer tree.

    Args:
        paths: File paths relative to the project root

    Returns:
        Tree text, directories suffixed with ``/``
    """
    tree: dict = {}
    for path in sorted(paths):
        node = tree
        parts = [p for p in path.split("/") if p]
        for i, part in enumerate(parts):
            if i == len(parts) - 1:
                node.setdefault(part, None)
            else:
                child = node.get(part)
                if not isinstance(child, dict):
                    child = {}
                    node[part] = child
                node = child

    lines: list[str] = []
    _render(tree, "", lines)
    return "\n".join(lines)


def _render(node: dict, indent: str, lines: list[str]) -> None:
    names = list(node)
    for i, name in enumerate(names):
        last = i == len(names) - 1
        child = node[name]
        is_dir = isinstance(child, dict)
        lines.append(f"{indent}{'└── ' if last else '├── '}{name}{'/' if is_dir else ''}")
        if is_dir:
            _render(child, indent + ("    " if last else "│   "), lines)


def is_core_file(path: str) -> bool:
    """Config-like files get a larger share of the context."""
    return path == "package.json" or "config" in path or path.endswith(".env")


def truncate_content(content: str, limit: int) -> str:
    """Keep the head and tail of long content."""
    if len(content) <= limit:
        return content
    return content[: int(limit / 1.5)] + TRUNCATION_MARKER + content[len(content) - limit // 4:]


def build_project_index(files: dict[str, str]) -> str:
    """Summarize the canonical file set for the model.

    Args:
        files: Canonical files keyed by path

    Returns:
        Overview text with an explorer tree and truncated file contents
    """
    if not files:
        return "Empty project."

    sections = []
    for path in sorted(files):
        core = is_core_file(path)
        body = truncate_content(files[path], INDEX_CORE_LIMIT if core else INDEX_FILE_LIMIT)
        sections.append(f"=== {path}{' [CORE CONFIG]' if core else ''} ===\n{body}")

    return "\n".join([
        "# PROJECT OVERVIEW",
        f"Total Files: {len(files)}",
        "",
        "## EXPLORER TREE",
        build_tree(list(files)),
        "",
        "## FILE CONTEXTS",
        "\n\n".join(sections),
    ])
