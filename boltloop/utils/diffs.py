"""Utilities for diffing proposed file content against the original."""

import difflib
from dataclasses import dataclass
from typing import Optional

from unidiff import PatchSet


@dataclass
class DiffStats:
    """Line counts of a change."""

    additions: int
    deletions: int


def create_patch(original: Optional[str], modified: str, filename: str = "file") -> str:
    """Create a unified diff patch.

    Args:
        original: Original file content (None for a new file)
        modified: Modified file content
        filename: Filename to use in patch header

    Returns:
        Unified diff string (empty when the contents are equal)
    """
    original_lines = normalize_line_endings(original or "").splitlines()
    modified_lines = normalize_line_endings(modified).splitlines()

    diff = difflib.unified_diff(
        original_lines,
        modified_lines,
        fromfile="/dev/null" if original is None else f"a/{filename}",
        tofile=f"b/{filename}",
        lineterm="",
    )

    lines = list(diff)
    return "\n".join(lines) + "\n" if lines else ""


def diff_stats(original: Optional[str], modified: str) -> DiffStats:
    """Count added and removed lines between two versions of a file.

    Args:
        original: Original content (None for a new file)
        modified: Proposed content

    Returns:
        DiffStats for the change
    """
    patch = create_patch(original, modified)
    if not patch:
        return DiffStats(additions=0, deletions=0)

    patchset = PatchSet(patch)
    return DiffStats(
        additions=sum(patched_file.added for patched_file in patchset),
        deletions=sum(patched_file.removed for patched_file in patchset),
    )


def normalize_line_endings(content: str) -> str:
    """Normalize line endings to LF.

    Args:
        content: Content with potentially mixed line endings

    Returns:
        Content with normalized line endings
    """
    return content.replace("\r\n", "\n").replace("\r", "\n")
