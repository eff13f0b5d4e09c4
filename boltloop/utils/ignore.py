"""File ignore rules handling using pathspec."""

from pathlib import Path
from typing import Union

import pathspec

from boltloop.constants import BUILTIN_IGNORES

# Later files take precedence over earlier ones
IGNORE_FILES = (".gitignore", ".boltignore")


class IgnoreRules:
    """Decides which project paths are left out when loading a workspace.

    Combines the built-in patterns with ``.gitignore`` and ``.boltignore``.
    """

    def __init__(self, project_root: Path):
        """Initialize ignore rules.

        Args:
            project_root: Root directory to search for ignore files
        """
        self.project_root = project_root
        self.spec = self._build_spec()

    def _build_spec(self) -> pathspec.PathSpec:
        """Build combined PathSpec from all ignore sources."""
        patterns = list(BUILTIN_IGNORES)

        for name in IGNORE_FILES:
            ignore_path = self.project_root / name
            if not ignore_path.exists():
                continue
            try:
                patterns.extend(ignore_path.read_text().splitlines())
            except IOError:
                pass  # Unreadable ignore file, keep the other sources

        # Filter out empty lines and comments
        patterns = [p.strip() for p in patterns if p.strip() and not p.strip().startswith("#")]

        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def should_ignore(self, path: Union[Path, str]) -> bool:
        """Check if a path should be ignored.

        Args:
            path: Path to check (absolute, or relative to the project root)

        Returns:
            True if the path should be ignored
        """
        path = Path(path)
        if path.is_absolute():
            try:
                path = path.relative_to(self.project_root)
            except ValueError:
                # Path is outside project root
                return True

        return self.spec.match_file(path.as_posix())
