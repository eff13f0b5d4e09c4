"""Project persistence: file sets and chat history keyed by project id."""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from boltloop.models import Message
from boltloop.utils.ignore import IgnoreRules

_TEXT_EXTENSIONS = {
    ".txt", ".md", ".rst", ".cfg", ".ini", ".conf", ".json", ".yaml", ".yml", ".toml",
    ".xml", ".html", ".css", ".scss", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
    ".py", ".go", ".rs", ".java", ".rb", ".php", ".sh", ".sql", ".svg", ".env",
}

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class ProjectRecord(BaseModel):
    """Everything persisted for one project."""

    id: str
    name: str = "New Project"
    files: dict[str, str] = Field(default_factory=dict)
    messages: list[Message] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.now)


class ProjectStore(Protocol):
    """Interface for loading and saving projects."""

    def load(self, project_id: str) -> Optional[ProjectRecord]: ...

    def save(self, record: ProjectRecord) -> None: ...


class FileProjectStore:
    """Stores each project as JSON under ``<root>/.bolt/projects/<id>.json``."""

    def __init__(self, root: Path):
        """Initialize store.

        Args:
            root: Directory holding the ``.bolt`` folder
        """
        self.projects_dir = root / ".bolt" / "projects"

    def load(self, project_id: str) -> Optional[ProjectRecord]:
        """Load a project.

        Returns:
            ProjectRecord if it exists and is readable, None otherwise
        """
        path = self._path(project_id)
        if not path.exists():
            return None

        try:
            return ProjectRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, IOError):
            return None

    def save(self, record: ProjectRecord) -> None:
        """Save a project atomically."""
        path = self._path(record.id)
        path.parent.mkdir(parents=True, exist_ok=True)

        record = record.model_copy(update={"updated_at": datetime.now()})
        temp_path = path.with_suffix(".json.tmp")
        temp_path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        temp_path.replace(path)

    def list_ids(self) -> list[str]:
        """List stored project ids, most recently saved first."""
        if not self.projects_dir.exists():
            return []
        entries = sorted(
            self.projects_dir.glob("*.json"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        return [p.stem for p in entries]

    def _path(self, project_id: str) -> Path:
        if not _SAFE_ID.match(project_id):
            raise ValueError(f"Invalid project id: {project_id}")
        return self.projects_dir / f"{project_id}.json"


class DirectoryLoader:
    """Reads a project directory into a canonical file set."""

    def __init__(
        self,
        project_root: Path,
        ignore_rules: IgnoreRules,
        max_file_size_mb: int = 8,
    ):
        """Initialize loader.

        Args:
            project_root: Root directory to read
            ignore_rules: Ignore rules to apply
            max_file_size_mb: Skip files larger than this (in MB)
        """
        self.project_root = project_root
        self.ignore_rules = ignore_rules
        self.max_file_size = max_file_size_mb * 1024 * 1024

    def load(self) -> dict[str, str]:
        """Read every non-ignored text file.

        Returns:
            File contents keyed by POSIX path relative to the root
        """
        files: dict[str, str] = {}

        for path in sorted(self.project_root.rglob("*")):
            if path.is_dir():
                continue

            if self.ignore_rules.should_ignore(path):
                continue

            try:
                if path.stat().st_size > self.max_file_size:
                    continue
            except OSError:
                continue  # Skip files we can't stat

            if not self._is_likely_text(path):
                continue

            try:
                content = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, IOError):
                continue

            files[path.relative_to(self.project_root).as_posix()] = content

        return files

    def _is_likely_text(self, path: Path) -> bool:
        """Heuristic to check if file is likely text.

        Args:
            path: File path

        Returns:
            True if likely text file
        """
        if path.suffix.lower() in _TEXT_EXTENSIONS:
            return True

        try:
            with open(path, "rb") as f:
                chunk = f.read(512)
                if len(chunk) == 0:
                    return True
                if b"\x00" in chunk:
                    return False
                printable_ratio = sum(1 for b in chunk if 32 <= b < 127 or b in (9, 10, 13)) / len(chunk)
                return printable_ratio > 0.7
        except (IOError, OSError):
            return False
