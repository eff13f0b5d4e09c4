"""Staged workspace: canonical files, pending proposals, originals and checkpoints."""

import threading
import uuid
from datetime import datetime
from typing import Iterable, Optional

from boltloop.errors import CheckpointNotFoundError
from boltloop.models import Checkpoint, OriginalFile, PendingFile, PlanStep, StepStatus


def _is_under(path: str, root: str) -> bool:
    """True if ``path`` is ``root`` or lives inside the directory ``root``."""
    root = root.rstrip("/")
    return path == root or path.startswith(root + "/")


def _move(path: str, old: str, new: str) -> str:
    new = new.rstrip("/")
    if path == old.rstrip("/"):
        return new
    return new + path[len(old.rstrip("/")):]


class WorkspaceStore:
    """Holds the project's files and every change proposed against them.

    Canonical files are the accepted, authoritative content. A proposal for a
    path is kept apart in ``pending`` until it is accepted or discarded, and the
    canonical content at the moment of the first proposal is kept in
    ``originals``. Every pending path has an original; accepting or discarding
    a path drops both entries together.

    All operations take the store lock, so each call is atomic with respect to
    the others. Direct edits and incoming proposals are not merged: the last
    write observed wins.
    """

    def __init__(self, files: Optional[dict[str, str]] = None):
        """Initialize the store.

        Args:
            files: Initial canonical files keyed by path
        """
        self._lock = threading.RLock()
        self._files: dict[str, str] = dict(files or {})
        self._pending: dict[str, str] = {}
        self._originals: dict[str, Optional[str]] = {}
        self._checkpoints: dict[str, Checkpoint] = {}
        self._plan: list[PlanStep] = []
        self.active_file: Optional[str] = next(iter(self._files), None)

    # Canonical files

    @property
    def files(self) -> dict[str, str]:
        """Copy of the canonical file set."""
        with self._lock:
            return dict(self._files)

    def get_file(self, path: str) -> Optional[str]:
        with self._lock:
            return self._files.get(path)

    def load(self, files: dict[str, str]) -> None:
        """Replace the whole workspace with a freshly loaded project."""
        with self._lock:
            self._files = dict(files)
            self._pending.clear()
            self._originals.clear()
            self._checkpoints.clear()
            self._plan = []
            self.active_file = next(iter(self._files), None)

    def update_file(self, path: str, content: str) -> bool:
        """Edit an existing canonical file.

        Returns:
            False if the path does not exist
        """
        with self._lock:
            if path not in self._files:
                return False
            self._files[path] = content
            return True

    def upsert_file(self, path: str, content: str) -> None:
        with self._lock:
            self._files[path] = content

    def rename_file(self, old_path: str, new_path: str) -> None:
        """Rename a file or directory, carrying its staging entries along."""
        with self._lock:
            self._files = self._renamed(self._files, old_path, new_path)
            self._pending = self._renamed(self._pending, old_path, new_path)
            self._originals = self._renamed(self._originals, old_path, new_path)
            if self.active_file and _is_under(self.active_file, old_path):
                self.active_file = _move(self.active_file, old_path, new_path)

    def delete_file(self, path: str) -> list[str]:
        """Delete a file or directory along with its staging entries.

        Returns:
            Canonical paths that were removed
        """
        with self._lock:
            removed = [p for p in self._files if _is_under(p, path)]
            self._files = {p: c for p, c in self._files.items() if not _is_under(p, path)}
            self._pending = {p: c for p, c in self._pending.items() if not _is_under(p, path)}
            self._originals = {p: c for p, c in self._originals.items() if not _is_under(p, path)}
            if self.active_file and _is_under(self.active_file, path):
                self.active_file = None
            return removed

    def set_active_file(self, path: Optional[str]) -> None:
        with self._lock:
            self.active_file = path

    @staticmethod
    def _renamed(entries: dict, old_path: str, new_path: str) -> dict:
        result = {}
        for path, value in entries.items():
            key = _move(path, old_path, new_path) if _is_under(path, old_path) else path
            result[key] = value
        return result

    # Staging

    def set_pending(self, path: str, content: str) -> bool:
        """Propose new content for a path.

        The canonical content is captured as the original the first time the
        path is proposed and kept until the path is accepted or discarded.

        Returns:
            False if the same content was already pending for the path
        """
        with self._lock:
            if self._pending.get(path) == content:
                return False
            if path not in self._originals:
                self._originals[path] = self._files.get(path)
            self._pending[path] = content
            return True

    def pending_files(self) -> list[PendingFile]:
        with self._lock:
            return [PendingFile(path=p, content=c) for p, c in self._pending.items()]

    def get_pending(self, path: str) -> Optional[str]:
        with self._lock:
            return self._pending.get(path)

    def get_original(self, path: str) -> Optional[OriginalFile]:
        with self._lock:
            if path not in self._originals:
                return None
            return OriginalFile(path=path, content=self._originals[path])

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def accept(self, path: Optional[str] = None) -> list[str]:
        """Promote pending content to canonical.

        Args:
            path: Path to accept, or None for every pending path

        Returns:
            Paths that were accepted
        """
        with self._lock:
            paths = self._select(path)
            for p in paths:
                self._files[p] = self._pending.pop(p)
                self._originals.pop(p, None)
            return paths

    def discard(self, path: Optional[str] = None) -> list[str]:
        """Drop pending content without touching canonical files.

        Args:
            path: Path to discard, or None for every pending path

        Returns:
            Paths that were discarded
        """
        with self._lock:
            paths = self._select(path)
            for p in paths:
                self._pending.pop(p, None)
                self._originals.pop(p, None)
            return paths

    def _select(self, path: Optional[str]) -> list[str]:
        if path is None:
            return list(self._pending)
        return [path] if path in self._pending else []

    # Checkpoints

    def add_checkpoint(self, name: str) -> str:
        """Snapshot the canonical file set.

        Returns:
            The new checkpoint id
        """
        with self._lock:
            checkpoint_id = uuid.uuid4().hex[:8]
            self._checkpoints[checkpoint_id] = Checkpoint(
                id=checkpoint_id,
                name=name,
                timestamp=datetime.now(),
                files=dict(self._files),
            )
            return checkpoint_id

    def restore_checkpoint(self, checkpoint_id: str) -> None:
        """Replace canonical files with a checkpoint's snapshot.

        Pending changes, originals and the current plan are cleared.

        Raises:
            CheckpointNotFoundError: If no checkpoint has this id
        """
        with self._lock:
            checkpoint = self._checkpoints.get(checkpoint_id)
            if checkpoint is None:
                raise CheckpointNotFoundError(checkpoint_id)
            self._files = dict(checkpoint.files)
            self._pending.clear()
            self._originals.clear()
            self._plan = []
            self.active_file = next(iter(self._files), None)

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        with self._lock:
            if self._checkpoints.pop(checkpoint_id, None) is None:
                raise CheckpointNotFoundError(checkpoint_id)

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        """Return a copy of a checkpoint; the stored snapshot cannot be edited through it."""
        with self._lock:
            try:
                return _copy_checkpoint(self._checkpoints[checkpoint_id])
            except KeyError:
                raise CheckpointNotFoundError(checkpoint_id) from None

    def list_checkpoints(self) -> list[Checkpoint]:
        with self._lock:
            checkpoints = sorted(self._checkpoints.values(), key=lambda c: c.timestamp)
            return [_copy_checkpoint(c) for c in checkpoints]

    # Plan

    @property
    def plan(self) -> list[PlanStep]:
        with self._lock:
            return [step.model_copy() for step in self._plan]

    def set_plan(self, steps: Iterable[PlanStep]) -> None:
        """Install a plan, keeping the status of steps that are already known."""
        with self._lock:
            known = {step.id: step.status for step in self._plan}
            self._plan = [
                step.model_copy(update={"status": known.get(step.id, step.status)})
                for step in steps
            ]

    def update_step(self, step_id: str, status: StepStatus) -> bool:
        """Move a plan step forward.

        Returns:
            False if the step is unknown or the transition would go backwards
        """
        with self._lock:
            for index, step in enumerate(self._plan):
                if step.id != step_id:
                    continue
                if not step.status.can_move_to(status):
                    return False
                self._plan[index] = step.model_copy(update={"status": status})
                return True
            return False

    def complete_plan(self) -> None:
        """Mark every step that has not failed as completed."""
        with self._lock:
            for step in list(self._plan):
                self.update_step(step.id, StepStatus.COMPLETED)

    def clear_plan(self) -> None:
        with self._lock:
            self._plan = []


def _copy_checkpoint(checkpoint: Checkpoint) -> Checkpoint:
    return checkpoint.model_copy(update={"files": dict(checkpoint.files)})
