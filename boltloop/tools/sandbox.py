"""Execution sandbox: command spawning and filesystem access for tool calls."""

import os
import resource
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from boltloop.constants import DANGEROUS_PATTERNS
from boltloop.errors import SandboxError


@dataclass
class SpawnResult:
    """Result of a spawned command."""

    output: str
    exit_code: int
    duration_ms: int = 0
    command: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class DirEntry:
    """One entry of a directory listing."""

    name: str
    is_dir: bool


class Sandbox(Protocol):
    """Interface the tool dispatcher runs against.

    Every method may raise; the dispatcher turns failures into text.
    """

    def spawn(self, command: str) -> SpawnResult: ...

    def read(self, path: str) -> str: ...

    def write(self, path: str, content: str) -> None: ...

    def mkdir(self, path: str) -> None: ...

    def rm(self, path: str, recursive: bool = False) -> None: ...

    def readdir(self, path: str) -> list[DirEntry]: ...


class LocalSandbox:
    """Sandbox backed by a local project directory.

    Commands run through the shell with the project root as cwd, a minimal
    environment, resource limits and a timeout. File access is confined to
    the project root.
    """

    def __init__(
        self,
        project_root: Path,
        timeout: int = 45,
        max_read_mb: int = 8,
        max_write_mb: int = 2,
    ):
        """Initialize sandbox.

        Args:
            project_root: Project root directory (cwd for commands)
            timeout: Command timeout in seconds
            max_read_mb: Maximum file size to read (MB)
            max_write_mb: Maximum file size to write (MB)
        """
        self.project_root = project_root
        self.timeout = timeout
        self.max_read_bytes = max_read_mb * 1024 * 1024
        self.max_write_bytes = max_write_mb * 1024 * 1024

    def spawn(self, command: str, timeout: Optional[int] = None) -> SpawnResult:
        """Run a shell command.

        Args:
            command: Command to execute
            timeout: Optional timeout override

        Returns:
            SpawnResult with combined stdout/stderr

        Raises:
            SandboxError: If the command is blocked or cannot be started
        """
        is_dangerous, reason = self.is_dangerous(command)
        if is_dangerous:
            raise SandboxError(f"Command blocked: {reason}")

        timeout_val = timeout if timeout is not None else self.timeout
        start_time = time.time()

        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=str(self.project_root),
                env=self._prepare_env(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                preexec_fn=self._setup_limits,
            )
        except OSError as e:
            raise SandboxError(f"Cannot start command: {e}") from e

        try:
            output, _ = process.communicate(timeout=timeout_val)
            exit_code = process.returncode
        except subprocess.TimeoutExpired:
            process.kill()
            output, _ = process.communicate()
            output = (output or "") + f"\nCommand timed out after {timeout_val}s"
            exit_code = -1

        return SpawnResult(
            output=output or "",
            exit_code=exit_code,
            duration_ms=int((time.time() - start_time) * 1000),
            command=command,
        )

    def read(self, path: str) -> str:
        """Read a text file.

        Raises:
            SandboxError: If the file is missing, too large, or not UTF-8
        """
        file_path = self._resolve_path(path)

        if not file_path.exists():
            raise SandboxError(f"File not found: {path}")

        if not file_path.is_file():
            raise SandboxError(f"Not a file: {path}")

        try:
            size = file_path.stat().st_size
        except OSError as e:
            raise SandboxError(f"Cannot stat file: {e}") from e
        if size > self.max_read_bytes:
            size_mb = size / (1024 * 1024)
            max_mb = self.max_read_bytes / (1024 * 1024)
            raise SandboxError(f"File too large: {size_mb:.2f} MB (max: {max_mb} MB)")

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise SandboxError("File is not valid UTF-8 text") from e
        except IOError as e:
            raise SandboxError(f"Cannot read file: {e}") from e

    def write(self, path: str, content: str) -> None:
        """Write a text file atomically, creating parent directories.

        Raises:
            SandboxError: If the content is too large or cannot be written
        """
        file_path = self._resolve_path(path)

        content_bytes = len(content.encode("utf-8"))
        if content_bytes > self.max_write_bytes:
            size_mb = content_bytes / (1024 * 1024)
            max_mb = self.max_write_bytes / (1024 * 1024)
            raise SandboxError(f"Content too large: {size_mb:.2f} MB (max: {max_mb} MB)")

        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write atomically (temp file + rename)
        temp_path = file_path.with_suffix(file_path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
            temp_path.replace(file_path)
        except IOError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise SandboxError(f"Cannot write file: {e}") from e

    def mkdir(self, path: str) -> None:
        dir_path = self._resolve_path(path)
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SandboxError(f"Cannot create directory: {e}") from e

    def rm(self, path: str, recursive: bool = False) -> None:
        """Remove a file, or a directory tree when ``recursive`` is set.

        Raises:
            SandboxError: If the path does not exist or cannot be removed
        """
        target = self._resolve_path(path)
        if target == self.project_root.resolve():
            raise SandboxError("Refusing to remove the project root")
        if not target.exists():
            raise SandboxError(f"No such file or directory: {path}")

        try:
            if target.is_dir():
                if not recursive:
                    raise SandboxError(f"Is a directory: {path}")
                shutil.rmtree(target)
            else:
                target.unlink()
        except OSError as e:
            raise SandboxError(f"Cannot remove {path}: {e}") from e

    def readdir(self, path: str) -> list[DirEntry]:
        """List a directory, directories first.

        Raises:
            SandboxError: If the path is not a readable directory
        """
        dir_path = self._resolve_path(path or ".")
        try:
            entries = [DirEntry(name=e.name, is_dir=e.is_dir()) for e in dir_path.iterdir()]
        except OSError as e:
            raise SandboxError(f"Cannot read directory: {e}") from e
        return sorted(entries, key=lambda e: (not e.is_dir, e.name))

    def is_dangerous(self, command: str) -> tuple[bool, str]:
        """Check if a command matches dangerous patterns.

        Args:
            command: Command to check

        Returns:
            Tuple of (is_dangerous, reason)
        """
        for pattern, reason in DANGEROUS_PATTERNS:
            if pattern.search(command):
                return True, reason

        return False, ""

    def _resolve_path(self, path: str) -> Path:
        """Resolve a path inside the project root.

        Raises:
            SandboxError: If the path escapes the project root
        """
        p = Path(path)
        resolved = p.resolve() if p.is_absolute() else (self.project_root / p).resolve()
        try:
            resolved.relative_to(self.project_root.resolve())
        except ValueError:
            raise SandboxError(f"Path outside project root: {path}") from None
        return resolved

    def _prepare_env(self) -> dict[str, str]:
        """Prepare environment variables for sandboxed execution.

        Returns:
            Dictionary of environment variables
        """
        env = {}

        keep_vars = ["PATH", "HOME", "USER", "LANG", "PYTHONPATH", "VIRTUAL_ENV", "NODE_PATH"]

        for var in keep_vars:
            if var in os.environ:
                env[var] = os.environ[var]

        return env

    def _setup_limits(self) -> None:
        """Setup resource limits for sandboxed execution.

        Called via preexec_fn before command execution.
        """
        try:
            # CPU time limit (60 seconds)
            resource.setrlimit(resource.RLIMIT_CPU, (60, 60))

            # Address space (4GB soft and hard, node reserves a lot of virtual memory)
            resource.setrlimit(resource.RLIMIT_AS, (4 * 1024 ** 3, 4 * 1024 ** 3))
        except (ValueError, OSError):
            # Already limited more tightly, or not permitted here
            pass
