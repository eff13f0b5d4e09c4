"""Session logging utilities."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


class SessionLogger:
    """Handles logging for a boltloop session."""

    def __init__(self, project_root: Path, run_id: Optional[str] = None):
        """Initialize session logger.

        Args:
            project_root: Project root directory
            run_id: Optional run ID (generated if not provided)
        """
        self.project_root = project_root
        self.run_id = run_id or datetime.now().strftime("%Y%m%d_%H%M%S")

        # Create logs directory
        self.log_dir = project_root / ".bolt" / "runs" / self.run_id
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Log files
        self.transcript_path = self.log_dir / "transcript.ndjson"
        self.plan_path = self.log_dir / "plan.json"
        self.episodes_path = self.log_dir / "episodes.ndjson"
        self.diffs_dir = self.log_dir / "diffs"
        self.tools_dir = self.log_dir / "tools"

        self.diffs_dir.mkdir(exist_ok=True)
        self.tools_dir.mkdir(exist_ok=True)

        self._tool_count = 0

    def log_message(self, role: str, content: str, turn: Optional[int] = None) -> None:
        """Log a conversation message.

        Args:
            role: Message role (user, assistant, system)
            content: Message content
            turn: Optional turn number within the episode
        """
        entry: dict[str, Any] = {
            "ts": datetime.now().isoformat(),
            "role": role,
            "content": content,
        }

        if turn is not None:
            entry["turn"] = turn

        self._append(self.transcript_path, entry)

    def save_plan(self, steps: list[dict]) -> None:
        """Save the latest plan steps to disk.

        Args:
            steps: Plan steps as dictionaries
        """
        with open(self.plan_path, "w") as f:
            json.dump({"steps": steps, "updated": datetime.now().isoformat()}, f, indent=2)

    def save_diff(self, path: str, diff_content: str) -> None:
        """Save the diff of an accepted file.

        Args:
            path: File path the diff belongs to
            diff_content: Unified diff text
        """
        diff_path = self.diffs_dir / f"{self._safe_name(path)}.diff"
        with open(diff_path, "w") as f:
            f.write(diff_content)

    def save_tool_result(self, kind: str, description: str, args: str, result: str) -> None:
        """Save the result of one tool directive.

        Args:
            kind: Tool kind
            description: Human-readable description line
            args: Argument payload
            result: Result text returned by the dispatcher
        """
        self._tool_count += 1
        filename = f"{self._tool_count:03d}_{kind}_{self._safe_name(args)}.json"

        with open(self.tools_dir / filename, "w") as f:
            json.dump(
                {
                    "kind": kind,
                    "description": description,
                    "args": args,
                    "result": result,
                    "timestamp": datetime.now().isoformat(),
                },
                f,
                indent=2,
            )

    def log_episode(self, summary: dict) -> None:
        """Append the outcome of a finished episode.

        Args:
            summary: Episode result dictionary
        """
        self._append(self.episodes_path, {"ts": datetime.now().isoformat(), **summary})

    def get_log_path(self) -> str:
        """Get the path to the log directory.

        Returns:
            Absolute path to log directory
        """
        return str(self.log_dir.absolute())

    def _append(self, path: Path, entry: dict) -> None:
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    @staticmethod
    def _safe_name(text: str) -> str:
        return "".join(c if c.isalnum() else "_" for c in text[:40]) or "empty"
