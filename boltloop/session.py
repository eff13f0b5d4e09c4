"""Session: the explicit context object an agent loop runs against."""

import re
import threading
import uuid
from typing import Optional

from boltloop.config import Config
from boltloop.constants import PRE_TASK_OBJECTIVE_CHARS, PRE_TASK_PREFIX
from boltloop.conversation import Conversation
from boltloop.errors import BoltError
from boltloop.graph import AgentLoop, CancelToken, EpisodeResult, EventCallback
from boltloop.llm import ModelClient
from boltloop.state import LoopStatus
from boltloop.system_prompt import SystemPromptBuilder
from boltloop.tools.dispatcher import ToolDispatcher
from boltloop.tools.extractor import ToolDirective, ToolKind
from boltloop.tools.project_store import ProjectRecord, ProjectStore
from boltloop.tools.sandbox import Sandbox
from boltloop.utils.diffs import create_patch
from boltloop.utils.logging import SessionLogger
from boltloop.workspace import WorkspaceStore

DEFAULT_PROJECT_NAME = "New Project"
FIX_OBJECTIVE = 'The terminal reported an error: "{error}". Fix this immediately.'


def title_from_objective(objective: str, words: int = 5) -> str:
    """Derive a project name from the first words of an objective."""
    cleaned = re.sub(r"[^\w\s]", "", objective)
    title = " ".join(cleaned.split()[:words])
    return title[:1].upper() + title[1:] if title else DEFAULT_PROJECT_NAME


class Session:
    """Owns the workspace, the chat history and the single agent loop of a project.

    At most one episode runs at a time. A call to ``run`` while an episode is
    active returns None without doing anything.
    """

    def __init__(
        self,
        store: WorkspaceStore,
        model: ModelClient,
        sandbox: Sandbox,
        config: Optional[Config] = None,
        dispatcher: Optional[ToolDispatcher] = None,
        logger: Optional[SessionLogger] = None,
        project_store: Optional[ProjectStore] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ):
        """Initialize the session.

        Args:
            store: Workspace store
            model: Streaming model client
            sandbox: Execution sandbox; accepted files are mirrored into it
            config: Configuration (defaults apply when omitted)
            dispatcher: Tool dispatcher (built over ``sandbox`` when omitted)
            logger: Optional session logger
            project_store: Optional persistence collaborator for auto-save
            project_id: Id the project is saved under
            project_name: Display name, derived from the first objective when unset
            on_event: Optional loop event callback
        """
        self.store = store
        self.sandbox = sandbox
        self.config = config or Config()
        self.logger = logger
        self.project_store = project_store
        self.project_id = project_id or uuid.uuid4().hex[:12]
        self.project_name = project_name
        self.conversation = Conversation()
        self.prompts = SystemPromptBuilder(project_name)

        self.dispatcher = dispatcher or ToolDispatcher(
            sandbox, store, max_chars=self.config.web_max_chars
        )
        self.loop = AgentLoop(
            model,
            store,
            self.dispatcher,
            self.conversation,
            prompts=self.prompts,
            logger=logger,
            on_event=on_event,
        )

        self._guard = threading.Lock()
        self._running = False
        self._cancel: Optional[CancelToken] = None
        self._last_objective: Optional[str] = None
        self._last_mode: Optional[str] = None
        self.last_result: Optional[EpisodeResult] = None

    @property
    def is_running(self) -> bool:
        with self._guard:
            return self._running

    # Episodes

    def run(self, objective: str, mode: Optional[str] = None) -> Optional[EpisodeResult]:
        """Run one episode for a new user objective.

        Args:
            objective: What the user asked for
            mode: Task mode (defaults to the configured mode)

        Returns:
            EpisodeResult, or None if an episode was already running
        """
        return self._run_episode(objective, mode or self.config.mode, retry=False)

    def retry(self) -> Optional[EpisodeResult]:
        """Re-issue the last objective as a fresh episode.

        The messages produced by the previous attempt are dropped and no new
        user message is added.

        Returns:
            EpisodeResult, or None if there is nothing to retry or an episode is running
        """
        if self._last_objective is None:
            message = self.conversation.last_user_message()
            if message is None:
                return None
            self._last_objective = message.content
        return self._run_episode(self._last_objective, self._last_mode or self.config.mode, retry=True)

    def fix_error(self, error: str) -> Optional[EpisodeResult]:
        """Start a fix episode for an error reported by the terminal."""
        return self.run(FIX_OBJECTIVE.format(error=error.strip()), "fix")

    def abort(self) -> bool:
        """Cancel the running episode. Staged files are kept.

        Returns:
            False if no episode was running
        """
        with self._guard:
            if not self._running or self._cancel is None:
                return False
            self._cancel.cancel()
            return True

    def _run_episode(self, objective: str, mode: str, retry: bool) -> Optional[EpisodeResult]:
        with self._guard:
            if self._running:
                return None
            self._running = True
            self._cancel = CancelToken()
            cancel = self._cancel

        try:
            if retry:
                index = self.conversation.last_user_index()
                if index is not None:
                    self.conversation.truncate(index + 1)
            else:
                self.conversation.add("user", objective)
                if self.logger:
                    self.logger.log_message("user", objective)

            self._last_objective = objective
            self._last_mode = mode
            self._ensure_title(objective)

            checkpoint_id = self.store.add_checkpoint(
                f"{PRE_TASK_PREFIX}{objective[:PRE_TASK_OBJECTIVE_CHARS]}..."
            )
            result = self.loop.run(
                objective,
                mode,
                self.config.max_turns,
                checkpoint_ref=checkpoint_id,
                cancel=cancel,
            )

            if self.logger:
                self.logger.log_episode({"objective": objective, "mode": mode, **result.to_dict()})
            if result.status is not LoopStatus.ABORTED:
                self.save()

            self.last_result = result
            return result
        finally:
            with self._guard:
                self._running = False
                self._cancel = None

    def _ensure_title(self, objective: str) -> None:
        if self.project_name and self.project_name != DEFAULT_PROJECT_NAME:
            return
        self.rename(title_from_objective(objective))

    def rename(self, name: str) -> None:
        self.project_name = name
        self.prompts.project_name = name

    # Project commands

    def run_command(self, name: str) -> str:
        """Run a named command from .bolt/config.json as a shell tool call.

        Raises:
            BoltError: If no command has this name or an episode is running
        """
        command = self.config.custom_commands.get(name)
        if command is None:
            raise BoltError(f"No command named {name!r} in .bolt/config.json")
        if self.is_running:
            raise BoltError("Abort the running episode before running a command")

        result = self.dispatcher.execute(ToolDirective(kind=ToolKind.SHELL, description=name, args=command))
        if self.logger:
            self.logger.save_tool_result(ToolKind.SHELL.value, name, command, result)
        return result

    # Review

    def accept(self, path: Optional[str] = None) -> list[str]:
        """Accept pending changes and write them into the sandbox.

        Each file is written to the sandbox before it becomes canonical, so a
        failed write leaves that path pending.

        Args:
            path: Path to accept, or None for every pending path

        Returns:
            Paths that were accepted

        Raises:
            SandboxError: If a file cannot be written
        """
        accepted = []
        for pending in self.store.pending_files():
            if path is not None and pending.path != path:
                continue

            original = self.store.get_original(pending.path)
            self.sandbox.write(pending.path, pending.content)
            accepted.extend(self.store.accept(pending.path))

            if self.logger and original is not None:
                diff = create_patch(original.content, pending.content, pending.path)
                self.logger.save_diff(pending.path, diff)

        return accepted

    def discard(self, path: Optional[str] = None) -> list[str]:
        return self.store.discard(path)

    def restore_checkpoint(self, checkpoint_id: str) -> None:
        """Restore a checkpoint and make the sandbox match it.

        Raises:
            BoltError: If an episode is running
            CheckpointNotFoundError: If no checkpoint has this id
        """
        if self.is_running:
            raise BoltError("Abort the running episode before restoring a checkpoint")

        before = self.store.files
        self.store.restore_checkpoint(checkpoint_id)
        after = self.store.files

        for path in before:
            if path not in after:
                self.sandbox.rm(path)
        for path, content in after.items():
            if before.get(path) != content:
                self.sandbox.write(path, content)

    # Persistence

    def save(self) -> bool:
        """Save files and chat history through the persistence collaborator.

        Returns:
            False if no persistence collaborator is configured
        """
        if self.project_store is None:
            return False
        self.project_store.save(
            ProjectRecord(
                id=self.project_id,
                name=self.project_name or DEFAULT_PROJECT_NAME,
                files=self.store.files,
                messages=self.conversation.messages,
            )
        )
        return True

    def load(self, record: ProjectRecord) -> None:
        """Replace the workspace and history with a saved project."""
        if self.is_running:
            raise BoltError("Cannot load a project while an episode is running")
        self.project_id = record.id
        self.rename(record.name)
        self.store.load(record.files)
        self.conversation = Conversation(record.messages)
        self.loop.conversation = self.conversation
        self._last_objective = None
        self._last_mode = None
