"""CLI and REPL for boltloop."""

import re
import sys
import threading
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from boltloop.config import Config
from boltloop.constants import TASK_MODES
from boltloop.errors import BoltError
from boltloop.graph import EpisodeResult
from boltloop.llm import LLM
from boltloop.session import Session
from boltloop.state import LoopStatus
from boltloop.tools.dispatcher import ToolDispatcher
from boltloop.tools.extractor import clean_message, edited_paths
from boltloop.tools.project_store import DirectoryLoader, FileProjectStore
from boltloop.tools.sandbox import LocalSandbox
from boltloop.tools.web import WebProxy
from boltloop.utils.diffs import create_patch, diff_stats
from boltloop.utils.ignore import IgnoreRules
from boltloop.utils.logging import SessionLogger
from boltloop.workspace import WorkspaceStore

app = typer.Typer(help="boltloop - AI coding agent for local projects")
console = Console()

STATUS_STYLES = {
    LoopStatus.DONE: ("green", "Done"),
    LoopStatus.STALLED: ("yellow", "Stopped: the model repeated itself"),
    LoopStatus.BUDGET_EXHAUSTED: ("yellow", "Stopped: turn budget used up"),
    LoopStatus.ABORTED: ("yellow", "Aborted, staged changes kept"),
    LoopStatus.FAILED_QUOTA: ("red", "Usage quota exceeded"),
    LoopStatus.FAILED_TRANSPORT: ("red", "Model call failed"),
}


def project_id_for(project_root: Path) -> str:
    """Stable project id for a local directory."""
    return re.sub(r"[^A-Za-z0-9_-]", "_", project_root.name) or "project"


class REPL:
    """Interactive REPL for boltloop."""

    def __init__(self, project_root: Path, config: Config):
        """Initialize REPL.

        Args:
            project_root: Project root directory
            config: Configuration object
        """
        self.project_root = project_root
        self.config = config
        self.logger = SessionLogger(project_root)

        self.sandbox = LocalSandbox(
            project_root, config.exec_timeout, config.max_read_mb, config.max_write_mb
        )
        self.web = WebProxy(config.web_timeout, config.search_endpoint)
        self.store = WorkspaceStore()
        self.dispatcher = ToolDispatcher(self.sandbox, self.store, self.web, config.web_max_chars)
        self.llm = LLM(LLM.parse_model_string(config.default_model), config.anthropic_api_key)

        self.session = Session(
            self.store,
            self.llm,
            self.sandbox,
            config=config,
            dispatcher=self.dispatcher,
            logger=self.logger,
            project_store=FileProjectStore(project_root),
            project_id=project_id_for(project_root),
            on_event=self.on_event,
        )

        self.running = True

    def load_project(self) -> None:
        """Load files from disk and any saved chat history."""
        loader = DirectoryLoader(self.project_root, IgnoreRules(self.project_root), self.config.max_read_mb)
        files = loader.load()

        record = self.session.project_store.load(self.session.project_id)
        if record:
            # The directory on disk is authoritative for files
            self.session.load(record.model_copy(update={"files": files}))
            console.print(f"[dim]Restored {len(record.messages)} messages for {record.name}[/dim]")
        else:
            self.store.load(files)
            self.session.rename(self.project_root.name)

        console.print(f"[dim]Loaded {len(files)} files[/dim]\n")

    def start(self) -> None:
        """Start the REPL."""
        console.print(Panel.fit(
            "[bold cyan]boltloop[/bold cyan] - AI coding agent\n"
            f"Project: {self.project_root}\n"
            f"Model: {self.config.default_model}\n"
            f"Mode: {self.config.mode}\n"
            "\n"
            "Type /help for commands or /quit to exit",
            border_style="cyan"
        ))

        self.load_project()

        # Main REPL loop
        while self.running:
            try:
                user_input = console.input(f"[bold cyan]bolt[{self.config.mode}]>[/bold cyan] ").strip()

                if not user_input:
                    continue

                self.handle_input(user_input)

            except KeyboardInterrupt:
                console.print("\n[dim]Use /quit to exit[/dim]")
                continue
            except EOFError:
                break

        self.web.close()
        console.print("\n[cyan]Goodbye![/cyan]")

    def handle_input(self, user_input: str) -> None:
        """Handle user input (command or objective).

        Args:
            user_input: User input string
        """
        if user_input.startswith("/"):
            self.handle_command(user_input)
        else:
            self.run_episode(self.session.run, user_input)

    def handle_command(self, command: str) -> None:
        """Handle slash command.

        Args:
            command: Command string (starting with /)
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        try:
            if cmd == "/help":
                self.show_help()
            elif cmd == "/quit" or cmd == "/exit":
                self.running = False
            elif cmd == "/mode":
                if args not in TASK_MODES:
                    console.print(f"[dim]Current mode: {self.config.mode}[/dim]")
                    console.print(f"[dim]Usage: /mode {'|'.join(TASK_MODES)}[/dim]")
                    return
                self.config.mode = args
                console.print(f"[green]Mode set to {args}[/green]")
            elif cmd == "/pending":
                self.show_pending()
            elif cmd == "/diff":
                if not args:
                    console.print("[red]Usage: /diff <path>[/red]")
                    return
                self.show_diff(args)
            elif cmd == "/accept":
                accepted = self.session.accept(args or None)
                if not accepted:
                    console.print("[yellow]Nothing to accept[/yellow]")
                for path in accepted:
                    console.print(f"[green]✓ Accepted {path}[/green]")
            elif cmd == "/discard":
                discarded = self.session.discard(args or None)
                if not discarded:
                    console.print("[yellow]Nothing to discard[/yellow]")
                for path in discarded:
                    console.print(f"[yellow]✗ Discarded {path}[/yellow]")
            elif cmd == "/checkpoint":
                if not args:
                    console.print("[red]Usage: /checkpoint <name>[/red]")
                    return
                checkpoint_id = self.store.add_checkpoint(args)
                console.print(f"[green]✓ Created checkpoint {checkpoint_id}[/green]")
            elif cmd == "/checkpoints":
                self.show_checkpoints()
            elif cmd == "/restore":
                if not args:
                    console.print("[red]Usage: /restore <id>[/red]")
                    return
                self.session.restore_checkpoint(args)
                console.print(f"[green]✓ Restored checkpoint {args}[/green]")
            elif cmd == "/retry":
                self.run_episode(self.session.retry)
            elif cmd == "/fix":
                if not args:
                    console.print("[red]Usage: /fix <error text>[/red]")
                    return
                self.run_episode(self.session.fix_error, args)
            elif cmd == "/run":
                if not args:
                    self.show_commands()
                    return
                output = self.session.run_command(args)
                console.print(Panel(output[:2000], title=f"/run {args}", border_style="magenta"))
            elif cmd == "/history":
                self.show_history()
            elif cmd == "/model":
                if args:
                    self.llm = LLM(LLM.parse_model_string(args), self.config.anthropic_api_key)
                    self.session.loop.model = self.llm
                    self.config.default_model = args
                    console.print(f"[green]Switched to model: {args}[/green]")
                else:
                    # Show current model and list available
                    console.print(f"[dim]Current model: {self.config.default_model}[/dim]")
                    console.print("\nAvailable models:")
                    for model in LLM.list_models():
                        console.print(f"  - {model}")
            elif cmd == "/config":
                config_dict = self.config.to_dict()
                console.print(Panel(
                    "\n".join(f"{k}: {v}" for k, v in config_dict.items()),
                    title="Configuration",
                    border_style="blue"
                ))
            elif cmd == "/log":
                log_path = self.logger.get_log_path()
                console.print(f"[dim]Session logs: {log_path}[/dim]")
            else:
                console.print(f"[red]Unknown command: {cmd}[/red]")
                console.print("[dim]Type /help for available commands[/dim]")

        except (BoltError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")

    def run_episode(self, start, *args: Any) -> None:
        """Run an episode in a worker thread so Ctrl-C can abort it.

        Args:
            start: Session method starting the episode
            *args: Arguments for ``start``
        """
        outcome: dict[str, Optional[EpisodeResult]] = {}

        def target() -> None:
            outcome["result"] = start(*args)

        worker = threading.Thread(target=target, daemon=True)
        worker.start()
        while worker.is_alive():
            try:
                worker.join(0.1)
            except KeyboardInterrupt:
                if self.session.abort():
                    console.print("\n[yellow]Aborting...[/yellow]")

        result = outcome.get("result")
        if result is None:
            console.print("[yellow]Nothing to run (an episode is already active or there is nothing to retry)[/yellow]")
            return
        self.show_result(result)

    def on_event(self, name: str, payload: dict[str, Any]) -> None:
        """Render loop events as they happen."""
        if name == "chunk":
            console.print(payload["text"], end="", markup=False, highlight=False)
        elif name == "plan":
            lines = [f"  [{step['status']}] {step['title']}" for step in payload["steps"]]
            console.print("\n[dim]Plan:\n" + "\n".join(lines) + "[/dim]")
        elif name == "file_staged":
            console.print(f"\n[cyan]  ✎ staged {payload['path']}[/cyan]")
        elif name == "tool_started":
            console.print(f"\n[magenta]▶ {payload['kind']}: {payload['description'] or payload['args']}[/magenta]")
        elif name == "tool_finished":
            preview = payload["result"][:500]
            console.print(Panel(preview, title=payload["kind"], border_style="magenta"))
        elif name == "corrective":
            console.print("\n[yellow]No changes produced, asking the model to act...[/yellow]")

    def show_result(self, result: EpisodeResult) -> None:
        style, label = STATUS_STYLES.get(result.status, ("white", result.status.value))
        lines = [
            f"[{style}]{label}[/{style}]",
            f"Turns: {result.turns}   Model calls: {result.model_calls}",
            f"Files changed: {len(result.files_changed)}",
        ]
        edited = edited_paths(result.output)
        if edited:
            lines.append(f"Last reply edited: {', '.join(edited)}")
        if result.error:
            lines.append(f"Error: {result.error}")
        if result.status is LoopStatus.FAILED_TRANSPORT:
            lines.append("Use /retry to try again")
        console.print()
        summary = clean_message(result.output).strip()
        if summary:
            console.print(Panel(Markdown(summary), title="Reply", border_style="dim"))
        console.print(Panel("\n".join(lines), title="Episode", border_style=style))
        if self.store.has_pending:
            self.show_pending()

    def show_pending(self) -> None:
        pending = self.store.pending_files()
        if not pending:
            console.print("[dim]No pending changes[/dim]")
            return

        table = Table(title="Pending changes")
        table.add_column("Path")
        table.add_column("+", style="green", justify="right")
        table.add_column("-", style="red", justify="right")
        for item in pending:
            original = self.store.get_original(item.path)
            stats = diff_stats(original.content if original else None, item.content)
            table.add_row(item.path, str(stats.additions), str(stats.deletions))
        console.print(table)
        console.print("[dim]/diff <path> to review, /accept or /discard to resolve[/dim]")

    def show_diff(self, path: str) -> None:
        content = self.store.get_pending(path)
        if content is None:
            console.print(f"[red]No pending change for {path}[/red]")
            return
        original = self.store.get_original(path)
        patch = create_patch(original.content if original else None, content, path)
        console.print(Syntax(patch or "(no changes)", "diff", theme="monokai"))

    def show_checkpoints(self) -> None:
        checkpoints = self.store.list_checkpoints()
        if not checkpoints:
            console.print("[dim]No checkpoints[/dim]")
            return
        for cp in checkpoints:
            console.print(f"  {cp.id}  {cp.timestamp:%H:%M:%S}  {cp.name}  ({len(cp.files)} files)")

    def show_commands(self) -> None:
        commands = self.config.custom_commands
        if not commands:
            console.print("[dim]No commands defined. Add a \"commands\" map to .bolt/config.json[/dim]")
            return
        for name, command in commands.items():
            console.print(f"  {name}: [dim]{command}[/dim]")
        console.print("[dim]Usage: /run <name>[/dim]")

    def show_history(self) -> None:
        """Show the chat history with directive markup stripped."""
        messages = self.session.conversation.messages
        if not messages:
            console.print("[dim]No messages yet[/dim]")
            return
        for message in messages:
            if message.role == "assistant":
                text = clean_message(message.content).strip()
                paths = edited_paths(message.content)
                if paths:
                    text += "\n\n*Edited: " + ", ".join(f"`{p}`" for p in paths) + "*"
                console.print(Panel(Markdown(text or "_(no text)_"), title="assistant", border_style="cyan"))
            elif message.role == "user":
                console.print(f"[bold]> {message.content}[/bold]")

    def show_help(self) -> None:
        """Show help message."""
        help_text = """
**Type an objective** to start an episode. Press Ctrl-C to abort it.

**Available Commands:**

- `/mode <build|fix|refactor|ui|deploy>` - Show or switch the task mode
- `/pending` - List pending changes with line counts
- `/diff <path>` - Show the diff of a pending change
- `/accept [path]` - Accept pending changes and write them to disk
- `/discard [path]` - Discard pending changes
- `/checkpoint <name>` - Snapshot the current files
- `/checkpoints` - List checkpoints
- `/restore <id>` - Restore a checkpoint
- `/retry` - Re-run the last objective
- `/fix <error>` - Ask the agent to fix an error
- `/run [name]` - List or run a command from .bolt/config.json
- `/history` - Show the conversation without directive markup
- `/model [name]` - Show or switch LLM model
- `/config` - Show current configuration
- `/log` - Show session log path
- `/help` - Show this help message
- `/quit` - Exit boltloop

**Examples:**

```
Add a dark mode toggle to the header
/fix TypeError: Cannot read properties of undefined (reading 'map')
/mode deploy
```
        """
        console.print(Markdown(help_text))


@app.command()
def main(
    path: Optional[str] = typer.Argument(
        None,
        help="Project path (default: current directory)"
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model", "-m",
        help="Model to use (e.g., anthropic:claude-sonnet-4-5)"
    ),
    mode: Optional[str] = typer.Option(
        None,
        "--mode",
        help="Task mode: build, fix, refactor, ui or deploy"
    ),
    max_turns: Optional[int] = typer.Option(
        None,
        "--max-turns",
        help="Maximum model calls per episode"
    ),
) -> None:
    """Start a boltloop interactive session."""
    # Determine project root
    project_root = Path(path).resolve() if path else Path.cwd()

    if not project_root.exists():
        console.print(f"[red]Error: Path does not exist: {project_root}[/red]")
        sys.exit(1)

    if not project_root.is_dir():
        console.print(f"[red]Error: Path is not a directory: {project_root}[/red]")
        sys.exit(1)

    config = Config.load(project_root)

    # Command-line overrides
    if model:
        config.default_model = model
    if mode:
        config.mode = mode
    if max_turns is not None:
        config.max_turns = max_turns

    # Validate configuration
    errors = config.validate()
    try:
        LLM.parse_model_string(config.default_model)
    except ValueError as e:
        errors.append(str(e))
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    repl = REPL(project_root, config)
    repl.start()


if __name__ == "__main__":
    app()
