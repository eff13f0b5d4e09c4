"""System prompt builder: directive protocol, tool list and task-mode guidance."""

from datetime import datetime
from typing import Optional

from boltloop.constants import MATERIAL_OUTPUT_MODES

CORRECTIVE_MESSAGE = (
    "Your last reply contained no file changes and no tool calls. "
    "Do not describe what you would do. Act now: emit the complete files with "
    "### FILE: blocks, or call a tool with <bolt_tool>."
)

MODE_GUIDANCE = {
    "build": (
        "BUILD mode: implement the requested feature end to end. Create or update every file "
        "it needs and install any package you import."
    ),
    "fix": (
        "FIX mode: find the root cause of the reported problem, read the files involved first, "
        "then rewrite the broken files. Do not refactor unrelated code."
    ),
    "refactor": (
        "REFACTOR mode: improve structure and naming without changing behaviour. "
        "Emit every file you touch in full."
    ),
    "ui": (
        "UI mode: focus on layout, styling and interaction. Keep the existing data flow and "
        "emit complete component files."
    ),
    "deploy": (
        "DEPLOY mode: prepare the project for release. Run builds and checks with tools and "
        "report the outcome. File changes are optional."
    ),
}


class SystemPromptBuilder:
    """Builds the system directives sent ahead of the chat history."""

    def __init__(self, project_name: Optional[str] = None):
        """Initialize system prompt builder.

        Args:
            project_name: Display name of the project
        """
        self.project_name = project_name

    def build(self, mode: str) -> str:
        """Build the system directives for a task mode.

        Args:
            mode: Task mode

        Returns:
            System prompt text
        """
        parts = [
            self._build_core_identity(),
            self._build_protocol(),
            self._build_tools(),
            self._build_mode_guidance(mode),
        ]
        return "\n\n".join(parts)

    def build_environment(self, active_file: Optional[str], index: str, now: Optional[datetime] = None) -> str:
        """Build the environment snapshot for one turn.

        Args:
            active_file: Path of the file open in the editor, if any
            index: Workspace index text
            now: Timestamp to report (defaults to the current time)

        Returns:
            Environment snapshot text
        """
        now = now or datetime.now()
        return "\n".join([
            "# ENVIRONMENT",
            f"Current Time: {now.isoformat(timespec='seconds')}",
            f"Active File: {active_file or 'none'}",
            "",
            index,
        ])

    def _build_core_identity(self) -> str:
        project = f"\nProject: {self.project_name}" if self.project_name else ""
        return f"""# Bolt Agent

You are Bolt, an AI software architect working inside a live project workspace.{project}

## Operating Principles
1. **Action-oriented**: change files and run tools, do not just suggest
2. **Complete files**: every file you emit replaces the old one, so always write it in full
3. **Inspect first**: read files and directories with tools before changing code you have not seen
4. **Concise**: keep prose short and technical
"""

    def _build_protocol(self) -> str:
        return """# Response Protocol

1. **Summary**: one or two sentences explaining the solution.
2. **Plan**: wrap the plan in a plan block. Every step needs id, title and description:

<bolt_plan>
  <step id="1" title="Scaffold" description="Create the entry component" />
  <step id="2" title="Style" description="Add the layout styles" />
</bolt_plan>

3. **Implementation**: for every changed file, a marker line followed directly by a fenced block
holding the complete new content:

### FILE: src/App.tsx
```tsx
export default function App() {
  return <main>Hello</main>;
}
```

4. **Conclusion**: a very short wrap-up.

Rules:
- Never skip the plan block for a multi-step task.
- Never truncate a file or write placeholders such as "rest unchanged".
- Put each file in its own fenced block directly under its marker.
"""

    def _build_tools(self) -> str:
        return """# Tools

Call a tool with a tool tag. The first line of the body is a short description, the remaining
lines are the argument:

<bolt_tool type="shell">Run the tests
npm test
</bolt_tool>

Available types:
- `shell`: run a shell command in the project root
- `npm`: install npm packages (space separated names)
- `search`: grep the project for a pattern
- `file`: read a file
- `readDir`: list a directory
- `find`: find files by name glob
- `webRead`: fetch a public URL as text
- `webSearch`: search the web
- `deleteFile`: delete a file or directory

Tool results are sent back to you in the next turn. Stop calling tools once the task is done.
"""

    def _build_mode_guidance(self, mode: str) -> str:
        guidance = MODE_GUIDANCE.get(mode, MODE_GUIDANCE["build"])
        if mode in MATERIAL_OUTPUT_MODES:
            guidance += " Every reply must contain file changes or tool calls."
        return f"# Current Task Mode\n\n{guidance}"
