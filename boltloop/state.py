"""State models for the LangGraph agent loop."""

from enum import Enum
from operator import add
from typing import Annotated, Optional, TypedDict

from boltloop.tools.extractor import ToolDirective


class LoopStatus(str, Enum):
    """Where an episode stands. Everything but RUNNING is terminal."""

    RUNNING = "running"
    DONE = "done"
    STALLED = "stalled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    ABORTED = "aborted"
    FAILED_QUOTA = "failed_quota"
    FAILED_TRANSPORT = "failed_transport"

    @property
    def is_terminal(self) -> bool:
        return self is not LoopStatus.RUNNING

    @property
    def is_failure(self) -> bool:
        return self in (LoopStatus.FAILED_QUOTA, LoopStatus.FAILED_TRANSPORT)


class LoopState(TypedDict):
    """The state object passed through the LangGraph workflow.

    Attributes:
        objective: The user objective driving this episode
        mode: Task mode (build, fix, refactor, ui, deploy)
        max_turns: Turn budget for the episode
        checkpoint_ref: Pre-task checkpoint id, attached to the first reply
        model_calls: Model invocations issued so far
        turns: Turns whose stream finished
        output: Full output of the latest turn
        previous_output: Full output of the turn before it
        turn_files: Paths named by file directives in the latest turn
        tools: Tool directives of the latest turn
        files_changed: Every path staged during the episode
        tool_results: Results of every executed tool directive
        status: Current loop status
        error: Error text for failed episodes
    """

    objective: str
    mode: str
    max_turns: int
    checkpoint_ref: Optional[str]
    model_calls: int
    turns: int
    output: str
    previous_output: Optional[str]
    turn_files: list[str]
    tools: list[ToolDirective]
    files_changed: Annotated[list[str], add]
    tool_results: Annotated[list[dict], add]
    status: LoopStatus
    error: Optional[str]
