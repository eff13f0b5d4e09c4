"""LangGraph orchestration of the agent loop."""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from langgraph.graph import END, StateGraph

from boltloop.constants import MATERIAL_OUTPUT_MODES
from boltloop.conversation import Conversation
from boltloop.errors import QuotaExceededError, TransportError
from boltloop.indexer import build_project_index
from boltloop.llm import CancelToken, ModelClient
from boltloop.models import StepStatus
from boltloop.state import LoopState, LoopStatus
from boltloop.system_prompt import CORRECTIVE_MESSAGE, SystemPromptBuilder
from boltloop.tools.dispatcher import ToolDispatcher
from boltloop.tools.extractor import Extraction, extract
from boltloop.utils.logging import SessionLogger
from boltloop.workspace import WorkspaceStore

EventCallback = Callable[[str, dict[str, Any]], None]


@dataclass
class EpisodeResult:
    """Outcome of one run of the agent loop."""

    status: LoopStatus
    turns: int = 0
    model_calls: int = 0
    files_changed: list[str] = field(default_factory=list)
    output: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "turns": self.turns,
            "model_calls": self.model_calls,
            "files_changed": self.files_changed,
            "error": self.error,
        }


def format_tool_results(results: list[dict[str, str]]) -> str:
    """Render executed tool calls as the context message for the next turn."""
    blocks = []
    for r in results:
        header = f"[{r['kind']}] {r['description']}".rstrip()
        blocks.append(f"{header}\n> {r['args']}\n{r['result']}")
    return "TOOL RESULTS:\n\n" + "\n\n".join(blocks)


class AgentLoop:
    """Drives one episode: draft a turn, apply its directives, decide whether to go on.

    The workflow has three nodes. ``draft`` streams one model call, staging
    file directives as they appear. ``run_tools`` executes the turn's tool
    directives and feeds the results back. ``evaluate`` handles turns without
    tools: it detects stalls, nudges the model when a mode expects output,
    or finishes the episode.
    """

    def __init__(
        self,
        model: ModelClient,
        store: WorkspaceStore,
        dispatcher: ToolDispatcher,
        conversation: Conversation,
        prompts: Optional[SystemPromptBuilder] = None,
        logger: Optional[SessionLogger] = None,
        on_event: Optional[EventCallback] = None,
    ):
        """Initialize the loop.

        Args:
            model: Streaming model client
            store: Workspace store receiving staged files and the plan
            dispatcher: Tool dispatcher
            conversation: Chat history the loop reads and appends to
            prompts: System prompt builder
            logger: Optional session logger
            on_event: Optional callback receiving (event name, payload)
        """
        self.model = model
        self.store = store
        self.dispatcher = dispatcher
        self.conversation = conversation
        self.prompts = prompts or SystemPromptBuilder()
        self.logger = logger
        self.on_event = on_event

        self._cancel = CancelToken()
        self.graph = self.build_graph()

    def build_graph(self):
        """Build the LangGraph workflow.

        Returns:
            Compiled StateGraph
        """
        workflow = StateGraph(LoopState)

        workflow.add_node("draft", self.draft_node)
        workflow.add_node("run_tools", self.run_tools_node)
        workflow.add_node("evaluate", self.evaluate_node)

        workflow.set_entry_point("draft")
        workflow.add_conditional_edges(
            "draft",
            self.route_after_draft,
            {"run_tools": "run_tools", "evaluate": "evaluate", END: END},
        )
        workflow.add_conditional_edges("run_tools", self.route_next_turn, {"draft": "draft", END: END})
        workflow.add_conditional_edges("evaluate", self.route_next_turn, {"draft": "draft", END: END})

        return workflow.compile()

    def run(
        self,
        objective: str,
        mode: str,
        max_turns: int,
        checkpoint_ref: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> EpisodeResult:
        """Run one episode to a terminal state.

        The objective must already be the last user message of the conversation.

        Args:
            objective: User objective
            mode: Task mode
            max_turns: Maximum number of model invocations
            checkpoint_ref: Checkpoint id attached to the first assistant reply
            cancel: Token the caller uses to abort the episode

        Returns:
            EpisodeResult describing how the episode ended
        """
        self._cancel = cancel or CancelToken()
        self.store.clear_plan()

        initial: LoopState = {
            "objective": objective,
            "mode": mode,
            "max_turns": max_turns,
            "checkpoint_ref": checkpoint_ref,
            "model_calls": 0,
            "turns": 0,
            "output": "",
            "previous_output": None,
            "turn_files": [],
            "tools": [],
            "files_changed": [],
            "tool_results": [],
            "status": LoopStatus.RUNNING,
            "error": None,
        }

        # Each turn visits at most two nodes
        final = self.graph.invoke(initial, config={"recursion_limit": max_turns * 2 + 2})

        result = EpisodeResult(
            status=final["status"],
            turns=final["turns"],
            model_calls=final["model_calls"],
            files_changed=list(dict.fromkeys(final["files_changed"])),
            output=final["output"],
            error=final["error"],
        )
        self._emit("complete", result.to_dict())
        return result

    # Nodes

    def draft_node(self, state: LoopState) -> dict:
        """Stream one model call, staging directives as they arrive."""
        if self._cancel.cancelled:
            return {"status": LoopStatus.ABORTED}

        call = state["model_calls"] + 1
        context = self._build_context(state["mode"])
        index = self.conversation.add(
            "assistant", "", checkpoint_ref=state["checkpoint_ref"] if call == 1 else None
        )

        staged: list[str] = []
        plan_installed = False
        output = ""

        stream = None
        try:
            stream = self.model.stream(context, cancel=self._cancel)
            for chunk in stream:
                output += chunk
                self.conversation.replace(index, output)
                plan_installed = self._apply(extract(output), staged, plan_installed)
                self._emit("chunk", {"turn": call, "text": chunk})
                if self._cancel.cancelled:
                    break
        except TransportError as e:
            # A connection torn down by abort surfaces as a transport failure
            if not self._cancel.cancelled:
                status = (
                    LoopStatus.FAILED_QUOTA
                    if isinstance(e, QuotaExceededError)
                    else LoopStatus.FAILED_TRANSPORT
                )
                return self._failed(status, e, index, call, output, staged, state)
        finally:
            if stream is not None:
                stream.close()

        if self.logger:
            self.logger.log_message("assistant", output, turn=call)

        if self._cancel.cancelled:
            return {
                "model_calls": call,
                "output": output,
                "files_changed": self._new_paths(staged, state),
                "status": LoopStatus.ABORTED,
            }

        self.store.complete_plan()
        final = extract(output)
        self._apply(final, staged, plan_installed)
        if plan_installed or final.plan is not None:
            self._publish_plan()

        return {
            "model_calls": call,
            "turns": state["turns"] + 1,
            "output": output,
            "previous_output": state["output"] if state["turns"] else None,
            "turn_files": [d.path for d in final.files],
            "tools": final.tools,
            "files_changed": self._new_paths(staged, state),
        }

    def run_tools_node(self, state: LoopState) -> dict:
        """Execute the turn's tool directives in order and report the results."""
        results: list[dict[str, str]] = []
        aborted = False

        for directive in state["tools"]:
            if self._cancel.cancelled:
                aborted = True
                break

            payload = {
                "kind": directive.kind.value,
                "description": directive.description,
                "args": directive.args,
            }
            self._emit("tool_started", payload)
            result = self.dispatcher.execute(directive)
            if self.logger:
                self.logger.save_tool_result(directive.kind.value, directive.description, directive.args, result)
            self._emit("tool_finished", {**payload, "result": result})
            results.append({**payload, "result": result})

        if results:
            self._add_context(format_tool_results(results))

        if aborted:
            return {"tool_results": results, "status": LoopStatus.ABORTED}
        return {"tool_results": results, "status": self._budget_status(state)}

    def evaluate_node(self, state: LoopState) -> dict:
        """Decide how a turn without tool calls ends."""
        if self._is_stalled(state):
            return {"status": LoopStatus.STALLED}

        if state["mode"] in MATERIAL_OUTPUT_MODES and not state["turn_files"]:
            status = self._budget_status(state)
            if status is LoopStatus.RUNNING:
                self._add_context(CORRECTIVE_MESSAGE)
                self._emit("corrective", {"turn": state["model_calls"], "message": CORRECTIVE_MESSAGE})
            return {"status": status}

        return {"status": LoopStatus.DONE}

    # Routing

    def route_after_draft(self, state: LoopState) -> str:
        if state["status"].is_terminal:
            return END
        # A verbatim repeat would only re-run the same tools
        if self._is_stalled(state):
            return "evaluate"
        if state["tools"]:
            return "run_tools"
        return "evaluate"

    def route_next_turn(self, state: LoopState) -> str:
        return END if state["status"].is_terminal else "draft"

    # Helpers

    def _build_context(self, mode: str) -> list[dict[str, str]]:
        """System directives, environment snapshot, then the chat history."""
        environment = self.prompts.build_environment(
            self.store.active_file,
            build_project_index(self.store.files),
        )
        return [
            {"role": "system", "content": self.prompts.build(mode)},
            {"role": "system", "content": environment},
            *self.conversation.to_llm(),
        ]

    def _apply(self, extraction: Extraction, staged: list[str], plan_installed: bool) -> bool:
        """Install the plan once and stage file directives.

        Returns:
            Whether the plan for this turn has been installed
        """
        if extraction.plan is not None and not plan_installed:
            steps = extraction.plan_steps
            self.store.set_plan(steps)
            if steps:
                self.store.update_step(steps[0].id, StepStatus.IN_PROGRESS)
            self._publish_plan()
            plan_installed = True

        for directive in extraction.files:
            changed = self.store.set_pending(directive.path, directive.full_content)
            if changed and directive.path not in staged:
                staged.append(directive.path)
                self._emit("file_staged", {"path": directive.path})

        return plan_installed

    def _publish_plan(self) -> None:
        steps = [step.model_dump(mode="json") for step in self.store.plan]
        if self.logger:
            self.logger.save_plan(steps)
        self._emit("plan", {"steps": steps})

    def _add_context(self, content: str) -> None:
        self.conversation.add("system", content)
        if self.logger:
            self.logger.log_message("system", content)

    def _failed(
        self,
        status: LoopStatus,
        error: TransportError,
        index: int,
        call: int,
        output: str,
        staged: list[str],
        state: LoopState,
    ) -> dict:
        message = str(error)
        if not output:
            self.conversation.replace(index, f"[Error] {message}")
        if self.logger:
            self.logger.log_message("assistant", output or f"[Error] {message}", turn=call)
        return {
            "model_calls": call,
            "output": output,
            "files_changed": self._new_paths(staged, state),
            "status": status,
            "error": message,
        }

    def _budget_status(self, state: LoopState) -> LoopStatus:
        if state["model_calls"] >= state["max_turns"]:
            return LoopStatus.BUDGET_EXHAUSTED
        return LoopStatus.RUNNING

    @staticmethod
    def _is_stalled(state: LoopState) -> bool:
        previous = state["previous_output"]
        return previous is not None and state["output"] == previous

    @staticmethod
    def _new_paths(staged: list[str], state: LoopState) -> list[str]:
        return [p for p in staged if p not in state["files_changed"]]

    def _emit(self, name: str, payload: dict[str, Any]) -> None:
        if self.on_event:
            self.on_event(name, payload)
