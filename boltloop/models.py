"""Data model shared by the workspace, the session and the agent loop."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]
TaskMode = Literal["build", "fix", "refactor", "ui", "deploy"]


class Message(BaseModel):
    """A chat message. Streaming assistant messages are replaced, never edited in place."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    checkpoint_ref: Optional[str] = Field(None, description="Checkpoint taken before this turn")

    def to_llm(self) -> dict[str, str]:
        """Convert to the role/content dict the model endpoint expects."""
        return {"role": self.role, "content": self.content}


class StepStatus(str, Enum):
    """Lifecycle of a plan step. Statuses only move forward."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.ERROR)

    def can_move_to(self, target: "StepStatus") -> bool:
        """Whether a step in this status may be moved to ``target``."""
        if target == self:
            return True
        if self.is_terminal or target == StepStatus.PENDING:
            return False
        return _STATUS_RANK[target] > _STATUS_RANK[self]


_STATUS_RANK = {
    StepStatus.PENDING: 0,
    StepStatus.IN_PROGRESS: 1,
    StepStatus.COMPLETED: 2,
    StepStatus.ERROR: 2,
}


class PlanStep(BaseModel):
    """One step of the plan announced by the model."""

    id: str
    title: str
    description: str
    status: StepStatus = StepStatus.PENDING


class PendingFile(BaseModel):
    """A proposed file change awaiting review."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str


class OriginalFile(BaseModel):
    """Canonical content of a path at the moment a change was first proposed.

    ``content`` is None when the path did not exist yet.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: Optional[str] = None


class Checkpoint(BaseModel):
    """A named snapshot of the whole canonical file set."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    timestamp: datetime
    files: dict[str, str] = Field(default_factory=dict)
