"""Exception types raised by boltloop components."""

from typing import Optional


class BoltError(Exception):
    """Base class for boltloop errors."""


class TransportError(BoltError):
    """A model call failed (non-2xx response or network failure).

    Ends the episode; the objective can be retried.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class QuotaExceededError(TransportError):
    """The model endpoint refused the call because the usage quota is spent."""


class ToolExecutionError(BoltError):
    """A tool side effect failed. Always converted to text by the dispatcher."""


class SandboxError(ToolExecutionError):
    """The execution sandbox rejected or failed an operation."""


class WebError(ToolExecutionError):
    """The network proxy could not fetch or search."""


class CheckpointNotFoundError(BoltError, KeyError):
    """No checkpoint exists with the given id."""

    def __str__(self) -> str:
        return f"Checkpoint not found: {self.args[0]}" if self.args else "Checkpoint not found"
