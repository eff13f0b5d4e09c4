"""Conversation history owned by a session."""

import threading
from typing import Iterable, Optional

from boltloop.models import Message, Role


class Conversation:
    """Ordered chat history.

    Messages are immutable. The assistant message being streamed is replaced
    wholesale on every chunk through ``replace``.
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._lock = threading.Lock()
        self._messages: list[Message] = list(messages or [])

    @property
    def messages(self) -> list[Message]:
        with self._lock:
            return list(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def add(self, role: Role, content: str, checkpoint_ref: Optional[str] = None) -> int:
        """Append a message.

        Args:
            role: Message role (user, assistant, system)
            content: Message content
            checkpoint_ref: Optional checkpoint taken before this message

        Returns:
            Index of the new message
        """
        with self._lock:
            self._messages.append(Message(role=role, content=content, checkpoint_ref=checkpoint_ref))
            return len(self._messages) - 1

    def replace(self, index: int, content: str) -> Message:
        """Swap in a new version of a message with different content."""
        with self._lock:
            message = self._messages[index].model_copy(update={"content": content})
            self._messages[index] = message
            return message

    def last_user_index(self) -> Optional[int]:
        with self._lock:
            for index in range(len(self._messages) - 1, -1, -1):
                if self._messages[index].role == "user":
                    return index
            return None

    def last_user_message(self) -> Optional[Message]:
        index = self.last_user_index()
        return None if index is None else self.messages[index]

    def truncate(self, length: int) -> None:
        """Drop every message after the first ``length`` ones."""
        with self._lock:
            del self._messages[length:]

    def to_llm(self) -> list[dict[str, str]]:
        """Convert to LLM message format.

        Returns:
            List of message dictionaries
        """
        with self._lock:
            return [m.to_llm() for m in self._messages]

    def clear(self) -> None:
        with self._lock:
            self._messages = []
