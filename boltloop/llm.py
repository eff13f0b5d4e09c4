"""Model endpoint: streams text deltas from Anthropic Claude models."""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Generator, Literal, Optional, Protocol

import anthropic
import httpx
from anthropic import Anthropic

from boltloop.constants import QUOTA_MARKERS, SUPPORTED_MODELS
from boltloop.errors import QuotaExceededError, TransportError

QUOTA_STATUS_CODES = (403, 429)


class CancelToken:
    """Cooperative abort flag, checked after every chunk and before every tool call.

    Callbacks registered with add_callback run on the cancelling thread, so a
    model call blocked on the network can tear down its connection at once.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run callback on cancel, or right away if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ModelClient(Protocol):
    """Anything that turns a message list into a stream of text deltas.

    The returned generator is closed by the agent loop once it is done with
    it. A model that blocks on I/O should register a callback on the cancel
    token that unblocks the pending read.
    """

    def stream(
        self,
        messages: list[dict[str, Any]],
        cancel: Optional[CancelToken] = None,
    ) -> Generator[str, None, None]: ...


@dataclass
class ModelDescriptor:
    """Descriptor for an LLM model."""

    provider: Literal["anthropic"]
    name: str
    max_output_tokens: int
    temperature: float = 0.7


def is_quota_error(status_code: Optional[int], body: str) -> bool:
    """Whether a failed response means the usage quota is spent."""
    if status_code not in QUOTA_STATUS_CODES:
        return False
    lowered = (body or "").lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


def to_transport_error(status_code: Optional[int], body: str, message: str) -> TransportError:
    """Classify a failed model call."""
    if is_quota_error(status_code, body):
        return QuotaExceededError(message, status_code=status_code, body=body)
    return TransportError(message, status_code=status_code, body=body)


class LLM:
    """Anthropic Claude LLM interface."""

    def __init__(self, descriptor: ModelDescriptor, api_key: str, client: Optional[Anthropic] = None):
        """Initialize LLM client.

        Args:
            descriptor: Model descriptor
            api_key: Anthropic API key
            client: Optional preconfigured Anthropic client
        """
        self.descriptor = descriptor
        self.api_key = api_key

        if descriptor.provider != "anthropic":
            raise ValueError(f"Only Anthropic models are supported. Got: {descriptor.provider}")

        self.client = client or Anthropic(api_key=api_key)

    def stream(
        self,
        messages: list[dict[str, Any]],
        cancel: Optional[CancelToken] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Generator[str, None, None]:
        """Generate a streaming completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            cancel: Optional token whose cancellation closes the HTTP stream
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Yields:
            Text chunks as they arrive

        Raises:
            QuotaExceededError: If the endpoint reports an exhausted quota
            TransportError: On any other non-success response or network failure,
                including a connection dropped mid-stream
        """
        temp = temperature if temperature is not None else self.descriptor.temperature
        max_tok = max_tokens if max_tokens is not None else self.descriptor.max_output_tokens

        try:
            yield from self._stream_anthropic(messages, temp, max_tok, cancel)
        except anthropic.APIStatusError as e:
            body = e.response.text if e.response is not None else ""
            raise to_transport_error(e.status_code, body, e.message) from e
        except anthropic.APIConnectionError as e:
            raise TransportError(f"Connection to model endpoint failed: {e}") from e
        except anthropic.APIError as e:
            raise TransportError(f"Model stream failed: {e}") from e
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise TransportError(f"Model stream interrupted: {e}") from e

    def _stream_anthropic(
        self,
        messages: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
        cancel: Optional[CancelToken] = None,
    ) -> Generator[str, None, None]:
        """Stream using Anthropic API."""
        system, chat_messages = to_anthropic_messages(messages)

        kwargs: dict[str, Any] = {
            "model": self.descriptor.name,
            "messages": chat_messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if system:
            kwargs["system"] = system

        # Leaving the context manager closes the HTTP response, so closing
        # this generator tears down the network leg.
        with self.client.messages.stream(**kwargs) as stream:
            if cancel is None:
                yield from stream.text_stream
                return

            cancel.add_callback(stream.close)
            try:
                for text in stream.text_stream:
                    yield text
            finally:
                cancel.remove_callback(stream.close)

    @classmethod
    def parse_model_string(cls, model_str: str) -> ModelDescriptor:
        """Parse model string into ModelDescriptor.

        Args:
            model_str: Model string (e.g., "anthropic:claude-sonnet-4-5")

        Returns:
            ModelDescriptor

        Raises:
            ValueError: If model string is invalid
        """
        if model_str not in SUPPORTED_MODELS:
            raise ValueError(
                f"Unsupported model: {model_str}. "
                f"Supported: {', '.join(SUPPORTED_MODELS.keys())}"
            )

        model_config = SUPPORTED_MODELS[model_str]
        return ModelDescriptor(
            provider=model_config["provider"],
            name=model_config["name"],
            max_output_tokens=model_config["max_output_tokens"],
        )

    @classmethod
    def list_models(cls) -> list[str]:
        """List all supported model strings.

        Returns:
            List of model strings
        """
        return list(SUPPORTED_MODELS.keys())


def to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, str]]]:
    """Split a role/content list into Anthropic's system text and chat turns.

    Leading system messages become the system prompt. System messages later
    in the history (tool results, corrections) are sent as user turns, and
    consecutive turns with the same role are merged so roles alternate.

    Returns:
        Tuple of (system text, chat messages)
    """
    system_parts: list[str] = []
    chat: list[dict[str, str]] = []

    for m in messages:
        content = m.get("content") or ""
        if not content.strip():
            continue

        role = m["role"]
        if role == "system":
            if not chat:
                system_parts.append(content)
                continue
            role = "user"
            content = f"[System]\n{content}"

        if chat and chat[-1]["role"] == role:
            chat[-1] = {"role": role, "content": chat[-1]["content"] + "\n\n" + content}
        else:
            chat.append({"role": role, "content": content})

    return "\n\n".join(system_parts), chat
