"""Tests for the model endpoint wrapper."""

import json

import anthropic
import httpx
import pytest

from boltloop.errors import QuotaExceededError, TransportError
from boltloop.llm import LLM, CancelToken, is_quota_error, to_anthropic_messages, to_transport_error

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class FakeStream:
    def __init__(self, chunks):
        self.text_stream = iter(chunks)
        self.exited = False
        self.closed = False

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.exited = True


class FakeMessages:
    def __init__(self, outcome):
        self.outcome = outcome
        self.kwargs = None
        self.stream_obj = None

    def stream(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.outcome, Exception):
            raise self.outcome
        self.stream_obj = FakeStream(self.outcome)
        return self.stream_obj


class FakeClient:
    def __init__(self, outcome):
        self.messages = FakeMessages(outcome)


def make_llm(outcome):
    return LLM(LLM.parse_model_string("anthropic:claude-sonnet-4-5"), "test_key", client=FakeClient(outcome))


def status_error(status, body):
    response = httpx.Response(status, text=body, request=REQUEST)
    return anthropic.APIStatusError(f"Error code: {status}", response=response, body=None)


@pytest.mark.parametrize("status,body,expected", [
    (429, '{"error": {"message": "You have exceeded your usage limit"}}', True),
    (403, "Quota exhausted for this key", True),
    (429, "Too many requests, slow down", False),
    (500, "quota", False),
    (None, "quota", False),
])
def test_is_quota_error(status, body, expected):
    assert is_quota_error(status, body) is expected


def test_to_transport_error():
    assert isinstance(to_transport_error(429, "quota reached", "x"), QuotaExceededError)

    error = to_transport_error(502, "bad gateway", "Upstream failed")
    assert type(error) is TransportError
    assert error.status_code == 502
    assert str(error) == "Upstream failed"


def test_stream_yields_text():
    llm = make_llm(["Hel", "lo"])

    chunks = list(llm.stream([
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hi"},
    ]))

    assert chunks == ["Hel", "lo"]
    kwargs = llm.client.messages.kwargs
    assert kwargs["system"] == "Be brief."
    assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]
    assert kwargs["model"] == "claude-sonnet-4-5-20250929"
    assert llm.client.messages.stream_obj.exited


def test_closing_stream_exits_context():
    """Test that closing the generator releases the HTTP stream."""
    llm = make_llm(["a", "b", "c"])

    stream = llm.stream([{"role": "user", "content": "Hi"}])
    assert next(stream) == "a"
    stream.close()

    assert llm.client.messages.stream_obj.exited


def test_quota_response_raises_quota_error():
    llm = make_llm(status_error(429, '{"error": {"message": "Your credit balance is too low"}}'))

    with pytest.raises(QuotaExceededError) as excinfo:
        list(llm.stream([{"role": "user", "content": "Hi"}]))

    assert excinfo.value.status_code == 429


def test_other_status_raises_transport_error():
    llm = make_llm(status_error(529, "overloaded"))

    with pytest.raises(TransportError) as excinfo:
        list(llm.stream([{"role": "user", "content": "Hi"}]))

    assert not isinstance(excinfo.value, QuotaExceededError)
    assert excinfo.value.status_code == 529


def test_connection_error_raises_transport_error():
    llm = make_llm(anthropic.APIConnectionError(request=REQUEST))

    with pytest.raises(TransportError, match="Connection to model endpoint failed"):
        list(llm.stream([{"role": "user", "content": "Hi"}]))


def sse(event, data):
    return f"event: {event}\ndata: {json.dumps(data)}\n\n".encode()


class DroppedStream(httpx.SyncByteStream):
    """Event stream whose connection drops after the first text delta."""

    def __iter__(self):
        yield sse("message_start", {
            "type": "message_start",
            "message": {
                "id": "msg_1",
                "type": "message",
                "role": "assistant",
                "content": [],
                "model": "claude-sonnet-4-5-20250929",
                "stop_reason": None,
                "stop_sequence": None,
                "usage": {"input_tokens": 1, "output_tokens": 0},
            },
        })
        yield sse("content_block_start", {
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "text", "text": ""},
        })
        yield sse("content_block_delta", {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Hel"},
        })
        raise httpx.ReadError("Connection reset by peer")


def test_connection_dropped_mid_stream_raises_transport_error():
    def handler(request):
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=DroppedStream())

    client = anthropic.Anthropic(
        api_key="test_key",
        max_retries=0,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    llm = LLM(LLM.parse_model_string("anthropic:claude-sonnet-4-5"), "test_key", client=client)

    chunks = []
    with pytest.raises(TransportError):
        for chunk in llm.stream([{"role": "user", "content": "Hi"}]):
            chunks.append(chunk)

    assert chunks == ["Hel"]


def test_cancel_closes_http_stream():
    """Test that cancelling mid-call closes the stream from the cancelling side."""
    llm = make_llm(["a", "b"])
    cancel = CancelToken()

    stream = llm.stream([{"role": "user", "content": "Hi"}], cancel=cancel)
    assert next(stream) == "a"
    cancel.cancel()

    assert llm.client.messages.stream_obj.closed
    stream.close()


def test_to_anthropic_messages():
    """Test system extraction, mid-history system turns and merging."""
    system, chat = to_anthropic_messages([
        {"role": "system", "content": "Directives"},
        {"role": "system", "content": "Environment"},
        {"role": "user", "content": "Build it"},
        {"role": "assistant", "content": ""},
        {"role": "assistant", "content": "Calling a tool"},
        {"role": "system", "content": "TOOL RESULTS: ok"},
        {"role": "user", "content": "Thanks"},
    ])

    assert system == "Directives\n\nEnvironment"
    assert chat == [
        {"role": "user", "content": "Build it"},
        {"role": "assistant", "content": "Calling a tool"},
        {"role": "user", "content": "[System]\nTOOL RESULTS: ok\n\nThanks"},
    ]


def test_parse_model_string():
    descriptor = LLM.parse_model_string("anthropic:claude-haiku-4-5")

    assert descriptor.provider == "anthropic"
    assert descriptor.max_output_tokens == 8192

    with pytest.raises(ValueError, match="Unsupported model"):
        LLM.parse_model_string("openai:gpt-4")


def test_list_models():
    assert "anthropic:claude-sonnet-4-5" in LLM.list_models()
