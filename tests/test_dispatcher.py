import json

import httpx
import pytest

from parley.config import ProviderConfig
from parley.errors import (
    EmptyPrompt,
    MissingApiKey,
    ProtocolError,
    ProviderError,
    TransportError,
    UnknownProvider,
)
from parley.providers.dispatcher import ProviderDispatcher
from parley.sessions.schema import Message

MESSAGES = [Message.system("sys"), Message.user("hi")]

OPENAI_STREAM = (
    'data: {"choices":[{"delta":{"content":"He"},"finish_reason":null}]}\n\n'
    'data: {"choices":[{"delta":{"content":"llo"},"finish_reason":null}]}\n\n'
    'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
    "data: [DONE]\n\n"
)


class RecordingTransport(httpx.MockTransport):
    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


class BrokenStream(httpx.SyncByteStream):
    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks

    def __iter__(self):
        yield from self.chunks
        raise httpx.ReadError("connection reset by peer")


def openai_config(**kwargs) -> ProviderConfig:
    values = {"provider": "openai", "model": "gpt-4o", "api_key": "sk-test"}
    values.update(kwargs)
    return ProviderConfig(**values)


def test_unknown_provider_makes_no_request():
    transport = RecordingTransport(lambda request: httpx.Response(200, text=OPENAI_STREAM))
    dispatcher = ProviderDispatcher(transport=transport)

    with pytest.raises(UnknownProvider) as exc_info:
        dispatcher.stream(openai_config(provider="foo"), MESSAGES)

    assert transport.requests == []
    assert "foo" in str(exc_info.value)
    assert "anthropic" in str(exc_info.value)


def test_missing_key_makes_no_request():
    transport = RecordingTransport(lambda request: httpx.Response(200, text=OPENAI_STREAM))
    dispatcher = ProviderDispatcher(transport=transport)

    with pytest.raises(MissingApiKey):
        dispatcher.stream(openai_config(api_key=""), MESSAGES)
    assert transport.requests == []


def test_empty_messages_rejected():
    dispatcher = ProviderDispatcher(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(EmptyPrompt):
        dispatcher.stream(openai_config(), [])


def test_request_is_lazy():
    transport = RecordingTransport(lambda request: httpx.Response(200, text=OPENAI_STREAM))
    dispatcher = ProviderDispatcher(transport=transport)

    chunks = dispatcher.stream(openai_config(), MESSAGES)
    assert transport.requests == []

    assert [c.text for c in chunks] == ["He", "llo", ""]
    assert len(transport.requests) == 1


def test_request_carries_auth_and_body():
    transport = RecordingTransport(lambda request: httpx.Response(200, text=OPENAI_STREAM))
    dispatcher = ProviderDispatcher(transport=transport)

    list(dispatcher.stream(openai_config(), MESSAGES))

    request = transport.requests[0]
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["messages"][0] == {"role": "system", "content": "sys"}
    assert body["stream"] is True


def test_openrouter_model_id_not_split():
    transport = RecordingTransport(lambda request: httpx.Response(200, text=OPENAI_STREAM))
    dispatcher = ProviderDispatcher(transport=transport)
    config = ProviderConfig(provider="openrouter", model="anthropic/claude-3.5-sonnet", api_key="or")

    list(dispatcher.stream(config, MESSAGES))

    body = json.loads(transport.requests[0].content)
    assert body["model"] == "anthropic/claude-3.5-sonnet"
    assert transport.requests[0].url.path == "/api/v1/chat/completions"


def test_http_error_surfaces_upstream_message():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    dispatcher = ProviderDispatcher(transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderError) as exc_info:
        list(dispatcher.stream(openai_config(), MESSAGES))

    assert exc_info.value.status == 401
    assert exc_info.value.message == "Incorrect API key provided"
    assert "401" in str(exc_info.value)


def test_connection_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = ProviderDispatcher(transport=httpx.MockTransport(handler))

    with pytest.raises(TransportError):
        list(dispatcher.stream(openai_config(), MESSAGES))


def test_timeout_is_transport_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    dispatcher = ProviderDispatcher(transport=httpx.MockTransport(handler))

    with pytest.raises(TransportError, match="timed out"):
        list(dispatcher.stream(openai_config(), MESSAGES))


def test_mid_stream_failure_keeps_yielded_chunks():
    first = b'data: {"choices":[{"delta":{"content":"He"},"finish_reason":null}]}\n\n'

    def handler(request):
        return httpx.Response(200, stream=BrokenStream([first]))

    dispatcher = ProviderDispatcher(transport=httpx.MockTransport(handler))
    received: list[str] = []

    with pytest.raises(TransportError):
        for chunk in dispatcher.stream(openai_config(), MESSAGES):
            received.append(chunk.text)

    assert received == ["He"]


def test_malformed_frame_is_protocol_error():
    dispatcher = ProviderDispatcher(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, text="data: {oops\n\n"))
    )
    with pytest.raises(ProtocolError):
        list(dispatcher.stream(openai_config(), MESSAGES))


def test_ollama_ndjson_through_transport():
    body = "\n".join(
        [
            json.dumps({"message": {"content": "He"}, "done": False}),
            json.dumps({"message": {"content": "llo"}, "done": False}),
            json.dumps({"message": {"content": ""}, "done": True}),
        ]
    )
    transport = RecordingTransport(lambda request: httpx.Response(200, text=body))
    dispatcher = ProviderDispatcher(transport=transport)
    config = ProviderConfig(provider="ollama", model="llama3")

    chunks = list(dispatcher.stream(config, MESSAGES))

    assert [c.text for c in chunks] == ["He", "llo", ""]
    assert chunks[-1].is_final
    assert str(transport.requests[0].url) == "http://localhost:11434/api/chat"


def test_closing_stream_early_is_clean():
    dispatcher = ProviderDispatcher(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, text=OPENAI_STREAM))
    )
    chunks = dispatcher.stream(openai_config(), MESSAGES)
    assert next(chunks).text == "He"
    chunks.close()
    dispatcher.close()
