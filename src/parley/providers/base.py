from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from parley.config import ProviderConfig
from parley.errors import MissingApiKey, ProtocolError
from parley.sessions.schema import Message

logger = logging.getLogger(__name__)

ERROR_EXCERPT_CHARS = 500


@dataclass(frozen=True, slots=True)
class TokenChunk:
    text: str
    is_final: bool = False


@dataclass(frozen=True, slots=True)
class SSEEvent:
    event: str | None
    data: str


def iter_sse_events(lines: Iterable[str]) -> Iterator[SSEEvent]:
    """Group server-sent-event lines into events.

    An event ends at a blank line. Multiple ``data:`` lines are joined with
    newlines, comment lines (leading ``:``) are dropped, and a trailing event
    with no terminating blank line is still emitted at end of input.
    """
    event: str | None = None
    data: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield SSEEvent(event=event, data="\n".join(data))
            event, data = None, []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            if data:
                yield SSEEvent(event=event, data="\n".join(data))
                data = []
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield SSEEvent(event=event, data="\n".join(data))


def parse_json_frame(payload: str, provider: str) -> dict[str, Any]:
    try:
        frame = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"{provider}: malformed stream frame: {e}") from e
    if not isinstance(frame, dict):
        raise ProtocolError(f"{provider}: unexpected stream frame: {payload[:80]}")
    return frame


def frame_object(value: Any, field: str, provider: str) -> dict[str, Any]:
    """A nested frame field that must be a JSON object; missing means empty."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProtocolError(f"{provider}: expected an object for '{field}', got {type(value).__name__}")
    return value


def frame_text(value: Any, field: str, provider: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"{provider}: '{field}' is not a string")
    return value


def extract_error_message(body: str) -> str:
    """Best-effort upstream reason from an error response body."""
    text = body.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text[:ERROR_EXCERPT_CHARS] or "no response body"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return str(data["message"])
    return text[:ERROR_EXCERPT_CHARS]


class WireAdapter:
    """Translates one provider's streaming response into ``TokenChunk`` values.

    Subclasses describe the request (``url``, ``headers``, ``build_body``) and
    decode the response line by line in ``decode``. ``decode`` must yield
    exactly one chunk with ``is_final=True`` and then stop, or raise
    :class:`ProtocolError`.
    """

    name = "base"
    requires_api_key = True

    def check_credentials(self, config: ProviderConfig) -> None:
        if self.requires_api_key and not config.api_key:
            raise MissingApiKey(self.name)

    def url(self, config: ProviderConfig) -> str:
        raise NotImplementedError

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        raise NotImplementedError

    def build_body(self, config: ProviderConfig, messages: list[Message]) -> dict[str, Any]:
        raise NotImplementedError

    def decode(self, lines: Iterable[str]) -> Iterator[TokenChunk]:
        raise NotImplementedError

    def error_message(self, body: str) -> str:
        return extract_error_message(body)


def base_url(config: ProviderConfig, default: str) -> str:
    return (config.base_url or default).rstrip("/")


def chat_messages(messages: list[Message]) -> list[dict[str, str]]:
    return [m.to_api() for m in messages]
