from __future__ import annotations

from typing import Any, Iterable, Iterator

from parley.config import OLLAMA_DEFAULT_BASE_URL, ProviderConfig
from parley.errors import ProtocolError
from parley.providers.base import (
    TokenChunk,
    WireAdapter,
    base_url,
    chat_messages,
    frame_object,
    frame_text,
    parse_json_frame,
)
from parley.sessions.schema import Message


class OllamaAdapter(WireAdapter):
    """Newline-delimited JSON from ``/api/chat``; each object's ``done`` is ``is_final``."""

    name = "ollama"
    requires_api_key = False

    def url(self, config: ProviderConfig) -> str:
        return f"{base_url(config, OLLAMA_DEFAULT_BASE_URL)}/api/chat"

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/x-ndjson"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return headers

    def build_body(self, config: ProviderConfig, messages: list[Message]) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": chat_messages(messages),
            "stream": True,
            "options": {"num_predict": config.max_tokens},
        }

    def decode(self, lines: Iterable[str]) -> Iterator[TokenChunk]:
        for line in lines:
            if not line.strip():
                continue
            frame = parse_json_frame(line, self.name)
            if frame.get("error"):
                raise ProtocolError(f"ollama: stream error: {frame['error']}")

            done = frame.get("done")
            if not isinstance(done, bool):
                raise ProtocolError("ollama: stream frame without a boolean 'done'")
            message = frame_object(frame.get("message"), "message", self.name)
            text = frame_text(message.get("content"), "content", self.name)

            if done:
                yield TokenChunk(text=text, is_final=True)
                return
            if text:
                yield TokenChunk(text=text)

        raise ProtocolError("ollama: stream ended before done=true")
