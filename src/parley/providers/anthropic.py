from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator

from parley.config import ProviderConfig
from parley.errors import ProtocolError
from parley.providers.base import (
    TokenChunk,
    WireAdapter,
    base_url,
    frame_object,
    frame_text,
    iter_sse_events,
    parse_json_frame,
)
from parley.sessions.schema import Message, Role

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_BASE_URL = "https://api.anthropic.com"

logger = logging.getLogger(__name__)


class AnthropicAdapter(WireAdapter):
    name = "anthropic"

    def url(self, config: ProviderConfig) -> str:
        return f"{base_url(config, DEFAULT_BASE_URL)}/v1/messages"

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "x-api-key": config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }

    def build_body(self, config: ProviderConfig, messages: list[Message]) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == Role.SYSTEM)

        # The Messages API wants alternating turns; fold repeats together.
        turns: list[dict[str, str]] = []
        for message in messages:
            if message.role == Role.SYSTEM:
                continue
            role = message.role.value
            if turns and turns[-1]["role"] == role:
                turns[-1]["content"] += "\n\n" + message.content
            else:
                turns.append({"role": role, "content": message.content})

        body: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "messages": turns,
            "stream": True,
        }
        if system:
            body["system"] = system
        return body

    def decode(self, lines: Iterable[str]) -> Iterator[TokenChunk]:
        for sse in iter_sse_events(lines):
            frame = parse_json_frame(sse.data, self.name)
            kind = sse.event or frame.get("type")

            if kind == "content_block_delta":
                delta = frame_object(frame.get("delta"), "delta", self.name)
                if delta.get("type") == "text_delta":
                    if "text" not in delta:
                        raise ProtocolError("anthropic: text_delta without text")
                    text = frame_text(delta["text"], "text", self.name)
                    if text:
                        yield TokenChunk(text=text)
                continue
            if kind == "message_stop":
                yield TokenChunk(text="", is_final=True)
                return
            if kind == "error":
                error = frame.get("error") or {}
                message = error.get("message") if isinstance(error, dict) else None
                raise ProtocolError(f"anthropic: stream error: {message or sse.data}")
            # message_start, content_block_start/stop, message_delta, ping
            logger.debug(f"anthropic: skipping {kind} event")

        raise ProtocolError("anthropic: stream ended before message_stop")
