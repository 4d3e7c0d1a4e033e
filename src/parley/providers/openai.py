from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator

from parley.config import ProviderConfig
from parley.errors import ProtocolError
from parley.providers.base import (
    TokenChunk,
    WireAdapter,
    base_url,
    chat_messages,
    frame_object,
    frame_text,
    iter_sse_events,
    parse_json_frame,
)
from parley.sessions.schema import Message

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class OpenAIAdapter(WireAdapter):
    name = "openai"
    default_base_url = "https://api.openai.com"
    completions_path = "/v1/chat/completions"

    def url(self, config: ProviderConfig) -> str:
        return f"{base_url(config, self.default_base_url)}{self.completions_path}"

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def build_body(self, config: ProviderConfig, messages: list[Message]) -> dict[str, Any]:
        return {
            "model": config.model,
            "messages": chat_messages(messages),
            "max_tokens": config.max_tokens,
            "stream": True,
        }

    def decode(self, lines: Iterable[str]) -> Iterator[TokenChunk]:
        finished = False
        for sse in iter_sse_events(lines):
            if sse.data.strip() == DONE_SENTINEL:
                yield TokenChunk(text="", is_final=True)
                return

            frame = parse_json_frame(sse.data, self.name)
            error = frame.get("error")
            if error:
                message = error.get("message") if isinstance(error, dict) else error
                raise ProtocolError(f"{self.name}: stream error: {message}")

            choices = frame.get("choices")
            if not isinstance(choices, list):
                raise ProtocolError(f"{self.name}: stream frame without choices")
            if not choices:
                # usage-only frame
                continue

            choice = choices[0]
            if not isinstance(choice, dict):
                raise ProtocolError(f"{self.name}: malformed choice in stream frame")
            delta = frame_object(choice.get("delta"), "delta", self.name)
            text = frame_text(delta.get("content"), "content", self.name)
            if text:
                yield TokenChunk(text=text)
            if choice.get("finish_reason"):
                logger.debug(f"{self.name}: finish_reason={choice['finish_reason']}")
                finished = True

        # Some compatible servers close without the [DONE] sentinel.
        if finished:
            yield TokenChunk(text="", is_final=True)
            return
        raise ProtocolError(f"{self.name}: stream ended before [DONE]")
