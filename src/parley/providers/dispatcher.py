from __future__ import annotations

import logging
from typing import Any, Iterator, Sequence

import httpx

from parley.config import DEFAULT_TIMEOUT, ProviderConfig
from parley.errors import EmptyPrompt, ProviderError, TransportError, UnknownProvider
from parley.providers.anthropic import AnthropicAdapter
from parley.providers.base import TokenChunk, WireAdapter
from parley.providers.ollama import OllamaAdapter
from parley.providers.openai import OpenAIAdapter
from parley.providers.openrouter import OpenRouterAdapter
from parley.sessions.schema import Message

logger = logging.getLogger(__name__)

ADAPTERS: dict[str, type[WireAdapter]] = {
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "openrouter": OpenRouterAdapter,
    "ollama": OllamaAdapter,
}


class ProviderDispatcher:
    """One streaming call for every provider.

    ``stream`` runs every pre-flight check (provider name, credentials,
    request body) before returning, so those failures never touch the
    network. The returned iterator performs the HTTP request lazily and
    yields chunks as soon as the adapter can decode them.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        adapters: dict[str, type[WireAdapter]] | None = None,
    ):
        self.transport = transport
        self.adapters = dict(adapters or ADAPTERS)
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(transport=self.transport, timeout=DEFAULT_TIMEOUT)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "ProviderDispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def adapter_for(self, provider: str) -> WireAdapter:
        adapter_cls = self.adapters.get(provider)
        if adapter_cls is None:
            raise UnknownProvider(provider)
        return adapter_cls()

    def stream(self, config: ProviderConfig, messages: Sequence[Message]) -> Iterator[TokenChunk]:
        adapter = self.adapter_for(config.provider)
        adapter.check_credentials(config)
        if not messages:
            raise EmptyPrompt()

        url = adapter.url(config)
        headers = adapter.headers(config)
        body = adapter.build_body(config, list(messages))
        logger.debug(f"Dispatching {len(messages)} messages to {adapter.name} ({config.model}) at {url}")
        return self._stream(adapter, url, headers, body, config.timeout)

    def _stream(
        self,
        adapter: WireAdapter,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        timeout: float,
    ) -> Iterator[TokenChunk]:
        try:
            with self.client.stream("POST", url, headers=headers, json=body, timeout=timeout) as response:
                if not response.is_success:
                    text = response.read().decode("utf-8", errors="replace")
                    message = adapter.error_message(text)
                    logger.debug(f"{adapter.name} returned HTTP {response.status_code}: {message}")
                    raise ProviderError(response.status_code, message)
                yield from adapter.decode(response.iter_lines())
        except httpx.TimeoutException as e:
            raise TransportError(f"{adapter.name}: request timed out ({e})") from e
        except httpx.RequestError as e:
            raise TransportError(f"{adapter.name}: connection failed ({e})") from e
