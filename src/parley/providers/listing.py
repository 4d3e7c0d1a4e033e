import logging

import httpx

from common import llm
from parley.config import DEFAULT_MODELS, OLLAMA_DEFAULT_BASE_URL, AppConfig
from parley.errors import ProtocolError, ProviderError, TransportError

logger = logging.getLogger(__name__)

CATALOGUE_LIMIT = 15


def list_ollama_models(client: httpx.Client, base_url: str | None) -> list[str]:
    url = f"{(base_url or OLLAMA_DEFAULT_BASE_URL).rstrip('/')}/api/tags"
    try:
        response = client.get(url, timeout=5.0)
    except httpx.RequestError as e:
        raise TransportError(f"ollama: {e}") from e
    if not response.is_success:
        raise ProviderError(response.status_code, response.text[:200])
    data = response.json()
    if not isinstance(data, dict):
        raise ProtocolError("ollama: /api/tags did not return an object")
    models = data.get("models") or []
    if not isinstance(models, list):
        raise ProtocolError("ollama: /api/tags did not return a model list")
    return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]


def list_models(config: AppConfig, client: httpx.Client) -> dict[str, list[str] | None]:
    """Known models per provider. ``None`` means the provider could not be queried."""
    listing: dict[str, list[str] | None] = {}
    for provider in ("anthropic", "openai", "openrouter"):
        models = llm.known_models(provider, limit=CATALOGUE_LIMIT)
        default = DEFAULT_MODELS[provider]
        if default not in models:
            models.insert(0, default)
        listing[provider] = models

    try:
        listing["ollama"] = list_ollama_models(client, config.base_url("ollama"))
    except (TransportError, ProviderError, ProtocolError, ValueError) as e:
        logger.debug(f"Ollama model listing failed: {e}")
        listing["ollama"] = None
    return listing
