from __future__ import annotations

from parley.config import ProviderConfig
from parley.providers.openai import OpenAIAdapter

APP_TITLE = "parley"


class OpenRouterAdapter(OpenAIAdapter):
    """OpenAI-compatible SSE; model ids are ``org/model`` and pass through untouched."""

    name = "openrouter"
    default_base_url = "https://openrouter.ai"
    completions_path = "/api/v1/chat/completions"

    def headers(self, config: ProviderConfig) -> dict[str, str]:
        headers = super().headers(config)
        headers["X-Title"] = APP_TITLE
        return headers
