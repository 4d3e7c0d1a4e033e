import warnings

import litellm

warnings.filterwarnings("ignore", message="Pydantic serializer warnings")

# parley provider name -> litellm provider key
CATALOGUE_PROVIDERS = {
    "anthropic": "anthropic",
    "openai": "openai",
    "openrouter": "openrouter",
}

_OPENAI_CHAT_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")


def known_models(provider: str, limit: int | None = None) -> list[str]:
    """Model ids litellm knows for ``provider``, without litellm's routing prefix."""
    key = CATALOGUE_PROVIDERS.get(provider)
    if key is None:
        return []
    try:
        raw = litellm.models_by_provider.get(key, [])
    except Exception:
        return []

    prefix = f"{key}/"
    models = set()
    for name in raw:
        name = str(name)
        if name.startswith(prefix):
            name = name[len(prefix):]
        if provider == "openai" and not name.startswith(_OPENAI_CHAT_PREFIXES):
            continue
        models.add(name)

    ordered = sorted(models)
    if limit is not None:
        ordered = ordered[:limit]
    return ordered
