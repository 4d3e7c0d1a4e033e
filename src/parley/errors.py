SUPPORTED_PROVIDERS = ("anthropic", "openai", "openrouter", "ollama")


class ParleyError(Exception):
    pass


class ConfigError(ParleyError):
    pass


class StoreError(ParleyError):
    pass


class UnknownProvider(ParleyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Unknown provider: {name}. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )


class MissingApiKey(ParleyError):
    def __init__(self, provider: str):
        self.provider = provider
        env_var = f"{provider.upper()}_API_KEY"
        super().__init__(
            f"No API key found for {provider}. Set {env_var} or configure it in config.toml"
        )


class TransportError(ParleyError):
    pass


class ProviderError(ParleyError):
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"provider returned HTTP {status}: {message}")


class ProtocolError(ParleyError):
    pass


class SessionNotFound(ParleyError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No session found matching '{session_id}'")


class Ambiguous(ParleyError):
    """Prefix matched several sessions.

    ``candidates`` holds ``(short_id, title)`` pairs for display; the caller
    prints them before reporting the failure.
    """

    def __init__(self, prefix: str, candidates: list[tuple[str, str]]):
        self.prefix = prefix
        self.candidates = candidates
        super().__init__(
            f"Multiple sessions match '{prefix}'. Provide more characters to disambiguate"
        )


class EmptyPrompt(ParleyError):
    def __init__(self):
        super().__init__("Prompt is empty")


def describe_candidates(candidates: list[tuple[str, str]]) -> list[str]:
    return [f"  {sid} {title or '(untitled)'}" for sid, title in candidates]
