import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:  # Python 3.10
    import tomli as tomllib

from parley.errors import SUPPORTED_PROVIDERS, ConfigError, UnknownProvider

logger = logging.getLogger(__name__)

APP_NAME = "parley"
CONFIG_FILENAME = "config.toml"
PROJECT_CONFIG_FILENAME = "parley.toml"

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT = 120.0
DEFAULT_SYSTEM_PROMPT = (
    "You are parley, a helpful AI coding assistant in the terminal. "
    "Be concise. Use code blocks with language tags when showing code."
)
OLLAMA_DEFAULT_BASE_URL = "http://localhost:11434"

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5",
    "openai": "gpt-4o",
    "openrouter": "arcee-ai/trinity-large-preview:free",
    "ollama": "llama3",
}

DEFAULT_BASE_URLS = {
    "anthropic": "https://api.anthropic.com",
    "openai": "https://api.openai.com",
    "openrouter": "https://openrouter.ai",
    "ollama": OLLAMA_DEFAULT_BASE_URL,
}

DEFAULT_CONFIG_TOML = """\
default_provider = "anthropic"

[provider.anthropic]
api_key = "{env:ANTHROPIC_API_KEY}"

[provider.openai]
api_key = "{env:OPENAI_API_KEY}"

[provider.openrouter]
api_key = "{env:OPENROUTER_API_KEY}"

[provider.ollama]
base_url = "http://localhost:11434"
"""

_ENV_PATTERN = re.compile(r"\{env:([^}]*)\}")


def get_optional_env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    return value if value else default


def config_dir() -> Path:
    override = get_optional_env("PARLEY_CONFIG_DIR")
    if override:
        return Path(override)
    base = get_optional_env("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


def data_dir() -> Path:
    override = get_optional_env("PARLEY_DATA_DIR")
    if override:
        return Path(override)
    base = get_optional_env("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


def config_path() -> Path:
    return config_dir() / CONFIG_FILENAME


def substitute_env(value: str) -> str:
    """Replace every ``{env:VAR}`` with the variable's value ("" when unset)."""
    return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)


@dataclass
class ProviderEntry:
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None


@dataclass
class ProviderConfig:
    """Everything the dispatcher needs for one streaming call."""

    provider: str
    model: str
    api_key: str | None = None
    base_url: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class ModelSelection:
    provider: str
    model: str


@dataclass
class AppConfig:
    model: str | None = None
    default_provider: str | None = None
    system_prompt: str | None = DEFAULT_SYSTEM_PROMPT
    sessions_dir: str | None = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    request_timeout: float = DEFAULT_TIMEOUT
    providers: dict[str, ProviderEntry] = field(default_factory=dict)
    source_paths: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        providers: dict[str, ProviderEntry] = {}
        raw_providers = data.get("provider") or {}
        if not isinstance(raw_providers, dict):
            raise ConfigError("[provider] must be a table")
        for name, entry in raw_providers.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"[provider.{name}] must be a table")
            providers[name] = ProviderEntry(
                api_key=_opt_str(entry, "api_key"),
                base_url=_opt_str(entry, "base_url"),
                model=_opt_str(entry, "model"),
            )

        config = cls(
            model=_opt_str(data, "model"),
            default_provider=_opt_str(data, "default_provider"),
            sessions_dir=_opt_str(data, "sessions_dir"),
            providers=providers,
        )
        if "system_prompt" in data:
            config.system_prompt = _opt_str(data, "system_prompt")
        if "max_tokens" in data:
            config.max_tokens = _positive_int(data, "max_tokens")
        if "request_timeout" in data:
            try:
                config.request_timeout = float(data["request_timeout"])
            except (TypeError, ValueError) as e:
                raise ConfigError(f"request_timeout must be a number: {e}") from e
        return config

    def resolve_substitutions(self) -> None:
        if self.model:
            self.model = substitute_env(self.model)
        if self.system_prompt:
            self.system_prompt = substitute_env(self.system_prompt)
        if self.default_provider:
            self.default_provider = substitute_env(self.default_provider)
        for entry in self.providers.values():
            if entry.api_key is not None:
                entry.api_key = substitute_env(entry.api_key)
            if entry.base_url is not None:
                entry.base_url = substitute_env(entry.base_url)

    def provider_entry(self, provider: str) -> ProviderEntry:
        return self.providers.get(provider) or ProviderEntry()

    def resolve_api_key(self, provider: str) -> str | None:
        """Environment variable first, then the config file. Empty means missing."""
        env_key = get_optional_env(f"{provider.upper()}_API_KEY")
        if env_key:
            return env_key
        return self.provider_entry(provider).api_key or None

    def base_url(self, provider: str) -> str | None:
        entry = self.provider_entry(provider)
        return entry.base_url or DEFAULT_BASE_URLS.get(provider)

    def resolve_sessions_dir(self) -> Path:
        override = get_optional_env("PARLEY_SESSIONS_DIR")
        if override:
            return Path(override)
        if self.sessions_dir:
            return Path(self.sessions_dir).expanduser()
        return data_dir() / "sessions"

    def provider_config(self, selection: ModelSelection) -> ProviderConfig:
        return ProviderConfig(
            provider=selection.provider,
            model=selection.model,
            api_key=self.resolve_api_key(selection.provider),
            base_url=self.base_url(selection.provider),
            max_tokens=self.max_tokens,
            timeout=self.request_timeout,
        )

    def to_display_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "default_provider": self.default_provider,
            "system_prompt": self.system_prompt,
            "sessions_dir": str(self.resolve_sessions_dir()),
            "max_tokens": self.max_tokens,
            "request_timeout": self.request_timeout,
            "provider": {
                name: {
                    "api_key": _mask(entry.api_key),
                    "base_url": entry.base_url,
                    "model": entry.model,
                }
                for name, entry in sorted(self.providers.items())
            },
        }


def _opt_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _positive_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigError(f"{key} must be a positive integer")
    return value


def _mask(secret: str | None) -> str | None:
    if not secret:
        return secret
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"


def read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse config at {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config from {path}: {e}") from e


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_project_config(start: Path) -> Path | None:
    """Walk up from ``start`` until a project file, a git root or ``/``."""
    current = start.resolve()
    while True:
        candidate = current / PROJECT_CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if (current / ".git").exists() or current.parent == current:
            return None
        current = current.parent


def ensure_global_config(path: Path) -> None:
    if path.exists():
        return
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DEFAULT_CONFIG_TOML, encoding="utf-8")
        logger.info(f"Wrote default config to {path}")
    except OSError as e:
        logger.warning(f"Could not write default config to {path}: {e}")


def load_config(cwd: str | Path | None = None, create_default: bool = True) -> AppConfig:
    global_path = config_path()
    if create_default:
        ensure_global_config(global_path)

    data: dict[str, Any] = {}
    sources: list[str] = []
    if global_path.is_file():
        data = read_toml(global_path)
        sources.append(str(global_path))

    project_path = find_project_config(Path(cwd) if cwd else Path.cwd())
    if project_path is not None:
        data = merge_dicts(data, read_toml(project_path))
        sources.append(str(project_path))

    config = AppConfig.from_dict(data)
    config.source_paths = sources
    config.resolve_substitutions()
    logger.debug(f"Loaded config from {sources or 'defaults'}")
    return config


def validate_provider(name: str) -> str:
    normalized = name.strip().lower()
    if normalized not in SUPPORTED_PROVIDERS:
        raise UnknownProvider(name)
    return normalized


def resolve_model(
    cli_provider: str | None,
    cli_model: str | None,
    config: AppConfig,
) -> ModelSelection:
    """Pick the provider and model for this run.

    Priority is CLI flags, then config, then built-in defaults. A model of the
    form ``provider/model`` selects both, but only when no provider was given
    on the command line; with an explicit provider the slash stays part of the
    model id (OpenRouter ids look like ``org/model``).
    """
    if cli_provider is None and cli_model and "/" in cli_model:
        prov, model = cli_model.split("/", 1)
        return ModelSelection(provider=validate_provider(prov), model=model)

    if cli_provider is None and config.default_provider is None and config.model:
        prefix, sep, rest = config.model.partition("/")
        if sep and prefix.lower() in SUPPORTED_PROVIDERS and not cli_model:
            return ModelSelection(provider=prefix.lower(), model=rest)

    provider = validate_provider(cli_provider or config.default_provider or DEFAULT_PROVIDER)
    model = (
        cli_model
        or config.provider_entry(provider).model
        or config.model
        or DEFAULT_MODELS[provider]
    )
    return ModelSelection(provider=provider, model=model)
