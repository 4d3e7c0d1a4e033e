import pytest

from parley.sessions.manager import SessionStore

_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "OPENROUTER_API_KEY",
    "OLLAMA_API_KEY",
    "PARLEY_SESSIONS_DIR",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PARLEY_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("PARLEY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def sessions_dir(tmp_path):
    return tmp_path / "data" / "sessions"


@pytest.fixture
def store(sessions_dir):
    return SessionStore(sessions_dir)


@pytest.fixture
def fixed_ids(monkeypatch):
    """Make ``SessionStore.create`` hand out the given ids in order."""

    def _install(*ids: str) -> None:
        it = iter(ids)
        monkeypatch.setattr("parley.sessions.manager.generate_id", lambda: next(it))

    return _install
