from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from common.events import EventEmitter
from parley.config import (
    AppConfig,
    DEFAULT_SYSTEM_PROMPT,
    ModelSelection,
    config_path,
    load_config,
    resolve_model,
)
from parley.errors import (
    SUPPORTED_PROVIDERS,
    Ambiguous,
    EmptyPrompt,
    ParleyError,
    describe_candidates,
)
from parley.format import UNTITLED, format_session_table
from parley.providers.dispatcher import ProviderDispatcher
from parley.providers.listing import list_models
from parley.runtime.driver import ConversationDriver
from parley.runtime.repl import ParleyREPL, render_event
from parley.sessions.manager import SessionStore
from parley.sessions.resolver import resolve_session
from parley.sessions.schema import Message

logger = logging.getLogger(__name__)


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(verbose: bool = False, quiet: bool = False, log_format: str = "text") -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_format == "json":
        handlers[0].setFormatter(JsonFormatter())
        logging.basicConfig(level=level, handlers=handlers)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _add_model_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-p", "--provider", default=None, help="anthropic, openai, openrouter or ollama")
    parser.add_argument("-m", "--model", default=None, help="Model id, or provider/model")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parley", description="parley - multi-provider chat in the terminal")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    parser.add_argument("--log-format", default="text", choices=["text", "json"])
    subparsers = parser.add_subparsers(dest="command", required=False)

    chat = subparsers.add_parser("chat", help="Start an interactive chat (default)")
    chat.add_argument("-s", "--session", default=None, help="Resume a session by id or prefix")
    _add_model_args(chat)

    ask = subparsers.add_parser("ask", help="One-shot question, not saved")
    ask.add_argument("prompt", nargs="+")
    _add_model_args(ask)

    subparsers.add_parser("models", help="List known models per provider")

    config = subparsers.add_parser("config", help="Inspect configuration")
    config_sub = config.add_subparsers(dest="config_cmd", required=False)
    config_sub.add_parser("show", help="Print the effective configuration")

    session = subparsers.add_parser("session", help="Manage saved sessions")
    session_sub = session.add_subparsers(dest="session_cmd", required=False)

    session_new = session_sub.add_parser("new", help="Start a chat in a new session")
    _add_model_args(session_new)

    session_sub.add_parser("list", help="List sessions, most recent first")

    session_resume = session_sub.add_parser("resume", help="Resume a session")
    session_resume.add_argument("session_id")
    _add_model_args(session_resume)

    session_delete = session_sub.add_parser("delete", help="Delete a session")
    session_delete.add_argument("session_id")

    session_sub.add_parser("repair", help="Rebuild the session index from the message logs")
    session_sub.add_parser("check", help="Report index/log mismatches")

    return parser


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.quiet, args.log_format)

    cmd = args.command or "chat"
    try:
        config = load_config()
        if cmd == "chat":
            return _cmd_chat(config, args)
        if cmd == "ask":
            return _cmd_ask(config, args)
        if cmd == "models":
            return _cmd_models(config)
        if cmd == "config":
            return _cmd_config(config, args)
        if cmd == "session":
            return _cmd_session(config, args, parser)
    except Ambiguous as e:
        for line in describe_candidates(e.candidates):
            print(line, file=sys.stderr)
        print(f"error: {e}", file=sys.stderr)
        return 1
    except ParleyError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    parser.print_help(sys.stderr)
    return 2


def _selection(config: AppConfig, args) -> ModelSelection:
    return resolve_model(
        getattr(args, "provider", None),
        getattr(args, "model", None),
        config,
    )


def _store(config: AppConfig) -> SessionStore:
    return SessionStore(config.resolve_sessions_dir())


def _system_prompt(config: AppConfig) -> str:
    if config.system_prompt is None:
        return DEFAULT_SYSTEM_PROMPT
    return config.system_prompt


def _cmd_chat(config: AppConfig, args) -> int:
    session_ref = getattr(args, "session", None)
    if session_ref:
        return _resume(config, args, session_ref)
    return _new_chat(config, args)


def _new_chat(config: AppConfig, args) -> int:
    provider_config = config.provider_config(_selection(config, args))
    store = _store(config)
    with ProviderDispatcher() as dispatcher:
        driver = ConversationDriver.new(
            store,
            dispatcher,
            provider_config,
            _system_prompt(config),
            emitter=EventEmitter(render_event),
        )
        ParleyREPL(driver).run()
    return 0


def _resume(config: AppConfig, args, session_ref: str) -> int:
    store = _store(config)
    session = resolve_session(store, session_ref)

    if args.provider or args.model or session.provider not in SUPPORTED_PROVIDERS:
        selection = _selection(config, args)
    else:
        selection = ModelSelection(provider=session.provider, model=session.model)
    provider_config = config.provider_config(selection)

    with ProviderDispatcher() as dispatcher:
        driver = ConversationDriver.resume(
            store,
            dispatcher,
            provider_config,
            session.id,
            emitter=EventEmitter(render_event),
        )
        ParleyREPL(driver).run(resumed=True)
    return 0


def _cmd_ask(config: AppConfig, args) -> int:
    prompt = " ".join(args.prompt)
    if not prompt.strip():
        raise EmptyPrompt()
    provider_config = config.provider_config(_selection(config, args))
    messages = [Message.system(_system_prompt(config)), Message.user(prompt)]

    with ProviderDispatcher() as dispatcher:
        chunks = dispatcher.stream(provider_config, messages)
        try:
            for chunk in chunks:
                sys.stdout.write(chunk.text)
                sys.stdout.flush()
        except KeyboardInterrupt:
            print("\n^C")
            return 130
        finally:
            chunks.close()
    print()
    return 0


def _cmd_models(config: AppConfig) -> int:
    default = resolve_model(None, None, config)
    with ProviderDispatcher() as dispatcher:
        listing = list_models(config, dispatcher.client)

    for provider, models in listing.items():
        print(f"{provider}:")
        if models is None:
            print("  (not reachable)")
            continue
        if not models:
            print("  (no models)")
            continue
        for model in models:
            marker = " (default)" if provider == default.provider and model == default.model else ""
            print(f"  {model}{marker}")
    return 0


def _cmd_config(config: AppConfig, args) -> int:
    print(f"config: {config_path()}")
    for source in config.source_paths:
        print(f"loaded: {source}")
    print(json.dumps(config.to_display_dict(), indent=2))
    return 0


def _cmd_session(config: AppConfig, args, parser: argparse.ArgumentParser) -> int:
    sub = args.session_cmd or "list"
    store = _store(config)

    if sub == "new":
        return _new_chat(config, args)

    if sub == "list":
        sessions = store.list()
        if not sessions:
            print("No saved sessions")
            return 0
        for line in format_session_table(sessions):
            print(line)
        print()
        print(f"{len(sessions)} session(s)")
        return 0

    if sub == "resume":
        return _resume(config, args, args.session_id)

    if sub == "delete":
        session = resolve_session(store, args.session_id)
        print(f'Deleting session {session.short_id} ("{session.title or UNTITLED}")')
        store.delete(session.id)
        print("Deleted.")
        return 0

    if sub == "repair":
        index = store.rebuild_index()
        print(f"Rebuilt index: {len(index.sessions)} session(s)")
        return 0

    if sub == "check":
        problems = store.check()
        if not problems:
            print("OK")
            return 0
        for problem in problems:
            print(problem)
        return 1

    parser.print_help(sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
