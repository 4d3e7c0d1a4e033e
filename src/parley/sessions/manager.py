from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from common.ids import generate_id, short_id
from common.jsonio import (
    append_jsonl,
    atomic_write_json,
    iter_jsonl,
    load_json,
    repair_jsonl_tail,
)
from parley.errors import SessionNotFound, StoreError
from parley.sessions.schema import (
    Message,
    Role,
    Session,
    SessionIndex,
    SessionMeta,
    derive_title,
    utc_now,
)

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
LOG_SUFFIX = ".jsonl"


class SessionStore:
    """Append-only JSONL message logs plus one ``index.json`` of summaries.

    The logs are the source of truth. The index is derived from them and
    can be rebuilt with :meth:`rebuild_index`. Writes are ordered so that
    every id in the index always has a log: logs are created before their
    index entry and index entries are removed before their log.
    """

    def __init__(self, sessions_dir: str | Path):
        self.sessions_dir = Path(sessions_dir)
        self.index_path = self.sessions_dir / INDEX_FILENAME

    def log_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}{LOG_SUFFIX}"

    def _load_index(self) -> SessionIndex:
        if not self.index_path.exists():
            return SessionIndex()
        data = load_json(self.index_path)
        if data is None:
            raise StoreError(f"Session index {self.index_path} is not valid JSON")
        try:
            return SessionIndex.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"Session index {self.index_path} is malformed: {e}") from e

    def _save_index(self, index: SessionIndex) -> None:
        try:
            atomic_write_json(self.index_path, index.model_dump(mode="json"))
        except OSError as e:
            raise StoreError(f"Failed to write session index: {e}") from e

    def _meta(self, index: SessionIndex, session_id: str) -> SessionMeta:
        meta = index.sessions.get(session_id)
        if meta is None:
            raise SessionNotFound(session_id)
        return meta

    def _append_record(self, session_id: str, message: Message) -> None:
        path = self.log_path(session_id)
        try:
            repair_jsonl_tail(path)
            append_jsonl(path, message.model_dump(mode="json"))
        except OSError as e:
            raise StoreError(f"Failed to append to session log {path}: {e}") from e

    def create(self, model: str, provider: str, system_prompt: str) -> Session:
        session_id = generate_id()
        now = utc_now()
        self._append_record(session_id, Message(role=Role.SYSTEM, content=system_prompt, timestamp=now))

        index = self._load_index()
        meta = SessionMeta(
            id=session_id,
            title="",
            created_at=now,
            updated_at=now,
            model=model,
            provider=provider,
            message_count=1,
        )
        index.sessions[session_id] = meta
        self._save_index(index)
        logger.info(f"Created session {session_id} ({provider}/{model})")
        return Session.from_meta(meta)

    def append(self, session_id: str, message: Message) -> None:
        index = self._load_index()
        meta = self._meta(index, session_id)
        if not self.log_path(session_id).exists():
            raise StoreError(f"Session {meta.short_id} is indexed but its message log is missing")

        self._append_record(session_id, message)

        meta.updated_at = utc_now()
        meta.message_count += 1
        if message.role == Role.USER and not meta.title:
            meta.title = derive_title(message.content)
        self._save_index(index)
        logger.debug(f"Appended {message.role.value} message to {session_id}")

    def get(self, session_id: str) -> Session:
        return Session.from_meta(self._meta(self._load_index(), session_id))

    def iter_messages(self, session_id: str):
        path = self.log_path(session_id)
        if not path.exists():
            raise StoreError(f"Session {short_id(session_id)} is indexed but its message log is missing")
        try:
            for record in iter_jsonl(path):
                yield Message.model_validate(record)
        except (ValueError, ValidationError) as e:
            raise StoreError(f"Failed to parse session log {path}: {e}") from e

    def load(self, session_id: str) -> list[Message]:
        self._meta(self._load_index(), session_id)
        return list(self.iter_messages(session_id))

    def list(self) -> list[SessionMeta]:
        index = self._load_index()
        return sorted(index.sessions.values(), key=lambda m: m.updated_at, reverse=True)

    def summaries(self) -> dict[str, SessionMeta]:
        return self._load_index().sessions

    def delete(self, session_id: str) -> None:
        index = self._load_index()
        self._meta(index, session_id)
        del index.sessions[session_id]
        self._save_index(index)

        path = self.log_path(session_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Removed {session_id} from the index but failed to delete {path}: {e}") from e
        logger.info(f"Deleted session {session_id}")

    def clear_context(self, session_id: str) -> list[Message]:
        """Context for the next turn after ``/clear``: only the system message.

        The persisted log is left untouched.
        """
        self._meta(self._load_index(), session_id)
        for message in self.iter_messages(session_id):
            if message.role == Role.SYSTEM:
                return [message]
            break
        logger.warning(f"Session {session_id} log does not start with a system message")
        return []

    def check(self) -> list[str]:
        """Report index/log mismatches without fixing them."""
        problems: list[str] = []
        index = self._load_index()
        for session_id in index.sessions:
            if not self.log_path(session_id).exists():
                problems.append(f"{session_id}: indexed but message log is missing")
        if self.sessions_dir.exists():
            for path in sorted(self.sessions_dir.glob(f"*{LOG_SUFFIX}")):
                if path.stem not in index.sessions:
                    problems.append(f"{path.stem}: message log has no index entry")
        for problem in problems:
            logger.warning(f"Session store inconsistency: {problem}")
        return problems

    def rebuild_index(self) -> SessionIndex:
        """Recompute every summary by scanning the message logs.

        Model and provider survive from the old index where present; logs
        with no previous entry are recorded as ``unknown``.
        """
        try:
            old = self._load_index()
        except StoreError as e:
            logger.warning(f"Discarding unreadable index: {e}")
            old = SessionIndex()

        rebuilt = SessionIndex()
        if self.sessions_dir.exists():
            for path in sorted(self.sessions_dir.glob(f"*{LOG_SUFFIX}")):
                session_id = path.stem
                messages = list(self.iter_messages(session_id))
                if not messages:
                    logger.warning(f"Skipping empty session log {path}")
                    continue
                previous = old.sessions.get(session_id)
                title = next(
                    (derive_title(m.content) for m in messages if m.role == Role.USER),
                    "",
                )
                rebuilt.sessions[session_id] = SessionMeta(
                    id=session_id,
                    title=title,
                    created_at=previous.created_at if previous else messages[0].timestamp,
                    updated_at=messages[-1].timestamp,
                    model=previous.model if previous else "unknown",
                    provider=previous.provider if previous else "unknown",
                    message_count=len(messages),
                )

        self._save_index(rebuilt)
        logger.info(f"Rebuilt session index with {len(rebuilt.sessions)} sessions")
        return rebuilt
