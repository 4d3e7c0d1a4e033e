from __future__ import annotations

import logging
from typing import Iterator

from common.events import (
    AssistantDeltaEvent,
    AssistantMessageEvent,
    AssistantResponseStartEvent,
    ErrorEvent,
    EventEmitter,
)
from parley.config import ProviderConfig
from parley.errors import EmptyPrompt, ParleyError, ProtocolError
from parley.history import MessageHistory
from parley.providers.base import TokenChunk
from parley.providers.dispatcher import ProviderDispatcher
from parley.sessions.manager import SessionStore
from parley.sessions.schema import Message, Session

logger = logging.getLogger(__name__)


class ConversationDriver:
    """Runs one turn at a time against a single session.

    Persistence rules for a turn:

    * pre-flight failures (unknown provider, missing key, empty prompt)
      write nothing;
    * a completed stream writes the user message, then the assistant message;
    * a stream that fails after the request went out writes only the user
      message;
    * an interrupted or abandoned stream writes nothing and the in-memory
      context is rolled back.
    """

    def __init__(
        self,
        store: SessionStore,
        dispatcher: ProviderDispatcher,
        provider_config: ProviderConfig,
        history: MessageHistory,
        session: Session | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.provider_config = provider_config
        self.history = history
        self.session = session
        self.emitter = emitter or EventEmitter()

    @classmethod
    def new(
        cls,
        store: SessionStore,
        dispatcher: ProviderDispatcher,
        provider_config: ProviderConfig,
        system_prompt: str,
        emitter: EventEmitter | None = None,
    ) -> "ConversationDriver":
        """Start a conversation; its session is created when the first turn is persisted."""
        return cls(
            store,
            dispatcher,
            provider_config,
            MessageHistory.with_system_prompt(system_prompt),
            emitter=emitter,
        )

    @classmethod
    def resume(
        cls,
        store: SessionStore,
        dispatcher: ProviderDispatcher,
        provider_config: ProviderConfig,
        session_id: str,
        emitter: EventEmitter | None = None,
    ) -> "ConversationDriver":
        session = store.get(session_id)
        history = MessageHistory(store.load(session_id))
        return cls(store, dispatcher, provider_config, history, session=session, emitter=emitter)

    @property
    def session_id(self) -> str | None:
        return self.session.id if self.session else None

    def _ensure_session(self) -> Session:
        if self.session is None:
            system = self.history.system_message
            self.session = self.store.create(
                model=self.provider_config.model,
                provider=self.provider_config.provider,
                system_prompt=system.content if system else "",
            )
        return self.session

    def turn(self, text: str) -> Iterator[TokenChunk]:
        """Send ``text`` and return the response as a lazy chunk stream.

        Pre-flight errors are raised here, before anything is sent or
        written. The turn is persisted when the final chunk arrives, before
        that chunk is handed to the caller.
        """
        if not text.strip():
            raise EmptyPrompt()

        user_message = Message.user(text)
        context = [*self.history.messages, user_message]
        stream = self.dispatcher.stream(self.provider_config, context)
        return self._run(user_message, stream)

    def _run(
        self,
        user_message: Message,
        stream: Iterator[TokenChunk],
    ) -> Iterator[TokenChunk]:
        parts: list[str] = []
        committing = False
        self.history.add(user_message)
        self.emitter.emit(
            AssistantResponseStartEvent(
                provider=self.provider_config.provider,
                model=self.provider_config.model,
            )
        )
        try:
            for chunk in stream:
                if chunk.text:
                    parts.append(chunk.text)
                    self.emitter.emit(AssistantDeltaEvent(text=chunk.text))
                if chunk.is_final:
                    committing = True
                    self._commit(user_message, "".join(parts))
                    yield chunk
                    return
                yield chunk
            raise ProtocolError("stream ended without a final chunk")
        except ParleyError as e:
            logger.info(f"Turn failed for session {self.session_id}: {e}")
            if not committing:
                self.store.append(self._ensure_session().id, user_message)
            self.emitter.emit(ErrorEvent(message=str(e), source=self.provider_config.provider))
            raise
        except (GeneratorExit, KeyboardInterrupt):
            logger.info(f"Turn interrupted for session {self.session_id}; nothing persisted")
            if self.history.messages and self.history.messages[-1] is user_message:
                self.history.pop()
            raise
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    def _commit(self, user_message: Message, content: str) -> None:
        session = self._ensure_session()
        assistant_message = Message.assistant(content)
        self.store.append(session.id, user_message)
        self.store.append(session.id, assistant_message)
        self.history.add(assistant_message)
        self.emitter.emit(AssistantMessageEvent(content=content))

    def run_turn(self, text: str) -> str:
        """Drive a whole turn, forwarding tokens through the emitter."""
        chunks = self.turn(text)
        parts: list[str] = []
        try:
            for chunk in chunks:
                parts.append(chunk.text)
        finally:
            chunks.close()
        return "".join(parts)

    def clear(self) -> list[Message]:
        if self.session is None:
            self.history.clear()
        else:
            self.history.reset(self.store.clear_context(self.session.id))
        return list(self.history.messages)
