import pytest

from common.events import (
    AssistantDeltaEvent,
    AssistantMessageEvent,
    AssistantResponseStartEvent,
    ErrorEvent,
    EventEmitter,
)
from parley.config import ProviderConfig
from parley.errors import EmptyPrompt, MissingApiKey, ProtocolError, TransportError, UnknownProvider
from parley.providers.base import TokenChunk
from parley.providers.dispatcher import ProviderDispatcher
from parley.runtime.driver import ConversationDriver
from parley.sessions.schema import Message, Role


class ScriptedDispatcher:
    """Replays a list of chunks (or an exception) instead of calling a provider."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[list[Message]] = []
        self.closed = 0

    def stream(self, config, messages):
        self.calls.append(list(messages))
        return self._iter()

    def _iter(self):
        try:
            for item in self.script:
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed += 1


CONFIG = ProviderConfig(provider="openai", model="gpt-4o", api_key="sk-test")


def reply(*parts: str) -> list[TokenChunk]:
    return [TokenChunk(text=p) for p in parts] + [TokenChunk(text="", is_final=True)]


def make_driver(store, dispatcher, events=None):
    emitter = EventEmitter(events.append) if events is not None else None
    return ConversationDriver.new(store, dispatcher, CONFIG, "sys", emitter=emitter)


def test_completed_turn_persists_user_then_assistant(store):
    dispatcher = ScriptedDispatcher(*reply("He", "llo"))
    driver = make_driver(store, dispatcher)

    assert driver.run_turn("hi") == "Hello"

    messages = store.load(driver.session_id)
    assert [(m.role, m.content) for m in messages] == [
        (Role.SYSTEM, "sys"),
        (Role.USER, "hi"),
        (Role.ASSISTANT, "Hello"),
    ]
    assert store.get(driver.session_id).title == "hi"
    assert [m.content for m in driver.history.messages] == ["sys", "hi", "Hello"]


def test_context_sent_includes_system_first(store):
    dispatcher = ScriptedDispatcher(*reply("ok"))
    driver = make_driver(store, dispatcher)

    driver.run_turn("one")
    dispatcher.script = reply("ok")
    driver.run_turn("two")

    sent = dispatcher.calls[1]
    assert [(m.role, m.content) for m in sent] == [
        (Role.SYSTEM, "sys"),
        (Role.USER, "one"),
        (Role.ASSISTANT, "ok"),
        (Role.USER, "two"),
    ]


def test_turn_persisted_before_final_chunk_is_yielded(store):
    driver = make_driver(store, ScriptedDispatcher(*reply("a")))
    chunks = driver.turn("hi")

    assert next(chunks).text == "a"
    assert driver.session_id is None

    final = next(chunks)
    assert final.is_final
    assert len(store.load(driver.session_id)) == 3


def test_mid_stream_transport_failure_persists_only_user_message(store):
    dispatcher = ScriptedDispatcher(
        TokenChunk(text="He"),
        TokenChunk(text="llo"),
        TransportError("connection reset"),
    )
    driver = make_driver(store, dispatcher)

    received: list[str] = []
    with pytest.raises(TransportError):
        for chunk in driver.turn("hi"):
            received.append(chunk.text)

    assert received == ["He", "llo"]
    messages = store.load(driver.session_id)
    assert [(m.role, m.content) for m in messages] == [(Role.SYSTEM, "sys"), (Role.USER, "hi")]
    assert all(m.role != Role.ASSISTANT for m in messages)


def test_stream_without_final_chunk_is_protocol_error(store):
    driver = make_driver(store, ScriptedDispatcher(TokenChunk(text="partial")))

    with pytest.raises(ProtocolError):
        driver.run_turn("hi")

    assert [m.role for m in store.load(driver.session_id)] == [Role.SYSTEM, Role.USER]


def test_unknown_provider_writes_nothing(store):
    config = ProviderConfig(provider="foo", model="m", api_key="k")
    driver = ConversationDriver.new(store, ProviderDispatcher(), config, "sys")

    with pytest.raises(UnknownProvider):
        driver.turn("hi")

    assert driver.session is None
    assert store.list() == []
    assert [m.content for m in driver.history.messages] == ["sys"]


def test_missing_key_writes_nothing(store):
    config = ProviderConfig(provider="anthropic", model="m", api_key=None)
    driver = ConversationDriver.new(store, ProviderDispatcher(), config, "sys")

    with pytest.raises(MissingApiKey):
        driver.run_turn("hi")

    assert store.list() == []


def test_empty_prompt_rejected(store):
    dispatcher = ScriptedDispatcher(*reply("x"))
    driver = make_driver(store, dispatcher)

    with pytest.raises(EmptyPrompt):
        driver.turn("   ")
    assert dispatcher.calls == []


def test_interrupted_turn_leaves_store_untouched(store):
    dispatcher = ScriptedDispatcher(*reply("first"))
    driver = make_driver(store, dispatcher)
    driver.run_turn("hello")
    before = store.log_path(driver.session_id).read_bytes()
    summary_before = store.get(driver.session_id)

    dispatcher.script = [TokenChunk(text="a"), TokenChunk(text="b")] + reply("c")
    chunks = driver.turn("second")
    assert next(chunks).text == "a"
    chunks.close()

    assert store.log_path(driver.session_id).read_bytes() == before
    assert store.get(driver.session_id) == summary_before
    assert [m.content for m in driver.history.messages] == ["sys", "hello", "first"]
    assert dispatcher.closed == 2


def test_keyboard_interrupt_during_first_turn_creates_nothing(store):
    class Interrupting(ScriptedDispatcher):
        def _iter(self):
            yield TokenChunk(text="a")
            raise KeyboardInterrupt

    driver = make_driver(store, Interrupting())

    with pytest.raises(KeyboardInterrupt):
        driver.run_turn("hi")

    assert driver.session is None
    assert store.list() == []
    assert [m.content for m in driver.history.messages] == ["sys"]


def test_events_emitted_for_a_turn(store):
    events = []
    driver = make_driver(store, ScriptedDispatcher(*reply("He", "llo")), events=events)

    driver.run_turn("hi")

    assert events == [
        AssistantResponseStartEvent(provider="openai", model="gpt-4o"),
        AssistantDeltaEvent(text="He"),
        AssistantDeltaEvent(text="llo"),
        AssistantMessageEvent(content="Hello"),
    ]


def test_error_event_on_failure(store):
    events = []
    driver = make_driver(store, ScriptedDispatcher(TransportError("down")), events=events)

    with pytest.raises(TransportError):
        driver.run_turn("hi")

    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].message == "down"


def test_clear_resets_context_to_system_message(store):
    dispatcher = ScriptedDispatcher(*reply("ok"))
    driver = make_driver(store, dispatcher)
    driver.run_turn("one")

    context = driver.clear()
    assert [m.content for m in context] == ["sys"]

    dispatcher.script = reply("fresh")
    driver.run_turn("two")
    assert [m.content for m in dispatcher.calls[-1]] == ["sys", "two"]
    assert [m.content for m in store.load(driver.session_id)] == ["sys", "one", "ok", "two", "fresh"]


def test_clear_before_first_turn(store):
    driver = make_driver(store, ScriptedDispatcher())
    assert [m.content for m in driver.clear()] == ["sys"]
    assert store.list() == []


def test_resume_continues_existing_session(store):
    session = store.create(model="gpt-4o", provider="openai", system_prompt="sys")
    store.append(session.id, Message.user("earlier"))
    store.append(session.id, Message.assistant("reply"))

    dispatcher = ScriptedDispatcher(*reply("more"))
    driver = ConversationDriver.resume(store, dispatcher, CONFIG, session.id)
    driver.run_turn("again")

    assert [m.content for m in dispatcher.calls[0]] == ["sys", "earlier", "reply", "again"]
    assert driver.session_id == session.id
    assert store.get(session.id).message_count == 5
    assert store.get(session.id).title == "earlier"
