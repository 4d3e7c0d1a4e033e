from parley.sessions.manager import SessionStore
from parley.sessions.resolver import resolve_session
from parley.sessions.schema import Message, Role, Session, SessionMeta, SessionSummary

__all__ = [
    "SessionStore",
    "resolve_session",
    "Message",
    "Role",
    "Session",
    "SessionMeta",
    "SessionSummary",
]
