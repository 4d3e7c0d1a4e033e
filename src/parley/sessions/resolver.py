import logging

from common.ids import short_id
from parley.errors import Ambiguous, SessionNotFound
from parley.sessions.manager import SessionStore
from parley.sessions.schema import Session

logger = logging.getLogger(__name__)


def resolve_session(store: SessionStore, prefix: str) -> Session:
    """Resolve a full id or git-style id prefix to exactly one session.

    Matching is case-sensitive against the canonical lowercase id. There is
    no tie-break: two or more matches raise :class:`Ambiguous` carrying every
    candidate.
    """
    prefix = prefix.strip()
    if not prefix:
        raise SessionNotFound(prefix)

    summaries = store.summaries()
    exact = summaries.get(prefix)
    if exact is not None:
        return Session.from_meta(exact)

    matches = [meta for sid, meta in summaries.items() if sid.startswith(prefix)]
    if not matches:
        raise SessionNotFound(prefix)
    if len(matches) > 1:
        matches.sort(key=lambda m: m.updated_at, reverse=True)
        logger.debug(f"Prefix {prefix!r} matched {len(matches)} sessions")
        raise Ambiguous(prefix, [(short_id(m.id), m.title) for m in matches])
    return Session.from_meta(matches[0])
