from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from common.ids import short_id

TITLE_MAX_CHARS = 50


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    role: Role
    content: str
    timestamp: str = Field(default_factory=utc_now)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    def to_api(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class SessionMeta(BaseModel):
    id: str
    title: str = ""
    created_at: str
    updated_at: str
    model: str
    provider: str
    message_count: int = 0

    @property
    def short_id(self) -> str:
        return short_id(self.id)


class SessionIndex(BaseModel):
    sessions: dict[str, SessionMeta] = Field(default_factory=dict)


class Session(BaseModel):
    id: str
    title: str = ""
    created_at: str
    updated_at: str
    model: str
    provider: str

    @property
    def short_id(self) -> str:
        return short_id(self.id)

    @classmethod
    def from_meta(cls, meta: SessionMeta) -> "Session":
        return cls(
            id=meta.id,
            title=meta.title,
            created_at=meta.created_at,
            updated_at=meta.updated_at,
            model=meta.model,
            provider=meta.provider,
        )


# SessionMeta is what the browser lists.
SessionSummary = SessionMeta


def derive_title(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text
