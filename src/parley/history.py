from typing import List, Optional

from parley.sessions.schema import Message, Role


class MessageHistory:
    """The context sent to the provider on the next turn."""

    def __init__(self, messages: Optional[List[Message]] = None):
        self.messages: List[Message] = list(messages or [])

    @classmethod
    def with_system_prompt(cls, prompt: str) -> "MessageHistory":
        return cls([Message.system(prompt)])

    @property
    def system_message(self) -> Optional[Message]:
        if self.messages and self.messages[0].role == Role.SYSTEM:
            return self.messages[0]
        return None

    def add(self, message: Message) -> None:
        self.messages.append(message)

    def pop(self) -> Optional[Message]:
        if not self.messages:
            return None
        return self.messages.pop()

    def reset(self, messages: List[Message]) -> None:
        self.messages = list(messages)

    def clear(self) -> None:
        system = self.system_message
        self.messages = [system] if system else []
