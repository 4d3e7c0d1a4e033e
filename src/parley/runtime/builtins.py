from common.ids import short_id
from parley.format import format_message, format_session_table
from parley.sessions.schema import Role


class BuiltinCommands:
    def __init__(self, driver):
        self.driver = driver
        self._handlers = {
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
            "history": self.cmd_history,
            "clear": self.cmd_clear,
            "model": self.cmd_model,
            "sessions": self.cmd_sessions,
            "session": self.cmd_session,
            "help": self.cmd_help,
        }

    def list_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    def has_command(self, name: str) -> bool:
        return name in self._handlers

    def handle(self, name: str, args: str) -> bool:
        handler = self._handlers.get(name)
        if not handler:
            return True
        return handler(args)

    def cmd_quit(self, args: str) -> bool:
        print("goodbye.")
        return False

    def cmd_history(self, args: str) -> bool:
        if self.driver.session is not None:
            source = self.driver.store.iter_messages(self.driver.session.id)
        else:
            source = self.driver.history.messages
        messages = [m for m in source if m.role != Role.SYSTEM]
        if not messages:
            print("No messages yet")
            return True
        for message in messages:
            print(format_message(message))
            print()
        return True

    def cmd_clear(self, args: str) -> bool:
        self.driver.clear()
        print("History cleared.")
        return True

    def cmd_model(self, args: str) -> bool:
        config = self.driver.provider_config
        print(f"Current model: {config.provider}/{config.model}")
        return True

    def cmd_session(self, args: str) -> bool:
        session = self.driver.session
        if session is None:
            print("No session yet (created on the first message)")
        else:
            print(f"Session {short_id(session.id)} ({session.id})")
        return True

    def cmd_sessions(self, args: str) -> bool:
        sessions = self.driver.store.list()
        if not sessions:
            print("No saved sessions")
            return True
        for line in format_session_table(sessions):
            print(line)
        return True

    def cmd_help(self, args: str) -> bool:
        print("Commands:")
        print("  /history  - show conversation history")
        print("  /clear    - clear conversation context")
        print("  /sessions - list saved sessions")
        print("  /session  - show the current session id")
        print("  /model    - show the current provider and model")
        print("  /help     - show this help")
        print("  /quit     - exit (or Ctrl+D)")
        return True
