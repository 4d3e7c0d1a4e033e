from parley.runtime.driver import ConversationDriver
from parley.runtime.repl import ParleyREPL

__all__ = ["ConversationDriver", "ParleyREPL"]
