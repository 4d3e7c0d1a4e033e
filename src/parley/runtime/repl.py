import sys

from common.events import AssistantDeltaEvent, AssistantMessageEvent, Event
from common.ids import short_id
from parley.errors import ParleyError
from parley.format import format_message
from parley.runtime.builtins import BuiltinCommands
from parley.runtime.router import InputRouter
from parley.sessions.schema import Role


def render_event(event: Event) -> None:
    if isinstance(event, AssistantDeltaEvent):
        sys.stdout.write(event.text)
        sys.stdout.flush()
    elif isinstance(event, AssistantMessageEvent):
        sys.stdout.write("\n")
        sys.stdout.flush()


class ParleyREPL:
    def __init__(self, driver, input_fn=input):
        self.driver = driver
        self.input_fn = input_fn
        self.builtins = BuiltinCommands(driver)
        self.router = InputRouter(self.builtins)

    def print_banner(self, resumed: bool = False) -> None:
        config = self.driver.provider_config
        session = self.driver.session
        label = short_id(session.id) if session else "new"
        if resumed:
            print(f"resuming [session: {label}] [model: {config.provider}/{config.model}]")
            print()
            for message in self.driver.history.messages:
                if message.role == Role.SYSTEM:
                    continue
                print(format_message(message))
                print()
        else:
            print(f"parley chat [session: {label}] [model: {config.provider}/{config.model}] (Ctrl+D to exit)")
        print("Commands: /help for all commands")

    def run(self, initial_message: str | None = None, resumed: bool = False) -> None:
        self.print_banner(resumed=resumed)

        if initial_message:
            self.send(initial_message)

        while True:
            try:
                user_input = self.input_fn("\n> ").strip()
            except KeyboardInterrupt:
                print("^C")
                continue
            except EOFError:
                print("\ngoodbye.")
                break

            if not user_input:
                continue

            route = self.router.route(user_input)
            if route.kind == "builtin":
                try:
                    if not self.builtins.handle(route.name, route.args):
                        break
                except ParleyError as e:
                    print(f"error: {e}", file=sys.stderr)
                continue
            if route.kind == "unknown":
                print(f"Unknown command: /{route.name}. Type /help for available commands.")
                continue

            self.send(route.args)

    def send(self, text: str) -> bool:
        print()
        try:
            self.driver.run_turn(text)
            return True
        except KeyboardInterrupt:
            print("\n^C (response discarded)")
        except ParleyError as e:
            print(f"\nerror: {e}", file=sys.stderr)
        return False
