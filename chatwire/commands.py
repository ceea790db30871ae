"""
Slash commands typed at the chat prompt.

parse_command() is a pure function of the input: trimmed, case-insensitive,
matched against a fixed set. Anything else starting with '/' is
UNRECOGNIZED; everything not starting with '/' is a chat message.
"""

from enum import Enum


class Command(Enum):
    CHAT = "chat"
    QUIT = "quit"
    CLEAR = "clear"
    HELP = "help"
    UNRECOGNIZED = "unrecognized"


COMMANDS = {
    "/quit": Command.QUIT,
    "/exit": Command.QUIT,
    "/clear": Command.CLEAR,
    "/help": Command.HELP,
}

HELP_TEXT = """Available commands:
  /quit or /exit - Exit the chat
  /clear - Clear conversation history
  /help - Show this help message
"""


def parse_command(text: str) -> Command:
    command = text.strip().lower()
    if command in COMMANDS:
        return COMMANDS[command]
    if command.startswith("/"):
        return Command.UNRECOGNIZED
    return Command.CHAT
