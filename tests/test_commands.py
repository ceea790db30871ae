"""
Tests for slash-command parsing.
"""

import pytest

from chatwire.commands import HELP_TEXT, Command, parse_command


@pytest.mark.parametrize("text,expected", [
    ("/quit", Command.QUIT),
    ("/exit", Command.QUIT),
    ("  /EXIT  ", Command.QUIT),
    ("/clear", Command.CLEAR),
    ("/Help", Command.HELP),
    ("/frobnicate", Command.UNRECOGNIZED),
    ("/", Command.UNRECOGNIZED),
    ("/quit now", Command.UNRECOGNIZED),
    ("hello", Command.CHAT),
    ("what does /quit do?", Command.CHAT),
])
def test_parse_command(text, expected):
    """Commands match case-insensitively after trimming."""
    assert parse_command(text) is expected


def test_help_text_lists_every_command():
    """The help text mentions each command."""
    for command in ["/quit", "/exit", "/clear", "/help"]:
        assert command in HELP_TEXT
