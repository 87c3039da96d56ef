"""Per-turn command tokens typed at the checkpoint prompt."""

from __future__ import annotations

from enum import Enum

from veritaminal.models import Decision
from veritaminal.settings import InvalidInput


class Command(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    HINT = "hint"
    RULES = "rules"
    SAVE = "save"
    HELP = "help"
    QUIT = "quit"


_SHORTCUTS = {
    "a": Command.APPROVE,
    "d": Command.DENY,
}

HELP_TEXT = """\
Commands:
  approve (a)  Approve the current traveler
  deny (d)     Deny the current traveler
  hint         Ask Veritas for a hint
  rules        Show the current border rules
  save         Save your progress
  help         Show this help
  quit         Return to the main menu (the current traveler is not decided)"""


def parse_command(text: str) -> Command:
    """Map player input to a Command, case-insensitively.

    Raises InvalidInput for anything unrecognised.
    """
    token = text.strip().lower()
    if token in _SHORTCUTS:
        return _SHORTCUTS[token]
    try:
        return Command(token)
    except ValueError:
        raise InvalidInput(f"Unknown command: {text.strip()!r}. Type 'help' for options.") from None


def parse_decision(choice: str) -> Decision:
    command = parse_command(choice)
    if command is Command.APPROVE:
        return "approve"
    if command is Command.DENY:
        return "deny"
    raise InvalidInput(f"{command.value!r} is not a decision; use approve or deny")
