"""
Lab command evaluation (pure).

A submitted command goes through three steps before it is compared:

1. sanitize: trim, cap the length, strip markup (script/style blocks are
   removed together with their content, and so is a tag or block left
   unclosed at the end, e.g. cut off by the length cap), trim again
2. normalize: lower-case
3. match: exact equality with any accepted command, case-insensitively

The sanitized form is what gets stored in the attempt history, so anything
rendered back to the learner is plain text.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from src.modules.shared.constants import MAX_COMMAND_LENGTH
from src.modules.shared.exceptions import ValidationError

_SCRIPT_BLOCK = re.compile(
    r"<(script|style)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_TAG = re.compile(r"<[^>]*>")
# A "<" followed by a letter opens a tag; "cat < notes.txt" is left alone.
_UNCLOSED_BLOCK = re.compile(r"<(script|style)\b.*\Z", re.IGNORECASE | re.DOTALL)
_UNCLOSED_TAG = re.compile(r"<[/!?]?[A-Za-z][^>]*\Z")


def sanitize_command(raw_command: Any, max_length: int = MAX_COMMAND_LENGTH) -> str:
    """
    Return the storable form of ``raw_command``.

    Raises:
        ValidationError: not a string, or nothing left after sanitizing

    Example:
        >>> sanitize_command("  <script>alert(1)</script>ls -la ")
        'ls -la'
        >>> sanitize_command("<b>pwd</b>")
        'pwd'
        >>> sanitize_command("ls -la <scri", max_length=12)
        'ls -la'
    """
    if not isinstance(raw_command, str):
        raise ValidationError("command", "Command must be text")

    command = raw_command.strip()[:max_length]
    command = _SCRIPT_BLOCK.sub("", command)
    command = _UNCLOSED_BLOCK.sub("", command)
    command = _TAG.sub("", command)
    command = _UNCLOSED_TAG.sub("", command).strip()

    if not command:
        raise ValidationError("command", "Command is empty")
    return command


def normalize_command(command: str) -> str:
    return command.lower()


def normalize_accepted(accepted_commands: Iterable[str]) -> frozenset[str]:
    """Accepted solutions compared trimmed and lower-cased; blanks are dropped."""
    normalized = set()
    for accepted in accepted_commands:
        if not isinstance(accepted, str):
            raise ValidationError("accepted_commands", "Accepted commands must be text")
        value = accepted.strip().lower()
        if value:
            normalized.add(value)
    return frozenset(normalized)


def is_accepted(sanitized_command: str, accepted_commands: Iterable[str]) -> bool:
    """
    Exact, case-insensitive match against the accepted solutions.

    Example:
        >>> is_accepted("DEPLOY PRODUCTION", ["deploy production"])
        True
        >>> is_accepted("deploy prod", ["deploy production"])
        False
    """
    return normalize_command(sanitized_command) in normalize_accepted(accepted_commands)
