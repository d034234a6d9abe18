from __future__ import annotations

import os

from .constants import KEY_MAX_CHARS, NICK_MAX_CHARS, ROOM_MAX_CHARS

# Angle brackets are stripped from every client string; line breaks and NUL
# are additionally stripped from single-line fields (names, room ids).
_STRIP_ALWAYS = str.maketrans("", "", "<>\x00")
_STRIP_SINGLE_LINE = str.maketrans("", "", "<>\x00\r\n")


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def sanitize(value, max_chars: int, *, single_line: bool = False) -> str:
    """Return a cleaned copy of a client-supplied string.

    Non-strings become "". The result is truncated to ``max_chars``.
    """
    if not isinstance(value, str):
        return ""

    table = _STRIP_SINGLE_LINE if single_line else _STRIP_ALWAYS
    s = value.translate(table)
    if max_chars > 0:
        s = s[:max_chars]
    return s


def sanitize_name(value) -> str:
    return sanitize(value, NICK_MAX_CHARS, single_line=True).strip()


def sanitize_room(value) -> str:
    return sanitize(value, ROOM_MAX_CHARS, single_line=True).strip()


def sanitize_key(value) -> str:
    # Compared byte-for-byte, so no whitespace trimming.
    return sanitize(value, KEY_MAX_CHARS, single_line=True)
