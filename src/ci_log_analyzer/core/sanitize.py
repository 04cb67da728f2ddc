"""Raw log bytes to clean lines.

All patterns operate on bytes so arbitrary (including invalid UTF-8) input is accepted.
Unicode classes are spelled out as their UTF-8 encodings.
"""

from __future__ import annotations

import re

_LINE_BREAK_RE = re.compile(rb"[\r\n]+")
_BLANK_RE = re.compile(rb"[ \t\x0b\x0c]*")

# ESC up to and including the first ASCII letter. Misses a few exotic sequences
# ("Set Keyboard Strings"), which is fine for CI output.
_ANSI_ESCAPE_RE = re.compile(rb"\x1b.*?[a-zA-Z]")

# Unicode White_Space property.
_WHITESPACE_RE = re.compile(
    rb"[\t\n\x0b\x0c\r ]"
    rb"|\xc2[\x85\xa0]"  # U+0085, U+00A0
    rb"|\xe1\x9a\x80"  # U+1680
    rb"|\xe2\x80[\x80-\x8a\xa8\xa9\xaf]"  # U+2000..U+200A, U+2028, U+2029, U+202F
    rb"|\xe2\x81\x9f"  # U+205F
    rb"|\xe3\x80\x80"  # U+3000
)

# Unicode general category Cc: U+0000..U+001F, U+007F..U+009F.
_CONTROL_RE = re.compile(rb"[\x00-\x1f\x7f]|\xc2[\x80-\x9f]")


def split_lines(data: bytes) -> list[memoryview]:
    """Split on CR/LF runs, dropping whitespace-only segments.

    Returned lines are zero-copy views into ``data``.
    """
    view = memoryview(data)
    lines: list[memoryview] = []
    start = 0
    for m in _LINE_BREAK_RE.finditer(data):
        if not _BLANK_RE.fullmatch(data, start, m.start()):
            lines.append(view[start : m.start()])
        start = m.end()
    if not _BLANK_RE.fullmatch(data, start, len(data)):
        lines.append(view[start:])
    return lines


def clean(data: bytes | memoryview) -> bytes:
    """Strip ANSI escapes, turn whitespace into spaces, drop control characters.

    The order matters: escape sequences contain control bytes of their own.
    Dropping a control byte can join its neighbours into a new multi-byte
    whitespace or control character, so the last two passes repeat until stable.
    """
    out = _ANSI_ESCAPE_RE.sub(b"", bytes(data))
    while True:
        cleaned = _CONTROL_RE.sub(b"", _WHITESPACE_RE.sub(b" ", out))
        if cleaned == out:
            return cleaned
        out = cleaned


def strip_timestamp(line: bytes) -> bytes:
    """Drop the leading space-delimited token.

    GitHub Actions and Azure Pipelines prefix every line with its own timestamp,
    which would otherwise make each line look unique.
    """
    _, sep, rest = bytes(line).partition(b" ")
    return rest if sep else bytes(line)
