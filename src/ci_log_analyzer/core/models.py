"""Line representations consumed by the index and the extractor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class SanitizedLine(Protocol):
    """Anything exposing the cleaned bytes of one log line."""

    def sanitized(self) -> bytes | memoryview:
        """Return the sanitized bytes of the line."""
        ...


@dataclass(frozen=True, slots=True)
class Sanitized:
    """Owned sanitized line (used while learning)."""

    data: bytes

    def sanitized(self) -> bytes:
        return self.data


@dataclass(frozen=True, slots=True)
class LogLine:
    """Serving-time line: raw view into the downloaded log plus its cleaned bytes."""

    line_no: int
    raw: memoryview  # zero-copy slice of the downloaded log
    cleaned: bytes

    def sanitized(self) -> bytes:
        return self.cleaned

    def text(self) -> str:
        return self.cleaned.decode("utf-8", errors="replace")

    def raw_text(self) -> str:
        """Original line as downloaded, escape codes and timestamp included."""
        return bytes(self.raw).decode("utf-8", errors="replace")
