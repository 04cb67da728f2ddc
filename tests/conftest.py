from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from ci_log_analyzer.core.index import Index
from ci_log_analyzer.core.models import Sanitized
from log_samples import BOILERPLATE


class MemoryStorage:
    """In-memory stand-in for an index storage backend."""

    def __init__(self, data: bytes | None = None) -> None:
        self.data = data
        self.writes = 0

    def __str__(self) -> str:
        return "memory://index"

    def read(self) -> bytes | None:
        return self.data

    def write(self, data: bytes) -> None:
        self.data = data
        self.writes += 1

    def stamp(self) -> int | None:
        return None if self.data is None else self.writes


@pytest.fixture
def make_lines() -> Callable[..., list[Sanitized]]:
    def _make(*texts: str) -> list[Sanitized]:
        return [Sanitized(t.encode("utf-8")) for t in texts]

    return _make


@pytest.fixture
def boilerplate_index() -> Index:
    """Index where BOILERPLATE is common and nothing else has been seen."""
    index = Index()
    index.learn(Sanitized(BOILERPLATE.encode()), 100)
    return index


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def write_bytes() -> Callable[[Path, list[bytes]], None]:
    def _write(path: Path, lines: list[bytes]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"".join(line + b"\n" for line in lines))

    return _write
