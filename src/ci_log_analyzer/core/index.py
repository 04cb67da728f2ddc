"""Frequency index over 5-gram ids learned from successful build logs."""

from __future__ import annotations

import logging
import struct
import sys
from array import array

from .encoding import iter_ids
from .models import SanitizedLine
from .storage import IndexStorage

logger = logging.getLogger(__name__)

COUNT_MAX = 0xFFFF_FFFF

MAGIC = b"CLAIDX"
FORMAT_VERSION = 1
_HEADER = struct.Struct("<6sHI")


class IndexNotFoundError(FileNotFoundError):
    """No index is stored at the requested location."""


class IndexFormatError(ValueError):
    """Stored index data is corrupt or written by an incompatible version."""


class Index:
    """Mapping of 5-gram id to a saturating occurrence count.

    Not thread-safe: ``learn`` mutates in place. Share it through
    :class:`ci_log_analyzer.core.worker.IndexWorker` when more than one task needs it.
    """

    __slots__ = ("_counts",)

    def __init__(self, counts: dict[int, int] | None = None) -> None:
        self._counts: dict[int, int] = counts if counts is not None else {}

    def __len__(self) -> int:
        return len(self._counts)

    def count(self, ident: int) -> int:
        return self._counts.get(ident, 0)

    def learn(self, line: SanitizedLine, multiplier: int = 1) -> None:
        """Add ``multiplier`` to the count of every window in the line."""
        if multiplier < 0:
            raise ValueError("multiplier must be >= 0")
        counts = self._counts
        for ident in iter_ids(line.sanitized()):
            value = counts.get(ident, 0) + multiplier
            counts[ident] = value if value < COUNT_MAX else COUNT_MAX

    def scores(self, line: SanitizedLine) -> list[int]:
        """Stored counts of the line's windows, in line order."""
        get = self._counts.get
        return [get(ident, 0) for ident in iter_ids(line.sanitized())]

    def to_bytes(self) -> bytes:
        pairs = array("I")
        for ident in sorted(self._counts):
            pairs.append(ident)
            pairs.append(self._counts[ident])
        if sys.byteorder != "little":  # pragma: no cover
            pairs.byteswap()
        return _HEADER.pack(MAGIC, FORMAT_VERSION, len(self._counts)) + pairs.tobytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> Index:
        if len(data) < _HEADER.size:
            raise IndexFormatError("Index data is truncated (missing header)")
        magic, version, n = _HEADER.unpack_from(data)
        if magic != MAGIC:
            raise IndexFormatError("Not an index file (bad magic)")
        if version != FORMAT_VERSION:
            raise IndexFormatError(
                f"Unsupported index format version {version} (expected {FORMAT_VERSION})"
            )
        body = memoryview(data)[_HEADER.size :]
        if len(body) != n * 8:
            raise IndexFormatError(
                f"Index data length mismatch: header says {n} entries, body has {len(body)} bytes"
            )
        pairs = array("I")
        pairs.frombytes(body)
        if sys.byteorder != "little":  # pragma: no cover
            pairs.byteswap()
        it = iter(pairs)
        return cls(dict(zip(it, it)))


def _load(storage: IndexStorage, *, create: bool) -> Index:
    data = storage.read()
    if data is None:
        if not create:
            raise IndexNotFoundError(f"Index not found: {storage}")
        logger.info("Initializing new index at %s", storage)
        index = Index()
    else:
        logger.info("Loading index from %s", storage)
        index = Index.from_bytes(data)
    logger.info("Index ready (%d keys).", len(index))
    return index


def load(storage: IndexStorage) -> Index:
    """Load an index that must already exist."""
    return _load(storage, create=False)


def load_or_create(storage: IndexStorage) -> Index:
    """Load an index, starting empty when none is stored yet."""
    return _load(storage, create=True)


def save(index: Index, storage: IndexStorage) -> None:
    logger.debug("Saving index to %s", storage)
    storage.write(index.to_bytes())
    logger.debug("Index saved (%d keys).", len(index))
