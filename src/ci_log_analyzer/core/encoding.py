"""Alphabet reduction and 5-gram ids.

Each byte maps through a 256-entry table onto one of 64 symbols or is dropped.
ASCII letters are case-folded; anything outside the alphabet below disappears, so
noise like colour codes or box-drawing characters does not perturb the n-grams.
"""

from __future__ import annotations

from collections.abc import Iterator

WINDOW = 5
SYMBOL_BITS = 6
DROP = 0xFF

# Symbol k is ALPHABET[k].
ALPHABET = b"abcdefghijklmnopqrstuvwxyz0123456789 .,:;_-/\\()[]{}<>=+*'\"!?#@$%"
assert len(ALPHABET) == 1 << SYMBOL_BITS


def _build_tables() -> tuple[bytes, bytes, bytes]:
    enc = bytearray([DROP] * 256)
    for symbol, byte in enumerate(ALPHABET):
        enc[byte] = symbol
    for upper in range(ord("A"), ord("Z") + 1):
        enc[upper] = enc[upper + 32]

    dec = bytearray(b"?" * 256)
    dec[: len(ALPHABET)] = ALPHABET

    dropped = bytes(b for b in range(256) if enc[b] == DROP)
    return bytes(enc), bytes(dec), dropped


ENCODE_TABLE, DECODE_TABLE, _DROPPED = _build_tables()


def encode(data: bytes | memoryview) -> bytes:
    """Map bytes onto the symbol alphabet, removing unmapped bytes."""
    return bytes(data).translate(ENCODE_TABLE, _DROPPED)


def decode(encoded: bytes) -> bytes:
    """Inverse of ``encode`` for diagnostics (case is not recovered)."""
    return bytes(encoded).translate(DECODE_TABLE)


class IdIter:
    """Sliding-window 5-gram ids over an encoded buffer.

    ``id = s[0] + s[1]*64 + s[2]*64**2 + s[3]*64**3 + s[4]*64**4``. Iterating again
    restarts from the first window.
    """

    __slots__ = ("_encoded",)

    def __init__(self, encoded: bytes) -> None:
        self._encoded = encoded

    def __len__(self) -> int:
        return max(0, len(self._encoded) - WINDOW + 1)

    def __iter__(self) -> Iterator[int]:
        data = self._encoded
        if len(data) < WINDOW:
            return
        ident = 0
        for k in range(WINDOW):
            ident |= data[k] << (SYMBOL_BITS * k)
        yield ident
        top = SYMBOL_BITS * (WINDOW - 1)
        for symbol in data[WINDOW:]:
            ident = (ident >> SYMBOL_BITS) | (symbol << top)
            yield ident


def iter_ids(data: bytes | memoryview) -> IdIter:
    """Encode ``data`` and return its 5-gram ids."""
    return IdIter(encode(data))
