"""Novelty scoring and block extraction.

Every line gets a score from the index (high = rarely seen in successful logs), then a
single forward pass groups high-scoring runs into blocks:

- a run starts when a line scores above ``block_separator_max_score`` and is only
  reported once some line in it reaches ``unique_line_min_score``;
- runs closer than ``block_merge_distance`` lines to the previous block are merged into it;
- up to ``context_lines`` lines before a new block and after a closed block are kept;
- lines between an ignore-start phrase and its end phrase are skipped entirely.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import TypeVar

from .index import Index
from .models import SanitizedLine

logger = logging.getLogger(__name__)

L = TypeVar("L", bound=SanitizedLine)


@dataclass(frozen=True, slots=True)
class ExtractConfig:
    """Extraction thresholds. Validated on construction."""

    unique_5gram_max_index: int = 10
    block_merge_distance: int = 8
    block_separator_max_score: int = 0
    unique_line_min_score: int = 50
    block_max_lines: int = 500
    context_lines: int = 4

    def __post_init__(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} must be >= 0")
        if self.block_max_lines < 1:
            raise ValueError("block_max_lines must be >= 1")
        if self.context_lines >= self.block_merge_distance:
            raise ValueError(
                f"context_lines ({self.context_lines}) must be < "
                f"block_merge_distance ({self.block_merge_distance})"
            )


_ENV_OVERRIDES = {
    "LOG_ANALYZER_CONTEXT_LINES": "context_lines",
    "LOG_ANALYZER_BLOCK_MAX_LINES": "block_max_lines",
    "LOG_ANALYZER_MERGE_DISTANCE": "block_merge_distance",
}


def resolve_extract_config(cfg: ExtractConfig | None = None) -> ExtractConfig:
    """Return config with optional env overrides applied."""
    if cfg is None:
        cfg = ExtractConfig()

    changes: dict[str, int] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            changes[field_name] = int(raw)
        except ValueError as exc:
            raise ValueError(f"{env_name} must be an integer") from exc

    if not changes:
        return cfg
    return replace(cfg, **changes)


def _as_bytes(s: str | bytes) -> bytes:
    return s.encode("utf-8") if isinstance(s, str) else bytes(s)


class IgnorePatterns:
    """(start phrase, end phrase) pairs marking spans to skip.

    All start phrases are compiled into one alternation; each pair gets its own end
    matcher, so a span only closes on the end phrase of the start phrase that opened it.
    """

    def __init__(self, pairs: Iterable[tuple[str | bytes, str | bytes]] = ()) -> None:
        self.pairs: tuple[tuple[bytes, bytes], ...] = tuple(
            (_as_bytes(start), _as_bytes(end)) for start, end in pairs
        )
        for start, end in self.pairs:
            if not start or not end:
                raise ValueError("Ignore phrases must be non-empty")

        self._start: re.Pattern[bytes] | None = None
        if self.pairs:
            self._start = re.compile(
                b"|".join(b"(" + re.escape(start) + b")" for start, _ in self.pairs)
            )
        self._ends = tuple(re.compile(re.escape(end)) for _, end in self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    def match_start(self, text: bytes | memoryview) -> re.Pattern[bytes] | None:
        """Return the end matcher for the span opened by ``text``, if any."""
        if self._start is None:
            return None
        m = self._start.search(text)
        if m is None:
            return None
        return self._ends[m.lastindex - 1]

    @classmethod
    def from_json_file(cls, path: str | Path) -> IgnorePatterns:
        """Load ``[["start", "end"], ...]`` from a JSON file."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"{path}: expected a JSON list of [start, end] pairs")
        pairs: list[tuple[str, str]] = []
        for item in raw:
            if (
                not isinstance(item, list)
                or len(item) != 2
                or not all(isinstance(s, str) for s in item)
            ):
                raise ValueError(f"{path}: invalid ignore pair {item!r}")
            pairs.append((item[0], item[1]))
        return cls(pairs)


NO_IGNORES = IgnorePatterns()


def score(config: ExtractConfig, index: Index, line: SanitizedLine) -> int:
    """Sum of ``max_index - count`` over the windows seen at most ``max_index`` times."""
    max_index = config.unique_5gram_max_index
    return sum(max_index - count for count in index.scores(line) if count <= max_index)


class _State(Enum):
    SEARCHING_SECTION_START = "searching_section_start"
    SEARCHING_OUTLIER = "searching_outlier"
    PRINTING = "printing"
    IGNORING = "ignoring"


def extract_indices(
    config: ExtractConfig,
    index: Index,
    lines: Sequence[SanitizedLine],
    *,
    ignore: IgnorePatterns = NO_IGNORES,
) -> list[list[int]]:
    """Like :func:`extract` but returns line indices instead of lines."""
    scores = [score(config, index, line) for line in lines]

    separator = config.block_separator_max_score
    state = _State.SEARCHING_SECTION_START
    ignore_end: re.Pattern[bytes] | None = None

    section_start = 0
    # Index of the line that closed the previous block; None when there is nothing
    # to merge into (no block yet, or an ignore span came in between).
    prev_section_end: int | None = None
    # No line below this index may be pulled into a block (end of last ignore span).
    floor = 0
    trailing = 0

    active: list[int] = []
    blocks: list[list[int]] = []

    for i, line in enumerate(lines):
        if state is _State.IGNORING:
            if ignore_end.search(line.sanitized()):
                state = _State.SEARCHING_SECTION_START
                ignore_end = None
                floor = i + 1
            continue

        end = ignore.match_start(line.sanitized())
        if end is not None:
            if active:
                blocks.append(active)
                active = []
            trailing = 0
            prev_section_end = None
            ignore_end = end
            state = _State.IGNORING
            continue

        current = scores[i]

        if state is _State.PRINTING:
            if current > separator:
                active.append(i)
                continue
            blocks.append(active)
            active = []
            prev_section_end = i
            trailing = config.context_lines
            state = _State.SEARCHING_SECTION_START
            # The closing line is the first line of trailing context.

        if state is _State.SEARCHING_SECTION_START:
            if current > separator:
                section_start = i
                state = _State.SEARCHING_OUTLIER
            else:
                if trailing and blocks:
                    blocks[-1].append(i)
                    trailing -= 1
                continue

        # SEARCHING_OUTLIER
        if current <= separator or current < config.unique_line_min_score:
            if current <= separator:
                state = _State.SEARCHING_SECTION_START
            if trailing and blocks:
                blocks[-1].append(i)
                trailing -= 1
            continue

        if (
            prev_section_end is not None
            and blocks
            and prev_section_end + config.block_merge_distance >= section_start
        ):
            active = blocks.pop()
            start = active[-1] + 1
        else:
            start = max(section_start - config.context_lines, floor)
            if blocks:
                start = max(start, blocks[-1][-1] + 1)

        active.extend(range(start, i + 1))
        trailing = 0
        state = _State.PRINTING

    if active:
        blocks.append(active)

    return [block[: config.block_max_lines] for block in blocks if block]


def extract(
    config: ExtractConfig,
    index: Index,
    lines: Sequence[L],
    *,
    ignore: IgnorePatterns = NO_IGNORES,
) -> list[list[L]]:
    """Group the unusual parts of a log into ordered, non-overlapping blocks."""
    blocks = [
        [lines[i] for i in block]
        for block in extract_indices(config, index, lines, ignore=ignore)
    ]
    logger.debug("Extracted %d block(s) from %d line(s)", len(blocks), len(lines))
    return blocks
