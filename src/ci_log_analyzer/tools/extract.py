"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import replace
from typing import Any

from pydantic import BaseModel, Field

from ci_log_analyzer.core.extract import (
    NO_IGNORES,
    IgnorePatterns,
    resolve_extract_config,
    score,
)
from ci_log_analyzer.core.index import Index, load
from ci_log_analyzer.core.log_service import extract_from_path
from ci_log_analyzer.core.models import Sanitized
from ci_log_analyzer.core.sanitize import clean, strip_timestamp
from ci_log_analyzer.core.storage import resolve_storage

logger = logging.getLogger(__name__)

INDEX_ENV = "LOG_ANALYZER_INDEX"
DEFAULT_MAX_BLOCKS = 20
HARD_MAX_BLOCKS = 200


class ExtractedBlock(BaseModel):
    line_numbers: list[int] = Field(description="Positions of the lines among non-blank log lines.")
    lines: list[str] = Field(description="Sanitized text of each line.")
    raw: list[str] | None = Field(
        default=None, description="Original text of each line (only with include_raw)."
    )


class ExtractionResult(BaseModel):
    count: int
    blocks: list[ExtractedBlock] = Field(default_factory=list)
    job_name: str | None = None
    truncated: bool = Field(default=False, description="True when blocks were dropped by max_blocks.")


class LineScore(BaseModel):
    score: int
    windows: int
    counts: list[int]


def _index_location(index_path: str | None) -> str:
    location = index_path or os.getenv(INDEX_ENV)
    if not location:
        raise ValueError(f"No index given. Pass index_path or set {INDEX_ENV}.")
    return location


@functools.lru_cache(maxsize=4)
def _cached_index(location: str, stamp: object) -> Index:
    # Cached indexes are never mutated: the server does not learn.
    return load(resolve_storage(location))


def _load_index(location: str) -> Index:
    """Load an index, reusing the cached copy until the stored data is replaced."""
    return _cached_index(location, resolve_storage(location).stamp())


async def extract_failures_impl(
    *,
    log_path: str,
    index_path: str | None = None,
    context_lines: int | None = None,
    max_blocks: int | None = None,
    ignore_file: str | None = None,
    strip_timestamps: bool = False,
    include_raw: bool = False,
) -> dict[str, Any]:
    """Implementation for the `extract_failures` MCP tool."""
    if max_blocks is None:
        max_blocks = DEFAULT_MAX_BLOCKS
    if max_blocks <= 0:
        raise ValueError("max_blocks must be > 0")
    max_blocks = min(max_blocks, HARD_MAX_BLOCKS)

    config = resolve_extract_config(None)
    if context_lines is not None:
        config = replace(config, context_lines=context_lines)

    ignore = IgnorePatterns.from_json_file(ignore_file) if ignore_file else NO_IGNORES
    index = _load_index(_index_location(index_path))

    extraction = await extract_from_path(
        log_path,
        index,
        config=config,
        ignore=ignore,
        preprocess=strip_timestamp if strip_timestamps else None,
    )
    blocks = [
        ExtractedBlock(
            line_numbers=[line.line_no for line in block],
            lines=[line.text() for line in block],
            raw=[line.raw_text() for line in block] if include_raw else None,
        )
        for block in extraction.blocks
    ]
    result = ExtractionResult(
        count=len(blocks),
        blocks=blocks[:max_blocks],
        job_name=extraction.variables.job_name,
        truncated=len(blocks) > max_blocks,
    )
    if include_raw:
        return result.model_dump()
    return result.model_dump(exclude={"blocks": {"__all__": {"raw"}}})


def score_line_impl(*, text: str, index_path: str | None = None) -> dict[str, Any]:
    """Implementation for the `score_line` MCP tool."""
    index = _load_index(_index_location(index_path))
    line = Sanitized(clean(text.encode("utf-8")))
    counts = index.scores(line)
    return LineScore(
        score=score(resolve_extract_config(None), index, line),
        windows=len(counts),
        counts=counts,
    ).model_dump()
