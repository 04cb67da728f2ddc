"""Reading build logs from disk and running them through the index.

This module is the main integration point between log files and the core algorithms.
"""

from __future__ import annotations

import asyncio
import gzip
import io
import logging
import os
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import aiofiles
from aiofiles.threadpool import wrap

from .extract import NO_IGNORES, ExtractConfig, IgnorePatterns, extract
from .index import Index
from .log_variables import LogVariables
from .models import LogLine, Sanitized
from .sanitize import clean, split_lines

logger = logging.getLogger(__name__)

PROGRESS_EVERY_S = 1.0

# Applied to each raw line before cleaning, e.g. to drop a per-line timestamp.
LinePreprocessor = Callable[[bytes], bytes]


@asynccontextmanager
async def _open_bytes(path: Path):
    """Open a log file for async binary reading (plain or gzip)."""
    if path.suffix.lower() == ".gz":
        f = io.BufferedReader(gzip.open(path, mode="rb"))
        af = wrap(f)
        try:
            yield af
        finally:
            await af.close()
    else:
        async with aiofiles.open(path, mode="rb") as f:
            yield f


async def read_log(log_path: str | Path) -> bytes:
    """Read a whole log file, transparently decompressing ``.gz``."""
    path = Path(log_path)
    if not path.is_file():
        raise FileNotFoundError(f"Log file not found: {path}")
    async with _open_bytes(path) as f:
        return await f.read()


def _cleaned(raw: memoryview, preprocess: LinePreprocessor | None) -> bytes:
    return clean(raw if preprocess is None else preprocess(bytes(raw)))


def load_lines(data: bytes, preprocess: LinePreprocessor | None = None) -> list[LogLine]:
    """Split and clean a downloaded log; ``line_no`` counts non-blank lines from 1."""
    return [
        LogLine(line_no=n, raw=raw, cleaned=_cleaned(raw, preprocess))
        for n, raw in enumerate(split_lines(data), start=1)
    ]


def learn_bytes(
    index: Index,
    data: bytes,
    multiplier: int = 1,
    preprocess: LinePreprocessor | None = None,
) -> int:
    """Learn every line of a raw log. Returns the number of lines learned."""
    lines = split_lines(data)
    for raw in lines:
        index.learn(Sanitized(_cleaned(raw, preprocess)), multiplier)
    return len(lines)


def _not_hidden(name: str) -> bool:
    return not name.startswith(".")


def iter_log_files(roots: Iterable[str | Path], *, recursive: bool = True) -> Iterator[Path]:
    """Yield non-hidden files under each root (a root may itself be a file)."""
    for root in roots:
        root = Path(root)
        if root.is_file():
            yield root
            continue
        if not root.is_dir():
            raise FileNotFoundError(f"Log path not found: {root}")
        if not recursive:
            for child in sorted(root.iterdir()):
                if child.is_file() and _not_hidden(child.name):
                    yield child
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if _not_hidden(d))
            for name in sorted(filenames):
                if _not_hidden(name):
                    yield Path(dirpath) / name


async def learn_from_paths(
    index: Index,
    paths: Iterable[str | Path],
    *,
    multiplier: int = 1,
    preprocess: LinePreprocessor | None = None,
) -> int:
    """Learn from every log under ``paths``. Returns the number of files processed.

    The caller must own ``index`` for the duration of the call.
    """
    if multiplier < 0:
        raise ValueError("multiplier must be >= 0")

    count = 0
    last_progress = time.monotonic()
    for path in iter_log_files(paths):
        count += 1
        now = time.monotonic()
        if now - last_progress >= PROGRESS_EVERY_S:
            last_progress = now
            logger.debug("Learning from %s [%d/?]...", path, count)

        data = await read_log(path)
        await asyncio.to_thread(learn_bytes, index, data, multiplier, preprocess)

    logger.info("Learned from %d file(s); index has %d keys.", count, len(index))
    return count


@dataclass(frozen=True, slots=True)
class Extraction:
    """Extracted blocks for one log, with the lines they reference."""

    lines: list[LogLine]
    blocks: list[list[LogLine]]
    variables: LogVariables


def extract_from_bytes(
    data: bytes,
    index: Index,
    *,
    config: ExtractConfig | None = None,
    ignore: IgnorePatterns = NO_IGNORES,
    preprocess: LinePreprocessor | None = None,
) -> Extraction:
    config = config or ExtractConfig()
    lines = load_lines(data, preprocess)
    blocks = extract(config, index, lines, ignore=ignore)
    return Extraction(lines=lines, blocks=blocks, variables=LogVariables.extract(lines))


async def extract_from_path(
    log_path: str | Path,
    index: Index,
    *,
    config: ExtractConfig | None = None,
    ignore: IgnorePatterns = NO_IGNORES,
    preprocess: LinePreprocessor | None = None,
) -> Extraction:
    """Read a log file and extract its unusual blocks."""
    data = await read_log(log_path)
    return await asyncio.to_thread(
        extract_from_bytes, data, index, config=config, ignore=ignore, preprocess=preprocess
    )
