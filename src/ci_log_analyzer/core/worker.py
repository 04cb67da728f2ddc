"""Single owner of the index.

:class:`IndexWorker` runs one task that holds the :class:`Index`; everything else talks to
it through a queue, so learning, scoring and saving never interleave.
:class:`BuildProcessor` decides what to do with a finished build.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .ci import Build, CiPlatform, CommentPoster, Outcome
from .extract import NO_IGNORES, ExtractConfig, IgnorePatterns, score
from .index import Index, save
from .log_service import Extraction, LinePreprocessor, extract_from_bytes, learn_bytes
from .models import Sanitized
from .report import render_comment
from .sanitize import clean
from .storage import IndexStorage

logger = logging.getLogger(__name__)

DEFAULT_SAVE_INTERVAL_S = 3600.0
DEFAULT_LEARN_BRANCHES = ("auto",)


@dataclass(frozen=True, slots=True)
class _Learn:
    data: bytes
    multiplier: int
    preprocess: LinePreprocessor | None = None


@dataclass(frozen=True, slots=True)
class _Extract:
    data: bytes
    config: ExtractConfig
    ignore: IgnorePatterns
    preprocess: LinePreprocessor | None = None


@dataclass(frozen=True, slots=True)
class _Score:
    text: bytes
    config: ExtractConfig


@dataclass(frozen=True, slots=True)
class _Save:
    force: bool


_STOP = object()


class IndexWorker:
    """Actor owning an index and its storage.

    Saves are rate-limited to one per ``save_interval`` seconds unless forced;
    unsaved changes are flushed on :meth:`stop`.
    """

    def __init__(
        self,
        index: Index,
        storage: IndexStorage,
        *,
        save_interval: float = DEFAULT_SAVE_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        queue_size: int = 64,
    ) -> None:
        if save_interval < 0:
            raise ValueError("save_interval must be >= 0")
        self._index = index
        self._storage = storage
        self._save_interval = save_interval
        self._clock = clock
        self._queue: asyncio.Queue[tuple[Any, asyncio.Future[Any] | None]] = asyncio.Queue(
            maxsize=queue_size
        )
        self._task: asyncio.Task[None] | None = None
        self._dirty = False
        self._last_save: float | None = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    async def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("IndexWorker already started")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Drain pending requests, flush unsaved changes and end the task."""
        if self._task is None:
            return
        await self._queue.put((_STOP, None))
        await self._task
        self._task = None
        if self._dirty:
            await asyncio.to_thread(self._handle, _Save(force=True))

    async def __aenter__(self) -> IndexWorker:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def learn(
        self,
        data: bytes,
        *,
        multiplier: int = 1,
        preprocess: LinePreprocessor | None = None,
    ) -> int:
        """Learn a raw log. Returns the number of lines learned."""
        if multiplier < 0:
            raise ValueError("multiplier must be >= 0")
        return await self._submit(_Learn(data, multiplier, preprocess))

    async def extract(
        self,
        data: bytes,
        *,
        config: ExtractConfig | None = None,
        ignore: IgnorePatterns = NO_IGNORES,
        preprocess: LinePreprocessor | None = None,
    ) -> Extraction:
        return await self._submit(
            _Extract(data, config or ExtractConfig(), ignore, preprocess)
        )

    async def score_line(
        self, text: bytes, *, config: ExtractConfig | None = None
    ) -> tuple[int, list[int]]:
        """Score one raw line. Returns (score, per-window counts)."""
        return await self._submit(_Score(text, config or ExtractConfig()))

    async def save(self, *, force: bool = False) -> bool:
        """Persist the index if it changed and the rate limit allows. Returns True if written."""
        return await self._submit(_Save(force))

    async def _submit(self, message: Any) -> Any:
        if self._task is None:
            raise RuntimeError("IndexWorker is not running")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await self._queue.put((message, future))
        return await future

    async def _run(self) -> None:
        while True:
            message, future = await self._queue.get()
            if message is _STOP:
                break
            try:
                result = await asyncio.to_thread(self._handle, message)
            except Exception as exc:
                if not future.cancelled():
                    future.set_exception(exc)
            else:
                if not future.cancelled():
                    future.set_result(result)

    def _handle(self, message: Any) -> Any:
        if isinstance(message, _Learn):
            learned = learn_bytes(
                self._index, message.data, message.multiplier, message.preprocess
            )
            self._dirty = self._dirty or learned > 0
            return learned
        if isinstance(message, _Extract):
            return extract_from_bytes(
                message.data,
                self._index,
                config=message.config,
                ignore=message.ignore,
                preprocess=message.preprocess,
            )
        if isinstance(message, _Score):
            line = Sanitized(clean(message.text))
            return score(message.config, self._index, line), self._index.scores(line)
        if isinstance(message, _Save):
            return self._save(force=message.force)
        raise TypeError(f"Unknown worker message: {message!r}")

    def _save(self, *, force: bool) -> bool:
        if not self._dirty:
            return False
        now = self._clock()
        if (
            not force
            and self._last_save is not None
            and now - self._last_save < self._save_interval
        ):
            logger.debug("Skipping index save (rate limited)")
            return False
        save(self._index, self._storage)
        self._last_save = now
        self._dirty = False
        return True


_MERGE_COMMIT_RE = re.compile(r"^Auto merge of #(?P<pr>\d+) ")


def pr_from_merge_commit(message: str) -> int | None:
    """PR number from an ``Auto merge of #123 - ...`` commit message."""
    m = _MERGE_COMMIT_RE.match(message)
    return int(m.group("pr")) if m else None


class BuildProcessor:
    """Report failed builds and keep learning from successful merge builds."""

    def __init__(
        self,
        worker: IndexWorker,
        ci: CiPlatform,
        poster: CommentPoster,
        *,
        repo: str,
        config: ExtractConfig | None = None,
        ignore: IgnorePatterns = NO_IGNORES,
        learn_branches: Iterable[str] = DEFAULT_LEARN_BRANCHES,
    ) -> None:
        self.worker = worker
        self.ci = ci
        self.poster = poster
        self.repo = repo
        self.config = config or ExtractConfig()
        self.ignore = ignore
        self.learn_branches = frozenset(learn_branches)

    async def process(self, build: Build) -> None:
        if not build.outcome.finished:
            logger.info("Ignoring in-progress build %s.", build.id)
            return

        if build.outcome is not Outcome.PASSED:
            await self.report_failed(build)

        if build.pr_number is None and build.branch in self.learn_branches:
            await self.learn(build)

    async def run(self, queue: asyncio.Queue[Build | None]) -> None:
        """Process builds until a ``None`` arrives; one bad build does not stop the loop."""
        while True:
            build = await queue.get()
            if build is None:
                break
            try:
                await self.process(build)
            except Exception:
                logger.exception("Processing build %s failed", build.id)

    async def report_failed(self, build: Build) -> str | None:
        """Post the extracted fragments of the first failed job. Returns the comment body."""
        job = next((j for j in build.jobs if j.outcome.failed), None)
        if job is None:
            logger.warning("No failed job in build %s, cannot report.", build.id)
            return None

        pr = build.pr_number if build.pr_number is not None else pr_from_merge_commit(
            build.commit_message
        )
        if pr is None:
            logger.info("Could not determine PR number for build %s, skipping report.", build.id)
            return None

        logger.debug("Preparing report for build %s (job %s)...", build.id, job.id)
        data = await self.ci.query_log(job)
        extraction = await self.worker.extract(
            data,
            config=self.config,
            ignore=self.ignore,
            preprocess=self.ci.remove_timestamp_from_log_line,
        )
        if not extraction.blocks:
            logger.info("Nothing unusual found in job %s, skipping report.", job.id)
            return None

        body = render_comment(
            extraction.blocks,
            job_url=job.html_url,
            log_url=job.log_url,
            platform=self.ci.name,
            job_name=extraction.variables.job_name or job.name or None,
            doc_url=extraction.variables.doc_url,
        )
        await self.poster.post_comment(self.repo, pr, body)
        logger.info("Posted report for build %s on %s#%s.", build.id, self.repo, pr)
        return body

    async def learn(self, build: Build) -> int:
        """Learn from every passed job of the build. Returns the number of jobs learned."""
        learned = 0
        for job in build.jobs:
            if job.outcome is not Outcome.PASSED:
                continue
            logger.debug("Learning from job %s...", job.id)
            try:
                data = await self.ci.query_log(job)
            except Exception as e:
                logger.warning(
                    "Failed to learn from successful job %s, download failed: %s", job.id, e
                )
                continue
            await self.worker.learn(data, preprocess=self.ci.remove_timestamp_from_log_line)
            learned += 1

        if learned:
            await self.worker.save()
        return learned
