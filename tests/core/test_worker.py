from __future__ import annotations

import asyncio
import logging

import pytest

from ci_log_analyzer.core.ci import Build, CiPlatform, Job, Outcome
from ci_log_analyzer.core.index import Index
from ci_log_analyzer.core.models import Sanitized
from ci_log_analyzer.core.sanitize import strip_timestamp
from ci_log_analyzer.core.worker import BuildProcessor, IndexWorker, pr_from_merge_commit
from log_samples import BOILERPLATE, ERROR_LINE

SUCCESS_LOG = (BOILERPLATE + "\n") * 20
FAILED_LOG = "[CI_JOB_NAME=x86_64-gnu]\n" + (BOILERPLATE + "\n") * 15 + ERROR_LINE + "\n"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeCi(CiPlatform):
    name = "FakeCI"

    def __init__(self, logs: dict[int, bytes]) -> None:
        self.logs = logs

    async def query_log(self, job: Job) -> bytes:
        if job.id not in self.logs:
            raise RuntimeError(f"no log for job {job.id}")
        return self.logs[job.id]


class TimestampedCi(FakeCi):
    """Prefixes every line with its own timestamp, like GitHub Actions."""

    name = "TimestampedCI"

    async def query_log(self, job: Job) -> bytes:
        data = await super().query_log(job)
        return b"".join(
            b"2024-05-01T10:%02d:%02d.1234567Z %s\n" % (n // 60, n % 60, line)
            for n, line in enumerate(data.splitlines())
        )

    def remove_timestamp_from_log_line(self, line: bytes) -> bytes:
        return strip_timestamp(line)


class FakePoster:
    def __init__(self) -> None:
        self.comments: list[tuple[str, int, str]] = []

    async def post_comment(self, repo: str, issue_number: int, body: str) -> None:
        self.comments.append((repo, issue_number, body))


def _build(outcome: Outcome, *jobs: Job, branch: str = "auto", pr: int | None = None, message: str = "") -> Build:
    return Build(
        id=7,
        branch=branch,
        commit_sha="0123abcd",
        commit_message=message,
        pr_number=pr,
        outcome=outcome,
        jobs=list(jobs),
    )


def _processor(worker: IndexWorker, logs: dict[int, bytes]) -> tuple[BuildProcessor, FakePoster]:
    poster = FakePoster()
    return BuildProcessor(worker, FakeCi(logs), poster, repo="org/repo"), poster


@pytest.mark.asyncio
async def test_worker_learn_and_score(memory_storage) -> None:
    async with IndexWorker(Index(), memory_storage) as worker:
        assert await worker.learn(SUCCESS_LOG.encode()) == 20
        boring, counts = await worker.score_line(BOILERPLATE.encode())
        novel, _ = await worker.score_line(ERROR_LINE.encode())

    assert boring == 0
    assert set(counts) == {20}
    assert novel >= 50


@pytest.mark.asyncio
async def test_worker_serializes_concurrent_learns(memory_storage) -> None:
    index = Index()
    async with IndexWorker(index, memory_storage) as worker:
        await asyncio.gather(*(worker.learn(b"compiling foo") for _ in range(25)))

    assert set(index.scores(Sanitized(b"compiling foo"))) == {25}


@pytest.mark.asyncio
async def test_worker_rejects_requests_when_stopped(memory_storage) -> None:
    worker = IndexWorker(Index(), memory_storage)
    with pytest.raises(RuntimeError):
        await worker.learn(b"compiling foo")


@pytest.mark.asyncio
async def test_worker_propagates_errors(memory_storage) -> None:
    async with IndexWorker(Index(), memory_storage) as worker:
        with pytest.raises(TypeError):
            await worker.learn(None)  # type: ignore[arg-type]
        # still serving after a failed request
        assert await worker.learn(b"compiling foo") == 1


@pytest.mark.asyncio
async def test_worker_save_is_rate_limited(memory_storage) -> None:
    clock = FakeClock()
    async with IndexWorker(Index(), memory_storage, save_interval=60, clock=clock) as worker:
        assert await worker.save() is False  # nothing learned yet

        await worker.learn(b"compiling foo")
        assert await worker.save() is True
        assert memory_storage.writes == 1

        await worker.learn(b"compiling bar")
        clock.now = 30
        assert await worker.save() is False
        assert worker.dirty

        clock.now = 61
        assert await worker.save() is True
        assert memory_storage.writes == 2

        await worker.learn(b"compiling baz")
        assert await worker.save(force=True) is True
        assert memory_storage.writes == 3


@pytest.mark.asyncio
async def test_worker_stop_flushes_unsaved_changes(memory_storage) -> None:
    clock = FakeClock()
    worker = IndexWorker(Index(), memory_storage, save_interval=60, clock=clock)
    await worker.start()
    await worker.learn(b"compiling foo")
    await worker.save()
    await worker.learn(b"linking quux")
    await worker.stop()

    assert memory_storage.writes == 2
    assert not worker.dirty
    restored = Index.from_bytes(memory_storage.data)
    assert set(restored.scores(Sanitized(b"linking quux"))) == {1}


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Auto merge of #12345 - user:branch, r=reviewer", 12345),
        ("Auto merge of #7 - x", 7),
        ("Merge pull request #12 from user/branch", None),
        ("Auto merge of #abc - x", None),
        ("", None),
    ],
)
def test_pr_from_merge_commit(message: str, expected: int | None) -> None:
    assert pr_from_merge_commit(message) == expected


@pytest.mark.asyncio
async def test_failed_pr_build_is_reported(memory_storage) -> None:
    job = Job(id=1, name="linux", html_url="https://ci/1", log_url="https://ci/1/raw", outcome=Outcome.FAILED)
    async with IndexWorker(Index(), memory_storage) as worker:
        await worker.learn(SUCCESS_LOG.encode())
        processor, poster = _processor(worker, {1: FAILED_LOG.encode()})
        await processor.process(_build(Outcome.FAILED, job, branch="try", pr=99))

    assert len(poster.comments) == 1
    repo, pr, body = poster.comments[0]
    assert (repo, pr) == ("org/repo", 99)
    assert ERROR_LINE in body
    assert "The job `x86_64-gnu` of your PR [failed on FakeCI](https://ci/1)" in body


@pytest.mark.asyncio
async def test_failed_merge_build_reports_on_merged_pr(memory_storage) -> None:
    jobs = (
        Job(id=1, name="ok", outcome=Outcome.PASSED),
        Job(id=2, name="broken", outcome=Outcome.ERRORED),
    )
    async with IndexWorker(Index(), memory_storage) as worker:
        processor, poster = _processor(worker, {1: SUCCESS_LOG.encode(), 2: ERROR_LINE.encode()})
        build = _build(Outcome.FAILED, *jobs, message="Auto merge of #555 - a:b, r=c")
        await processor.process(build)

    assert [(pr, ERROR_LINE in body) for _, pr, body in poster.comments] == [(555, True)]
    assert "The job `broken`" in poster.comments[0][2]


@pytest.mark.asyncio
async def test_failed_build_without_pr_is_not_reported(memory_storage) -> None:
    job = Job(id=1, outcome=Outcome.FAILED)
    async with IndexWorker(Index(), memory_storage) as worker:
        processor, poster = _processor(worker, {1: ERROR_LINE.encode()})
        assert await processor.report_failed(_build(Outcome.FAILED, job, message="wip")) is None

    assert poster.comments == []


@pytest.mark.asyncio
async def test_nothing_unusual_is_not_reported(memory_storage) -> None:
    job = Job(id=1, outcome=Outcome.FAILED)
    async with IndexWorker(Index(), memory_storage) as worker:
        await worker.learn(SUCCESS_LOG.encode())
        processor, poster = _processor(worker, {1: SUCCESS_LOG.encode()})
        assert await processor.report_failed(_build(Outcome.FAILED, job, pr=3)) is None

    assert poster.comments == []


@pytest.mark.asyncio
async def test_passed_merge_build_is_learned(memory_storage) -> None:
    index = Index()
    jobs = (Job(id=1, outcome=Outcome.PASSED), Job(id=2, outcome=Outcome.PASSED))
    async with IndexWorker(index, memory_storage) as worker:
        processor, poster = _processor(worker, {1: SUCCESS_LOG.encode(), 2: SUCCESS_LOG.encode()})
        await processor.process(_build(Outcome.PASSED, *jobs))

    assert poster.comments == []
    assert set(index.scores(Sanitized(BOILERPLATE.encode()))) == {40}
    assert memory_storage.writes == 1


@pytest.mark.asyncio
async def test_pr_and_other_branch_builds_are_not_learned(memory_storage) -> None:
    index = Index()
    job = Job(id=1, outcome=Outcome.PASSED)
    async with IndexWorker(index, memory_storage) as worker:
        processor, _ = _processor(worker, {1: SUCCESS_LOG.encode()})
        await processor.process(_build(Outcome.PASSED, job, pr=10))
        await processor.process(_build(Outcome.PASSED, job, branch="master"))

    assert len(index) == 0
    assert memory_storage.writes == 0


@pytest.mark.asyncio
async def test_in_progress_build_is_ignored(memory_storage) -> None:
    index = Index()
    job = Job(id=1, outcome=Outcome.PASSED)
    async with IndexWorker(index, memory_storage) as worker:
        processor, _ = _processor(worker, {1: SUCCESS_LOG.encode()})
        await processor.process(_build(Outcome.RUNNING, job))

    assert len(index) == 0


@pytest.mark.asyncio
async def test_learn_skips_failed_downloads(memory_storage, caplog) -> None:
    index = Index()
    jobs = (Job(id=1, outcome=Outcome.PASSED), Job(id=2, outcome=Outcome.PASSED))
    async with IndexWorker(index, memory_storage) as worker:
        processor, _ = _processor(worker, {2: SUCCESS_LOG.encode()})
        with caplog.at_level(logging.WARNING):
            assert await processor.learn(_build(Outcome.PASSED, *jobs)) == 1

    assert "download failed" in caplog.text
    assert set(index.scores(Sanitized(BOILERPLATE.encode()))) == {20}


@pytest.mark.asyncio
async def test_run_keeps_going_after_errors(memory_storage) -> None:
    index = Index()
    queue: asyncio.Queue[Build | None] = asyncio.Queue()
    async with IndexWorker(index, memory_storage) as worker:
        processor, poster = _processor(worker, {1: SUCCESS_LOG.encode()})

        async def broken_post(repo: str, issue_number: int, body: str) -> None:
            raise RuntimeError("API down")

        poster.post_comment = broken_post  # type: ignore[method-assign]
        failing = _build(Outcome.FAILED, Job(id=1, outcome=Outcome.FAILED), pr=1)
        passing = _build(Outcome.PASSED, Job(id=1, outcome=Outcome.PASSED))
        for build in (failing, passing, None):
            queue.put_nowait(build)
        await processor.run(queue)

    assert set(index.scores(Sanitized(BOILERPLATE.encode()))) == {20}


@pytest.mark.asyncio
async def test_platform_timestamps_are_stripped(memory_storage) -> None:
    index = Index()
    passed = Job(id=1, outcome=Outcome.PASSED)
    failed = Job(id=2, outcome=Outcome.FAILED)
    logs = {
        1: SUCCESS_LOG.encode(),
        2: ((BOILERPLATE + "\n") * 15 + ERROR_LINE + "\n").encode(),
    }
    poster = FakePoster()
    async with IndexWorker(index, memory_storage) as worker:
        processor = BuildProcessor(worker, TimestampedCi(logs), poster, repo="org/repo")
        await processor.process(_build(Outcome.PASSED, passed))
        await processor.process(_build(Outcome.FAILED, failed, branch="try", pr=5))

    assert set(index.scores(Sanitized(BOILERPLATE.encode()))) == {20}
    (_, _, body), = poster.comments
    assert body.count(BOILERPLATE) == 4
    assert ERROR_LINE in body
    assert "2024-05-01" not in body


def test_platform_keeps_lines_by_default() -> None:
    assert FakeCi({}).remove_timestamp_from_log_line(b"10:00 line") == b"10:00 line"
