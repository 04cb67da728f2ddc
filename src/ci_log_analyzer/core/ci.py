"""Shapes of the CI and code-review collaborators.

Platform clients live outside this package; they only need to hand over
:class:`Build` objects and raw log bytes, and accept a comment body.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"
    CANCELED = "canceled"

    @property
    def finished(self) -> bool:
        return self not in (Outcome.QUEUED, Outcome.RUNNING)

    @property
    def failed(self) -> bool:
        return self in (Outcome.FAILED, Outcome.ERRORED)


class Job(BaseModel):
    id: int
    name: str = ""
    html_url: str = Field(default="", description="Human-facing job page.")
    log_url: str = Field(default="", description="Raw log download URL.")
    outcome: Outcome


class Build(BaseModel):
    id: int
    branch: str
    commit_sha: str
    commit_message: str = ""
    pr_number: int | None = None
    outcome: Outcome
    jobs: list[Job] = Field(default_factory=list)


class CiPlatform(Protocol):
    """CI backend. Subclass it explicitly to inherit the no-op line hook."""

    name: str

    async def query_log(self, job: Job) -> bytes:
        """Download the raw log of one job."""
        ...

    def remove_timestamp_from_log_line(self, line: bytes) -> bytes:
        """Strip the platform's per-line timestamp prefix, if it adds one."""
        return line


class CommentPoster(Protocol):
    async def post_comment(self, repo: str, issue_number: int, body: str) -> None:
        """Post a markdown comment on an issue or pull request."""
        ...
