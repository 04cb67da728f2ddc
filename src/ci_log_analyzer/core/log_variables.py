"""``[NAME=value]`` marker lines that CI scripts print into the log."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .models import SanitizedLine

JOB_NAME_VARIABLE = "CI_JOB_NAME"
PR_NUMBER_VARIABLE = "CI_PR_NUMBER"
JOB_DOC_URL_VARIABLE = "CI_JOB_DOC_URL"


def extract_variable(line: bytes, name: str) -> str | None:
    """Return ``value`` when the whole line is ``[name=value]``."""
    if not (line.startswith(b"[") and line.endswith(b"]")):
        return None
    equals = line.find(b"=")
    if equals < 0 or line[1:equals] != name.encode("ascii"):
        return None
    try:
        return line[equals + 1 : -1].decode("utf-8")
    except UnicodeDecodeError:
        return None


@dataclass(frozen=True, slots=True)
class LogVariables:
    job_name: str | None = None
    pr_number: str | None = None
    doc_url: str | None = None

    @classmethod
    def extract(cls, lines: Iterable[SanitizedLine]) -> LogVariables:
        """Scan lines until every variable has been seen once (first value wins)."""
        job_name = pr_number = doc_url = None
        for line in lines:
            data = bytes(line.sanitized())
            if job_name is None:
                job_name = extract_variable(data, JOB_NAME_VARIABLE)
            if pr_number is None:
                pr_number = extract_variable(data, PR_NUMBER_VARIABLE)
            if doc_url is None:
                doc_url = extract_variable(data, JOB_DOC_URL_VARIABLE)
            if job_name is not None and pr_number is not None and doc_url is not None:
                break
        return cls(job_name=job_name, pr_number=pr_number, doc_url=doc_url)
