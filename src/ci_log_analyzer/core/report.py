"""Turning extracted blocks into text for humans."""

from __future__ import annotations

from collections.abc import Sequence

from .models import SanitizedLine

BLOCK_SEPARATOR = "---"


def line_text(line: SanitizedLine) -> str:
    return bytes(line.sanitized()).decode("utf-8", errors="replace")


def render_blocks(blocks: Sequence[Sequence[SanitizedLine]]) -> str:
    """Plain text: one line per log line, blocks separated by ``---``."""
    return f"\n{BLOCK_SEPARATOR}\n".join(
        "\n".join(line_text(line) for line in block) for block in blocks
    )


def render_comment(
    blocks: Sequence[Sequence[SanitizedLine]],
    *,
    job_url: str,
    log_url: str,
    platform: str = "CI",
    job_name: str | None = None,
    doc_url: str | None = None,
) -> str:
    """Markdown body for the review comment posted on a failed build."""
    if job_name:
        opening = f"The job `{job_name}` of your PR"
    else:
        opening = "Your PR"

    doc_line = ""
    if doc_url:
        doc_line = f"\nFor more information how to resolve CI failures of this job, visit [this link]({doc_url}).\n"

    log = render_blocks(blocks).replace("```", "` ` `")
    return (
        f"{opening} [failed on {platform}]({job_url}) ([raw log]({log_url})). "
        "Learn more about the failure in the extracted log fragments below, which "
        "differ the most from logs of successful builds.\n"
        f"{doc_line}\n"
        "<details><summary><i>Click to see the possible cause of the failure "
        "(guessed by this bot)</i></summary>\n\n"
        "```\n"
        f"{log}\n"
        "```\n\n"
        "</details>\n"
    )
