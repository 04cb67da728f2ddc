"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: extract the unusual fragments of a build log, score a single line
- Resources: help text, default extraction thresholds, a sample log
- Prompts: a template asking the client to explain a build failure

Run locally (stdio):
    python -m ci_log_analyzer.server.log_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from ci_log_analyzer.prompts.registry import register_prompts
from ci_log_analyzer.resources.registry import register_resources
from ci_log_analyzer.tools.extract import extract_failures_impl, score_line_impl

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure a reasonable default logging setup.

    The MCP client typically captures stderr; stdout carries the protocol.
    """
    level_name = os.getenv("LOG_ANALYZER_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


mcp = FastMCP("log-analyzer", json_response=True)

register_resources(mcp)
register_prompts(mcp)


@mcp.tool()
async def extract_failures(
    log_path: str,
    index_path: str | None = None,
    context_lines: int | None = None,
    max_blocks: int | None = None,
    ignore_file: str | None = None,
    strip_timestamps: bool = False,
    include_raw: bool = False,
) -> dict[str, Any]:
    """Return the fragments of a CI log that differ most from successful builds.

    Parameters
    ----------
    log_path:
        Path to a local build log. Supports plain text and .gz.
    index_path:
        Learned index (file path or s3://bucket/key). Defaults to $LOG_ANALYZER_INDEX.
    context_lines:
        Boilerplate lines kept before and after each block (must stay below the merge distance).
    max_blocks:
        Maximum number of blocks returned (hard-capped in the implementation).
    ignore_file:
        JSON file of [start, end] phrase pairs whose spans are skipped.
    strip_timestamps:
        Drop the leading timestamp token of every line (GitHub Actions, Azure Pipelines logs).
    include_raw:
        Also return the original, unsanitized text of each line.

    Returns
    -------
    dict:
        {"count": int, "blocks": [{"line_numbers": [...], "lines": [...]}], "job_name": str | None,
         "truncated": bool}
        Each block also carries "raw" when include_raw is true.
    """
    return await extract_failures_impl(
        log_path=log_path,
        index_path=index_path,
        context_lines=context_lines,
        max_blocks=max_blocks,
        ignore_file=ignore_file,
        strip_timestamps=strip_timestamps,
        include_raw=include_raw,
    )


@mcp.tool()
def score_line(text: str, index_path: str | None = None) -> dict[str, Any]:
    """Score one log line against the index (higher means rarer in successful builds)."""
    return score_line_impl(text=text, index_path=index_path)


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
