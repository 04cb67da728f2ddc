"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from ci_log_analyzer.core.extract import resolve_extract_config
from ci_log_analyzer.core.log_service import read_log
from ci_log_analyzer.tools.extract import ExtractionResult

BASE_DIR_ENV = "LOG_ANALYZER_BASE_DIR"

SAMPLE_LOG = (
    "[CI_JOB_NAME=x86_64-gnu]\n"
    "   Compiling foo v0.1.0 (/checkout/foo)\n"
    "   Compiling bar v0.2.3 (/checkout/bar)\n"
    "error[E0382]: use of moved value: `x`\n"
    "  --> src/main.rs:4:20\n"
    "error: aborting due to previous error\n"
)


def _base_dir() -> Path:
    """Return the resolved base directory for log resources."""
    raw = os.getenv(BASE_DIR_ENV, os.getcwd())
    return Path(raw).resolve()


def _safe_resolve(path: str) -> Path:
    """Resolve a path under the configured base directory."""
    base = _base_dir()
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = base / p
    p = p.resolve()
    if base not in p.parents and p != base:
        raise ValueError("Path escapes base dir")
    if not p.is_file():
        raise FileNotFoundError(f"File not found: {p}")
    return p


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("app://log-analyzer/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        return (
            "Resources:\n"
            "- app://log-analyzer/help\n"
            "- app://log-analyzer/config/extract-defaults\n"
            "- app://log-analyzer/schemas/extraction-result\n"
            "- app://log-analyzer/examples/sample-log\n"
            f"- log://{{path}} (restricted to {BASE_DIR_ENV}; plain or .gz)\n"
            f"\nBase directory: {_base_dir()}\n"
        )

    @mcp.resource("app://log-analyzer/examples/sample-log")
    def sample_log() -> str:
        """Return a tiny failing build log for demos and tests."""
        return SAMPLE_LOG

    @mcp.resource("app://log-analyzer/config/extract-defaults")
    def extract_defaults() -> dict[str, int]:
        """Return the effective extraction thresholds (env overrides applied)."""
        return asdict(resolve_extract_config(None))

    @mcp.resource("app://log-analyzer/schemas/extraction-result")
    def extraction_schema() -> dict[str, Any]:
        """Return the JSON schema of extract_failures results."""
        return ExtractionResult.model_json_schema()

    @mcp.resource("log://{path}")
    async def read_log_resource(path: str) -> str:
        """Return the full (decompressed) log contents."""
        p = await asyncio.to_thread(_safe_resolve, path)
        data = await read_log(p)
        return data.decode("utf-8", errors="replace")
