"""MCP prompt registry.

Prompts are predefined conversation/workflow templates that the client can invoke explicitly.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP


def register_prompts(mcp: FastMCP) -> None:
    """Register prompt templates on the MCP server."""

    @mcp.prompt()
    def explain_build_failure(
        log_path: str,
        index_path: str | None = None,
        max_blocks: int = 10,
    ) -> list[dict[str, Any]]:
        """Build a prompt that explains why a CI build failed."""
        call_lines = [f"- log_path: {log_path}", f"- max_blocks: {max_blocks}"]
        if index_path is not None:
            call_lines.append(f"- index_path: {index_path}")
        call_block = "\n".join(call_lines)
        return [
            {
                "role": "system",
                "content": (
                    "You are a build engineer helping a contributor understand a failed CI run. "
                    "Base every statement on the extracted log fragments. "
                    "Do not invent details; if the evidence is insufficient, say so."
                ),
            },
            {
                "role": "user",
                "content": (
                    "Explain the build failure using extract_failures. Follow this workflow:\n"
                    "- Call extract_failures first with the parameters below.\n"
                    "- Blocks are the parts of the log least like successful builds; "
                    "they are ordered as in the log and may include a few lines of context.\n"
                    "- If no blocks are returned, say that nothing unusual was found.\n"
                    "- Quote lines with their line number, e.g., [#123] error[E0382]: ...\n\n"
                    "Call extract_failures with:\n"
                    f"{call_block}\n\n"
                    "Return this structure:\n"
                    "1) What failed (1-3 bullets)\n"
                    "2) Evidence (2-5 quoted lines)\n"
                    "3) Likely cause (1-2 sentences; say 'Unknown' if unclear)\n"
                    "4) Suggested fix (1-3 bullets)\n"
                ),
            },
        ]
