"""MCP tool for the Semgrep App findings service."""

from __future__ import annotations

from typing import Any

from mcp.types import Tool

from sidero.findings import FindingsQuery
from sidero.mcp_tools.common import Handler, ToolContext, _parse_args
from sidero.types.inputs import FindingsArgs

_SEVERITIES = ["low", "medium", "high", "critical"]


def register() -> tuple[list[Tool], dict[str, Handler]]:
    """Return (tool_definitions, handler_map) for findings-service tools."""
    tools = [
        Tool(
            name="semgrep_findings",
            description=(
                "Fetch findings recorded in the Semgrep App for the deployment visible to the configured token. "
                "Requires SEMGREP_APP_TOKEN in the server environment."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "deployment": {
                        "type": "string",
                        "pattern": r"^[\w-]+$",
                        "description": "Deployment slug (default: first deployment of the token)",
                    },
                    "issue_type": {"type": "string", "enum": ["sast", "sca"], "description": "Finding type"},
                    "status": {"type": "string", "description": "Triage status, e.g. open, fixed, ignored"},
                    "repos": {
                        "type": "array",
                        "items": {"type": "string", "minLength": 1},
                        "description": "Repository names to include",
                    },
                    "severities": {
                        "type": "array",
                        "items": {"type": "string", "enum": _SEVERITIES},
                        "description": "Severities to include",
                    },
                    "page": {"type": "integer", "minimum": 0, "description": "Page number (0-based)"},
                    "page_size": {"type": "integer", "minimum": 1, "maximum": 3000, "description": "Findings per page"},
                },
                "additionalProperties": False,
            },
        ),
    ]

    handlers: dict[str, Handler] = {
        "semgrep_findings": _handle_findings,
    }

    return tools, handlers


async def _handle_findings(ctx: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    args = _parse_args(arguments, FindingsArgs)
    filters = {k: v for k, v in args.items() if k != "deployment"}
    result = await ctx.findings.fetch(FindingsQuery(deployment=args.get("deployment"), filters=filters))
    return result.to_dict()
