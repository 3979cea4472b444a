"""MCP tools backed by the local Semgrep engine."""

from __future__ import annotations

from typing import Any

from mcp.types import Tool

from sidero.mcp_tools.common import Handler, ToolContext, _parse_args
from sidero.types.inputs import AstArgs, CustomRuleScanArgs, SemgrepScanArgs

_MAX_TARGETS = 1000
_LANGUAGE_PATTERN = r"^[A-Za-z0-9_+#.-]+$"


def register() -> tuple[list[Tool], dict[str, Handler]]:
    """Return (tool_definitions, handler_map) for engine-backed tools."""
    tools = [
        Tool(
            name="semgrep_scan",
            description=(
                "Run a Semgrep scan on files or directories. Returns the engine's findings. "
                "config is a ruleset reference such as 'auto', 'p/security-audit' or a rules file path."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "paths": {
                        "type": "array",
                        "items": {"type": "string", "x-operand": True},
                        "minItems": 1,
                        "maxItems": _MAX_TARGETS,
                        "description": "File or directory paths to scan",
                    },
                    "config": {
                        "type": "string",
                        "default": "auto",
                        "x-operand": True,
                        "description": "Ruleset reference (default: auto)",
                    },
                },
                "required": ["paths"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="semgrep_scan_with_custom_rule",
            description=(
                "Scan code with an ad-hoc Semgrep rule written in YAML. code_files entries are either paths "
                "on disk or {path, content} objects scanned from memory."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "rule": {"type": "string", "minLength": 1, "description": "Semgrep rule definition (YAML)"},
                    "code_files": {
                        "type": "array",
                        "minItems": 1,
                        "maxItems": _MAX_TARGETS,
                        "items": {
                            "oneOf": [
                                {"type": "string", "x-operand": True},
                                {
                                    "type": "object",
                                    "properties": {
                                        "path": {"type": "string", "minLength": 1, "description": "Relative file name"},
                                        "content": {"type": "string", "description": "File content"},
                                    },
                                    "required": ["path", "content"],
                                    "additionalProperties": False,
                                },
                            ]
                        },
                        "description": "Files to scan",
                    },
                },
                "required": ["rule", "code_files"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="get_abstract_syntax_tree",
            description="Return the Semgrep generic AST of a code snippet",
            inputSchema={
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "Code content"},
                    "language": {
                        "type": "string",
                        "pattern": _LANGUAGE_PATTERN,
                        "x-operand": True,
                        "description": "Language of the code (see supported_languages)",
                    },
                },
                "required": ["code", "language"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="get_version",
            description="Get the installed Semgrep version",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="supported_languages",
            description="List the languages Semgrep can parse",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]

    handlers: dict[str, Handler] = {
        "semgrep_scan": _handle_scan,
        "semgrep_scan_with_custom_rule": _handle_scan_with_custom_rule,
        "get_abstract_syntax_tree": _handle_ast,
        "get_version": _handle_version,
        "supported_languages": _handle_supported_languages,
    }

    return tools, handlers


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_scan(ctx: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    args = _parse_args(arguments, SemgrepScanArgs)
    return dict(await ctx.runner.scan(args["paths"], args.get("config", "auto")))


async def _handle_scan_with_custom_rule(ctx: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    args = _parse_args(arguments, CustomRuleScanArgs)
    return dict(await ctx.runner.scan_with_custom_rule(args["rule"], args["code_files"]))  # type: ignore[arg-type]


async def _handle_ast(ctx: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    args = _parse_args(arguments, AstArgs)
    return await ctx.runner.dump_ast(args["code"], args["language"])


async def _handle_version(ctx: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"version": await ctx.runner.version()}


async def _handle_supported_languages(ctx: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"languages": await ctx.runner.supported_languages()}
