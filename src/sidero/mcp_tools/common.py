"""Pure helpers and shared state types for tool modules.

This module has NO dependency on ``mcp_server``, so it can be imported freely
without triggering circular-import issues.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar, cast

from mcp.types import TextContent

from sidero.findings import FindingsClient
from sidero.orchestrator import SemgrepRunner

_T = TypeVar("_T")


@dataclass(frozen=True)
class ToolContext:
    """Process-wide collaborators handed to every tool handler."""

    runner: SemgrepRunner
    findings: FindingsClient


Handler = Callable[[ToolContext, dict[str, Any]], Awaitable[dict[str, Any]]]


def _parse_args(arguments: dict[str, Any], cls: type[_T]) -> _T:
    """Cast validated arguments to a typed dict for static analysis.

    Safety: the dispatcher runs ``validate_arguments`` against the tool's
    inputSchema before any handler is invoked.  This cast() provides mypy
    type narrowing only — no runtime validation.
    """
    return cast(_T, arguments)


def _text(content: object) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]
