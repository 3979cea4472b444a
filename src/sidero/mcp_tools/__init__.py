"""Tool modules. Each exposes ``register() -> (tools, handlers)``."""

from __future__ import annotations

from sidero.mcp_tools import findings, scan

TOOL_MODULES = (scan, findings)

__all__ = ["TOOL_MODULES"]
