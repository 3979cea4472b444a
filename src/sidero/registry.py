"""Static tool registry.

Built once at startup from the ``register()`` functions of the tool modules;
read-only afterwards and shared by every request.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType, ModuleType

from mcp.types import Tool

from sidero.errors import NotFound
from sidero.mcp_tools.common import Handler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    descriptor: Tool
    handler: Handler

    @property
    def name(self) -> str:
        return self.descriptor.name


class ToolRegistry:
    """Maps tool names to their descriptor and handler."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        table: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in table:
                msg = f"Duplicate tool name: {spec.name!r}"
                raise ValueError(msg)
            table[spec.name] = spec
        self._specs = MappingProxyType(table)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def names(self) -> list[str]:
        return list(self._specs)

    def list(self) -> list[Tool]:
        return [spec.descriptor for spec in self._specs.values()]

    def resolve(self, name: str) -> ToolSpec:
        """Return the spec for *name*. Raises NotFound."""
        try:
            return self._specs[name]
        except KeyError:
            raise NotFound("Tool", name) from None


def build_registry(modules: Iterable[ModuleType] | None = None) -> ToolRegistry:
    """Collect tools from *modules* (default: every ``sidero.mcp_tools`` module).

    Raises ValueError if a tool lacks a handler or a handler lacks a tool.
    """
    if modules is None:
        from sidero.mcp_tools import TOOL_MODULES

        modules = TOOL_MODULES

    specs: list[ToolSpec] = []
    for mod in modules:
        tools, handlers = mod.register()
        tool_names = {t.name for t in tools}
        if tool_names != set(handlers):
            msg = f"{mod.__name__}: tools and handlers disagree: {sorted(tool_names ^ set(handlers))}"
            raise ValueError(msg)
        specs.extend(ToolSpec(descriptor=t, handler=handlers[t.name]) for t in tools)
    registry = ToolRegistry(specs)
    logger.debug("Registered %d tools", len(registry))
    return registry
