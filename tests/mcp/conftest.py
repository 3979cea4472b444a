"""Fixtures for MCP server tests."""

from __future__ import annotations

import asyncio
import io
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest

from sidero.config import Credential, Settings
from sidero.findings import FindingsClient
from sidero.mcp_server import Dispatcher
from sidero.mcp_tools.common import ToolContext
from sidero.orchestrator import SemgrepRunner
from sidero.registry import ToolRegistry, build_registry
from sidero.transport import StdioFramer
from tests.mcp._helpers import Harness

API_URL = "https://semgrep.test/api/v1"


def _upstream(requests: list[httpx.Request]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        url = str(request.url)
        if url == f"{API_URL}/deployments":
            return httpx.Response(200, json={"deployments": [{"slug": "acme"}]})
        if url.startswith(f"{API_URL}/deployments/acme/findings"):
            return httpx.Response(
                200,
                json={"findings": [{"id": 1, "rule_name": "r", "severity": "high", "location": {"file_path": "a.py"}}]},
            )
        if url.endswith("rule_schema_v1.yaml"):
            return httpx.Response(200, text="$schema: http://json-schema.org/draft-07/schema#\n")
        if url == "https://semgrep.dev/c/r/python.lang.eval":
            return httpx.Response(200, text="rules:\n- id: eval\n")
        return httpx.Response(404, text="not found")

    return handler


@pytest.fixture
def upstream_requests() -> list[httpx.Request]:
    """Every request the findings client sent during the test."""
    return []


@pytest.fixture
def token() -> str | None:
    return "s3cret"


@pytest.fixture
async def context(
    settings: Settings, upstream_requests: list[httpx.Request], token: str | None
) -> AsyncGenerator[ToolContext, None]:
    findings = FindingsClient(
        Credential(token) if token else None,
        base_url=API_URL,
        transport=httpx.MockTransport(_upstream(upstream_requests)),
    )
    yield ToolContext(runner=SemgrepRunner(settings), findings=findings)
    await findings.aclose()


@pytest.fixture
def registry() -> ToolRegistry:
    return build_registry()


@pytest.fixture
async def server(registry: ToolRegistry, context: ToolContext) -> AsyncGenerator[Harness, None]:
    """A running Dispatcher fed from an in-memory stream."""
    reader = asyncio.StreamReader()
    sink = io.BytesIO()
    harness = Harness(Dispatcher(registry, context, StdioFramer(reader, sink)), reader, sink)
    harness.start()
    yield harness
    await harness.close()
