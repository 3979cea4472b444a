"""MCP server for sidero.

Bridges an MCP client on stdio to the Semgrep engine and the Semgrep App
findings API.  Every inbound request runs as its own asyncio task, so a slow
scan never delays the answer to an unrelated request; responses are written
as they complete and correlated by id.

Usage:
    sidero-mcp                                # semgrep from PATH, env config
    sidero-mcp --timeout 120 --max-concurrent-scans 4
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    GetPromptResult,
    Prompt,
    PromptArgument,
    PromptMessage,
    Resource,
    ResourceTemplate,
    TextContent,
)

from sidero import __version__
from sidero.config import Settings, load_settings
from sidero.errors import (
    FramingError,
    MalformedMessage,
    MethodNotFound,
    NotFound,
    SideroError,
    ValidationError,
)
from sidero.findings import FindingsClient
from sidero.logging import setup_logging, summarize_args
from sidero.mcp_tools.common import ToolContext, _text
from sidero.orchestrator import SemgrepRunner
from sidero.protocol import Request, RequestId, Response, decode, encode
from sidero.registry import ToolRegistry, build_registry
from sidero.transport import StdioFramer, open_stdio
from sidero.validation import validate_arguments

logger = logging.getLogger(__name__)

SERVER_NAME = "sidero"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18", LATEST_PROTOCOL_VERSION)

_INSTRUCTIONS = """\
Sidero runs Semgrep for you. Use semgrep_scan for files on disk with a ruleset
reference, semgrep_scan_with_custom_rule to try an ad-hoc YAML rule (files may
be passed inline as {path, content}), get_abstract_syntax_tree to inspect how
Semgrep parses a snippet, and semgrep_findings for findings already recorded in
the Semgrep App (needs SEMGREP_APP_TOKEN on the server)."""

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

RULE_SCHEMA_URI = "semgrep://rule/schema"
RULE_SCHEMA_URL = "https://raw.githubusercontent.com/semgrep/semgrep-interfaces/main/rule_schema_v1.yaml"
RULE_YAML_TEMPLATE = "semgrep://rule/{rule_id}/yaml"
RULE_REGISTRY_URL = "https://semgrep.dev/c/r/{rule_id}"
_RULE_URI_RE = re.compile(r"^semgrep://rule/(\w[\w.-]*)/yaml$")


def list_resources() -> list[Resource]:
    return [
        Resource(
            uri=RULE_SCHEMA_URI,  # type: ignore[arg-type]
            name="Semgrep Rule Schema",
            description="Schema of the Semgrep rule YAML format",
            mimeType="text/yaml",
        ),
    ]


def list_resource_templates() -> list[ResourceTemplate]:
    return [
        ResourceTemplate(
            uriTemplate=RULE_YAML_TEMPLATE,
            name="Semgrep Registry Rule",
            description="YAML definition of a rule from the Semgrep registry, by rule id",
            mimeType="text/yaml",
        ),
    ]


async def read_resource(ctx: ToolContext, uri: str) -> dict[str, Any]:
    if uri == RULE_SCHEMA_URI:
        text = await ctx.findings.fetch_text(RULE_SCHEMA_URL)
    else:
        m = _RULE_URI_RE.match(uri)
        if m is None:
            raise NotFound("Resource", uri)
        text = await ctx.findings.fetch_text(RULE_REGISTRY_URL.format(rule_id=m.group(1)))
    return {"contents": [{"uri": uri, "mimeType": "text/yaml", "text": text}]}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

WRITE_RULE_PROMPT = "write_custom_semgrep_rule"


def list_prompts() -> list[Prompt]:
    return [
        Prompt(
            name=WRITE_RULE_PROMPT,
            description="Write a custom Semgrep rule that matches the given code",
            arguments=[
                PromptArgument(name="code", description="Code snippet the rule should match", required=True),
                PromptArgument(name="language", description="Language of the snippet", required=True),
            ],
        ),
    ]


def get_prompt(name: str, arguments: dict[str, str] | None = None) -> GetPromptResult:
    if name != WRITE_RULE_PROMPT:
        raise NotFound("Prompt", name)
    arguments = arguments or {}
    for key in ("code", "language"):
        if not isinstance(arguments.get(key), str) or not arguments[key]:
            raise ValidationError(f"arguments.{key}", "is required")
    code, language = arguments["code"], arguments["language"]
    text = (
        "You are an expert at writing Semgrep rules.\n\n"
        f"Code to analyze:\n```{language}\n{code}\n```\n\n"
        f"Language: {language}\n\n"
        "Write a Semgrep rule (YAML) that detects the issue in this code. "
        "Verify it with the semgrep_scan_with_custom_rule tool, passing the code inline, "
        "and use get_abstract_syntax_tree if a pattern does not match as expected."
    )
    return GetPromptResult(
        description="Write a custom Semgrep rule",
        messages=[PromptMessage(role="user", content=TextContent(type="text", text=text))],
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    """Reads requests from a framer and answers each one from its own task."""

    def __init__(self, registry: ToolRegistry, context: ToolContext, framer: StdioFramer) -> None:
        self._registry = registry
        self._context = context
        self._framer = framer
        self._tasks: set[asyncio.Task[None]] = set()
        self._inflight: set[RequestId] = set()
        self._methods: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "logging/setLevel": self._set_level,
            "tools/list": self._list_tools,
            "tools/call": self._tools_call,
            "prompts/list": self._list_prompts,
            "prompts/get": self._get_prompt,
            "resources/list": self._list_resources,
            "resources/templates/list": self._list_resource_templates,
            "resources/read": self._read_resource,
        }

    async def serve(self) -> None:
        """Process frames until the input closes.

        When the stream ends, requests running an engine job are cancelled
        (their processes are terminated and staged files removed) and every
        other request is awaited so its response is still written.
        FramingError propagates after the same cleanup.
        """
        try:
            async for frame in self._framer.frames():
                self._accept(frame)
        finally:
            await self._drain()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain(self) -> None:
        cancelled = self._context.runner.cancel_jobs()
        if cancelled:
            logger.info("Stream closed with %d engine job(s) running; cancelling", cancelled)
        pending = [t for t in self._tasks if not t.done()]
        await asyncio.gather(*pending, return_exceptions=True)

    def _accept(self, frame: bytes) -> None:
        try:
            request = decode(frame)
        except MalformedMessage as e:
            if e.request_id is None:
                logger.warning("dropped_message", extra={"error": e.message})
            else:
                self._spawn(self._send(Response.from_exception(e.request_id, e)))
            return

        if request is None:
            logger.debug("Ignoring reply sent by client")
            return
        if request.id is None:
            self._notification(request)
            return
        if request.id in self._inflight:
            err = MalformedMessage(f"Duplicate request id: {request.id!r}", request_id=request.id)
            logger.warning("duplicate_request_id", extra={"request_id": request.id})
            self._spawn(self._send(Response.from_exception(request.id, err)))
            return
        self._inflight.add(request.id)
        self._spawn(self._handle(request))

    def _notification(self, request: Request) -> None:
        if request.method == "notifications/initialized":
            logger.info("client_initialized")
        elif request.method == "notifications/cancelled":
            # Cancel-by-id is not supported; the request runs to completion.
            logger.debug("Ignoring cancellation for %s", request.params.get("requestId"))
        else:
            logger.debug("Ignoring notification %s", request.method)

    async def _handle(self, request: Request) -> None:
        assert request.id is not None
        try:
            try:
                result = await self._route(request)
            except SideroError as e:
                response = Response.from_exception(request.id, e)
            except Exception as e:
                logger.error("internal_error", extra={"request_id": request.id, "tool": request.method}, exc_info=True)
                response = Response.from_exception(request.id, e)
            else:
                response = Response.success(request.id, result)
        finally:
            self._inflight.discard(request.id)
        await self._send(response)

    async def _send(self, response: Response) -> None:
        try:
            await self._framer.write(encode(response))
        except OSError:
            logger.error("write_failed", extra={"request_id": response.id}, exc_info=True)

    async def _route(self, request: Request) -> dict[str, Any]:
        method = self._methods.get(request.method)
        if method is not None:
            return await method(request.params)
        if request.method in self._registry:
            return await self.call_tool(request.method, request.params, request_id=request.id)
        raise MethodNotFound(request.method)

    async def call_tool(self, name: str, arguments: Any, *, request_id: RequestId | None = None) -> dict[str, Any]:
        """Validate *arguments* and run tool *name*. Raises SideroError."""
        spec = self._registry.resolve(name)
        t0 = time.monotonic()
        try:
            args = validate_arguments(spec.descriptor, arguments)
            result = await spec.handler(self._context, args)
        except SideroError as e:
            logger.warning(
                "tool_error",
                extra={"tool": name, "request_id": request_id, "args_data": summarize_args(arguments), "error": e.message},
            )
            raise
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        logger.info(
            "tool_call",
            extra={"tool": name, "request_id": request_id, "args_data": summarize_args(args), "duration_ms": duration_ms},
        )
        return result

    # -- MCP methods ---------------------------------------------------------

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        client = params.get("clientInfo") or {}
        logger.info("initialize", extra={"args_data": {"client": client.get("name"), "protocol": requested}})
        return {
            "protocolVersion": version,
            "capabilities": {
                "logging": {},
                "tools": {"listChanged": False},
                "prompts": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
            "instructions": _INSTRUCTIONS,
        }

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _set_level(self, params: dict[str, Any]) -> dict[str, Any]:
        level = params.get("level")
        if level not in _LOG_LEVELS:
            raise ValidationError("level", f"must be one of {sorted(_LOG_LEVELS)}")
        logging.getLogger("sidero").setLevel(_LOG_LEVELS[level])
        return {}

    async def _list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [_dump(t) for t in self._registry.list()]}

    async def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise ValidationError("name", "is required")
        payload = await self.call_tool(name, params.get("arguments"), request_id=None)
        return {
            "content": [_dump(c) for c in _text(payload)],
            "structuredContent": payload,
            "isError": False,
        }

    async def _list_prompts(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"prompts": [_dump(p) for p in list_prompts()]}

    async def _get_prompt(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str):
            raise ValidationError("name", "is required")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise ValidationError("arguments", "must be an object")
        return _dump(get_prompt(name, arguments))

    async def _list_resources(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": [_dump(r) for r in list_resources()]}

    async def _list_resource_templates(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resourceTemplates": [_dump(r) for r in list_resource_templates()]}

    async def _read_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise ValidationError("uri", "is required")
        return await read_resource(self._context, uri)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def build_context(settings: Settings) -> ToolContext:
    return ToolContext(
        runner=SemgrepRunner(settings),
        findings=FindingsClient(settings.credential, base_url=settings.api_url, timeout=settings.http_timeout),
    )


async def run_server(settings: Settings) -> None:
    """Serve MCP on stdin/stdout until stdin closes."""
    _logger = setup_logging(settings.log_file)
    _logger.info(
        "mcp_server_start",
        extra={
            "tool": "server",
            "args_data": {
                "semgrep_bin": settings.semgrep_bin,
                "scan_timeout": settings.scan_timeout,
                "max_concurrent_scans": settings.max_concurrent_scans,
                "findings_configured": bool(settings.credential),
            },
        },
    )
    context = build_context(settings)
    try:
        async with open_stdio() as framer:
            await Dispatcher(build_registry(), context, framer).serve()
    finally:
        await context.findings.aclose()
    _logger.info("mcp_server_stop", extra={"tool": "server"})


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Sidero MCP server (Semgrep over stdio)")
    parser.add_argument("--semgrep-bin", default=None, help="Semgrep executable (default: semgrep on PATH)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-scan timeout in seconds")
    parser.add_argument("--max-concurrent-scans", type=int, default=None, help="Cap on concurrent engine processes")
    parser.add_argument("--log-file", type=Path, default=None, help="Write JSONL logs here instead of stderr")
    args = parser.parse_args(argv)

    try:
        settings = load_settings().with_overrides(
            semgrep_bin=args.semgrep_bin,
            scan_timeout=args.timeout,
            max_concurrent_scans=args.max_concurrent_scans,
            log_file=args.log_file,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        asyncio.run(run_server(settings))
    except FramingError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
