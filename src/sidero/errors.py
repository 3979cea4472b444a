"""Error taxonomy for sidero.

Every recoverable failure is a ``SideroError`` subclass carrying the JSON-RPC
error code it maps to, so the dispatcher can turn any of them into an Error
response without knowing where it came from.  Only ``FramingError`` is fatal.
"""

from __future__ import annotations

from typing import Any

# JSON-RPC 2.0 reserved codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Implementation-defined server errors (-32000..-32099)
SCAN_TIMEOUT = -32001
PROCESS_SPAWN_ERROR = -32002
OUTPUT_PARSE_ERROR = -32003
ENGINE_ERROR = -32004
AUTH_ERROR = -32010
NETWORK_ERROR = -32011
UPSTREAM_ERROR = -32012

# Captured stderr is clipped to its tail before it leaves the process.
STDERR_TAIL_CHARS = 2000


def tail(text: str | bytes | None, limit: int = STDERR_TAIL_CHARS) -> str:
    """Decode (if needed) and keep the last *limit* characters of *text*."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-limit:]


class SideroError(Exception):
    """Base class for errors answered with a JSON-RPC Error response."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def detail(self) -> dict[str, Any]:
        """Structured data attached to the Error response."""
        return {"kind": self.kind}


class FramingError(Exception):
    """The input stream violated message boundaries. Fatal for the connection."""


class MalformedMessage(SideroError):
    code = INVALID_REQUEST

    def __init__(self, message: str, *, request_id: str | int | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class MethodNotFound(SideroError):
    code = METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        super().__init__(f"Method not found: {method}")
        self.method = method


class NotFound(SideroError):
    """A tool, prompt or resource name that is not registered."""

    code = INVALID_PARAMS

    def __init__(self, what: str, name: str) -> None:
        super().__init__(f"{what} not found: {name}")
        self.name = name


class ValidationError(SideroError):
    code = INVALID_PARAMS

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid argument {field!r}: {reason}")
        self.field = field
        self.reason = reason

    def detail(self) -> dict[str, Any]:
        return {"kind": self.kind, "field": self.field, "reason": self.reason}


# ---------------------------------------------------------------------------
# Process orchestrator
# ---------------------------------------------------------------------------


class ScanError(SideroError):
    """Base class for failures of an engine invocation."""

    def __init__(self, message: str, *, stderr: str | bytes | None = None) -> None:
        super().__init__(message)
        self.stderr = tail(stderr)

    def detail(self) -> dict[str, Any]:
        data = super().detail()
        if self.stderr:
            data["stderr"] = self.stderr
        return data


class ScanTimeout(ScanError):
    code = SCAN_TIMEOUT

    def __init__(self, timeout: float, *, stderr: str | bytes | None = None) -> None:
        super().__init__(f"Semgrep did not finish within {timeout:g}s and was terminated", stderr=stderr)
        self.timeout = timeout

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "timeout_seconds": self.timeout}


class ProcessSpawnError(ScanError):
    code = PROCESS_SPAWN_ERROR


class OutputParseError(ScanError):
    code = OUTPUT_PARSE_ERROR


class EngineError(ScanError):
    """The engine exited with a code outside its success set."""

    code = ENGINE_ERROR

    def __init__(self, returncode: int, *, stderr: str | bytes | None = None) -> None:
        super().__init__(f"Semgrep failed with exit code {returncode}", stderr=stderr)
        self.returncode = returncode

    def detail(self) -> dict[str, Any]:
        return {**super().detail(), "returncode": self.returncode}


# ---------------------------------------------------------------------------
# Findings client
# ---------------------------------------------------------------------------


class FindingsError(SideroError):
    """Base class for findings-service failures."""


class AuthError(FindingsError):
    code = AUTH_ERROR


class NetworkError(FindingsError):
    code = NETWORK_ERROR


class UpstreamError(FindingsError):
    code = UPSTREAM_ERROR

    def __init__(self, message: str, *, status: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def detail(self) -> dict[str, Any]:
        data = super().detail()
        if self.status is not None:
            data["status"] = self.status
        if self.body is not None:
            data["body"] = self.body
        return data
