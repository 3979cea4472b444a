"""JSON-RPC 2.0 envelope codec.

Decodes raw frames into :class:`Request` objects and encodes
:class:`Response` objects.  A response's result/error exclusivity is checked
when it is constructed, not when it is written.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from sidero.errors import INTERNAL_ERROR, MalformedMessage, SideroError

JSONRPC_VERSION = "2.0"

RequestId = str | int


@dataclass(frozen=True)
class Request:
    id: RequestId | None
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None


@dataclass(frozen=True)
class RpcError:
    code: int
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass(frozen=True)
class Response:
    id: RequestId
    result: dict[str, Any] | None = None
    error: RpcError | None = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            msg = "Response must carry exactly one of result or error"
            raise ValueError(msg)

    @classmethod
    def success(cls, request_id: RequestId, result: dict[str, Any]) -> Response:
        return cls(id=request_id, result=result)

    @classmethod
    def failure(cls, request_id: RequestId, error: RpcError) -> Response:
        return cls(id=request_id, error=error)

    @classmethod
    def from_exception(cls, request_id: RequestId, exc: BaseException) -> Response:
        """Map *exc* to an Error response; unknown exceptions become -32603."""
        if isinstance(exc, SideroError):
            return cls.failure(request_id, RpcError(exc.code, exc.message, exc.detail()))
        return cls.failure(request_id, RpcError(INTERNAL_ERROR, "Internal error", {"kind": type(exc).__name__}))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            out["error"] = self.error.to_dict()
        else:
            out["result"] = self.result
        return out


def _parse_id(raw: Any) -> RequestId | None:
    # bool is an int subclass but never a valid id.
    if isinstance(raw, bool) or not isinstance(raw, str | int):
        msg = f"Invalid request id: {raw!r}"
        raise MalformedMessage(msg)
    return raw


def decode(buffer: bytes | str) -> Request | None:
    """Parse one frame.

    Returns ``None`` for replies sent by the client (``result``/``error``
    without ``method``), which this server never solicits.

    Raises MalformedMessage; ``request_id`` is set when the id itself could be
    recovered, so the caller can answer instead of dropping the frame.
    """
    try:
        data = json.loads(buffer)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"Parse error: {e}"
        raise MalformedMessage(msg) from e
    if not isinstance(data, dict):
        msg = "Message must be a JSON object"
        raise MalformedMessage(msg)

    request_id = _parse_id(data["id"]) if "id" in data and data["id"] is not None else None

    if "method" not in data and ("result" in data or "error" in data):
        return None

    if data.get("jsonrpc") != JSONRPC_VERSION:
        msg = f"Unsupported jsonrpc version: {data.get('jsonrpc')!r}"
        raise MalformedMessage(msg, request_id=request_id)

    method = data.get("method")
    if not isinstance(method, str) or not method:
        msg = "Missing or invalid method"
        raise MalformedMessage(msg, request_id=request_id)

    params = data.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        msg = "params must be an object"
        raise MalformedMessage(msg, request_id=request_id)

    return Request(id=request_id, method=method, params=params)


def encode(response: Response) -> bytes:
    """Serialize *response* as a single-line JSON document (no newline)."""
    return json.dumps(response.to_dict(), separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")
