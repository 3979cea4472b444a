"""Tests for the JSON-RPC envelope codec."""

from __future__ import annotations

import json

import pytest

from sidero.errors import INTERNAL_ERROR, INVALID_REQUEST, MalformedMessage, ScanTimeout, ValidationError
from sidero.protocol import Response, RpcError, decode, encode


class TestDecode:
    def test_request(self) -> None:
        req = decode(b'{"jsonrpc":"2.0","id":7,"method":"semgrep_scan","params":{"paths":["a"]}}')
        assert req is not None
        assert req.id == 7
        assert req.method == "semgrep_scan"
        assert req.params == {"paths": ["a"]}
        assert not req.is_notification

    def test_string_id_and_missing_params(self) -> None:
        req = decode('{"jsonrpc":"2.0","id":"abc","method":"ping"}')
        assert req is not None
        assert req.id == "abc"
        assert req.params == {}

    def test_notification(self) -> None:
        req = decode(b'{"jsonrpc":"2.0","method":"notifications/initialized"}')
        assert req is not None
        assert req.is_notification

    def test_client_reply_is_ignored(self) -> None:
        assert decode(b'{"jsonrpc":"2.0","id":1,"result":{}}') is None

    def test_invalid_json_has_no_id(self) -> None:
        with pytest.raises(MalformedMessage) as exc_info:
            decode(b"{not json")
        assert exc_info.value.code == INVALID_REQUEST
        assert exc_info.value.request_id is None

    @pytest.mark.parametrize("raw", [b"[]", b"42", b'"text"'])
    def test_non_object(self, raw: bytes) -> None:
        with pytest.raises(MalformedMessage):
            decode(raw)

    @pytest.mark.parametrize("bad_id", ["true", "1.5", "{}", "[1]"])
    def test_bad_id_cannot_be_answered(self, bad_id: str) -> None:
        with pytest.raises(MalformedMessage) as exc_info:
            decode(f'{{"jsonrpc":"2.0","id":{bad_id},"method":"ping"}}')
        assert exc_info.value.request_id is None

    @pytest.mark.parametrize(
        "frame",
        [
            '{"jsonrpc":"1.0","id":3,"method":"ping"}',
            '{"jsonrpc":"2.0","id":3}',
            '{"jsonrpc":"2.0","id":3,"method":""}',
            '{"jsonrpc":"2.0","id":3,"method":"ping","params":[1,2]}',
        ],
    )
    def test_malformed_with_recoverable_id(self, frame: str) -> None:
        with pytest.raises(MalformedMessage) as exc_info:
            decode(frame)
        assert exc_info.value.request_id == 3


class TestResponse:
    def test_exactly_one_of_result_or_error(self) -> None:
        with pytest.raises(ValueError):
            Response(id=1)
        with pytest.raises(ValueError):
            Response(id=1, result={}, error=RpcError(INTERNAL_ERROR, "x"))

    def test_success_encoding(self) -> None:
        line = encode(Response.success(7, {"findings": []}))
        assert b"\n" not in line
        assert json.loads(line) == {"jsonrpc": "2.0", "id": 7, "result": {"findings": []}}

    def test_domain_error_keeps_code_and_detail(self) -> None:
        resp = Response.from_exception("a", ValidationError("paths", "is required"))
        data = json.loads(encode(resp))
        assert data["id"] == "a"
        assert data["error"]["code"] == -32602
        assert data["error"]["data"] == {"kind": "ValidationError", "field": "paths", "reason": "is required"}

    def test_timeout_error(self) -> None:
        data = Response.from_exception(1, ScanTimeout(5, stderr=b"partial")).to_dict()
        assert data["error"]["code"] == -32001
        assert data["error"]["data"]["stderr"] == "partial"

    def test_unexpected_exception_is_internal_error(self) -> None:
        data = Response.from_exception(1, KeyError("secret")).to_dict()
        assert data["error"] == {"code": INTERNAL_ERROR, "message": "Internal error", "data": {"kind": "KeyError"}}

    def test_non_ascii_and_newlines_stay_on_one_line(self) -> None:
        line = encode(Response.success(1, {"text": "línea 1\nlínea 2"}))
        assert line.count(b"\n") == 0
        assert json.loads(line)["result"]["text"] == "línea 1\nlínea 2"
