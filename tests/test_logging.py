"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
from pathlib import Path

import pytest

from sidero.logging import setup_logging, summarize_args


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        log_path = tmp_path / "sidero.jsonl"
        logger = setup_logging(log_path)
        logger.info("test_message", extra={"tool": "semgrep_scan", "args_data": {"paths": ["src"]}})
        for handler in logger.handlers:
            handler.flush()
        record = json.loads(log_path.read_text().strip())
        assert record["msg"] == "test_message"
        assert record["tool"] == "semgrep_scan"
        assert record["args"]["paths"] == ["src"]

    def test_json_format(self, tmp_path: Path) -> None:
        log_path = tmp_path / "sidero.jsonl"
        logger = setup_logging(log_path)
        logger.info("formatted", extra={"tool": "get_version", "duration_ms": 42.5, "request_id": 7, "job_id": "ab12"})
        for handler in logger.handlers:
            handler.flush()
        record = json.loads(log_path.read_text().strip().split("\n")[-1])
        assert record["duration_ms"] == 42.5
        assert record["request_id"] == 7
        assert record["job_id"] == "ab12"
        assert record["level"] == "INFO"

    def test_child_loggers_propagate(self, tmp_path: Path) -> None:
        log_path = tmp_path / "sidero.jsonl"
        logger = setup_logging(log_path)
        logging.getLogger("sidero.orchestrator").warning("job_failed", extra={"error": "boom"})
        for handler in logger.handlers:
            handler.flush()
        record = json.loads(log_path.read_text().strip())
        assert record["logger"] == "sidero.orchestrator"
        assert record["error"] == "boom"

    def test_exception_recorded(self, tmp_path: Path) -> None:
        log_path = tmp_path / "sidero.jsonl"
        logger = setup_logging(log_path)
        try:
            raise RuntimeError("kaput")
        except RuntimeError:
            logger.error("internal_error", exc_info=True)
        for handler in logger.handlers:
            handler.flush()
        assert json.loads(log_path.read_text().strip())["exception"] == "kaput"

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path / "sidero.jsonl")
        logger2 = setup_logging(tmp_path / "sidero.jsonl")
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_new_target_replaces_handler(self, tmp_path: Path) -> None:
        setup_logging(tmp_path / "one.jsonl")
        logger = setup_logging(tmp_path / "two.jsonl")
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert [h.baseFilename for h in file_handlers] == [os.path.abspath(str(tmp_path / "two.jsonl"))]

    def test_stderr_by_default(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = setup_logging()
        assert setup_logging() is logger
        assert len(logger.handlers) == 1
        logger.info("to_stderr")
        captured = capsys.readouterr()
        assert captured.out == ""

    def test_no_duplicate_handlers_under_concurrency(self, tmp_path: Path) -> None:
        """Concurrent setup_logging calls must not produce duplicate handlers."""
        import threading

        results: list[logging.Logger] = []
        barrier = threading.Barrier(4)

        def call_setup() -> None:
            barrier.wait()
            results.append(setup_logging(tmp_path / "sidero.jsonl"))

        threads = [threading.Thread(target=call_setup) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r is results[0] for r in results)
        assert len(logging.getLogger("sidero").handlers) == 1

    def teardown_method(self) -> None:
        """Clean up the sidero logger handlers between tests."""
        logger = logging.getLogger("sidero")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)


class TestSummarizeArgs:
    def test_long_strings_replaced(self) -> None:
        code = "x" * 5000
        summary = summarize_args({"code": code, "language": "python"})
        assert summary == {"code": "<5000 chars>", "language": "python"}

    def test_nested(self) -> None:
        summary = summarize_args({"code_files": [{"path": "a.py", "content": "y" * 300}]})
        assert summary == {"code_files": [{"path": "a.py", "content": "<300 chars>"}]}

    def test_non_dict_passthrough(self) -> None:
        assert summarize_args(None) is None
        assert summarize_args(["a"]) == ["a"]
