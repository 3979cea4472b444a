"""CLI tests: Click commands via CliRunner, the stdio server as a subprocess."""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from sidero import __version__
from sidero.cli import cli


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


class TestTools:
    def test_prints_descriptors(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["tools"])
        assert result.exit_code == 0
        names = [t["name"] for t in json.loads(result.output)]
        assert "semgrep_scan" in names
        assert "semgrep_findings" in names

    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestDoctor:
    def test_engine_found(self, cli_runner: CliRunner, fake_semgrep: Path) -> None:
        result = cli_runner.invoke(
            cli, ["doctor", "--semgrep-bin", str(fake_semgrep), "-v"], env={"SEMGREP_APP_TOKEN": "tok"}
        )
        assert result.exit_code == 0, result.output
        assert "OK  Semgrep engine" in result.output
        assert "OK  Findings token" in result.output

    def test_missing_token_is_a_warning(self, cli_runner: CliRunner, fake_semgrep: Path) -> None:
        result = cli_runner.invoke(cli, ["doctor", "--semgrep-bin", str(fake_semgrep)], env={"SEMGREP_APP_TOKEN": ""})
        assert result.exit_code == 0
        assert "--  Findings token" in result.output

    def test_engine_missing(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(cli, ["doctor", "--semgrep-bin", str(tmp_path / "nope")])
        assert result.exit_code == 1
        assert "!!  Semgrep engine" in result.output

    def test_bad_environment(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["doctor"], env={"SIDERO_SCAN_TIMEOUT": "forever"})
        assert result.exit_code == 2
        assert "SIDERO_SCAN_TIMEOUT" in result.output


def _server(fake_semgrep: Path, tmp_path: Path, *args: str) -> subprocess.Popen[bytes]:
    env = {
        **os.environ,
        "SIDERO_SEMGREP_BIN": str(fake_semgrep),
        "SIDERO_LOG_FILE": str(tmp_path / "server.jsonl"),
    }
    env.pop("SEMGREP_APP_TOKEN", None)
    return subprocess.Popen(
        [sys.executable, "-m", "sidero.mcp_server", *args],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env,
    )


@pytest.mark.slow
class TestStdioServer:
    def test_round_trip_and_clean_exit(self, fake_semgrep: Path, tmp_path: Path, source_tree: Path) -> None:
        proc = _server(fake_semgrep, tmp_path)
        assert proc.stdin is not None and proc.stdout is not None
        request = {"jsonrpc": "2.0", "id": 7, "method": "semgrep_scan", "params": {"paths": [str(source_tree / "app.py")]}}
        proc.stdin.write(json.dumps(request).encode() + b"\n")
        proc.stdin.flush()
        response = json.loads(proc.stdout.readline())
        proc.stdin.close()
        assert proc.wait(timeout=30) == 0
        proc.stdout.close()
        proc.stderr.close()  # type: ignore[union-attr]

        assert response["id"] == 7
        assert response["result"]["findings"][0]["path"] == str(source_tree / "app.py")
        records = [json.loads(line) for line in (tmp_path / "server.jsonl").read_text().splitlines()]
        assert any(r["msg"] == "tool_call" and r.get("tool") == "semgrep_scan" for r in records)

    def test_piped_requests_all_answered(self, fake_semgrep: Path, tmp_path: Path) -> None:
        proc = _server(fake_semgrep, tmp_path)
        lines = [
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
            {"jsonrpc": "2.0", "id": 3, "method": "get_version"},
        ]
        stdout, _ = proc.communicate(b"".join(json.dumps(m).encode() + b"\n" for m in lines), timeout=30)
        assert proc.returncode == 0
        ids = sorted(json.loads(line)["id"] for line in stdout.splitlines())
        assert ids[:2] == [1, 2]

    def test_oversized_frame_exits_nonzero(self, fake_semgrep: Path, tmp_path: Path) -> None:
        proc = _server(fake_semgrep, tmp_path)
        _, stderr = proc.communicate(b"x" * (17 * 1024 * 1024) + b"\n", timeout=60)
        assert proc.returncode == 1
        assert b"Frame exceeds maximum size" in stderr

    def test_bad_option_value(self, fake_semgrep: Path, tmp_path: Path) -> None:
        proc = _server(fake_semgrep, tmp_path, "--timeout", "0")
        _, stderr = proc.communicate(b"", timeout=30)
        assert proc.returncode == 2
        assert b"timeout" in stderr
