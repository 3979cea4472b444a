"""Shared pytest fixtures for sidero tests."""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

from sidero.config import Settings
from sidero.orchestrator import SemgrepRunner

# Stand-in for the semgrep executable.  Behaviour is selected through
# FAKE_SEMGREP_MODE; FAKE_SEMGREP_LOG receives one JSON line per invocation
# with the argv, the pid and the content of every file argument.
_FAKE_SEMGREP = '''\
import json
import os
import sys
import time

argv = sys.argv[1:]
mode = os.environ.get("FAKE_SEMGREP_MODE", "findings")

log = os.environ.get("FAKE_SEMGREP_LOG")
if log:
    files = {}
    for a in argv:
        if os.path.isfile(a):
            with open(a, encoding="utf-8") as fh:
                files[a] = fh.read()
    with open(log, "a", encoding="utf-8") as fh:
        fh.write(json.dumps({"argv": argv, "pid": os.getpid(), "t": time.time(), "files": files}) + "\\n")

if mode == "slow":
    time.sleep(float(os.environ.get("FAKE_SEMGREP_DELAY", "0.5")))

if mode == "sleep":
    time.sleep(60)
    sys.exit(0)

if argv[:1] == ["--version"]:
    print("1.99.0")
    sys.exit(0)

if argv[:2] == ["show", "supported-languages"]:
    print("python\\njavascript\\ngo")
    sys.exit(0)

if "--dump-ast" in argv:
    with open(argv[-1], encoding="utf-8") as fh:
        print(json.dumps({"Pr": [{"ExprStmt": fh.read()}]}))
    sys.exit(0)

if mode == "garbage":
    print("this is not json")
    print("parser exploded", file=sys.stderr)
    sys.exit(1)

if mode == "crash":
    print("fatal: invalid config", file=sys.stderr)
    sys.exit(2)

targets = argv[argv.index("--") + 1:] if "--" in argv else []
if mode == "noisy":
    sys.stderr.write("x" * (1024 * 1024))

if mode == "partial":
    errors = [{"type": "Syntax error", "path": t, "spans": [{"file": t, "start": {"line": 1}}]} for t in targets]
    paths = {"scanned": targets, "skipped": [{"path": t, "reason": "too_big"} for t in targets]}
    print(json.dumps({"results": [], "errors": errors, "paths": paths}))
    sys.exit(0)

if mode == "clean":
    print(json.dumps({"results": [], "errors": [], "paths": {"scanned": targets}}))
    sys.exit(0)

results = [
    {
        "check_id": "test.rule",
        "path": t,
        "start": {"line": 1, "col": 1},
        "end": {"line": 1, "col": 5},
        "extra": {"message": "found it", "severity": "WARNING"},
    }
    for t in targets
]
print(json.dumps({"results": results, "errors": [], "version": "1.99.0"}))
sys.exit(1)
'''


@pytest.fixture
def fake_semgrep(tmp_path: Path) -> Path:
    """An executable stub that behaves like ``semgrep`` for the runner."""
    script = tmp_path / "bin" / "semgrep"
    script.parent.mkdir()
    script.write_text(f"#!{sys.executable}\n{_FAKE_SEMGREP}")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def semgrep_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Enable invocation logging in the stub; returns the log path."""
    log = tmp_path / "semgrep-calls.jsonl"
    monkeypatch.setenv("FAKE_SEMGREP_LOG", str(log))
    return log


@pytest.fixture
def settings(fake_semgrep: Path) -> Settings:
    return Settings(semgrep_bin=str(fake_semgrep), scan_timeout=20.0)


@pytest.fixture
def runner(settings: Settings) -> SemgrepRunner:
    return SemgrepRunner(settings)


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small directory of files to scan."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "app.py").write_text("eval(user_input)\n")
    (root / "util.py").write_text("print('ok')\n")
    return root


@pytest.fixture
def staging_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect job workdirs to a private directory so leaks are observable."""
    root = tmp_path / "staging"
    root.mkdir()
    monkeypatch.setattr("tempfile.tempdir", str(root))
    return root
