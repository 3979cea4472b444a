"""Semgrep process orchestration.

Each request that touches the engine runs as a :class:`ScanJob` inside
:meth:`SemgrepRunner.job`: inline code and rule bodies are staged into a
private temporary directory, the engine is spawned with a bounded argument
list, stdout and stderr are drained concurrently under a wall-clock timeout,
and the directory is removed on every exit path: success, engine failure,
parse failure, timeout, spawn failure, or cancellation by the caller.

Engine exit codes: 0 means no findings, 1 means findings were reported, any
other value is an execution error.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
import os
import secrets
import shutil
import tempfile
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from sidero.config import Settings
from sidero.errors import (
    EngineError,
    OutputParseError,
    ProcessSpawnError,
    ScanTimeout,
    ValidationError,
)
from sidero.types.api import ScanPayload
from sidero.validation import check_operand

logger = logging.getLogger(__name__)

# Fixed, non-interactive prefix for every scan; structured output on stdout.
SCAN_PREFIX = ("scan", "--json", "--experimental", "--disable-version-check")
SCAN_OK_CODES = frozenset({0, 1})
STRICT_OK_CODES = frozenset({0})

# Grace period between SIGTERM and SIGKILL when stopping the engine.
_TERMINATE_GRACE_SECONDS = 5.0

_RULE_FILENAME = "rule.yaml"
_SNIPPET_FILENAME = "snippet"


class JobState(enum.Enum):
    STAGING = "staging"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (JobState.STAGING, JobState.RUNNING)


@dataclass(frozen=True)
class StagedFile:
    """An on-disk copy of inline content, owned by one ScanJob."""

    path: Path
    logical_path: str


@dataclass
class ProcessOutput:
    returncode: int
    stdout: bytes
    stderr: bytes


@dataclass
class ScanJob:
    """One engine invocation and the temporary files it owns."""

    kind: str
    id: str = field(default_factory=lambda: secrets.token_hex(6))
    workdir: Path | None = None
    staged: list[StagedFile] = field(default_factory=list)
    state: JobState = JobState.STAGING
    failure: str | None = None

    def stage(self, logical_path: str, content: str, *, subdir: str | None = None, field: str = "path") -> StagedFile:
        """Write *content* under the job's workdir at *logical_path*.

        Raises ValidationError (reported against *field*) for absolute paths,
        paths escaping the workdir, or a path staged twice.
        """
        if self.workdir is None:
            msg = "job has no workdir"
            raise RuntimeError(msg)
        rel = PurePosixPath(logical_path.replace("\\", "/"))
        if rel.is_absolute() or not rel.parts or ".." in rel.parts or "\x00" in logical_path:
            raise ValidationError(field, f"must be a relative path without '..': {logical_path!r}")
        base = self.workdir / subdir if subdir else self.workdir
        target = base.joinpath(*rel.parts)
        if target.exists():
            raise ValidationError(field, f"duplicate path: {logical_path!r}")
        target.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        staged = StagedFile(path=target, logical_path=str(rel))
        self.staged.append(staged)
        return staged

    def logical(self, path: str) -> str:
        """Map an engine-reported path back to the caller's logical path."""
        if self.workdir is None:
            return path
        for staged in self.staged:
            if path == str(staged.path):
                return staged.logical_path
        return path


def _parse_json(stdout: bytes, stderr: bytes, what: str) -> Any:
    try:
        return json.loads(stdout)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"Failed to parse {what} output as JSON: {e}"
        raise OutputParseError(msg, stderr=stderr) from e


def _map_key(job: ScanJob, entry: Any, key: str) -> None:
    """Rewrite ``entry[key]`` to the caller's logical path when it names a staged file."""
    if isinstance(entry, dict) and isinstance(entry.get(key), str):
        entry[key] = job.logical(entry[key])


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Stop *proc*: SIGTERM, then SIGKILL after a grace period. Always reaps."""
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), _TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


class SemgrepRunner:
    """Runs the Semgrep executable on behalf of tool handlers."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._slots = asyncio.Semaphore(settings.max_concurrent_scans) if settings.max_concurrent_scans else None
        self._active: set[asyncio.Task[Any]] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def cancel_jobs(self) -> int:
        """Cancel the tasks running a job and refuse new jobs.

        Returns the number of tasks cancelled.  Callers still await those
        tasks; termination and cleanup happen as each one unwinds.
        """
        self._closed = True
        running = [task for task in self._active if not task.done()]
        for task in running:
            task.cancel()
        return len(running)

    @contextlib.asynccontextmanager
    async def job(self, kind: str) -> AsyncIterator[ScanJob]:
        """Own a request-scoped temp directory for the duration of a job."""
        if self._closed:
            logger.info("job_refused", extra={"tool": kind})
            raise asyncio.CancelledError
        task = asyncio.current_task()
        job = ScanJob(kind=kind)
        job.workdir = Path(tempfile.mkdtemp(prefix=f"sidero-{kind}-{job.id}-"))
        t0 = time.monotonic()
        if task is not None:
            self._active.add(task)
        try:
            yield job
        except asyncio.CancelledError:
            job.state = JobState.CANCELLED
            raise
        except ScanTimeout as e:
            job.state = JobState.TIMED_OUT
            job.failure = e.message
            raise
        except Exception as e:
            job.state = JobState.FAILED
            job.failure = str(e)
            raise
        else:
            job.state = JobState.SUCCEEDED
        finally:
            if task is not None:
                self._active.discard(task)
            shutil.rmtree(job.workdir, ignore_errors=True)
            if job.workdir.exists():
                logger.error("staged_files_left_behind", extra={"job_id": job.id, "error": str(job.workdir)})
            extra: dict[str, Any] = {"job_id": job.id, "tool": kind, "duration_ms": round((time.monotonic() - t0) * 1000, 1)}
            if job.failure is not None:
                extra["error"] = job.failure
            logger.info("job_%s", job.state.value, extra=extra)

    async def _execute(self, job: ScanJob, args: Sequence[str], *, ok_codes: frozenset[int]) -> ProcessOutput:
        """Spawn the engine with *args* and collect its output.

        Raises ProcessSpawnError, ScanTimeout or EngineError.  On timeout and
        on cancellation the process is terminated before the error propagates.
        """
        argv = [self.settings.semgrep_bin, *args]
        if self._slots is not None:
            await self._slots.acquire()
        try:
            job.state = JobState.RUNNING
            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                msg = f"Failed to start {self.settings.semgrep_bin!r}: {e.strerror or e}"
                raise ProcessSpawnError(msg) from e

            assert proc.stdout is not None and proc.stderr is not None
            # Both pipes are drained while the process runs; reading one after
            # the other could deadlock once the unread pipe fills up.
            drain = asyncio.gather(proc.stdout.read(), proc.stderr.read(), proc.wait())
            try:
                stdout, stderr, returncode = await asyncio.wait_for(drain, self.settings.scan_timeout)
            except TimeoutError:
                await _terminate(proc)
                raise ScanTimeout(self.settings.scan_timeout) from None
            except asyncio.CancelledError:
                await _terminate(proc)
                raise
        finally:
            if self._slots is not None:
                self._slots.release()

        if returncode not in ok_codes:
            raise EngineError(returncode, stderr=stderr)
        return ProcessOutput(returncode=returncode, stdout=stdout, stderr=stderr)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def build_scan_args(self, targets: Sequence[str], config: str) -> list[str]:
        """Return the engine arguments for a scan of *targets* with *config*.

        Every caller-controlled value is checked again here; ``--`` ends option
        parsing before the targets.
        """
        if not targets:
            raise ValidationError("paths", "must contain at least 1 item(s)")
        args = [*SCAN_PREFIX, "--config", check_operand(config, "config"), "--"]
        args.extend(check_operand(t, f"paths[{i}]") for i, t in enumerate(targets))
        return args

    def _scan_payload(self, job: ScanJob, raw: Any) -> ScanPayload:
        if not isinstance(raw, dict):
            msg = "Semgrep output is not a JSON object"
            raise OutputParseError(msg)
        results = raw.get("results", [])
        for result in results:
            _map_key(job, result, "path")
        errors = raw.get("errors", [])
        for error in errors:
            _map_key(job, error, "path")
            if isinstance(error, dict):
                for span in error.get("spans") or []:
                    _map_key(job, span, "file")
        payload: ScanPayload = {"findings": results, "errors": errors}
        if "paths" in raw:
            paths = raw["paths"]
            if isinstance(paths, dict):
                if isinstance(paths.get("scanned"), list):
                    paths["scanned"] = [job.logical(p) if isinstance(p, str) else p for p in paths["scanned"]]
                for skipped in paths.get("skipped") or []:
                    _map_key(job, skipped, "path")
            payload["paths"] = paths
        if "version" in raw:
            payload["version"] = raw["version"]
        return payload

    async def scan(self, paths: Sequence[str], config: str = "auto") -> ScanPayload:
        async with self.job("scan") as job:
            out = await self._execute(job, self.build_scan_args(paths, config), ok_codes=SCAN_OK_CODES)
            return self._scan_payload(job, _parse_json(out.stdout, out.stderr, "Semgrep"))

    async def scan_with_custom_rule(self, rule: str, code_files: Sequence[str | dict[str, str]]) -> ScanPayload:
        """Scan *code_files* with an inline rule definition.

        Entries of *code_files* are either paths on disk or ``{"path",
        "content"}`` objects that are staged for the duration of the scan.
        """
        async with self.job("custom-rule") as job:
            targets: list[str] = []
            for i, entry in enumerate(code_files):
                if isinstance(entry, dict):
                    staged = job.stage(entry["path"], entry["content"], subdir="files", field=f"code_files[{i}].path")
                    targets.append(str(staged.path))
                else:
                    targets.append(check_operand(entry, f"code_files[{i}]"))
            rule_file = job.stage(_RULE_FILENAME, rule)
            out = await self._execute(job, self.build_scan_args(targets, str(rule_file.path)), ok_codes=SCAN_OK_CODES)
            return self._scan_payload(job, _parse_json(out.stdout, out.stderr, "Semgrep"))

    async def dump_ast(self, code: str, language: str) -> dict[str, Any]:
        async with self.job("ast") as job:
            snippet = job.stage(_SNIPPET_FILENAME, code)
            args = ["--dump-ast", "--json", "--experimental", "--lang", check_operand(language, "language"), str(snippet.path)]
            out = await self._execute(job, args, ok_codes=STRICT_OK_CODES)
            return {"language": language, "ast": _parse_json(out.stdout, out.stderr, "AST")}

    async def version(self) -> str:
        async with self.job("version") as job:
            out = await self._execute(job, ["--version"], ok_codes=STRICT_OK_CODES)
            return out.stdout.decode("utf-8", errors="replace").strip()

    async def supported_languages(self) -> list[str]:
        async with self.job("languages") as job:
            out = await self._execute(job, ["show", "supported-languages"], ok_codes=STRICT_OK_CODES)
            text = out.stdout.decode("utf-8", errors="replace")
            return [line.strip() for line in text.splitlines() if line.strip()]
