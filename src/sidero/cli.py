"""CLI for sidero.

Usage:
    sidero serve                                 # Run the MCP server on stdio
    sidero serve --timeout 120 --log-file sidero.jsonl
    sidero tools                                 # Print tool descriptors as JSON
    sidero doctor                                # Check engine and credential
"""

from __future__ import annotations

import asyncio
import json as json_mod
import os
import shutil
import sys
from pathlib import Path

import click

from sidero import __version__
from sidero.config import TOKEN_ENV, Settings, load_settings
from sidero.errors import FramingError
from sidero.mcp_server import run_server
from sidero.registry import build_registry


def _settings(**overrides: object) -> Settings:
    try:
        return load_settings().with_overrides(**overrides)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


@click.group()
@click.version_option(version=__version__, prog_name="sidero")
def cli() -> None:
    """Sidero — Semgrep for MCP clients over stdio."""


@cli.command()
@click.option("--semgrep-bin", default=None, help="Semgrep executable (default: semgrep on PATH)")
@click.option("--timeout", type=float, default=None, help="Per-scan timeout in seconds")
@click.option("--max-concurrent-scans", type=int, default=None, help="Cap on concurrent engine processes")
@click.option("--log-file", type=click.Path(path_type=Path), default=None, help="Write JSONL logs to this file")
def serve(semgrep_bin: str | None, timeout: float | None, max_concurrent_scans: int | None, log_file: Path | None) -> None:
    """Run the MCP server on stdin/stdout."""
    settings = _settings(
        semgrep_bin=semgrep_bin,
        scan_timeout=timeout,
        max_concurrent_scans=max_concurrent_scans,
        log_file=log_file,
    )
    try:
        asyncio.run(run_server(settings))
    except FramingError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
def tools() -> None:
    """Print the registered tool descriptors as JSON."""
    registry = build_registry()
    data = [t.model_dump(mode="json", by_alias=True, exclude_none=True) for t in registry.list()]
    click.echo(json_mod.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# Doctor
# ---------------------------------------------------------------------------


class CheckResult:
    """Result of a single doctor check."""

    def __init__(self, name: str, passed: bool, message: str, *, fix_hint: str = "", required: bool = True) -> None:
        self.name = name
        self.passed = passed
        self.message = message
        self.fix_hint = fix_hint
        self.required = required

    @property
    def icon(self) -> str:
        if self.passed:
            return "OK"
        return "!!" if self.required else "--"


def _find_engine(semgrep_bin: str) -> str | None:
    if os.sep in semgrep_bin:
        return semgrep_bin if os.access(semgrep_bin, os.X_OK) else None
    return shutil.which(semgrep_bin)


def run_doctor(settings: Settings) -> list[CheckResult]:
    results: list[CheckResult] = []

    found = _find_engine(settings.semgrep_bin)
    if found:
        results.append(CheckResult("Semgrep engine", True, found))
    else:
        results.append(
            CheckResult(
                "Semgrep engine",
                False,
                f"{settings.semgrep_bin!r} not found or not executable",
                fix_hint="pip install semgrep, or set SIDERO_SEMGREP_BIN",
            )
        )

    if settings.credential:
        results.append(CheckResult("Findings token", True, f"{TOKEN_ENV} is set"))
    else:
        results.append(
            CheckResult(
                "Findings token",
                False,
                f"{TOKEN_ENV} is not set; semgrep_findings will fail",
                fix_hint=f"export {TOKEN_ENV}=<token from semgrep.dev>",
                required=False,
            )
        )

    limit = settings.max_concurrent_scans or "unbounded"
    results.append(CheckResult("Scan limits", True, f"timeout {settings.scan_timeout:g}s, concurrency {limit}"))
    return results


@cli.command()
@click.option("--semgrep-bin", default=None, help="Semgrep executable to check")
@click.option("--verbose", "-v", is_flag=True, help="Show passing checks too")
def doctor(semgrep_bin: str | None, verbose: bool) -> None:
    """Check that the engine is installed and the findings token is configured."""
    results = run_doctor(_settings(semgrep_bin=semgrep_bin))

    failed = [r for r in results if not r.passed and r.required]
    warned = [r for r in results if not r.passed and not r.required]
    click.echo(f"sidero doctor  ──  {len(results) - len(failed) - len(warned)} passed  {len(failed)} issues  {len(warned)} warnings")
    click.echo()

    for r in results:
        if r.passed and not verbose:
            continue
        click.echo(f"  {r.icon}  {r.name}: {r.message}")
        if not r.passed and r.fix_hint:
            click.echo(f"       -> {r.fix_hint}")

    if failed:
        sys.exit(1)
    click.echo("\nAll required checks passed.")


if __name__ == "__main__":
    cli()
