"""Process-wide configuration, read once at startup.

Values come from the environment and may be overridden by CLI flags.  The
resulting ``Settings`` is frozen and handed to every component by reference.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

TOKEN_ENV = "SEMGREP_APP_TOKEN"
SEMGREP_BIN_ENV = "SIDERO_SEMGREP_BIN"
SCAN_TIMEOUT_ENV = "SIDERO_SCAN_TIMEOUT"
MAX_CONCURRENT_SCANS_ENV = "SIDERO_MAX_CONCURRENT_SCANS"
API_URL_ENV = "SEMGREP_API_URL"
HTTP_TIMEOUT_ENV = "SIDERO_HTTP_TIMEOUT"
LOG_FILE_ENV = "SIDERO_LOG_FILE"

DEFAULT_SEMGREP_BIN = "semgrep"
DEFAULT_SCAN_TIMEOUT = 300.0
DEFAULT_API_URL = "https://semgrep.dev/api/v1"
DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass(frozen=True)
class Credential:
    """Bearer token for the findings service. Never printed."""

    token: str = field(repr=False)

    def __repr__(self) -> str:
        return "Credential(token=***)"

    def __bool__(self) -> bool:
        return bool(self.token)


@dataclass(frozen=True)
class Settings:
    credential: Credential | None = None
    semgrep_bin: str = DEFAULT_SEMGREP_BIN
    scan_timeout: float = DEFAULT_SCAN_TIMEOUT
    max_concurrent_scans: int | None = None
    api_url: str = DEFAULT_API_URL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_file: Path | None = None

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        updated = replace(self, **changes)
        _check(updated)
        return updated


def _positive_float(raw: str, name: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from None
    if value <= 0:
        msg = f"{name} must be > 0, got {raw!r}"
        raise ValueError(msg)
    return value


def _positive_int(raw: str, name: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValueError(msg) from None
    if value < 1:
        msg = f"{name} must be >= 1, got {raw!r}"
        raise ValueError(msg)
    return value


def _check(settings: Settings) -> None:
    if settings.scan_timeout <= 0:
        msg = f"scan timeout must be > 0, got {settings.scan_timeout!r}"
        raise ValueError(msg)
    if settings.max_concurrent_scans is not None and settings.max_concurrent_scans < 1:
        msg = f"max concurrent scans must be >= 1, got {settings.max_concurrent_scans!r}"
        raise ValueError(msg)
    if not settings.semgrep_bin:
        msg = "semgrep executable must not be empty"
        raise ValueError(msg)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from *environ* (defaults to ``os.environ``).

    Raises ValueError for malformed numeric values.
    """
    env = os.environ if environ is None else environ

    token = env.get(TOKEN_ENV, "").strip()
    max_scans = env.get(MAX_CONCURRENT_SCANS_ENV, "").strip()
    log_file = env.get(LOG_FILE_ENV, "").strip()

    settings = Settings(
        credential=Credential(token) if token else None,
        semgrep_bin=env.get(SEMGREP_BIN_ENV, "").strip() or DEFAULT_SEMGREP_BIN,
        scan_timeout=_positive_float(env[SCAN_TIMEOUT_ENV], SCAN_TIMEOUT_ENV) if env.get(SCAN_TIMEOUT_ENV) else DEFAULT_SCAN_TIMEOUT,
        max_concurrent_scans=_positive_int(max_scans, MAX_CONCURRENT_SCANS_ENV) if max_scans else None,
        api_url=(env.get(API_URL_ENV, "").strip() or DEFAULT_API_URL).rstrip("/"),
        http_timeout=_positive_float(env[HTTP_TIMEOUT_ENV], HTTP_TIMEOUT_ENV) if env.get(HTTP_TIMEOUT_ENV) else DEFAULT_HTTP_TIMEOUT,
        log_file=Path(log_file) if log_file else None,
    )
    _check(settings)
    return settings
