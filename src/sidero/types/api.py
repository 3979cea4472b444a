# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
"""Result shapes returned by tool handlers."""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict


class FindingLocation(TypedDict):
    path: str
    line: int | None
    column: int | None
    end_line: int | None
    end_column: int | None


class FindingRecord(TypedDict):
    """One finding from the Semgrep App API, flattened."""

    id: Any
    rule_id: str
    severity: str
    message: str
    location: FindingLocation
    repository: str | None
    state: str | None


class ScanPayload(TypedDict):
    """Result of a local engine scan."""

    findings: list[dict[str, Any]]
    errors: list[Any]
    paths: NotRequired[dict[str, Any]]
    version: NotRequired[str]
