# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
"""Typed contracts for tool inputs and results."""

from __future__ import annotations

from sidero.types.api import FindingLocation, FindingRecord, ScanPayload

__all__ = [
    "FindingLocation",
    "FindingRecord",
    "ScanPayload",
]
