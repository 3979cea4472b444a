# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
"""TypedDict contracts for tool handler input arguments.

Each TypedDict mirrors the JSON Schema ``inputSchema`` on the corresponding
``mcp.types.Tool`` definition.  ``TOOL_ARGS_MAP`` maps tool names to their
TypedDict class so the sync test can verify structural agreement.

Handlers receive arguments only after :func:`sidero.validation.validate_arguments`
has checked them, so ``cast()`` to these types is safe inside a handler.
"""

# NOTE: Do NOT add ``from __future__ import annotations`` to this module.
# It breaks TypedDict.__required_keys__ / __optional_keys__ introspection
# on Python <3.14, which the sync test in test_input_type_contracts.py
# depends on for verifying required/optional agreement with JSON Schema.

from typing import NotRequired, TypedDict

# ---------------------------------------------------------------------------
# scan.py handlers
# ---------------------------------------------------------------------------


class SemgrepScanArgs(TypedDict):
    paths: list[str]
    config: NotRequired[str]


class InlineFile(TypedDict):
    path: str
    content: str


class CustomRuleScanArgs(TypedDict):
    rule: str
    code_files: list[str | InlineFile]


class AstArgs(TypedDict):
    code: str
    language: str


# ---------------------------------------------------------------------------
# findings.py handlers
# ---------------------------------------------------------------------------


class FindingsArgs(TypedDict):
    deployment: NotRequired[str]
    issue_type: NotRequired[str]
    status: NotRequired[str]
    repos: NotRequired[list[str]]
    severities: NotRequired[list[str]]
    page: NotRequired[int]
    page_size: NotRequired[int]


TOOL_ARGS_MAP: dict[str, type] = {
    "semgrep_scan": SemgrepScanArgs,
    "semgrep_scan_with_custom_rule": CustomRuleScanArgs,
    "get_abstract_syntax_tree": AstArgs,
    "semgrep_findings": FindingsArgs,
}
