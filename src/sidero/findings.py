"""Client for the Semgrep App findings API.

One ``httpx.AsyncClient`` per process, authenticated with the bearer token
from :class:`~sidero.config.Credential`.  No automatic retries: a transport
failure surfaces immediately as ``NetworkError``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from sidero.config import TOKEN_ENV, Credential
from sidero.errors import AuthError, NetworkError, UpstreamError
from sidero.types.api import FindingLocation, FindingRecord

logger = logging.getLogger(__name__)

# Maximum characters of an upstream error body echoed back to the client.
_MAX_ERROR_BODY = 1000


@dataclass(frozen=True)
class FindingsQuery:
    """Scope and filters for a findings lookup."""

    deployment: str | None = None
    filters: Mapping[str, Any] = field(default_factory=dict)

    def params(self) -> list[tuple[str, str]]:
        """Render filters as query parameters.

        ``repos`` is sent comma-joined; other list filters are repeated.
        """
        out: list[tuple[str, str]] = []
        for key, value in self.filters.items():
            if value is None:
                continue
            if key == "repos" and isinstance(value, list):
                out.append((key, ",".join(str(v) for v in value)))
            elif isinstance(value, list):
                out.extend((key, str(v)) for v in value)
            elif isinstance(value, bool):
                out.append((key, "true" if value else "false"))
            else:
                out.append((key, str(value)))
        return out


@dataclass(frozen=True)
class FindingsResult:
    """Snapshot of the findings returned for one deployment."""

    deployment: str
    findings: list[FindingRecord]

    def to_dict(self) -> dict[str, Any]:
        return {"deployment": self.deployment, "count": len(self.findings), "findings": self.findings}


def normalize_finding(raw: Mapping[str, Any]) -> FindingRecord:
    """Flatten one API finding into a FindingRecord."""
    rule = raw.get("rule") if isinstance(raw.get("rule"), dict) else {}
    loc = raw.get("location") if isinstance(raw.get("location"), dict) else {}
    location: FindingLocation = {
        "path": loc.get("file_path") or loc.get("path") or "",
        "line": loc.get("line"),
        "column": loc.get("column"),
        "end_line": loc.get("end_line"),
        "end_column": loc.get("end_column"),
    }
    return FindingRecord(
        id=raw.get("id"),
        rule_id=raw.get("rule_name") or rule.get("name") or raw.get("check_id") or "",
        severity=raw.get("severity") or "",
        message=raw.get("rule_message") or rule.get("message") or raw.get("message") or "",
        location=location,
        repository=(raw.get("repository") or {}).get("name") if isinstance(raw.get("repository"), dict) else None,
        state=raw.get("state") or raw.get("status"),
    )


def _error_body(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text[:_MAX_ERROR_BODY] or None
    if isinstance(body, dict):
        for key in ("error", "message", "detail", "errors"):
            if key in body:
                return body[key]
    return body


class FindingsClient:
    """Fetch findings from the Semgrep App API."""

    def __init__(
        self,
        credential: Credential | None,
        *,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credential = credential
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def configured(self) -> bool:
        return bool(self._credential)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _require_token(self) -> str:
        if not self._credential:
            msg = f"Findings access needs a Semgrep App token: set the {TOKEN_ENV} environment variable"
            raise AuthError(msg)
        return self._credential.token

    async def _get_json(self, path: str, params: list[tuple[str, str]] | None = None) -> Any:
        token = self._require_token()
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
        except (httpx.TransportError, httpx.InvalidURL) as e:
            msg = f"Request to {url} failed: {type(e).__name__}"
            raise NetworkError(msg) from e

        if response.status_code in (401, 403):
            msg = f"Semgrep App rejected the token from {TOKEN_ENV} (HTTP {response.status_code})"
            raise AuthError(msg)
        if not response.is_success:
            msg = f"Semgrep App returned HTTP {response.status_code} for {path}"
            raise UpstreamError(msg, status=response.status_code, body=_error_body(response))
        try:
            return response.json()
        except ValueError as e:
            msg = f"Semgrep App returned a non-JSON body for {path}"
            raise UpstreamError(msg, status=response.status_code) from e

    async def deployment_slug(self) -> str:
        """Return the slug of the first deployment visible to the token."""
        data = await self._get_json("/deployments")
        deployments = data.get("deployments") if isinstance(data, dict) else None
        if not deployments:
            msg = "No deployments found for this token"
            raise UpstreamError(msg)
        slug = deployments[0].get("slug") if isinstance(deployments[0], dict) else None
        if not isinstance(slug, str) or not slug:
            msg = "Deployment listing has no slug"
            raise UpstreamError(msg)
        return slug

    async def fetch(self, query: FindingsQuery) -> FindingsResult:
        """Return the findings matching *query*.

        Raises AuthError (before any request when no token is configured),
        NetworkError or UpstreamError.
        """
        self._require_token()
        slug = query.deployment or await self.deployment_slug()
        data = await self._get_json(f"/deployments/{slug}/findings", query.params())
        raw = data.get("findings") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            msg = "Findings response has no 'findings' list"
            raise UpstreamError(msg)
        findings = [normalize_finding(item) for item in raw if isinstance(item, dict)]
        logger.debug("Fetched %d findings for deployment %s", len(findings), slug)
        return FindingsResult(deployment=slug, findings=findings)

    async def fetch_text(self, url: str) -> str:
        """Unauthenticated GET returning the body as text (rule resources)."""
        try:
            response = await self._client.get(url, headers={"Accept": "*/*"})
        except (httpx.TransportError, httpx.InvalidURL) as e:
            msg = f"Request to {url} failed: {type(e).__name__}"
            raise NetworkError(msg) from e
        if not response.is_success:
            msg = f"GET {url} returned HTTP {response.status_code}"
            raise UpstreamError(msg, status=response.status_code)
        return response.text
