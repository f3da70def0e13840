"""
Portal HTTP access.

Every request the sync engine makes to the portal server goes through
PortalClient. Provides:
- Base URL joining (paths or absolute URLs)
- Bearer auth headers supplied per call
- JSON decoding with a single error type for transport, status and parse failures
- Health tracking (latency, errors)
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
import logging
import time

import httpx

logger = logging.getLogger(__name__)


class PortalRequestError(RuntimeError):
    """A portal request failed or returned something that is not JSON."""

    def __init__(self, message: str, url: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Health tracking
# ---------------------------------------------------------------------------

@dataclass
class PortalHealth:
    """Request metrics for the portal server."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_latency_ms: float = 0.0
    last_success: datetime | None = None
    last_failure: datetime | None = None
    last_error: str | None = None

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    def record(self, latency_ms: float, success: bool, error: str | None = None) -> None:
        self.total_requests += 1
        self.avg_latency_ms += (latency_ms - self.avg_latency_ms) / self.total_requests
        if success:
            self.successful_requests += 1
            self.last_success = datetime.utcnow()
        else:
            self.failed_requests += 1
            self.last_failure = datetime.utcnow()
            self.last_error = error

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful": self.successful_requests,
            "failed": self.failed_requests,
            "error_rate": round(self.error_rate, 4),
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "last_error": self.last_error,
        }


# ---------------------------------------------------------------------------
# PortalClient
# ---------------------------------------------------------------------------

class PortalClient:
    """Thin async JSON client for one portal server."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.health = PortalHealth()

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get_json(self, path: str, auth_header: dict[str, str]) -> Any:
        """GET ``path`` and return the decoded JSON body.

        Raises PortalRequestError for transport errors, non-2xx statuses
        and bodies that are not JSON.
        """
        url = self.url_for(path)
        start = time.time()
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.get(
                    url,
                    headers={"Accept": "application/json", **auth_header},
                )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.health.record((time.time() - start) * 1000, False, str(exc))
            raise PortalRequestError(f"Request to {url} failed: {exc}", url) from exc

        latency = (time.time() - start) * 1000
        if resp.status_code >= 400:
            error = f"HTTP {resp.status_code}: {resp.text[:200]}"
            self.health.record(latency, False, error)
            raise PortalRequestError(error, url, resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            self.health.record(latency, False, "invalid JSON")
            raise PortalRequestError(f"Response from {url} is not JSON", url, resp.status_code) from exc

        self.health.record(latency, True)
        logger.debug("GET %s -> %s (%.1f ms)", url, resp.status_code, latency)
        return data
