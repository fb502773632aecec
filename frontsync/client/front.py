"""
Front API client.

Thin httpx wrapper: bearer auth, timeouts, retry/backoff, optional rate
limiting, and outcome reporting to the health monitor on every call. While
the circuit is open calls are refused before they reach the network.
"""

from __future__ import annotations

import hashlib
import time
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from frontsync.client.fetcher import PaginatedFetcher
from frontsync.client.http import request_with_retry, retry_after_seconds
from frontsync.config import Settings
from frontsync.kernel.errors import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    UpstreamError,
)

if TYPE_CHECKING:  # pragma: no cover
    from frontsync.monitoring.health import HealthMonitor

logger = structlog.get_logger()

try:  # pragma: no cover
    from prometheus_client import Counter, Histogram

    _api_calls_total = Counter(
        "frontsync_api_calls_total",
        "Front API calls by outcome",
        ["outcome"],
    )
    _api_call_seconds = Histogram(
        "frontsync_api_call_seconds",
        "Front API call latency (including retries)",
    )
except Exception:  # pragma: no cover
    _api_calls_total = None
    _api_call_seconds = None

FRONT_API_BASE_URL = "https://api2.frontapp.com"


class FrontClient:
    """Async client for the Front REST API."""

    def __init__(
        self,
        api_token: str,
        *,
        monitor: "HealthMonitor | None" = None,
        base_url: str = FRONT_API_BASE_URL,
        connect_timeout: float = 10.0,
        read_timeout: float = 30.0,
        page_limit: int = 100,
        max_pages: int = 500,
        max_attempts: int = 3,
        base_backoff: float = 1.0,
        max_backoff: float = 8.0,
        rate_limit_per_minute: int = 0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_token:
            raise AuthenticationError(message="FRONT_API_TOKEN is not configured")

        self._monitor = monitor
        self.page_limit = page_limit
        self.max_attempts = max_attempts
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.rate_limit_per_minute = rate_limit_per_minute
        self._rate_limit_key = "front:" + hashlib.sha256(api_token.encode()).hexdigest()[:16]
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            transport=transport,
        )
        self.fetcher = PaginatedFetcher(self, max_pages=max_pages)

        # Per-process call accounting; the orchestrator snapshots these per run.
        self.api_calls = 0
        self.total_response_time_ms = 0.0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        monitor: "HealthMonitor | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FrontClient":
        return cls(
            settings.front_api_token or "",
            monitor=monitor,
            base_url=settings.front_api_base_url,
            connect_timeout=settings.front_connect_timeout_seconds,
            read_timeout=settings.front_read_timeout_seconds,
            page_limit=settings.front_page_limit,
            max_pages=settings.front_max_pages,
            max_attempts=settings.http_max_attempts,
            base_backoff=settings.http_base_backoff_seconds,
            max_backoff=settings.http_max_backoff_seconds,
            rate_limit_per_minute=settings.front_rate_limit_per_minute,
            transport=transport,
        )

    async def __aenter__(self) -> "FrontClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> httpx.Response:
        """
        Issue one logical call (retries included) and report its outcome.

        Raises CircuitBreakerOpenError while the circuit is open and
        NetworkError when transport errors outlast the retries. HTTP error
        statuses are returned, not raised.
        """
        if self._monitor is not None:
            await self._monitor.ensure_can_execute()

        started = time.monotonic()
        try:
            response = await request_with_retry(
                self._http,
                method,
                url,
                params=params,
                max_attempts=self.max_attempts,
                base_backoff=self.base_backoff,
                max_backoff=self.max_backoff,
                rate_limit_key=self._rate_limit_key,
                rate_limit_per_minute=self.rate_limit_per_minute,
                operation=operation,
            )
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            kind = "timeout" if isinstance(exc, httpx.TimeoutException) else "connection error"
            message = f"Network {kind} calling Front {url}: {exc}"
            await self._record(started, success=False, error=message)
            raise NetworkError(message=message, meta={"url": url}) from exc

        # A 404 is an answer, not an outage.
        success = response.is_success or response.status_code == 404
        await self._record(
            started,
            success=success,
            status_code=response.status_code,
            error=None if success else f"HTTP {response.status_code} from {url}",
        )
        return response

    async def _record(
        self,
        started: float,
        *,
        success: bool,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        elapsed_ms = (time.monotonic() - started) * 1000.0
        self.api_calls += 1
        self.total_response_time_ms += elapsed_ms
        if _api_calls_total is not None:
            _api_calls_total.labels(outcome="success" if success else "failure").inc()
            _api_call_seconds.observe(elapsed_ms / 1000.0)
        if self._monitor is not None:
            await self._monitor.record_api_call(
                response_time_ms=elapsed_ms,
                success=success,
                status_code=status_code,
                error=error,
            )

    @staticmethod
    def raise_for_error(response: httpx.Response) -> None:
        """Translate an HTTP error status into a typed error."""
        if response.is_success:
            return
        status = response.status_code
        try:
            url = str(response.request.url)
        except RuntimeError:
            url = None
        meta = {"url": url, "status_code": status}
        if status in (401, 403):
            raise AuthenticationError(message=f"Front authentication failed (unauthorized, HTTP {status})", meta=meta)
        if status == 404:
            raise NotFoundError(message=f"Front resource not found (404): {meta['url']}", meta=meta)
        if status == 429:
            raise RateLimitError(
                message="Front rate limit exceeded (429)",
                retry_after=retry_after_seconds(response),
                meta=meta,
            )
        raise UpstreamError(message=f"Front server error (HTTP {status})", status_code=status, meta=meta)

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self.request("GET", path, params=params, operation=path)
        self.raise_for_error(response)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                message=f"Front returned an undecodable body for {path}: {exc}",
                status_code=response.status_code,
                meta={"path": path, "status_code": response.status_code, "body": response.text[:200]},
            ) from exc

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        return await self.get_json(f"/conversations/{conversation_id}")

    async def list_conversation_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        return await self.fetcher.fetch_all(
            f"/conversations/{conversation_id}/messages",
            {"limit": self.page_limit},
        )
