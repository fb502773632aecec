"""
HTTP helpers for the Front client.

Retry/backoff for transient errors and rate limits, plus an optional
client-side per-minute limiter.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Iterable

import httpx
import structlog

from frontsync.kernel.time import utc_now

logger = structlog.get_logger()

try:  # pragma: no cover
    from prometheus_client import Counter

    _http_retries_total = Counter(
        "frontsync_http_retries_total",
        "Total Front API HTTP retries by operation and reason",
        ["operation", "reason", "status_code"],
    )
except Exception:  # pragma: no cover
    _http_retries_total = None


RETRY_STATUSES = {429, 500, 502, 503, 504}


@dataclass
class _RateLimiter:
    rate_per_minute: int
    next_allowed: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def wait(self) -> None:
        if self.rate_per_minute <= 0:
            return
        interval = 60.0 / float(self.rate_per_minute)
        async with self.lock:
            now = time.monotonic()
            if now < self.next_allowed:
                await asyncio.sleep(self.next_allowed - now)
            self.next_allowed = max(now, self.next_allowed) + interval


_rate_limiters: dict[str, _RateLimiter] = {}


async def _apply_rate_limit(
    key: str | None,
    rate_limit_per_minute: int | None,
) -> None:
    if not key or not rate_limit_per_minute:
        return
    limiter = _rate_limiters.get(key)
    if not limiter:
        limiter = _RateLimiter(rate_per_minute=rate_limit_per_minute)
        _rate_limiters[key] = limiter
    await limiter.wait()


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Read `Retry-After` as delta-seconds or an HTTP date."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        target = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (target - utc_now()).total_seconds())


def backoff_delay(attempt: int, base_backoff: float, max_backoff: float) -> float:
    """Exponential backoff with up to 50% jitter."""
    delay = min(max_backoff, base_backoff * (2 ** (attempt - 1)))
    return delay + random.uniform(0, delay / 2)


def _count_retry(operation: str | None, reason: str, status_code: int) -> None:
    if _http_retries_total is None:
        return
    try:
        _http_retries_total.labels(
            operation=operation or "request",
            reason=reason,
            status_code=str(status_code),
        ).inc()
    except Exception:  # pragma: no cover
        pass


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int = 3,
    retry_statuses: Iterable[int] | None = None,
    base_backoff: float = 1.0,
    max_backoff: float = 8.0,
    rate_limit_key: str | None = None,
    rate_limit_per_minute: int | None = None,
    operation: str | None = None,
    **kwargs,
) -> httpx.Response:
    """
    Make an HTTP request with exponential backoff + jitter.

    Retryable statuses are retried until `max_attempts`; the last response is
    returned as-is for the caller to interpret. Network errors and timeouts
    are re-raised once attempts run out.
    """
    retry_statuses = set(retry_statuses or RETRY_STATUSES)

    attempt = 0
    while True:
        attempt += 1
        try:
            await _apply_rate_limit(rate_limit_key, rate_limit_per_minute)
            response = await client.request(method, url, **kwargs)

            if response.status_code in retry_statuses and attempt < max_attempts:
                delay = retry_after_seconds(response)
                if delay is None:
                    delay = backoff_delay(attempt, base_backoff, max_backoff)
                else:
                    delay = min(delay, max_backoff)

                _count_retry(operation, "status", response.status_code)
                logger.warning(
                    "Retrying Front request due to status",
                    status_code=response.status_code,
                    url=url,
                    attempt=attempt,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                continue

            return response

        except (httpx.TimeoutException, httpx.NetworkError) as e:
            if attempt >= max_attempts:
                raise

            delay = backoff_delay(attempt, base_backoff, max_backoff)
            _count_retry(operation, "network", 0)
            logger.warning(
                "Retrying Front request due to network error",
                url=url,
                attempt=attempt,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
