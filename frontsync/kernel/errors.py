from __future__ import annotations

import re
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class FrontSyncError(Exception):
    """Base typed error for the sync engine.

    - Stable `code` for programmatic handling (and error classification).
    - Human-readable `message` that ends up in sync run error lists.
    - Optional `meta` payload for debugging.
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 500,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.meta = dict(meta or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.meta:
            payload["meta"] = self.meta
        return payload


class NetworkError(FrontSyncError):
    def __init__(self, *, message: str = "Network error", code: str = "upstream.network_error", meta: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, status_code=503, meta=meta)


class RateLimitError(FrontSyncError):
    def __init__(
        self,
        *,
        message: str = "Rate limit exceeded",
        code: str = "upstream.rate_limit",
        retry_after: float | None = None,
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=429, meta=meta)
        self.retry_after = retry_after


class AuthenticationError(FrontSyncError):
    def __init__(
        self,
        *,
        message: str = "Authentication failed (unauthorized)",
        code: str = "upstream.unauthorized",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=401, meta=meta)


class NotFoundError(FrontSyncError):
    def __init__(self, *, message: str = "Not found", code: str = "resource.not_found", meta: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, status_code=404, meta=meta)


class UpstreamError(FrontSyncError):
    def __init__(
        self,
        *,
        message: str = "Upstream server error",
        code: str = "upstream.error",
        meta: dict[str, Any] | None = None,
        status_code: int = 502,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class CircuitBreakerOpenError(FrontSyncError):
    def __init__(
        self,
        *,
        message: str = "Circuit breaker is open; remote calls are suspended",
        code: str = "circuit.open",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=503, meta=meta)


class PersistenceError(FrontSyncError):
    def __init__(
        self,
        *,
        message: str = "Validation failed",
        code: str = "storage.validation_error",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=422, meta=meta)


# Ordered: first match wins.
_ERROR_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("timeout", re.compile(r"timeout", re.IGNORECASE)),
    ("rate_limit", re.compile(r"rate.limit", re.IGNORECASE)),
    ("authentication", re.compile(r"authentication|unauthorized", re.IGNORECASE)),
    ("not_found", re.compile(r"not.found|404", re.IGNORECASE)),
    ("server_error", re.compile(r"server.error|500", re.IGNORECASE)),
    ("network", re.compile(r"network|connection", re.IGNORECASE)),
)


def classify_error(message: str | None) -> str:
    """Map free-form error text onto a coarse failure category."""
    if not message:
        return "other"
    for category, pattern in _ERROR_PATTERNS:
        if pattern.search(message):
            return category
    return "other"
