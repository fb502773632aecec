"""
Health Monitor / Circuit Breaker

Every Front API call reports its outcome here. Consecutive failures open a
circuit breaker that makes the client refuse calls until a cool-down passes.
The reporting side (sync status, health metrics, performance stats,
recommendations) aggregates sync run records and never changes control flow.

The monitor is constructed explicitly and injected into the client and the
orchestrator; its mutable state lives in a `StateStore`.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol, Sequence

import structlog

from frontsync.config import Settings
from frontsync.kernel.errors import CircuitBreakerOpenError, classify_error
from frontsync.kernel.time import Clock, parse_iso8601, utc_now
from frontsync.monitoring.state_store import StateStore
from frontsync.sync.runs import SUCCESSFUL_STATUSES, SyncRun, SyncRunStatus

logger = structlog.get_logger()

CIRCUIT_BREAKER_KEY = "front_sync_circuit_breaker"
CURRENT_METRICS_KEY = "front_sync_current_metrics"
CURRENT_METRICS_TTL_SECONDS = 3600

_RATE_LIMIT_RE = re.compile(r"rate.?limit", re.IGNORECASE)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    UNKNOWN = "unknown"


class SyncRunSource(Protocol):
    """The slice of `SyncStore` the monitor reads from."""

    async def list_sync_runs(
        self,
        since: datetime | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> list[SyncRun]:
        ...

    async def latest_sync_run(
        self,
        resource_type: str | None = None,
        sync_type: str | None = None,
        statuses: Sequence[SyncRunStatus] | None = None,
    ) -> SyncRun | None:
        ...


@dataclass
class CircuitBreakerState:
    open: bool = False
    failure_count: int = 0
    last_failure_at: datetime | None = None
    next_attempt_at: datetime | None = None

    def state(self, now: datetime) -> CircuitState:
        if not self.open:
            return CircuitState.CLOSED
        if self.next_attempt_at is not None and now >= self.next_attempt_at:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "open": self.open,
            "failure_count": self.failure_count,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CircuitBreakerState":
        if not data:
            return cls()
        try:
            return cls(
                open=bool(data.get("open", False)),
                failure_count=int(data.get("failure_count") or 0),
                last_failure_at=parse_iso8601(data["last_failure_at"]) if data.get("last_failure_at") else None,
                next_attempt_at=parse_iso8601(data["next_attempt_at"]) if data.get("next_attempt_at") else None,
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable circuit breaker state", error=str(exc))
            return cls()


class HealthMonitor:
    """Circuit breaker plus rolling health/performance aggregation."""

    def __init__(
        self,
        state_store: StateStore,
        runs: SyncRunSource,
        *,
        failure_threshold: int = 5,
        cooldown: timedelta = timedelta(minutes=5),
        response_time_window: int = 100,
        stuck_run_threshold: timedelta = timedelta(hours=2),
        clock: Clock = utc_now,
    ) -> None:
        self._state = state_store
        self._runs = runs
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.response_time_window = response_time_window
        self.stuck_run_threshold = stuck_run_threshold
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, state_store: StateStore, runs: SyncRunSource) -> "HealthMonitor":
        return cls(
            state_store,
            runs,
            failure_threshold=settings.circuit_breaker_threshold,
            cooldown=timedelta(seconds=settings.circuit_breaker_cooldown_seconds),
            response_time_window=settings.response_time_window,
            stuck_run_threshold=timedelta(minutes=settings.stuck_run_threshold_minutes),
        )

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    async def _load_breaker(self) -> CircuitBreakerState:
        return CircuitBreakerState.from_dict(await self._state.get(CIRCUIT_BREAKER_KEY))

    async def can_execute(self) -> bool:
        """False while the circuit is open and the cool-down has not elapsed."""
        breaker = await self._load_breaker()
        return breaker.state(self._clock()) != CircuitState.OPEN

    async def ensure_can_execute(self) -> None:
        breaker = await self._load_breaker()
        if breaker.state(self._clock()) == CircuitState.OPEN:
            raise CircuitBreakerOpenError(
                meta={
                    "failure_count": breaker.failure_count,
                    "next_attempt_at": breaker.next_attempt_at.isoformat() if breaker.next_attempt_at else None,
                }
            )

    async def record_api_call(
        self,
        *,
        response_time_ms: float,
        success: bool,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        now = self._clock()
        await self._update_performance_metrics(now, response_time_ms, success, status_code)
        await self._update_circuit_breaker(now, success, error)

    async def _update_performance_metrics(
        self,
        now: datetime,
        response_time_ms: float,
        success: bool,
        status_code: int | None,
    ) -> None:
        window = self.response_time_window

        def apply(current: dict[str, Any] | None) -> dict[str, Any]:
            metrics = current or {
                "response_times": [],
                "success_count": 0,
                "failure_count": 0,
                "rate_limited_count": 0,
            }
            metrics["response_times"] = (metrics["response_times"] + [round(response_time_ms, 2)])[-window:]
            if success:
                metrics["success_count"] += 1
            else:
                metrics["failure_count"] += 1
            if status_code == 429:
                metrics["rate_limited_count"] = metrics.get("rate_limited_count", 0) + 1
            metrics["last_updated"] = now.isoformat()
            return metrics

        await self._state.update(CURRENT_METRICS_KEY, apply, ttl_seconds=CURRENT_METRICS_TTL_SECONDS)

    async def _update_circuit_breaker(self, now: datetime, success: bool, error: str | None) -> None:
        threshold = self.failure_threshold
        cooldown = self.cooldown
        transitions: list[str] = []

        def apply(current: dict[str, Any] | None) -> dict[str, Any]:
            breaker = CircuitBreakerState.from_dict(current)
            if success:
                if breaker.open:
                    transitions.append("closed")
                breaker.failure_count = 0
                breaker.open = False
                breaker.next_attempt_at = None
            else:
                breaker.failure_count += 1
                breaker.last_failure_at = now
                if breaker.failure_count >= threshold:
                    if not breaker.open or (breaker.next_attempt_at and now >= breaker.next_attempt_at):
                        transitions.append("opened")
                    breaker.open = True
                    breaker.next_attempt_at = now + cooldown
            return breaker.to_dict()

        state = await self._state.update(CIRCUIT_BREAKER_KEY, apply)

        if "opened" in transitions:
            logger.warning(
                "Front API circuit breaker opened",
                failure_count=state["failure_count"],
                next_attempt_at=state["next_attempt_at"],
                error=error,
            )
        elif "closed" in transitions:
            logger.info("Front API circuit breaker closed")

    async def circuit_breaker_status(self) -> dict[str, Any]:
        breaker = await self._load_breaker()
        return {
            "open": breaker.open,
            "state": breaker.state(self._clock()).value,
            "failure_count": breaker.failure_count,
            "last_failure_at": breaker.last_failure_at,
            "next_attempt_at": breaker.next_attempt_at,
        }

    async def reset_circuit_breaker(self) -> None:
        await self._state.delete(CIRCUIT_BREAKER_KEY)
        logger.info("Front API circuit breaker reset manually")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def sync_status(self) -> dict[str, Any]:
        now = self._clock()
        recent = await self._runs.list_sync_runs(since=now - timedelta(hours=24))
        last_sync = await self._runs.latest_sync_run()
        running = await self._runs.list_sync_runs(statuses=[SyncRunStatus.RUNNING])
        breaker = await self._load_breaker()

        recent_errors = sum(1 for run in recent if run.status == SyncRunStatus.ERROR)

        if breaker.state(now) == CircuitState.OPEN:
            overall = OverallStatus.CIRCUIT_BREAKER_OPEN
        elif recent_errors:
            overall = OverallStatus.DEGRADED
        elif last_sync is not None and last_sync.status == SyncRunStatus.COMPLETED:
            overall = OverallStatus.HEALTHY
        elif last_sync is not None and last_sync.status == SyncRunStatus.COMPLETED_WITH_ERRORS:
            overall = OverallStatus.DEGRADED
        else:
            overall = OverallStatus.UNKNOWN

        return {
            "overall": overall.value,
            "last_sync": last_sync.completed_at if last_sync else None,
            "recent_errors": recent_errors,
            "running_syncs": len(running),
            "stuck_syncs": sum(1 for run in running if run.is_stuck(now, self.stuck_run_threshold)),
        }

    async def health_metrics(self) -> dict[str, Any]:
        now = self._clock()
        runs_24h = await self._runs.list_sync_runs(since=now - timedelta(hours=24))
        runs_7d = await self._runs.list_sync_runs(since=now - timedelta(days=7))

        attempted = [
            run for run in runs_24h
            if run.status not in (SyncRunStatus.RUNNING, SyncRunStatus.SKIPPED)
        ]
        successful = [run for run in attempted if run.status in SUCCESSFUL_STATUSES]
        durations = [run.duration_seconds for run in attempted if run.duration_seconds is not None]

        return {
            "success_rate": len(successful) / len(attempted) if attempted else 0.0,
            "avg_duration_seconds": sum(durations) / len(durations) if durations else 0.0,
            "total_syncs_24h": len(attempted),
            "successful_syncs_24h": len(successful),
            "failed_syncs_24h": sum(1 for run in attempted if run.status == SyncRunStatus.ERROR),
            "running_syncs": sum(1 for run in runs_24h if run.status == SyncRunStatus.RUNNING),
            "error_patterns": self._error_patterns(runs_7d),
            "uptime_percentage": self._uptime_percentage(runs_7d),
        }

    async def performance_stats(self) -> dict[str, Any]:
        now = self._clock()
        runs_24h = await self._runs.list_sync_runs(since=now - timedelta(hours=24))
        current = await self._state.get(CURRENT_METRICS_KEY) or {}

        response_times = current.get("response_times") or []
        avg_response_time = round(sum(response_times) / len(response_times), 2) if response_times else 0.0
        api_calls = sum(int(run.metadata.get("api_calls") or 0) for run in runs_24h)
        errors = sum(1 for run in runs_24h if run.status == SyncRunStatus.ERROR)

        hourly = Counter(_hour_bucket(run.started_at) for run in runs_24h)
        peak_hour = max(hourly.items(), key=lambda item: item[1])[0] if hourly else None

        return {
            "avg_response_time": avg_response_time,
            "api_calls_24h": api_calls,
            "error_rate": errors / len(runs_24h) if runs_24h else 0.0,
            "throughput_per_hour": sum(hourly.values()) / max(len(hourly), 1),
            "peak_usage_hour": peak_hour.strftime("%H:00") if peak_hour else None,
            "rate_limit_hits": sum(
                1 for run in runs_24h
                if any(_RATE_LIMIT_RE.search(message) for message in run.error_messages)
            ),
            "rate_limited_calls": int(current.get("rate_limited_count") or 0),
            "recent_success_count": int(current.get("success_count") or 0),
            "recent_failure_count": int(current.get("failure_count") or 0),
        }

    async def recommendations(self) -> list[dict[str, str]]:
        metrics = await self.health_metrics()
        stats = await self.performance_stats()
        breaker = await self.circuit_breaker_status()
        recommendations: list[dict[str, str]] = []

        if metrics["success_rate"] < 0.9:
            recommendations.append({
                "type": "warning",
                "title": "Low Success Rate",
                "message": f"Success rate is {metrics['success_rate'] * 100:.1f}%. Consider investigating recent errors.",
                "action": "Review error logs and consider increasing retry logic",
            })

        if stats["avg_response_time"] > 5000:
            recommendations.append({
                "type": "warning",
                "title": "Slow API Response Times",
                "message": f"Average response time is {stats['avg_response_time']}ms.",
                "action": "Consider optimizing API calls or implementing caching",
            })

        if stats["rate_limit_hits"] > 0:
            recommendations.append({
                "type": "warning",
                "title": "Rate Limit Issues",
                "message": f"{stats['rate_limit_hits']} rate limit hits in the last 24 hours.",
                "action": "Reduce API call frequency or lower the configured rate limit",
            })

        if breaker["open"]:
            recommendations.append({
                "type": "error",
                "title": "Circuit Breaker Open",
                "message": "The circuit breaker is currently open due to repeated failures.",
                "action": "Investigate the underlying issue before resetting the circuit breaker",
            })

        return recommendations

    async def generate_health_report(self) -> dict[str, Any]:
        return {
            "timestamp": self._clock(),
            "sync_status": await self.sync_status(),
            "health_metrics": await self.health_metrics(),
            "performance_stats": await self.performance_stats(),
            "circuit_breaker": await self.circuit_breaker_status(),
            "recommendations": await self.recommendations(),
        }

    @staticmethod
    def _error_patterns(runs: list[SyncRun]) -> dict[str, dict[str, Any]]:
        patterns: dict[str, dict[str, Any]] = {}
        failed = sorted(
            (run for run in runs if run.status == SyncRunStatus.ERROR),
            key=lambda run: run.started_at,
            reverse=True,
        )
        for run in failed:
            for message in run.error_messages:
                category = classify_error(message)
                entry = patterns.setdefault(category, {"count": 0, "recent_example": message})
                entry["count"] += 1
        return dict(sorted(patterns.items(), key=lambda item: -item[1]["count"]))

    @staticmethod
    def _uptime_percentage(runs: list[SyncRun]) -> float:
        total_hours = 7 * 24
        error_hours = {_hour_bucket(run.started_at) for run in runs if run.status == SyncRunStatus.ERROR}
        return round((total_hours - len(error_hours)) / total_hours * 100, 2)


def _hour_bucket(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)
