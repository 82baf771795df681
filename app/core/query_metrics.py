"""
In-process query metrics.

Collects timings for every statement executed on the engine and keeps a
rolling window of them for the monitoring endpoint:
- slow query detection with a configurable threshold
- N+1 detection (rapid repeats of the same table/verb pair)
- transaction timeout tracking
- aggregated snapshot with percentiles and alert flags

Only table names, SQL verbs and durations are stored. Parameters never are.
"""
import logging
import math
import re
import threading
import time
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import event

from app.core.config import settings

logger = logging.getLogger(__name__)

# Set per request by TenantMiddleware; read when queries and timeouts are recorded
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

CACHE_TTL_SECONDS = 5.0

_UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_NUMERIC_ID_RE = re.compile(r"\b\d{4,}\b")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")

_TABLE_PATTERNS = (
    re.compile(r"^\s*insert\s+into\s+[\"`]?(\w+)", re.IGNORECASE),
    re.compile(r"^\s*update\s+[\"`]?(\w+)", re.IGNORECASE),
    re.compile(r"^\s*delete\s+from\s+[\"`]?(\w+)", re.IGNORECASE),
    re.compile(r"\bfrom\s+[\"`]?(\w+)", re.IGNORECASE),
)


@dataclass
class QueryMetricsConfig:
    slow_query_threshold_ms: float = 1000
    n1_detection_window_ms: float = 100
    n1_detection_threshold: int = 5
    max_records_retained: int = 10000
    metrics_window_minutes: int = 5
    enable_detailed_logging: bool = False
    slow_query_rate_alert_threshold: float = 10
    timeout_rate_alert_threshold: float = 5
    query_volume_baseline: int = 1000
    query_volume_spike_multiplier: int = 3


@dataclass
class QueryTimingRecord:
    timestamp: datetime
    model: str
    action: str
    duration_ms: float
    is_slow: bool
    correlation_id: Optional[str] = None


@dataclass
class N1DetectionRecord:
    timestamp: datetime
    model: str
    action: str
    query_count: int
    window_ms: float
    correlation_id: Optional[str] = None


@dataclass
class TransactionTimeoutRecord:
    timestamp: datetime
    operation: str
    timeout_ms: int
    correlation_id: Optional[str] = None


@dataclass
class _N1Tracking:
    timestamps: list = field(default_factory=list)


def sanitize_operation_name(operation: str) -> str:
    """Mask identifiers, e-mails and phone numbers in an operation label."""
    sanitized = _UUID_RE.sub("[UUID]", operation)
    sanitized = _EMAIL_RE.sub("[EMAIL]", sanitized)
    sanitized = _PHONE_RE.sub("[PHONE]", sanitized)
    sanitized = _NUMERIC_ID_RE.sub("[ID]", sanitized)
    return sanitized


def describe_statement(statement: str) -> tuple[str, str]:
    """Return (table, verb) for a SQL statement, e.g. ("lottery_bins", "SELECT")."""
    stripped = statement.lstrip()
    action = stripped.split(None, 1)[0].upper() if stripped else "UNKNOWN"
    for pattern in _TABLE_PATTERNS:
        match = pattern.search(stripped)
        if match:
            return match.group(1), action
    return "raw", action


def percentile(sorted_values: list, p: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0
    index = math.ceil((p / 100) * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


class QueryMetricsService:
    """Collects and aggregates query performance metrics for one process."""

    def __init__(self, config: Optional[QueryMetricsConfig] = None, clock=time.time):
        self.config = config or QueryMetricsConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._query_timings: deque = deque()
        self._n1_detections: deque = deque()
        self._transaction_timeouts: deque = deque()
        self._total_transactions = 0
        self._recent_queries: dict[str, _N1Tracking] = {}
        self._cached_metrics: Optional[dict] = None
        self._cache_valid_until = 0.0

        logger.info(
            f"Query metrics initialized: slow_threshold={self.config.slow_query_threshold_ms}ms "
            f"n1_window={self.config.n1_detection_window_ms}ms "
            f"n1_threshold={self.config.n1_detection_threshold} "
            f"window={self.config.metrics_window_minutes}min"
        )

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    @staticmethod
    def _trim(records: deque, limit: int) -> None:
        while len(records) > limit:
            records.popleft()

    def record_query(self, model: str, action: str, duration_ms: float, correlation_id: Optional[str] = None) -> None:
        timestamp = self._now()
        is_slow = duration_ms >= self.config.slow_query_threshold_ms

        with self._lock:
            self._query_timings.append(
                QueryTimingRecord(timestamp, model, action, duration_ms, is_slow, correlation_id)
            )
            self._trim(self._query_timings, self.config.max_records_retained)
            self._check_n1_pattern(model, action, timestamp, correlation_id)
            self._cached_metrics = None

        if is_slow:
            logger.warning(
                f"Slow query: {model}.{action} took {duration_ms:.1f}ms "
                f"(threshold {self.config.slow_query_threshold_ms}ms, correlation_id={correlation_id or 'none'})"
            )
        elif self.config.enable_detailed_logging:
            logger.debug(f"Query executed: {model}.{action} in {duration_ms:.1f}ms")

    def _check_n1_pattern(self, model: str, action: str, timestamp: datetime, correlation_id: Optional[str]) -> None:
        # Caller holds the lock
        key = f"{model}:{action}"
        now_ms = timestamp.timestamp() * 1000
        window_start = now_ms - self.config.n1_detection_window_ms

        tracking = self._recent_queries.setdefault(key, _N1Tracking())
        tracking.timestamps.append(now_ms)
        tracking.timestamps = [t for t in tracking.timestamps if t >= window_start]

        if len(tracking.timestamps) < self.config.n1_detection_threshold:
            return

        query_count = len(tracking.timestamps)
        self._n1_detections.append(
            N1DetectionRecord(timestamp, model, action, query_count, self.config.n1_detection_window_ms, correlation_id)
        )
        self._trim(self._n1_detections, self.config.max_records_retained // 10)
        logger.error(
            f"Potential N+1 query detected: {query_count} {model}.{action} queries "
            f"in {self.config.n1_detection_window_ms}ms (correlation_id={correlation_id or 'none'})"
        )
        # One alert per burst
        tracking.timestamps = []

    def record_transaction_timeout(self, operation: str, timeout_ms: int, correlation_id: Optional[str] = None) -> None:
        sanitized = sanitize_operation_name(operation)
        with self._lock:
            self._total_transactions += 1
            self._transaction_timeouts.append(
                TransactionTimeoutRecord(self._now(), sanitized, timeout_ms, correlation_id)
            )
            self._trim(self._transaction_timeouts, self.config.max_records_retained // 10)
            self._cached_metrics = None

        logger.error(
            f"Transaction timeout after {timeout_ms}ms: {sanitized} "
            f"(correlation_id={correlation_id or 'none'})"
        )

    def record_transaction_success(self) -> None:
        with self._lock:
            self._total_transactions += 1

    def get_metrics(self) -> dict:
        """Aggregate the records of the current window into a snapshot."""
        with self._lock:
            now = self._clock()
            if self._cached_metrics is not None and now < self._cache_valid_until:
                return self._cached_metrics

            window_start = self._now() - timedelta(minutes=self.config.metrics_window_minutes)
            recent_queries = [q for q in self._query_timings if q.timestamp >= window_start]
            recent_n1 = [n for n in self._n1_detections if n.timestamp >= window_start]
            recent_timeouts = [t for t in self._transaction_timeouts if t.timestamp >= window_start]
            total_transactions = self._total_transactions

            total_queries = len(recent_queries)
            slow_queries = [q for q in recent_queries if q.is_slow]
            slow_query_rate = (len(slow_queries) / total_queries) * 100 if total_queries else 0

            durations = sorted(q.duration_ms for q in recent_queries)
            average = sum(durations) / len(durations) if durations else 0

            timeout_count = len(recent_timeouts)
            timeout_rate = (timeout_count / total_transactions) * 100 if total_transactions else 0

            metrics = {
                "collected_at": self._now(),
                "window_minutes": self.config.metrics_window_minutes,
                "total_queries": total_queries,
                "average_query_time_ms": round(average),
                "p95_query_time_ms": percentile(durations, 95),
                "p99_query_time_ms": percentile(durations, 99),
                "slow_query_count": len(slow_queries),
                "slow_query_rate": round(slow_query_rate, 2),
                "n1_detections": len(recent_n1),
                "transaction_timeouts": timeout_count,
                "transaction_timeout_rate": round(timeout_rate, 2),
                "queries_by_model": self._group_by(recent_queries, "model"),
                "queries_by_action": self._group_by(recent_queries, "action"),
                "recent_slow_queries": [
                    {
                        "timestamp": q.timestamp,
                        "model": q.model,
                        "action": q.action,
                        "duration_ms": q.duration_ms,
                        "correlation_id": q.correlation_id,
                    }
                    for q in reversed(slow_queries[-10:])
                ],
                "alerts": {
                    "high_slow_query_rate": slow_query_rate > self.config.slow_query_rate_alert_threshold,
                    "n1_patterns_detected": len(recent_n1) > 0,
                    "high_timeout_rate": timeout_rate > self.config.timeout_rate_alert_threshold,
                    "query_volume_spike": total_queries > (
                        self.config.query_volume_baseline * self.config.query_volume_spike_multiplier
                    ),
                },
            }

            self._cached_metrics = metrics
            self._cache_valid_until = now + CACHE_TTL_SECONDS
            return metrics

    @staticmethod
    def _group_by(records: list, attribute: str) -> list[dict]:
        stats: dict[str, list] = {}
        for record in records:
            entry = stats.setdefault(getattr(record, attribute), [0, 0.0])
            entry[0] += 1
            entry[1] += record.duration_ms
        grouped = [
            {attribute: key, "count": count, "avg_ms": round(total / count)}
            for key, (count, total) in stats.items()
        ]
        grouped.sort(key=lambda item: item["count"], reverse=True)
        return grouped[:10]

    def has_active_alerts(self) -> bool:
        return any(self.get_metrics()["alerts"].values())

    def update_config(self, **changes) -> None:
        with self._lock:
            self.config = replace(self.config, **changes)
            self._cached_metrics = None
        logger.info(f"Query metrics config updated: {changes}")

    def get_config(self) -> dict:
        return asdict(self.config)

    def reset(self) -> None:
        with self._lock:
            self._query_timings.clear()
            self._n1_detections.clear()
            self._transaction_timeouts.clear()
            self._total_transactions = 0
            self._recent_queries.clear()
            self._cached_metrics = None
            self._cache_valid_until = 0.0


def install_query_metrics(engine, service: QueryMetricsService) -> None:
    """Time every statement executed on ``engine`` and feed it to ``service``."""

    @event.listens_for(engine, "before_cursor_execute")
    def _start_timer(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _stop_timer(conn, cursor, statement, parameters, context, executemany):
        started = conn.info.get("query_start_time")
        if not started:
            return
        duration_ms = (time.perf_counter() - started.pop()) * 1000
        model, action = describe_statement(statement)
        service.record_query(model, action, duration_ms, correlation_id_var.get())

    @event.listens_for(engine, "handle_error")
    def _discard_timer(exception_context):
        conn = exception_context.connection
        if conn is not None and conn.info.get("query_start_time"):
            conn.info["query_start_time"].pop()


query_metrics_service = QueryMetricsService(
    QueryMetricsConfig(
        slow_query_threshold_ms=settings.SLOW_QUERY_THRESHOLD_MS,
        n1_detection_window_ms=settings.N1_DETECTION_WINDOW_MS,
        n1_detection_threshold=settings.N1_DETECTION_THRESHOLD,
        metrics_window_minutes=settings.METRICS_WINDOW_MINUTES,
        enable_detailed_logging=settings.detailed_query_logging,
    )
)
