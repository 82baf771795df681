from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class ModelQueryStats(BaseModel):
    model: str
    count: int
    avg_ms: int


class ActionQueryStats(BaseModel):
    action: str
    count: int
    avg_ms: int


class SlowQueryOut(BaseModel):
    timestamp: datetime
    model: str
    action: str
    duration_ms: float
    correlation_id: Optional[str] = None


class QueryAlerts(BaseModel):
    high_slow_query_rate: bool
    n1_patterns_detected: bool
    high_timeout_rate: bool
    query_volume_spike: bool


class QueryMetricsOut(BaseModel):
    collected_at: datetime
    window_minutes: int
    total_queries: int
    average_query_time_ms: float
    p95_query_time_ms: float
    p99_query_time_ms: float
    slow_query_count: int
    slow_query_rate: float
    n1_detections: int
    transaction_timeouts: int
    transaction_timeout_rate: float
    queries_by_model: list[ModelQueryStats]
    queries_by_action: list[ActionQueryStats]
    recent_slow_queries: list[SlowQueryOut]
    alerts: QueryAlerts
