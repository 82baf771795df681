"""
Tests for the in-process query metrics
"""
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from app.core.query_metrics import (
    QueryMetricsConfig, QueryMetricsService, correlation_id_var, describe_statement,
    install_query_metrics, percentile, sanitize_operation_name
)


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics(clock):
    return QueryMetricsService(QueryMetricsConfig(slow_query_threshold_ms=100), clock=clock)


class TestHelpers:

    def test_describe_statement(self):
        assert describe_statement("SELECT lottery_bins.id FROM lottery_bins WHERE 1") == ("lottery_bins", "SELECT")
        assert describe_statement('INSERT INTO "stores" (id) VALUES (?)') == ("stores", "INSERT")
        assert describe_statement("UPDATE lottery_bins SET is_active=?") == ("lottery_bins", "UPDATE")
        assert describe_statement("SET LOCAL statement_timeout = 30000") == ("raw", "SET")

    def test_percentile_nearest_rank(self):
        values = list(range(1, 101))
        assert percentile(values, 95) == 95
        assert percentile(values, 99) == 99
        assert percentile([], 95) == 0
        assert percentile([7], 99) == 7

    def test_sanitize_operation_name(self):
        raw = (
            "update store=12345678-1234-1234-1234-123456789012 "
            "order 998877 by jane.doe@example.com call 555-123-4567"
        )
        sanitized = sanitize_operation_name(raw)
        assert "[UUID]" in sanitized
        assert "[ID]" in sanitized
        assert "[EMAIL]" in sanitized
        assert "[PHONE]" in sanitized
        assert "jane.doe" not in sanitized


class TestQueryMetricsService:

    def test_slow_queries(self, metrics, clock):
        metrics.record_query("lottery_bins", "SELECT", 20)
        clock.advance(1)
        metrics.record_query("lottery_bins", "SELECT", 150)
        clock.advance(1)
        metrics.record_query("stores", "UPDATE", 400)

        snapshot = metrics.get_metrics()
        assert snapshot["total_queries"] == 3
        assert snapshot["slow_query_count"] == 2
        assert snapshot["slow_query_rate"] == 66.67
        assert snapshot["alerts"]["high_slow_query_rate"] is True
        # Newest first
        assert [q["duration_ms"] for q in snapshot["recent_slow_queries"]] == [400, 150]

    def test_n1_detection_resets_after_alert(self, metrics, clock):
        for _ in range(5):
            metrics.record_query("lottery_packs", "SELECT", 1)
            clock.advance(0.01)
        assert metrics.get_metrics()["n1_detections"] == 1

        for _ in range(4):
            metrics.record_query("lottery_packs", "SELECT", 1)
            clock.advance(0.01)
        assert metrics.get_metrics()["n1_detections"] == 1
        assert metrics.get_metrics()["alerts"]["n1_patterns_detected"] is True

    def test_spread_out_queries_are_not_n1(self, metrics, clock):
        for _ in range(10):
            metrics.record_query("lottery_packs", "SELECT", 1)
            clock.advance(0.5)
        assert metrics.get_metrics()["n1_detections"] == 0

    def test_timeout_rate(self, metrics):
        metrics.record_transaction_success()
        metrics.record_transaction_success()
        metrics.record_transaction_success()
        metrics.record_transaction_timeout("bins store=12345678-1234-1234-1234-123456789012", 30000)

        snapshot = metrics.get_metrics()
        assert snapshot["transaction_timeouts"] == 1
        assert snapshot["transaction_timeout_rate"] == 25.0
        assert snapshot["alerts"]["high_timeout_rate"] is True

    def test_window_excludes_old_records(self, metrics, clock):
        metrics.record_query("stores", "SELECT", 500)
        clock.advance(6 * 60)
        metrics.record_query("stores", "SELECT", 10)
        snapshot = metrics.get_metrics()
        assert snapshot["total_queries"] == 1
        assert snapshot["slow_query_count"] == 0

    def test_grouping(self, metrics, clock):
        metrics.record_query("stores", "SELECT", 10)
        clock.advance(1)
        metrics.record_query("lottery_bins", "SELECT", 30)
        clock.advance(1)
        metrics.record_query("lottery_bins", "UPDATE", 50)

        snapshot = metrics.get_metrics()
        assert snapshot["queries_by_model"][0] == {"model": "lottery_bins", "count": 2, "avg_ms": 40}
        assert snapshot["queries_by_action"][0] == {"action": "SELECT", "count": 2, "avg_ms": 20}
        assert snapshot["average_query_time_ms"] == 30

    def test_snapshot_cache_invalidated_by_new_records(self, metrics):
        first = metrics.get_metrics()
        assert metrics.get_metrics() is first
        metrics.record_query("stores", "SELECT", 1)
        assert metrics.get_metrics()["total_queries"] == 1

    def test_retention_limit(self, clock):
        service = QueryMetricsService(QueryMetricsConfig(max_records_retained=3), clock=clock)
        for i in range(5):
            service.record_query(f"table_{i}", "SELECT", 1)
            clock.advance(1)
        assert service.get_metrics()["total_queries"] == 3

    def test_volume_spike(self, clock):
        service = QueryMetricsService(
            QueryMetricsConfig(query_volume_baseline=1, query_volume_spike_multiplier=2, n1_detection_threshold=100),
            clock=clock
        )
        for _ in range(3):
            service.record_query("stores", "SELECT", 1)
        assert service.get_metrics()["alerts"]["query_volume_spike"] is True
        assert service.has_active_alerts() is True

    def test_update_config_and_reset(self, metrics):
        metrics.update_config(slow_query_threshold_ms=5)
        assert metrics.get_config()["slow_query_threshold_ms"] == 5
        metrics.record_query("stores", "SELECT", 10)
        assert metrics.get_metrics()["slow_query_count"] == 1

        metrics.reset()
        assert metrics.get_metrics()["total_queries"] == 0
        assert metrics.has_active_alerts() is False


def test_engine_events_feed_metrics(clock):
    service = QueryMetricsService(QueryMetricsConfig(n1_detection_threshold=100), clock=clock)
    engine = create_engine("sqlite://", poolclass=StaticPool)
    install_query_metrics(engine, service)

    with engine.connect() as conn:
        conn.execute(text("CREATE TABLE bins (id INTEGER)"))
        conn.execute(text("INSERT INTO bins (id) VALUES (1)"))
        conn.execute(text("SELECT id FROM bins"))
        with pytest.raises(Exception):
            conn.execute(text("SELECT id FROM missing_table"))

    snapshot = service.get_metrics()
    actions = {entry["action"] for entry in snapshot["queries_by_action"]}
    assert {"CREATE", "INSERT", "SELECT"} <= actions
    by_model = {entry["model"]: entry["count"] for entry in snapshot["queries_by_model"]}
    assert by_model["bins"] == 2
    assert "missing_table" not in by_model
    engine.dispose()


def test_engine_events_tag_current_correlation_id(clock):
    service = QueryMetricsService(QueryMetricsConfig(slow_query_threshold_ms=0, n1_detection_threshold=100), clock=clock)
    engine = create_engine("sqlite://", poolclass=StaticPool)
    install_query_metrics(engine, service)

    token = correlation_id_var.set("req-7f3a")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1 FROM (SELECT 1) AS one"))
    finally:
        correlation_id_var.reset(token)

    with engine.connect() as conn:
        conn.execute(text("SELECT 2"))

    tagged = [q["correlation_id"] for q in service.get_metrics()["recent_slow_queries"]]
    assert tagged[0] is None
    assert "req-7f3a" in tagged
    engine.dispose()
