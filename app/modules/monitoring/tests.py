"""
Tests del endpoint de métricas de consultas
"""
from app.core.query_metrics import (
    QueryMetricsConfig, QueryMetricsService, install_query_metrics, query_metrics_service
)


def test_query_metrics_snapshot(client, auth_headers):
    query_metrics_service.reset()
    query_metrics_service.record_query("lottery_bins", "SELECT", 5000)

    response = client.get("/api/v1/monitoring/query-metrics", headers=auth_headers("admin"))
    assert response.status_code == 200
    body = response.json()
    assert body["total_queries"] >= 1
    assert body["slow_query_count"] >= 1
    assert body["recent_slow_queries"][0]["model"] == "lottery_bins"
    assert set(body["alerts"]) == {
        "high_slow_query_rate", "n1_patterns_detected", "high_timeout_rate", "query_volume_spike"
    }
    query_metrics_service.reset()


def test_query_metrics_requires_admin(client, auth_headers):
    response = client.get("/api/v1/monitoring/query-metrics", headers=auth_headers("cashier"))
    assert response.status_code == 403


def test_request_id_reaches_recorded_queries(client, engine, store, auth_headers):
    service = QueryMetricsService(QueryMetricsConfig(slow_query_threshold_ms=0, n1_detection_threshold=1000))
    install_query_metrics(engine, service)

    headers = {**auth_headers(), "X-Request-ID": "req-lottery-42"}
    response = client.get(f"/api/v1/stores/{store.id}/lottery/bin-count", headers=headers)
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-lottery-42"

    slow_queries = service.get_metrics()["recent_slow_queries"]
    assert slow_queries
    assert {q["correlation_id"] for q in slow_queries} == {"req-lottery-42"}
