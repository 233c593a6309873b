import json
import math
import socket

import pytest

from imageboard.metrics import (
    CONTENT_TYPE,
    MetricKind,
    MetricSet,
    PeerRegistry,
    SnapshotProvider,
    StoreQueryFailure,
)


class StaticProvider(SnapshotProvider):
    def __init__(self, metric_set):
        self.metric_set = metric_set

    def snapshot(self):
        return self.metric_set.copy()


@pytest.fixture()
def metrics_disabled(app):
    previous = app.config.get("METRICS_ENABLED", True)
    app.config["METRICS_ENABLED"] = False
    try:
        yield app
    finally:
        app.config["METRICS_ENABLED"] = previous


def test_process_metrics_endpoint_renders_text(client):
    """/metrics combines store totals with this worker's process snapshot."""
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["Content-Type"] == CONTENT_TYPE
    body = response.get_data(as_text=True)
    assert "# HELP imageboard_posts_total The total number of posts.\n" in body
    assert "# TYPE imageboard_users_total counter\n" in body
    assert "# TYPE python_thread_count gauge\n" in body
    assert 'python_pid{worker="main"} ' in body
    assert body.endswith("\n")


def test_requests_are_counted(app, client):
    client.get("/metrics")
    assert app.activity_counters.total("http_requests_total", method="GET", status=200) >= 1

    body = client.get("/metrics").get_data(as_text=True)
    assert 'http_requests_total{method="GET",status="200",worker="main"} ' in body


def test_instance_metrics_without_peers_is_empty(client):
    response = client.get("/metrics/instance")

    assert response.status_code == 200
    assert response.get_data(as_text=True) == ""


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="requires Unix domain sockets")
def test_instance_metrics_combines_workers(app, client, socket_dir, monkeypatch):
    workers = []
    for worker_id, requests in ((0, 10), (1, 7)):
        snapshot = MetricSet({
            "requests_total": (MetricKind.COUNTER, "Total requests.", {"labels": ("worker",)}),
        })
        snapshot.set("requests_total", {"worker": str(worker_id)}, requests)
        registry = PeerRegistry(socket_dir, worker_id=worker_id)
        registry.serve(StaticProvider(snapshot))
        workers.append(registry)
    monkeypatch.setattr(app.metrics_aggregator, "peers", PeerRegistry(socket_dir))

    try:
        response = client.get("/metrics/instance")
    finally:
        for registry in workers:
            registry.shutdown()

    body = response.get_data(as_text=True)
    assert response.status_code == 200
    assert body.count("# HELP requests_total") == 1
    assert 'requests_total{worker="0"} 10.0\n' in body
    assert 'requests_total{worker="1"} 7.0\n' in body


def test_metrics_summary_returns_json(app, client, monkeypatch):
    snapshot = MetricSet({"threads_active": (MetricKind.GAUGE, "Active threads.")})
    snapshot.set("threads_active", {"worker": "0"}, 4)
    monkeypatch.setattr(app.metrics_aggregator, "collect_instance_wide", lambda: snapshot)

    response = client.get("/api/metrics/summary")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert MetricSet.from_dict(payload["data"]) == snapshot


def test_metrics_summary_spells_non_finite_values(app, client, monkeypatch):
    snapshot = MetricSet({"ratio": (MetricKind.GAUGE, "Ratio.")})
    snapshot.set("ratio", {"case": "nan"}, math.nan)
    snapshot.set("ratio", {"case": "pos"}, math.inf)
    snapshot.set("ratio", {"case": "neg"}, -math.inf)
    snapshot.set("ratio", {"case": "finite"}, 0.5)
    monkeypatch.setattr(app.metrics_aggregator, "collect_instance_wide", lambda: snapshot)

    response = client.get("/api/metrics/summary")

    def reject(constant):
        raise ValueError(f"bare {constant} in JSON body")

    payload = json.loads(response.get_data(as_text=True), parse_constant=reject)
    (metric,) = payload["data"]["metrics"]
    values = {point["labels"]["case"]: point["value"] for point in metric["series"]}
    assert values == {"nan": "NaN", "pos": "+Inf", "neg": "-Inf", "finite": 0.5}


def test_store_failure_returns_503_text(app, client, monkeypatch):
    def fail():
        raise StoreQueryFailure("Failed to query application metrics: database is locked")

    monkeypatch.setattr(app.application_metrics, "collect", fail)

    response = client.get("/metrics")

    assert response.status_code == 503
    assert response.headers["Content-Type"] == CONTENT_TYPE
    assert "database is locked" in response.get_data(as_text=True)


def test_metrics_disabled_returns_404(metrics_disabled, client):
    assert client.get("/metrics").status_code == 404
    assert client.get("/metrics/instance").status_code == 404

    response = client.get("/api/metrics/summary")
    assert response.status_code == 404
    assert response.get_json()["success"] is False
