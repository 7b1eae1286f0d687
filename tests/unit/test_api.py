"""Tests for the HTTP API, served in-process with an injected engine."""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from collector.schemas import CollectionSource, RawSample
from processor.errors import VendorRateLimited
from processor.main import build_engine
from tests.factories import CAMPAIGN_ID, MINUTE, T0


class StubFetcher:
    def __init__(self):
        self.errors = []

    def fetch_snapshot(self, campaign, timestamp_ms=None, source=CollectionSource.AUTO):
        if self.errors:
            raise self.errors.pop(0)
        return RawSample(campaign_id=campaign.id, timestamp=timestamp_ms, hits=500, visits=300,
                         speed=120.0, collection_source=source)


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def engine(settings, fake_redis, fetcher, clock, campaign):
    engine = build_engine(settings, redis_client=fake_redis, fetcher=fetcher, clock=clock, sleep=lambda _: None)
    engine.campaigns.upsert(campaign)
    return engine


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client
    engine.collector.stop()


def post_sample(client, timestamp, hits, **extra):
    return client.post(
        f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/samples",
        json={"timestamp": timestamp, "hits": hits, "visits": hits, **extra},
    )


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready(self, client):
        body = client.get("/ready").json()
        assert body["status"] == "ready"
        assert body["circuit_breaker"] == "closed"


class TestTrafficEndpoints:
    def test_time_ranges(self, client):
        keys = [r["key"] for r in client.get("/api/v1/traffic/time-ranges").json()]
        assert keys == ["1m", "15m", "1h", "7d", "30d"]

    def test_ingest_and_current(self, client):
        assert post_sample(client, T0, 100).status_code == 201
        resp = post_sample(client, T0 + MINUTE, 140)
        assert resp.json()["recorded"] is True

        metrics = client.get(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/current").json()["metrics"]
        assert metrics["1h"]["total_hits"] == 40
        assert metrics["7d"]["source"] == "summary"

    def test_duplicate_sample(self, client):
        post_sample(client, T0, 100)
        body = post_sample(client, T0, 100).json()
        assert body["duplicate"] is True

    def test_malformed_sample_is_422(self, client):
        assert post_sample(client, T0, -5).status_code == 422

    def test_unknown_campaign_is_404(self, client):
        resp = client.get("/api/v1/campaigns/ghost/traffic/current")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_unknown_campaign_summary_is_404(self, client):
        resp = client.get("/api/v1/campaigns/ghost/traffic/summary", params={"time_range": "1h"})
        assert resp.status_code == 404

    def test_current_timestamp_follows_engine_clock(self, client, clock):
        body = client.get(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/current").json()
        assert body["timestamp"] == clock.now_ms

    def test_summary_history_hides_aggregation_state(self, client):
        post_sample(client, T0, 100)
        summaries = client.get(
            f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/summary", params={"time_range": "1h"}
        ).json()["summaries"]
        assert len(summaries) == 1
        assert "weighted_sums" not in summaries[0]
        assert "baseline" not in summaries[0]

    def test_unknown_range_is_422(self, client):
        resp = client.get(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/summary", params={"time_range": "2h"})
        assert resp.status_code == 422

    def test_trends(self, client):
        body = client.get(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/trends").json()
        assert body["trend"] == "insufficient_data"

    def test_raw_pagination(self, client):
        for i in range(3):
            post_sample(client, T0 + i * MINUTE, i)
        body = client.get(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/raw", params={"limit": 2}).json()
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert [s["hits"] for s in body["samples"]] == [2, 1]

    def test_manual_collect(self, client):
        body = client.post(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/collect").json()
        assert body["sample"]["collection_source"] == "manual"
        assert body["attempts"] == 1

    def test_manual_collect_failure_is_502(self, client, fetcher):
        fetcher.errors = [VendorRateLimited("429", status=429) for _ in range(3)]
        resp = client.post(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/collect")
        assert resp.status_code == 502
        assert resp.json()["detail"]["attempts"] == 3

    def test_initialize(self, client):
        body = client.post(f"/api/v1/campaigns/{CAMPAIGN_ID}/traffic/initialize").json()
        assert len(body["initialized"]) == 5


class TestAdminEndpoints:
    def test_collector_lifecycle(self, client):
        assert client.get("/api/v1/admin/collector/status").json()["running"] is False
        assert client.post("/api/v1/admin/collector/start", json={"interval_ms": 60_000}).json()["started"] is True
        assert client.post("/api/v1/admin/collector/stop").json()["stopped"] is True

    def test_interval_below_minimum_is_rejected(self, client):
        assert client.put("/api/v1/admin/collector/interval", json={"interval_ms": 1000}).status_code == 422

    def test_config_is_clamped(self, client):
        status = client.put("/api/v1/admin/collector/config", json={"max_concurrent_requests": 99}).json()
        assert status["max_concurrent_requests"] == 10

    def test_collect_all(self, client):
        body = client.post("/api/v1/admin/collector/collect-all").json()
        assert (body["total_campaigns"], body["successful"], body["errors"]) == (1, 1, 0)

    def test_cleanup_and_statistics(self, client):
        post_sample(client, T0, 100)
        assert client.post("/api/v1/admin/traffic/cleanup", json={"retention_days": 30}).json()[
            "raw_samples_deleted"
        ] == 0
        stats = client.get("/api/v1/admin/traffic/statistics").json()
        assert stats["raw_samples"] == 1
        assert stats["summaries"] == 5

    def test_prometheus(self, client):
        client.post("/api/v1/admin/collector/collect-all")
        text = client.get("/metrics").text
        assert "traffic_collection_runs_total 1" in text
        assert "redis_circuit_breaker_state 0" in text
