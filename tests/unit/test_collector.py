"""Tests for the scheduled collector."""

import threading
import time

import pytest

from collector.collector import Collector
from collector.retry import RetryPolicy
from collector.schemas import CollectionSource, RawSample
from processor.errors import CampaignNotFound, ValidationError, VendorPermanentError, VendorRateLimited
from processor.time_windows import TIME_RANGES
from tests.factories import CAMPAIGN_ID, MINUTE


class ScriptedFetcher:
    """Returns snapshots, or raises the scripted error for a campaign."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []
        self.lock = threading.Lock()

    def fetch_snapshot(self, campaign, timestamp_ms=None, source=CollectionSource.AUTO):
        with self.lock:
            self.calls.append((campaign.id, source))
            script = self.failures.get(campaign.id)
            error = script.pop(0) if script else None
        if error is not None:
            raise error
        return RawSample(
            campaign_id=campaign.id, timestamp=timestamp_ms, hits=100, visits=80, collection_source=source
        )


@pytest.fixture
def add_campaigns(registry, campaign):
    def _add(*ids):
        for cid in ids:
            registry.upsert(campaign.model_copy(update={"id": cid, "vendor_project_id": f"proj-{cid}"}))

    return _add


def make_collector(registry, fetcher, service, clock, **kwargs):
    sleeps = []
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay=2.0, max_jitter=0.0))
    collector = Collector(
        registry, fetcher, service.record_sample, sleep=sleeps.append, clock=clock, log_level="WARNING", **kwargs
    )
    return collector, sleeps


class TestCollectAll:
    def test_collects_every_eligible_campaign(self, registry, service, clock, add_campaigns, sample_store):
        add_campaigns("c2", "c3")
        fetcher = ScriptedFetcher()
        collector, _ = make_collector(registry, fetcher, service, clock)

        summary = collector.collect_all()
        assert (summary.total_campaigns, summary.successful, summary.errors) == (3, 3, 0)
        assert sample_store.count() == 3
        assert collector.last_run is summary

    def test_failures_are_isolated(self, registry, service, clock, add_campaigns):
        add_campaigns("c2", "c3")
        fetcher = ScriptedFetcher({"c2": [VendorPermanentError("gone", status=410)]})
        collector, _ = make_collector(registry, fetcher, service, clock)

        summary = collector.collect_all()
        assert (summary.successful, summary.errors) == (2, 1)
        assert summary.failed_campaigns == ["c2"]
        assert collector.stats.fetch_errors == 1

    def test_batches_pause_between_but_not_after(self, registry, service, clock, add_campaigns):
        add_campaigns("c2", "c3", "c4", "c5")
        collector, sleeps = make_collector(
            registry, ScriptedFetcher(), service, clock, max_concurrent_requests=2, batch_delay=0.5
        )
        collector.collect_all()
        assert sleeps == [0.5, 0.5]

    def test_overlapping_collection_is_skipped(self, registry, service, clock):
        collector, _ = make_collector(registry, ScriptedFetcher(), service, clock)
        collector._collect_lock.acquire()
        try:
            assert collector.collect_all() is None
        finally:
            collector._collect_lock.release()
        assert collector.stats.ticks_skipped == 1

    def test_rate_limited_then_manual_retry(self, registry, service, clock, sample_store, summary_store):
        rate_limited = [VendorRateLimited("429", status=429) for _ in range(3)]
        fetcher = ScriptedFetcher({CAMPAIGN_ID: rate_limited})
        collector, sleeps = make_collector(registry, fetcher, service, clock)

        summary = collector.collect_all()
        assert summary.errors == 1
        assert sleeps == [2.0, 4.0]
        assert sample_store.count() == 0

        clock.advance(MINUTE)
        result = collector.collect_campaign(CAMPAIGN_ID)
        assert result.ok
        assert result.sample.collection_source == CollectionSource.MANUAL
        assert sample_store.count() == 1
        for key in TIME_RANGES:
            history = summary_store.history(CAMPAIGN_ID, key)
            assert len(history) == 1
            assert history[0].data_points_count == 1

    def test_manual_collection_unknown_campaign(self, registry, service, clock):
        collector, _ = make_collector(registry, ScriptedFetcher(), service, clock)
        with pytest.raises(CampaignNotFound):
            collector.collect_campaign("ghost")


class TestScheduling:
    def test_start_stop_wait(self, registry, service, clock):
        collector, _ = make_collector(registry, ScriptedFetcher(), service, clock, interval_ms=60_000)
        assert collector.start() is True
        assert collector.start() is False
        assert collector.status()["running"] is True
        assert collector.status()["next_run_at"] == pytest.approx(clock.now_ms + 60_000)

        assert collector.stop() is True
        assert collector.wait(timeout=2) is True
        assert collector.status()["running"] is False
        assert collector.stop() is False

    def test_loop_runs_ticks(self, registry, service, clock):
        fetcher = ScriptedFetcher()
        collector, _ = make_collector(registry, fetcher, service, clock, interval_ms=10)
        collector.start()
        try:
            for _ in range(200):
                if collector.stats.runs >= 1:
                    break
                time.sleep(0.01)
        finally:
            collector.stop()
            collector.wait(timeout=2)
        assert collector.stats.runs >= 1
        assert fetcher.calls

    def test_update_interval_restarts_running_loop(self, registry, service, clock):
        collector, _ = make_collector(registry, ScriptedFetcher(), service, clock)
        collector.start()
        try:
            collector.update_interval(30_000)
            assert collector.is_running
            assert collector.status()["interval_ms"] == 30_000
        finally:
            collector.stop()
            collector.wait(timeout=2)

    def test_interval_minimum(self, registry, service, clock):
        collector, _ = make_collector(registry, ScriptedFetcher(), service, clock)
        with pytest.raises(ValidationError):
            collector.update_interval(5_000)

    def test_configuration_is_clamped(self, registry, service, clock):
        collector, _ = make_collector(registry, ScriptedFetcher(), service, clock)
        collector.update_configuration(max_concurrent_requests=50, retry_attempts=0, retry_delay_ms=60_000)
        status = collector.status()
        assert status["max_concurrent_requests"] == 10
        assert status["retry_attempts"] == 1
        assert status["retry_delay_ms"] == 10_000

    def test_from_settings(self, settings, registry, service):
        collector = Collector.from_settings(settings, registry, ScriptedFetcher(), service.record_sample)
        assert collector.interval_ms == settings.collection_interval_ms
        assert collector.retry_policy.max_attempts == settings.retry_attempts
        assert collector.max_concurrent_requests == settings.max_concurrent_requests

    def test_from_settings_clamps_out_of_range_values(self, settings, registry, service, clock):
        settings.retry_attempts = 0
        settings.max_concurrent_requests = 0
        settings.retry_base_delay_ms = 1
        collector = Collector.from_settings(
            settings, registry, ScriptedFetcher(), service.record_sample,
            sleep=lambda _: None, clock=clock,
        )
        assert collector.retry_policy.max_attempts == 1
        assert collector.max_concurrent_requests == 1
        assert collector.retry_policy.base_delay == 1.0

        result = collector.collect_all()
        assert result.successful == 1
        assert result.errors == 0
