"""Shared test fixtures."""

import fakeredis
import pytest

from collector.schemas import Campaign, CampaignState, CountryStat, RawSample
from config import Settings
from processor.aggregator import WindowAggregator
from processor.on_demand import OnDemandMetricsCalculator
from processor.service import TrafficTrackingService
from storage import CampaignRegistry, RawSampleStore, RedisClient, SummaryStore
from tests.factories import CAMPAIGN_ID, MINUTE, T0, FixedClock


@pytest.fixture
def settings():
    """Test settings with localhost defaults and the collector disabled."""
    return Settings(
        redis_url="redis://localhost:6379/1",
        vendor_api_key="test-key",
        vendor_base_url="https://vendor.test",
        collector_autostart=False,
        retry_base_delay_ms=1,
        retry_jitter_ms=0,
        batch_delay_ms=0,
        log_level="WARNING",
    )


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def redis_client(settings, fake_redis):
    return RedisClient(settings, client=fake_redis)


@pytest.fixture
def clock():
    return FixedClock(T0 + 30 * MINUTE)


@pytest.fixture
def campaign():
    return Campaign(
        id=CAMPAIGN_ID,
        title="Spring launch",
        state=CampaignState.RUNNING,
        vendor_project_id="proj-1",
        created_at=T0 - 7 * 24 * 60 * MINUTE,
    )


@pytest.fixture
def registry(redis_client, campaign):
    registry = CampaignRegistry(redis_client)
    registry.upsert(campaign)
    return registry


@pytest.fixture
def sample_store(redis_client, registry):
    return RawSampleStore(redis_client, registry)


@pytest.fixture
def summary_store(redis_client):
    return SummaryStore(redis_client)


@pytest.fixture
def make_sample():
    """Factory for RawSample with sensible defaults; ``countries`` maps country to hits."""

    def _make(timestamp, hits=0, visits=None, speed=10.0, countries=None, campaign_id=CAMPAIGN_ID, **kwargs):
        visits = hits if visits is None else visits
        breakdown = [
            CountryStat(country=country, hits=c_hits, visits=c_hits, views=c_hits)
            for country, c_hits in (countries or {}).items()
        ]
        return RawSample(
            campaign_id=campaign_id,
            timestamp=timestamp,
            hits=hits,
            visits=visits,
            views=visits,
            unique_visitors=int(visits * 0.85),
            speed=speed,
            country_breakdown=breakdown,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(registry, sample_store, summary_store, clock):
    aggregator = WindowAggregator(sample_store, summary_store, clock=clock, log_level="WARNING")
    on_demand = OnDemandMetricsCalculator(sample_store, log_level="WARNING")
    return TrafficTrackingService(
        registry, sample_store, summary_store, aggregator, on_demand, clock=clock, log_level="WARNING"
    )
