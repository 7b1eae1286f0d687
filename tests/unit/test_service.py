"""Tests for the tracking service: ingestion, current metrics and history."""

import pytest

from collector.schemas import RawSample
from processor.errors import CampaignNotFound, ValidationError
from processor.schemas import DataQuality
from processor.time_windows import TIME_RANGES
from tests.factories import CAMPAIGN_ID, MINUTE, T0


def cumulative(timestamp, hits):
    return RawSample(campaign_id=CAMPAIGN_ID, timestamp=timestamp, hits=hits, visits=hits, views=hits)


class TestRecordSample:
    def test_records_and_aggregates(self, service, summary_store, make_sample):
        assert service.record_sample(make_sample(T0 + MINUTE, hits=10)) is True
        assert summary_store.get(CAMPAIGN_ID, "1h", T0).data_points_count == 1

    def test_duplicate_is_not_aggregated_twice(self, service, summary_store, make_sample):
        service.record_sample(make_sample(T0, hits=100))
        service.record_sample(make_sample(T0 + MINUTE, hits=140))
        assert service.record_sample(make_sample(T0 + MINUTE, hits=140)) is False
        hour = summary_store.get(CAMPAIGN_ID, "1h", T0)
        assert hour.data_points_count == 2
        assert hour.total_hits == 40

    def test_accepts_dict_payload(self, service):
        assert service.record_sample({"campaign_id": CAMPAIGN_ID, "timestamp": T0, "hits": 5}) is True

    @pytest.mark.parametrize(
        "payload",
        [
            {"campaign_id": CAMPAIGN_ID, "timestamp": T0, "hits": -1},
            {"campaign_id": CAMPAIGN_ID, "timestamp": 0},
            {"timestamp": T0},
        ],
    )
    def test_malformed_sample(self, service, payload):
        with pytest.raises(ValidationError):
            service.record_sample(payload)

    def test_unknown_campaign(self, service, make_sample):
        with pytest.raises(CampaignNotFound):
            service.record_sample(make_sample(T0, campaign_id="ghost"))


class TestCurrentMetrics:
    def test_zero_samples(self, service, clock):
        metrics = service.get_current_metrics(CAMPAIGN_ID)
        assert set(metrics) == set(TIME_RANGES)
        for m in metrics.values():
            assert m.total_hits == 0
            assert m.data_quality == DataQuality.POOR
        assert metrics["1h"].completion_percentage == 100
        assert metrics["7d"].source == "live"

    def test_short_ranges_live_long_ranges_from_summary(self, service, clock, make_sample):
        service.record_sample(make_sample(T0, hits=100))
        service.record_sample(make_sample(T0 + MINUTE, hits=140))
        metrics = service.get_current_metrics(CAMPAIGN_ID)

        assert metrics["1h"].source == "live"
        assert metrics["1h"].total_hits == 40
        assert metrics["7d"].source == "summary"
        assert metrics["7d"].total_hits == 40
        assert metrics["30d"].source == "summary"
        # 1m window [now - 60s, now] holds no samples at T0 + 30m
        assert metrics["1m"].total_hits == 0

    def test_summary_completion_is_calendar_based(self, service, clock, make_sample):
        service.record_sample(make_sample(T0, hits=1))
        # T0 is Monday 10:00, so 10.5h of the 168h week have elapsed
        assert service.get_current_metrics(CAMPAIGN_ID)["7d"].completion_percentage == 6


class TestHistoryAndTrends:
    def _fill_hours(self, service, clock, hits_per_hour):
        total = 0
        for hour, hits in enumerate(hits_per_hour):
            start = T0 + hour * 60 * MINUTE
            service.record_sample(cumulative(start, total))
            total += hits
            service.record_sample(cumulative(start + 30 * MINUTE, total))
        clock.now_ms = T0 + len(hits_per_hour) * 60 * MINUTE + MINUTE

    def test_history_refreshes_completion(self, service, clock):
        self._fill_hours(service, clock, [10, 20, 30])
        history = service.get_summary_history(CAMPAIGN_ID, "1h", limit=24)
        assert [s.window_start for s in history] == [T0, T0 + 60 * MINUTE, T0 + 120 * MINUTE]
        assert all(s.is_complete for s in history)

    def test_unknown_range(self, service):
        with pytest.raises(ValidationError):
            service.get_summary_history(CAMPAIGN_ID, "2h")

    def test_history_of_unknown_campaign(self, service):
        with pytest.raises(CampaignNotFound):
            service.get_summary_history("ghost", "1h")
        with pytest.raises(CampaignNotFound):
            service.get_trends("ghost")

    def test_trend_growing(self, service, clock):
        self._fill_hours(service, clock, [10, 20, 30])
        report = service.get_trends(CAMPAIGN_ID, "1h", periods=3)
        assert report.trend == "growing"
        assert report.slope > 0
        assert report.periods == 3

    def test_raw_samples_paginated(self, service, make_sample):
        for i in range(5):
            service.record_sample(make_sample(T0 + i * MINUTE, hits=i))
        samples, total = service.get_raw_samples(CAMPAIGN_ID, page=2, limit=2)
        assert total == 5
        assert [s.hits for s in samples] == [2, 1]

    def test_statistics(self, service, make_sample):
        service.record_sample(make_sample(T0, hits=1))
        stats = service.statistics()
        assert stats["raw_samples"] == 1
        assert stats["summaries"] == len(TIME_RANGES)
        assert stats["tracked_campaigns"] == 1
        assert stats["eligible_campaigns"] == 1

    def test_initialize_tracking(self, service):
        summaries = service.initialize_tracking(CAMPAIGN_ID)
        assert {s.range_key for s in summaries} == set(TIME_RANGES)
