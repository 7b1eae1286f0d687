"""Traffic tracking service: ingestion and query entry points of the aggregation engine."""

import time
from datetime import timezone, tzinfo
from typing import Any, Callable

import pydantic

from collector.schemas import RawSample
from config import configure_logging
from processor.aggregator import WindowAggregator
from processor.errors import ValidationError
from processor.metrics import downsample_series
from processor.on_demand import OnDemandMetricsCalculator
from processor.schemas import TrafficMetrics, TrendReport, WindowSummary
from processor.time_windows import TIME_RANGES, TimeRangeConfig, calculate_window, get_time_range
from processor.trend import analyze_trend
from storage.campaigns import CampaignRegistry
from storage.raw_samples import RawSampleStore
from storage.summaries import SummaryStore


def metrics_from_summary(summary: WindowSummary, range_cfg: TimeRangeConfig, now_ms: float) -> TrafficMetrics:
    return TrafficMetrics(
        label=range_cfg.label,
        window_start=summary.window_start,
        window_end=summary.window_end,
        total_hits=summary.total_hits,
        total_visits=summary.total_visits,
        total_views=summary.total_views,
        unique_visitors=summary.unique_visitors,
        avg_speed=round(summary.avg_speed, 2),
        max_speed=round(summary.max_speed, 2),
        min_speed=round(summary.min_speed, 2),
        avg_bounce_rate=round(summary.avg_bounce_rate, 2),
        avg_session_duration=round(summary.avg_session_duration, 2),
        peak_hits_per_minute=round(summary.peak_hits_per_minute, 2),
        peak_visits_per_minute=round(summary.peak_visits_per_minute, 2),
        country_breakdown=summary.country_breakdown,
        top_countries=summary.top_countries,
        time_series_data=downsample_series(summary.time_series_data),
        data_quality=summary.data_quality,
        last_updated=summary.last_updated,
        data_points_count=summary.data_points_count,
        completion_percentage=summary.completion_percentage(now_ms),
        source="summary",
    )


class TrafficTrackingService:
    """
    Wires the stores, the window aggregator and the on-demand calculator.

    Ingestion: ``record_sample`` stores a sample and folds it into every range.
    Queries: the short ranges are computed live from raw samples, the ranges in
    ``summary_backed_ranges`` are served from the stored summary of the current
    calendar bucket (falling back to the live path while that bucket is empty).
    """

    def __init__(
        self,
        campaigns: CampaignRegistry,
        samples: RawSampleStore,
        summaries: SummaryStore,
        aggregator: WindowAggregator,
        on_demand: OnDemandMetricsCalculator,
        summary_backed_ranges: list[str] | None = None,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], float] = time.time,
        log_level: str = "INFO",
    ):
        self._campaigns = campaigns
        self._samples = samples
        self._summaries = summaries
        self._aggregator = aggregator
        self._on_demand = on_demand
        self._summary_backed = set(summary_backed_ranges if summary_backed_ranges is not None else ["7d", "30d"])
        self._tz = tz
        self._clock = clock
        self.log = configure_logging("tracking-service", log_level)

    def now_ms(self) -> float:
        return self._clock() * 1000

    @staticmethod
    def _range(range_key: str) -> TimeRangeConfig:
        try:
            return get_time_range(range_key)
        except KeyError:
            raise ValidationError(f"Unknown time range {range_key!r}; expected one of {list(TIME_RANGES)}") from None

    # ─── Ingestion ──────────────────────────────────────────────────

    def record_sample(self, sample: RawSample | dict[str, Any]) -> bool:
        """
        Store a sample and update every range summary.

        Returns False when a sample with the same (campaign, timestamp) was
        already recorded; the summaries are then left untouched, so a sample is
        never aggregated twice.
        """
        if not isinstance(sample, RawSample):
            try:
                sample = RawSample.model_validate(sample)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Malformed sample: {e}") from e

        if not self._samples.append(sample):
            self.log.info(
                "duplicate_sample_ignored",
                campaign_id=sample.campaign_id,
                timestamp=sample.timestamp,
            )
            return False

        self.log.debug(
            "sample_recorded",
            campaign_id=sample.campaign_id,
            timestamp=sample.timestamp,
            hits=sample.hits,
            visits=sample.visits,
            speed=sample.speed,
            source=sample.collection_source.value,
        )
        self._aggregator.update(sample)
        return True

    def initialize_tracking(self, campaign_id: str) -> list[WindowSummary]:
        self._campaigns.require_tracked(campaign_id)
        summaries = self._aggregator.initialize(campaign_id, self.now_ms())
        self.log.info("tracking_initialized", campaign_id=campaign_id, ranges=len(summaries))
        return summaries

    # ─── Queries ────────────────────────────────────────────────────

    def get_current_metrics(self, campaign_id: str) -> dict[str, TrafficMetrics]:
        self._campaigns.require_tracked(campaign_id)
        now_ms = self.now_ms()
        metrics: dict[str, TrafficMetrics] = {}
        for key, range_cfg in TIME_RANGES.items():
            if key in self._summary_backed:
                window_start, _ = calculate_window(now_ms, range_cfg.seconds, self._tz)
                summary = self._summaries.get(campaign_id, key, window_start)
                if summary is not None and summary.data_points_count > 0:
                    metrics[key] = metrics_from_summary(summary, range_cfg, now_ms)
                    continue
            metrics[key] = self._on_demand.compute(campaign_id, range_cfg, now_ms)
        return metrics

    def get_summary_history(self, campaign_id: str, range_key: str, limit: int = 24) -> list[WindowSummary]:
        """The latest ``limit`` summaries for a range, ascending by window start."""
        self._range(range_key)
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        self._campaigns.require_tracked(campaign_id)
        now_ms = self.now_ms()
        summaries = self._summaries.history(campaign_id, range_key, limit)
        for summary in summaries:
            summary.is_complete = now_ms > summary.window_end
        return summaries

    def get_trends(self, campaign_id: str, range_key: str = "1h", periods: int = 24) -> TrendReport:
        return analyze_trend(self.get_summary_history(campaign_id, range_key, periods))

    def get_raw_samples(
        self,
        campaign_id: str,
        start: float | None = None,
        end: float | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[RawSample], int]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be at least 1")
        self._campaigns.require_tracked(campaign_id)
        return self._samples.page(
            campaign_id,
            start if start is not None else 0,
            end if end is not None else self.now_ms(),
            offset=(page - 1) * limit,
            limit=limit,
        )

    def statistics(self) -> dict[str, int]:
        tracked = self._samples.tracked_campaigns()
        return {
            "raw_samples": self._samples.count(),
            "summaries": self._summaries.count(tracked, list(TIME_RANGES)),
            "tracked_campaigns": len(tracked),
            "eligible_campaigns": len(self._campaigns.list_eligible()),
        }
