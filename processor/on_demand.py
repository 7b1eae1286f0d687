"""On-demand current-window metrics computed straight from raw samples."""

from collector.schemas import RawSample
from config import configure_logging
from processor.metrics import (
    TimeWeightedAverage,
    counter_delta,
    downsample_series,
    grade_data_quality,
    observe,
    percentage,
    rank_top_countries,
    rate_per_minute,
)
from processor.schemas import (
    CountryBreakdownEntry,
    DataQuality,
    TimeSeriesPoint,
    TrafficMetrics,
)
from processor.time_windows import TimeRangeConfig
from storage.raw_samples import RawSampleStore


def empty_metrics(range_cfg: TimeRangeConfig, window_start: float, now_ms: float) -> TrafficMetrics:
    return TrafficMetrics(
        label=range_cfg.label,
        window_start=window_start,
        window_end=now_ms,
        data_quality=DataQuality.POOR,
        completion_percentage=round((now_ms - window_start) / range_cfg.millis * 100),
    )


def compute_live_metrics(
    samples: list[RawSample],
    baseline: RawSample | None,
    range_cfg: TimeRangeConfig,
    window_start: float,
    now_ms: float,
) -> TrafficMetrics:
    """
    Metrics for the rolling window [window_start, now_ms].

    ``samples`` are the in-window samples ascending; ``baseline`` is the latest
    sample before the window, if any. Totals difference the latest sample
    against the baseline (or the first in-window sample). Averages are
    time-weighted with every reading held until superseded, the last one until
    ``now_ms``.
    """
    if not samples:
        return empty_metrics(range_cfg, window_start, now_ms)

    points = [observe(s) for s in samples]
    prior = observe(baseline) if baseline is not None else None
    first, latest = points[0], points[-1]
    reference = prior if prior is not None else first

    weighted = TimeWeightedAverage()
    speeds = [p.speed for p in points]
    previous = prior
    for point in points:
        if previous is not None:
            segment_start = max(previous.timestamp, window_start)
            if weighted.add(previous, point.timestamp - segment_start) and previous is prior:
                speeds.append(prior.speed)
        previous = point
    weighted.add(latest, now_ms - max(latest.timestamp, window_start))

    max_speed = max(speeds)
    min_speed = min(speeds)
    avg_speed = min(max(weighted.average("speed", fallback=latest.speed), min_speed), max_speed)

    peak_hits = 0.0
    peak_visits = 0.0
    pairs = list(zip(points, points[1:]))
    if prior is not None:
        # the baseline stands in at window_start for the first rate
        pairs.insert(0, (prior.model_copy(update={"timestamp": window_start}), first))
    for earlier, later in pairs:
        peak_hits = max(peak_hits, rate_per_minute(earlier, later, "hits"))
        peak_visits = max(peak_visits, rate_per_minute(earlier, later, "visits"))

    # Countries come from the latest snapshot only; there is no prior window to grow against
    country_breakdown = [
        CountryBreakdownEntry(
            country=c.country,
            hits=c.hits,
            visits=c.visits,
            views=c.views,
            percentage=percentage(c.hits, latest.hits),
        )
        for c in samples[-1].country_breakdown
    ]

    series = [
        TimeSeriesPoint(timestamp=p.timestamp, hits=p.hits, visits=p.visits, speed=p.speed)
        for p in points
    ]

    return TrafficMetrics(
        label=range_cfg.label,
        window_start=window_start,
        window_end=now_ms,
        total_hits=counter_delta(latest.hits, reference.hits),
        total_visits=counter_delta(latest.visits, reference.visits),
        total_views=counter_delta(latest.views, reference.views),
        unique_visitors=counter_delta(latest.unique_visitors, reference.unique_visitors),
        avg_speed=round(avg_speed, 2),
        max_speed=round(max_speed, 2),
        min_speed=round(min_speed, 2),
        avg_bounce_rate=round(weighted.average("bounce_rate", fallback=latest.bounce_rate), 2),
        avg_session_duration=round(
            weighted.average("avg_session_duration", fallback=latest.avg_session_duration), 2
        ),
        peak_hits_per_minute=round(peak_hits, 2),
        peak_visits_per_minute=round(peak_visits, 2),
        country_breakdown=country_breakdown,
        top_countries=rank_top_countries(country_breakdown),
        time_series_data=downsample_series(series),
        data_quality=grade_data_quality(len(points), range_cfg.seconds),
        last_updated=latest.timestamp,
        data_points_count=len(points),
        completion_percentage=round((now_ms - window_start) / range_cfg.millis * 100),
        source="live",
    )


class OnDemandMetricsCalculator:
    """Answers "traffic in the last N seconds" by differencing raw samples at query time."""

    def __init__(self, samples: RawSampleStore, log_level: str = "INFO"):
        self._samples = samples
        self.log = configure_logging("on-demand-metrics", log_level)

    def compute(self, campaign_id: str, range_cfg: TimeRangeConfig, now_ms: float) -> TrafficMetrics:
        window_start = now_ms - range_cfg.millis
        samples = self._samples.query_range(campaign_id, window_start, now_ms)
        baseline = self._samples.latest_before(campaign_id, window_start) if samples else None
        metrics = compute_live_metrics(samples, baseline, range_cfg, window_start, now_ms)
        self.log.debug(
            "live_metrics_computed",
            campaign_id=campaign_id,
            time_range=range_cfg.key,
            data_points=metrics.data_points_count,
            has_baseline=baseline is not None,
        )
        return metrics
