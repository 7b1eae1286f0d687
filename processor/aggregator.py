"""Incremental window aggregation: one stored summary per (campaign, range, window)."""

import time
from datetime import timezone, tzinfo
from typing import Callable

from collector.schemas import RawSample
from config import configure_logging
from processor.errors import PersistenceError
from processor.metrics import (
    TimeWeightedAverage,
    counter_delta,
    grade_data_quality,
    observe,
    percentage,
    rank_top_countries,
    rate_per_minute,
)
from processor.schemas import (
    CountryBreakdownEntry,
    ObservedPoint,
    TimeSeriesPoint,
    WindowSummary,
)
from processor.time_windows import TIME_RANGES, TimeRangeConfig, calculate_window
from storage.raw_samples import RawSampleStore
from storage.summaries import SummaryStore

BaselineLookup = Callable[[], RawSample | None]


def merge_countries(
    summary: WindowSummary, point: ObservedPoint, reference: ObservedPoint
) -> None:
    """
    Fold a snapshot's per-country counters into the window.

    Each country accumulates its increment since ``reference`` (the previous
    observation). Growth compares the raw snapshot values of the two
    observations; a country seen for the first time in this window starts at 0.
    """
    entries = {entry.country: entry for entry in summary.country_breakdown}
    for country, snap in point.countries.items():
        prev = reference.countries.get(country)
        prev_hits = prev.hits if prev else 0
        increment = {
            "hits": counter_delta(snap.hits, prev_hits),
            "visits": counter_delta(snap.visits, prev.visits if prev else 0),
            "views": counter_delta(snap.views, prev.views if prev else 0),
        }
        entry = entries.get(country)
        if entry is None:
            entry = CountryBreakdownEntry(country=country, **increment)
            summary.country_breakdown.append(entry)
            entries[country] = entry
        else:
            entry.hits += increment["hits"]
            entry.visits += increment["visits"]
            entry.views += increment["views"]
            entry.growth = snap.hits / prev_hits * 100 if prev_hits > 0 else 0.0

    for entry in summary.country_breakdown:
        entry.percentage = percentage(entry.hits, summary.total_hits)
    summary.top_countries = rank_top_countries(summary.country_breakdown)


def apply_sample(
    summary: WindowSummary,
    sample: RawSample,
    range_cfg: TimeRangeConfig,
    now_ms: float,
    baseline_lookup: BaselineLookup,
) -> WindowSummary | None:
    """
    Fold one sample into a window summary in place.

    Returns None when the sample is not newer than the last one folded in,
    which leaves the stored summary untouched.
    """
    point = observe(sample)
    last = summary.last_sample
    if last is not None and point.timestamp <= last.timestamp:
        return None

    if last is None:
        prior = baseline_lookup()
        previous = observe(prior) if prior is not None else None
        summary.baseline = previous if previous is not None else point
    else:
        previous = last

    # Totals are deltas since the window began, never raw cumulative values
    baseline = summary.baseline
    summary.total_hits = counter_delta(point.hits, baseline.hits)
    summary.total_visits = counter_delta(point.visits, baseline.visits)
    summary.total_views = counter_delta(point.views, baseline.views)
    summary.unique_visitors = counter_delta(point.unique_visitors, baseline.unique_visitors)

    # The previous reading holds until this one; a pre-window baseline only from window_start
    weighted = TimeWeightedAverage(summary.weighted_sums, summary.total_weight_ms)
    speeds = [point.speed]
    if previous is not None:
        segment_start = max(previous.timestamp, summary.window_start)
        if weighted.add(previous, point.timestamp - segment_start):
            speeds.append(previous.speed)
    summary.weighted_sums = dict(weighted.sums)
    summary.total_weight_ms = weighted.weight_ms

    if summary.data_points_count == 0:
        summary.max_speed = max(speeds)
        summary.min_speed = min(speeds)
    else:
        summary.max_speed = max(summary.max_speed, *speeds)
        summary.min_speed = min(summary.min_speed, *speeds)
    # clamp float drift so the average never leaves the observed range
    summary.avg_speed = min(
        max(weighted.average("speed", fallback=point.speed), summary.min_speed),
        summary.max_speed,
    )
    summary.avg_bounce_rate = weighted.average("bounce_rate", fallback=point.bounce_rate)
    summary.avg_session_duration = weighted.average(
        "avg_session_duration", fallback=point.avg_session_duration
    )

    if previous is not None:
        summary.peak_hits_per_minute = max(
            summary.peak_hits_per_minute, rate_per_minute(previous, point, "hits")
        )
        summary.peak_visits_per_minute = max(
            summary.peak_visits_per_minute, rate_per_minute(previous, point, "visits")
        )

    merge_countries(summary, point, previous if previous is not None else point)

    summary.time_series_data.append(
        TimeSeriesPoint(
            timestamp=point.timestamp, hits=point.hits, visits=point.visits, speed=point.speed
        )
    )
    overflow = len(summary.time_series_data) - range_cfg.max_points
    if overflow > 0:
        del summary.time_series_data[:overflow]

    summary.data_points_count += 1
    summary.last_sample = point
    summary.last_updated = now_ms
    summary.is_complete = now_ms > summary.window_end
    elapsed_sec = (min(now_ms, summary.window_end) - summary.window_start) / 1000
    summary.data_quality = grade_data_quality(summary.data_points_count, elapsed_sec)
    return summary


class WindowAggregator:
    """
    Maintains one WindowSummary per (campaign, range, window_start).

    ``update`` is called once per newly stored sample and folds it into the
    current bucket of every configured range. Buckets are created lazily on
    the first sample that lands in them.
    """

    def __init__(
        self,
        samples: RawSampleStore,
        summaries: SummaryStore,
        ranges: list[TimeRangeConfig] | None = None,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], float] = time.time,
        log_level: str = "INFO",
    ):
        self._samples = samples
        self._summaries = summaries
        self._ranges = ranges or list(TIME_RANGES.values())
        self._tz = tz
        self._clock = clock
        self.log = configure_logging("window-aggregator", log_level)

    def update(self, sample: RawSample) -> list[WindowSummary]:
        """Fold a sample into every range. Raises PersistenceError if any range failed."""
        updated = []
        failed = []
        for range_cfg in self._ranges:
            try:
                summary = self.update_range(sample, range_cfg)
            except PersistenceError as e:
                failed.append(range_cfg.key)
                self.log.error(
                    "summary_update_failed",
                    campaign_id=sample.campaign_id,
                    time_range=range_cfg.key,
                    error=str(e),
                )
                continue
            if summary is not None:
                updated.append(summary)

        if failed:
            raise PersistenceError(
                f"Summary update failed for campaign {sample.campaign_id} ranges {failed}"
            )
        return updated

    def update_range(self, sample: RawSample, range_cfg: TimeRangeConfig) -> WindowSummary | None:
        window_start, window_end = calculate_window(sample.timestamp, range_cfg.seconds, self._tz)
        now_ms = self._clock() * 1000
        skipped = False

        def _lookup_baseline() -> RawSample | None:
            return self._samples.latest_before(sample.campaign_id, window_start)

        def _mutate(current: WindowSummary | None) -> WindowSummary | None:
            nonlocal skipped
            summary = current.model_copy(deep=True) if current else WindowSummary(
                campaign_id=sample.campaign_id,
                range_key=range_cfg.key,
                window_start=window_start,
                window_end=window_end,
            )
            result = apply_sample(summary, sample, range_cfg, now_ms, _lookup_baseline)
            skipped = result is None
            return result

        summary = self._summaries.update(sample.campaign_id, range_cfg.key, window_start, _mutate)
        if skipped:
            self.log.warning(
                "late_sample_skipped",
                campaign_id=sample.campaign_id,
                time_range=range_cfg.key,
                timestamp=sample.timestamp,
            )
            return summary

        self.log.debug(
            "summary_updated",
            campaign_id=sample.campaign_id,
            time_range=range_cfg.key,
            window_start=window_start,
            total_hits=summary.total_hits,
            total_visits=summary.total_visits,
            data_points=summary.data_points_count,
        )
        return summary

    def initialize(self, campaign_id: str, now_ms: float) -> list[WindowSummary]:
        """Create empty current-window summaries for every range that has none yet."""
        created = []
        for range_cfg in self._ranges:
            window_start, window_end = calculate_window(now_ms, range_cfg.seconds, self._tz)

            def _mutate(current: WindowSummary | None) -> WindowSummary | None:
                if current is not None:
                    return None
                return WindowSummary(
                    campaign_id=campaign_id,
                    range_key=range_cfg.key,
                    window_start=window_start,
                    window_end=window_end,
                    last_updated=now_ms,
                )

            summary = self._summaries.update(campaign_id, range_cfg.key, window_start, _mutate)
            created.append(summary)
        return created
