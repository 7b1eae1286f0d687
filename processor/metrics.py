"""Metric math shared by stored window summaries and on-demand queries."""

import math

from collector.schemas import RawSample
from processor.schemas import (
    CountryBreakdownEntry,
    DataQuality,
    ObservedPoint,
    TimeSeriesPoint,
    TopCountry,
)

WEIGHTED_FIELDS = ("speed", "bounce_rate", "avg_session_duration")

MIN_RATE_INTERVAL_MIN = 1 / 60  # one second
TOP_COUNTRIES_LIMIT = 10
MAX_RESPONSE_POINTS = 100


def observe(sample: RawSample) -> ObservedPoint:
    return ObservedPoint(
        timestamp=sample.timestamp,
        hits=sample.hits,
        visits=sample.visits,
        views=sample.views,
        unique_visitors=sample.unique_visitors,
        speed=sample.speed,
        bounce_rate=sample.bounce_rate,
        avg_session_duration=sample.avg_session_duration,
        countries={c.country: c for c in sample.country_breakdown},
    )


def counter_delta(later: int, earlier: int) -> int:
    """Difference of two cumulative counter readings, clamped at zero for vendor resets."""
    return max(0, later - earlier)


def rate_per_minute(earlier: ObservedPoint, later: ObservedPoint, counter: str) -> float:
    minutes = max((later.timestamp - earlier.timestamp) / 60_000, MIN_RATE_INTERVAL_MIN)
    return counter_delta(getattr(later, counter), getattr(earlier, counter)) / minutes


class TimeWeightedAverage:
    """
    Piecewise-constant integration of point-in-time rates.

    Each value is weighted by the milliseconds it was in effect, so a reading
    that held for ten minutes counts ten times as much as one that held for one.
    """

    __slots__ = ("sums", "weight_ms")

    def __init__(self, sums: dict[str, float] | None = None, weight_ms: float = 0.0):
        self.sums = {name: 0.0 for name in WEIGHTED_FIELDS}
        if sums:
            self.sums.update(sums)
        self.weight_ms = weight_ms

    def add(self, point: ObservedPoint, duration_ms: float) -> bool:
        if duration_ms <= 0:
            return False
        for name in WEIGHTED_FIELDS:
            self.sums[name] += getattr(point, name) * duration_ms
        self.weight_ms += duration_ms
        return True

    def average(self, name: str, fallback: float = 0.0) -> float:
        if self.weight_ms <= 0:
            return fallback
        return self.sums[name] / self.weight_ms


def grade_data_quality(sample_count: int, span_seconds: float) -> DataQuality:
    """Grade completeness against an assumed cadence of one sample per minute."""
    expected = max(math.floor(span_seconds / 60), 1)
    completeness = min(sample_count / expected, 1.0)
    if completeness >= 0.9:
        return DataQuality.EXCELLENT
    if completeness >= 0.7:
        return DataQuality.GOOD
    if completeness >= 0.5:
        return DataQuality.FAIR
    return DataQuality.POOR


def percentage(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def rank_top_countries(
    breakdown: list[CountryBreakdownEntry], limit: int = TOP_COUNTRIES_LIMIT
) -> list[TopCountry]:
    # sorted() is stable, so equal hit counts keep first-seen order
    ranked = sorted(breakdown, key=lambda c: c.hits, reverse=True)[:limit]
    return [
        TopCountry(country=c.country, hits=c.hits, percentage=c.percentage, rank=idx + 1)
        for idx, c in enumerate(ranked)
    ]


def downsample_series(
    points: list[TimeSeriesPoint], max_points: int = MAX_RESPONSE_POINTS
) -> list[TimeSeriesPoint]:
    """Keep every k-th point plus the final one, never more than ``max_points``."""
    if len(points) <= max_points:
        return list(points)
    step = math.ceil(len(points) / max_points)
    sampled = points[::step]
    if sampled[-1] is not points[-1]:
        if len(sampled) < max_points:
            sampled.append(points[-1])
        else:
            sampled[-1] = points[-1]
    return sampled
