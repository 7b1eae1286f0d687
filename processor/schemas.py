"""Summary and metrics shapes produced by the aggregation engine."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from collector.schemas import CountryStat


class DataQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class CountryBreakdownEntry(BaseModel):
    country: str
    hits: int = 0
    visits: int = 0
    views: int = 0
    percentage: float = 0.0
    growth: float = 0.0


class TopCountry(BaseModel):
    country: str
    hits: int
    percentage: float
    rank: int


class TimeSeriesPoint(BaseModel):
    timestamp: float
    hits: int = 0
    visits: int = 0
    speed: float = 0.0


class ObservedPoint(BaseModel):
    """The counters and rates of one observation, as carried between updates."""

    timestamp: float
    hits: int = 0
    visits: int = 0
    views: int = 0
    unique_visitors: int = 0
    speed: float = 0.0
    bounce_rate: float = 0.0
    avg_session_duration: float = 0.0
    countries: dict[str, CountryStat] = Field(default_factory=dict)


class WindowSummary(BaseModel):
    """Aggregated state of one (campaign, range, window_start) bucket."""

    campaign_id: str
    range_key: str
    window_start: float
    window_end: float

    total_hits: int = 0
    total_visits: int = 0
    total_views: int = 0
    unique_visitors: int = 0

    avg_speed: float = 0.0
    max_speed: float = 0.0
    min_speed: float = 0.0
    avg_bounce_rate: float = 0.0
    avg_session_duration: float = 0.0

    peak_hits_per_minute: float = 0.0
    peak_visits_per_minute: float = 0.0

    country_breakdown: list[CountryBreakdownEntry] = Field(default_factory=list)
    top_countries: list[TopCountry] = Field(default_factory=list)
    time_series_data: list[TimeSeriesPoint] = Field(default_factory=list)

    data_points_count: int = 0
    data_quality: DataQuality = DataQuality.POOR
    last_updated: float | None = None
    is_complete: bool = False

    # Incremental state
    baseline: ObservedPoint | None = None
    last_sample: ObservedPoint | None = None
    weighted_sums: dict[str, float] = Field(default_factory=dict)
    total_weight_ms: float = 0.0

    def completion_percentage(self, now_ms: float) -> int:
        duration = self.window_end - self.window_start
        elapsed = min(max(now_ms - self.window_start, 0.0), duration)
        return round(elapsed / duration * 100)


class TrafficMetrics(BaseModel):
    """Current-window metrics for one range, as returned to dashboards."""

    label: str
    window_start: float
    window_end: float
    total_hits: int = 0
    total_visits: int = 0
    total_views: int = 0
    unique_visitors: int = 0
    avg_speed: float = 0.0
    max_speed: float = 0.0
    min_speed: float = 0.0
    avg_bounce_rate: float = 0.0
    avg_session_duration: float = 0.0
    peak_hits_per_minute: float = 0.0
    peak_visits_per_minute: float = 0.0
    country_breakdown: list[CountryBreakdownEntry] = Field(default_factory=list)
    top_countries: list[TopCountry] = Field(default_factory=list)
    time_series_data: list[TimeSeriesPoint] = Field(default_factory=list)
    data_quality: DataQuality = DataQuality.POOR
    last_updated: float | None = None
    data_points_count: int = 0
    completion_percentage: int = 0
    source: Literal["live", "summary"] = "live"


class TrendReport(BaseModel):
    trend: Literal["growing", "declining", "stable", "insufficient_data"]
    hit_growth: float = 0.0
    visit_growth: float = 0.0
    slope: float = 0.0
    r_squared: float = 0.0
    periods: int = 0
    summaries: list[WindowSummary] = Field(default_factory=list)
