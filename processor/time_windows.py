"""Calendar-aligned window boundaries for the five tracked time ranges."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

MINUTE_SEC = 60
QUARTER_HOUR_SEC = 900
HOUR_SEC = 3600
WEEK_SEC = 604_800
MONTH_SEC = 2_592_000


@dataclass(frozen=True)
class TimeRangeConfig:
    key: str
    label: str
    seconds: int
    max_points: int  # time-series capacity of a stored summary

    @property
    def millis(self) -> int:
        return self.seconds * 1000


TIME_RANGES: dict[str, TimeRangeConfig] = {
    "1m": TimeRangeConfig("1m", "1 minute", MINUTE_SEC, 60),
    "15m": TimeRangeConfig("15m", "15 minutes", QUARTER_HOUR_SEC, 180),
    "1h": TimeRangeConfig("1h", "1 hour", HOUR_SEC, 360),
    "7d": TimeRangeConfig("7d", "7 days", WEEK_SEC, 1008),
    "30d": TimeRangeConfig("30d", "30 days", MONTH_SEC, 1440),
}


def get_time_range(key: str) -> TimeRangeConfig:
    try:
        return TIME_RANGES[key]
    except KeyError:
        raise KeyError(f"Unknown time range: {key}") from None


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _to_ms(dt: datetime) -> float:
    return dt.timestamp() * 1000


def calculate_window(
    timestamp_ms: float, range_seconds: int, tz: tzinfo = timezone.utc
) -> tuple[float, float]:
    """
    Map a timestamp to the [start, end) window of the given duration.

    Sub-day ranges floor to the minute, quarter hour or hour. The weekly range
    starts on Monday 00:00 and the monthly range on the 1st at 00:00, both in
    ``tz``; their end is the next calendar boundary, so the window always
    contains the timestamp even for 31-day months. Any other duration is a
    rolling window ending at the timestamp.
    """
    local = datetime.fromtimestamp(timestamp_ms / 1000, tz)

    if range_seconds == MINUTE_SEC:
        start = local.replace(second=0, microsecond=0)
    elif range_seconds == QUARTER_HOUR_SEC:
        start = local.replace(minute=(local.minute // 15) * 15, second=0, microsecond=0)
    elif range_seconds == HOUR_SEC:
        start = local.replace(minute=0, second=0, microsecond=0)
    elif range_seconds == WEEK_SEC:
        monday = local.date() - timedelta(days=local.weekday())
        start = datetime(monday.year, monday.month, monday.day, tzinfo=tz)
        next_monday = monday + timedelta(days=7)
        end = datetime(next_monday.year, next_monday.month, next_monday.day, tzinfo=tz)
        return _to_ms(start), _to_ms(end)
    elif range_seconds == MONTH_SEC:
        start = datetime(local.year, local.month, 1, tzinfo=tz)
        if local.month == 12:
            end = datetime(local.year + 1, 1, 1, tzinfo=tz)
        else:
            end = datetime(local.year, local.month + 1, 1, tzinfo=tz)
        return _to_ms(start), _to_ms(end)
    else:
        return timestamp_ms - range_seconds * 1000, timestamp_ms

    start_ms = _to_ms(start)
    return start_ms, start_ms + range_seconds * 1000
