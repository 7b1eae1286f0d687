"""Trend analysis over a campaign's summary history."""

from processor.schemas import TrendReport, WindowSummary


def linear_fit(xs: list[float], ys: list[float]) -> tuple[float, float]:
    """Ordinary least squares. Returns (slope, r_squared)."""
    n = len(xs)
    if n < 2:
        return 0.0, 0.0

    # Normalize x to avoid floating-point issues with epoch milliseconds
    x_min = xs[0]
    xs_norm = [x - x_min for x in xs]

    sum_x = sum(xs_norm)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs_norm, ys))
    sum_x2 = sum(x * x for x in xs_norm)
    sum_y2 = sum(y * y for y in ys)

    denom = n * sum_x2 - sum_x * sum_x
    if abs(denom) < 1e-10:
        return 0.0, 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denom

    ss_tot = sum_y2 - (sum_y * sum_y) / n
    if abs(ss_tot) < 1e-10:
        return slope, 0.0
    intercept = (sum_y - slope * sum_x) / n
    ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(xs_norm, ys))
    return slope, max(0.0, 1.0 - ss_res / ss_tot)


def _growth(latest: int, previous: int) -> float:
    return (latest - previous) / previous * 100 if previous > 0 else 0.0


def analyze_trend(summaries: list[WindowSummary]) -> TrendReport:
    """
    Compare the latest window against the one before it.

    ``trend`` follows the hit growth between those two windows; slope
    (hits per hour) and R² come from a fit over every window supplied.
    """
    if len(summaries) < 2:
        return TrendReport(trend="insufficient_data", periods=len(summaries), summaries=summaries)

    latest, previous = summaries[-1], summaries[-2]
    hit_growth = _growth(latest.total_hits, previous.total_hits)
    visit_growth = _growth(latest.total_visits, previous.total_visits)

    if hit_growth > 0:
        trend = "growing"
    elif hit_growth < 0:
        trend = "declining"
    else:
        trend = "stable"

    hours = [s.window_start / 3_600_000 for s in summaries]
    slope, r_squared = linear_fit(hours, [float(s.total_hits) for s in summaries])

    return TrendReport(
        trend=trend,
        hit_growth=round(hit_growth, 2),
        visit_growth=round(visit_growth, 2),
        slope=round(slope, 6),
        r_squared=round(r_squared, 4),
        periods=len(summaries),
        summaries=summaries,
    )
