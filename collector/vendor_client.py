"""HTTP client for the traffic vendor's project statistics API."""

import math
import time
from datetime import datetime, timezone
from typing import Any

import requests

from collector.schemas import Campaign, CollectionSource, CountryStat, DailyStat, ProjectStatus, RawSample
from config import Settings, configure_logging
from processor.errors import (
    VendorError,
    VendorPermanentError,
    VendorProtocolError,
    VendorRateLimited,
    VendorTimeout,
    VendorUnavailable,
)

UNIQUE_VISITOR_RATIO = 0.85  # vendor reports no uniques; estimated from visits


def _to_int(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return 0.0


def _iso_date(timestamp_ms: float) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, timezone.utc).date().isoformat()


def parse_stats_response(data: dict[str, Any]) -> dict[str, Any]:
    """
    Turn a stats payload into RawSample counter fields.

    The vendor reports ``hits`` and ``visits`` as lists of ``{date: count}``
    maps covering the campaign's lifetime, so their sums are the cumulative
    counters. Views equal visits for this vendor.
    """
    daily: dict[str, DailyStat] = {}
    hits = 0
    visits = 0

    for entry in data.get("hits") or []:
        if not isinstance(entry, dict):
            raise VendorProtocolError("hits entries must be objects")
        for day, count in entry.items():
            n = _to_int(count)
            hits += n
            daily.setdefault(day, DailyStat()).hits += n

    for entry in data.get("visits") or []:
        if not isinstance(entry, dict):
            raise VendorProtocolError("visits entries must be objects")
        for day, count in entry.items():
            n = _to_int(count)
            visits += n
            stat = daily.setdefault(day, DailyStat())
            stat.visits += n
            stat.views += n

    countries = []
    raw_countries = data.get("countries") or {}
    if isinstance(raw_countries, dict):
        for country, stats in raw_countries.items():
            if not isinstance(stats, dict):
                continue
            c_hits = _to_int(stats.get("hits"))
            c_visits = _to_int(stats.get("visits"))
            c_views = _to_int(stats.get("views")) or c_visits
            if c_hits > 0 or c_visits > 0:
                countries.append(CountryStat(country=country, hits=c_hits, visits=c_visits, views=c_views))

    unique_visitors = data.get("unique_visitors")
    return {
        "hits": hits,
        "visits": visits,
        "views": visits,
        "unique_visitors": (
            _to_int(unique_visitors) if unique_visitors is not None
            else math.floor(visits * UNIQUE_VISITOR_RATIO)
        ),
        "bounce_rate": _to_float(data.get("bounce_rate")),
        "avg_session_duration": _to_float(data.get("avg_session_duration")),
        "country_breakdown": countries,
        "daily_stats": daily,
    }


class VendorClient:
    """
    Fetches cumulative project statistics from the vendor.

    Transport failures map onto the tracker's error taxonomy: timeouts,
    429s, 5xx responses and connection errors are transient; other 4xx
    responses and malformed payloads are permanent.
    """

    STATS_PATH = "/get-website-traffic-project-stats"
    PROJECT_PATH = "/modify-website-traffic-project"

    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.log = configure_logging("vendor-client", settings.log_level)
        self._base_url = settings.vendor_base_url.rstrip("/")
        self._api_key = settings.vendor_api_key.strip()
        self._stats_timeout = settings.vendor_timeout_sec
        self._status_timeout = settings.vendor_status_timeout_sec
        self._session = session or requests.Session()

    def _post(self, path: str, timeout: float, **kwargs) -> dict[str, Any]:
        if not self._api_key:
            raise VendorPermanentError("Vendor API key not configured")
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json", "API_KEY": self._api_key}
        try:
            response = self._session.post(url, headers=headers, timeout=timeout, **kwargs)
        except requests.Timeout as e:
            raise VendorTimeout(f"Vendor request timed out after {timeout}s") from e
        except requests.ConnectionError as e:
            raise VendorUnavailable(f"Vendor connection failed: {e}") from e
        except requests.RequestException as e:
            raise VendorPermanentError(f"Vendor request failed: {e}") from e

        status = response.status_code
        if status == 429:
            raise VendorRateLimited("Vendor rate limit exceeded", status=status)
        if status >= 500:
            raise VendorUnavailable(f"Vendor returned HTTP {status}", status=status)
        if status >= 400:
            raise VendorPermanentError(f"Vendor returned HTTP {status}", status=status)

        try:
            data = response.json()
        except ValueError as e:
            raise VendorProtocolError("Vendor response is not valid JSON", status=status) from e
        if not isinstance(data, dict) or not data:
            raise VendorProtocolError("Vendor response is empty or not an object", status=status)
        return data

    def get_project_status(self, project_id: str) -> tuple[float, ProjectStatus]:
        """Current speed and derived status. Degrades to (0, unknown) when unavailable."""
        try:
            data = self._post(self.PROJECT_PATH, self._status_timeout, json={"unique_id": project_id})
        except VendorError as e:
            self.log.warning("project_status_unavailable", project_id=project_id, error=str(e))
            return 0.0, ProjectStatus.UNKNOWN
        if data.get("speed") is None:
            return 0.0, ProjectStatus.UNKNOWN
        speed = float(_to_int(data["speed"]))
        return speed, ProjectStatus.ACTIVE if speed > 0 else ProjectStatus.PAUSED

    def fetch_snapshot(
        self,
        campaign: Campaign,
        timestamp_ms: float | None = None,
        source: CollectionSource = CollectionSource.AUTO,
    ) -> RawSample:
        if not campaign.vendor_project_id:
            raise VendorPermanentError(f"Campaign {campaign.id} has no vendor project")
        timestamp_ms = timestamp_ms or time.time() * 1000
        today = _iso_date(timestamp_ms)
        since = _iso_date(campaign.created_at) if campaign.created_at else today

        data = self._post(
            self.STATS_PATH,
            self._stats_timeout,
            params={"unique_id": campaign.vendor_project_id, "from": since, "to": today},
        )
        counters = parse_stats_response(data)
        speed, status = self.get_project_status(campaign.vendor_project_id)

        return RawSample(
            campaign_id=campaign.id,
            timestamp=timestamp_ms,
            speed=speed,
            project_status=status,
            collection_source=source,
            **counters,
        )
