"""REST endpoints for campaign traffic metrics, summaries and samples."""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.dependencies import get_collector, get_service
from collector.collector import Collector
from collector.schemas import CollectionSource
from processor.service import TrafficTrackingService
from processor.time_windows import TIME_RANGES

router = APIRouter(prefix="/api/v1")

# incremental aggregation state, not part of the response
SUMMARY_STATE_FIELDS = {"baseline", "last_sample", "weighted_sums", "total_weight_ms"}


@router.get("/traffic/time-ranges")
async def get_time_ranges():
    """The tracked time ranges and their window lengths."""
    return [
        {"key": cfg.key, "label": cfg.label, "seconds": cfg.seconds, "max_points": cfg.max_points}
        for cfg in TIME_RANGES.values()
    ]


@router.get("/campaigns/{campaign_id}/traffic/current")
def get_current_traffic(campaign_id: str, service: TrafficTrackingService = Depends(get_service)):
    """Metrics for every time range as of now."""
    metrics = service.get_current_metrics(campaign_id)
    return {
        "campaign_id": campaign_id,
        "timestamp": service.now_ms(),
        "metrics": {key: m.model_dump() for key, m in metrics.items()},
    }


@router.get("/campaigns/{campaign_id}/traffic/summary")
def get_traffic_summary(
    campaign_id: str,
    time_range: str = Query(default="1h", description="One of 1m, 15m, 1h, 7d, 30d"),
    limit: int = Query(default=24, ge=1, le=500),
    service: TrafficTrackingService = Depends(get_service),
):
    """Stored window summaries for one range, oldest first."""
    summaries = service.get_summary_history(campaign_id, time_range, limit)
    return {
        "campaign_id": campaign_id,
        "time_range": time_range,
        "summaries": [s.model_dump(exclude=SUMMARY_STATE_FIELDS) for s in summaries],
    }


@router.get("/campaigns/{campaign_id}/traffic/trends")
def get_traffic_trends(
    campaign_id: str,
    time_range: str = Query(default="1h"),
    periods: int = Query(default=24, ge=2, le=500),
    service: TrafficTrackingService = Depends(get_service),
):
    report = service.get_trends(campaign_id, time_range, periods)
    return {
        "campaign_id": campaign_id,
        "time_range": time_range,
        **report.model_dump(exclude={"summaries"}),
        "data_points": len(report.summaries),
    }


@router.get("/campaigns/{campaign_id}/traffic/raw")
def get_raw_samples(
    campaign_id: str,
    start: float = Query(default=None, description="Start timestamp (ms)"),
    end: float = Query(default=None, description="End timestamp (ms)"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=1000),
    service: TrafficTrackingService = Depends(get_service),
):
    """Raw samples, newest first, paginated."""
    samples, total = service.get_raw_samples(campaign_id, start, end, page, limit)
    return {
        "campaign_id": campaign_id,
        "samples": [s.model_dump() for s in samples],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.post("/campaigns/{campaign_id}/traffic/samples", status_code=201)
def post_sample(
    campaign_id: str,
    payload: dict[str, Any] = Body(...),
    service: TrafficTrackingService = Depends(get_service),
):
    """Ingest a pushed snapshot. Timestamp defaults to now, source to webhook."""
    sample = {
        "timestamp": service.now_ms(),
        "collection_source": CollectionSource.WEBHOOK.value,
        **payload,
        "campaign_id": campaign_id,
    }
    recorded = service.record_sample(sample)
    return {"campaign_id": campaign_id, "recorded": recorded, "duplicate": not recorded}


@router.post("/campaigns/{campaign_id}/traffic/collect")
def collect_now(campaign_id: str, collector: Collector = Depends(get_collector)):
    """Fetch the campaign from the vendor immediately."""
    result = collector.collect_campaign(campaign_id)
    if not result.ok:
        raise HTTPException(
            status_code=502,
            detail={"error": type(result.error).__name__, "message": str(result.error), "attempts": result.attempts},
        )
    return {
        "campaign_id": campaign_id,
        "attempts": result.attempts,
        "sample": result.sample.model_dump(),
    }


@router.post("/campaigns/{campaign_id}/traffic/initialize")
def initialize_tracking(campaign_id: str, service: TrafficTrackingService = Depends(get_service)):
    """Create empty current-window summaries for every range."""
    summaries = service.initialize_tracking(campaign_id)
    return {
        "campaign_id": campaign_id,
        "initialized": [{"time_range": s.range_key, "window_start": s.window_start} for s in summaries],
    }
