"""Operator endpoints: collector control, retention cleanup and storage statistics."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.dependencies import get_collector, get_service, get_sweeper
from collector.collector import MIN_INTERVAL_MS, Collector
from processor.retention import RetentionSweeper
from processor.service import TrafficTrackingService

router = APIRouter(prefix="/api/v1/admin")


class StartRequest(BaseModel):
    interval_ms: int | None = Field(default=None, ge=MIN_INTERVAL_MS)


class IntervalRequest(BaseModel):
    interval_ms: int = Field(ge=MIN_INTERVAL_MS)


class ConfigRequest(BaseModel):
    max_concurrent_requests: int | None = None
    retry_attempts: int | None = None
    retry_delay_ms: int | None = None


class CleanupRequest(BaseModel):
    retention_days: int | None = Field(default=None, ge=1)


@router.get("/collector/status")
def collector_status(collector: Collector = Depends(get_collector)):
    return collector.status()


@router.post("/collector/start")
def start_collector(body: StartRequest | None = None, collector: Collector = Depends(get_collector)):
    started = collector.start(body.interval_ms if body else None)
    return {"started": started, "status": collector.status()}


@router.post("/collector/stop")
def stop_collector(collector: Collector = Depends(get_collector)):
    stopped = collector.stop()
    return {"stopped": stopped, "status": collector.status()}


@router.put("/collector/interval")
def update_interval(body: IntervalRequest, collector: Collector = Depends(get_collector)):
    collector.update_interval(body.interval_ms)
    return collector.status()


@router.put("/collector/config")
def update_config(body: ConfigRequest, collector: Collector = Depends(get_collector)):
    """Values outside the safe bounds are clamped, not rejected."""
    collector.update_configuration(
        max_concurrent_requests=body.max_concurrent_requests,
        retry_attempts=body.retry_attempts,
        retry_delay_ms=body.retry_delay_ms,
    )
    return collector.status()


@router.post("/collector/collect-all")
def collect_all(collector: Collector = Depends(get_collector)):
    """Run one collection immediately. 409 while another one is in progress."""
    summary = collector.collect_all()
    if summary is None:
        raise HTTPException(status_code=409, detail="A collection is already in progress")
    return asdict(summary)


@router.post("/traffic/cleanup")
def cleanup(body: CleanupRequest | None = None, sweeper: RetentionSweeper = Depends(get_sweeper)):
    result = sweeper.sweep(retention_days=body.retention_days if body else None)
    return asdict(result)


@router.get("/traffic/statistics")
def statistics(
    service: TrafficTrackingService = Depends(get_service),
    collector: Collector = Depends(get_collector),
):
    return {**service.statistics(), "collector": collector.status()}
