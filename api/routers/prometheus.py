"""Prometheus-compatible metrics endpoint."""

import time

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

router = APIRouter()

CIRCUIT_STATES = {"closed": 0, "open": 1, "half_open": 2}


def _metric(name: str, kind: str, help_text: str, value: float) -> list[str]:
    return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", f"{name} {value}", ""]


@router.get("/metrics")
def prometheus_metrics(request: Request):
    """Expose collector and storage metrics in Prometheus text exposition format."""
    engine = request.app.state.engine
    stats = engine.collector.stats
    last_run = engine.collector.last_run
    uptime = time.time() - engine.started_at

    lines = []
    lines += _metric("traffic_collector_running", "gauge", "1 while the collection loop is scheduled",
                     int(engine.collector.is_running))
    lines += _metric("traffic_collection_runs_total", "counter", "Completed collection runs", stats.runs)
    lines += _metric("traffic_collection_ticks_skipped_total", "counter",
                     "Ticks skipped because a collection was still running", stats.ticks_skipped)
    lines += _metric("traffic_samples_collected_total", "counter", "Vendor snapshots fetched and recorded",
                     stats.samples_collected)
    lines += _metric("traffic_fetch_errors_total", "counter", "Campaign fetches that failed after retries",
                     stats.fetch_errors)
    lines += _metric("traffic_last_run_campaigns", "gauge", "Campaigns polled by the last collection run",
                     last_run.total_campaigns if last_run else 0)
    lines += _metric("redis_circuit_breaker_state", "gauge",
                     "Circuit breaker state (0=closed, 1=open, 2=half_open)",
                     CIRCUIT_STATES.get(engine.redis.circuit_state, 0))
    lines += _metric("api_uptime_seconds", "gauge", "Seconds since engine start", round(uptime, 1))
    return PlainTextResponse("\n".join(lines[:-1]) + "\n", media_type="text/plain; version=0.0.4")
