"""Health and readiness check endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_collector, get_redis
from collector.collector import Collector
from storage.redis_client import RedisClient

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness probe: 200 while the process is alive."""
    return {"status": "ok"}


@router.get("/ready")
def ready(
    redis: RedisClient = Depends(get_redis),
    collector: Collector = Depends(get_collector),
):
    """Readiness probe: Redis must answer a ping."""
    if not redis.ping():
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "redis": "unreachable", "circuit_breaker": redis.circuit_state},
        )
    return {
        "status": "ready",
        "redis": "connected",
        "circuit_breaker": redis.circuit_state,
        "collector_running": collector.is_running,
    }
