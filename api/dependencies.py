"""FastAPI dependency injection."""

from fastapi import Request

from collector.collector import Collector
from processor.main import TrackingEngine
from processor.retention import RetentionSweeper
from processor.service import TrafficTrackingService
from storage.redis_client import RedisClient


def get_engine(request: Request) -> TrackingEngine:
    return request.app.state.engine


def get_redis(request: Request) -> RedisClient:
    return request.app.state.engine.redis


def get_service(request: Request) -> TrafficTrackingService:
    return request.app.state.engine.service


def get_collector(request: Request) -> Collector:
    return request.app.state.engine.collector


def get_sweeper(request: Request) -> RetentionSweeper:
    return request.app.state.engine.sweeper
