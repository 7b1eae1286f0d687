"""FastAPI application factory with lifespan management."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers import admin, health, prometheus, traffic
from config import Settings, configure_logging
from processor.errors import CampaignNotFound, PersistenceError, ValidationError, VendorError
from processor.main import TrackingEngine, build_engine


async def _sweep_periodically(engine: TrackingEngine):
    log = configure_logging("api-retention", engine.settings.log_level)
    while True:
        await asyncio.sleep(engine.settings.retention_sweep_interval_sec)
        try:
            await asyncio.to_thread(engine.sweeper.sweep)
        except Exception as e:
            log.error("retention_sweep_failed", error=str(e))


def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": str(exc)})


def create_app(engine: TrackingEngine | None = None) -> FastAPI:
    """
    Build the API. With an injected ``engine`` the app serves it as-is;
    otherwise the lifespan builds one from Settings, starts the collector when
    ``collector_autostart`` is set, and schedules the retention sweep.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = engine is None
        eng = engine or build_engine(Settings())
        app.state.engine = eng

        sweep_task = None
        if owned:
            if eng.settings.collector_autostart:
                eng.collector.start()
            sweep_task = asyncio.create_task(_sweep_periodically(eng))

        yield

        if sweep_task is not None:
            sweep_task.cancel()
        if owned:
            eng.close()

    app = FastAPI(
        title="Campaign Traffic Tracking API",
        version="1.0.0",
        description="Windowed traffic metrics for vendor-tracked campaigns",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CampaignNotFound)
    async def campaign_not_found(request: Request, exc: CampaignNotFound):
        return _error_response(404, "not_found", exc)

    @app.exception_handler(ValidationError)
    async def validation_failed(request: Request, exc: ValidationError):
        return _error_response(422, "validation_error", exc)

    @app.exception_handler(PersistenceError)
    async def persistence_failed(request: Request, exc: PersistenceError):
        return _error_response(503, "storage_unavailable", exc)

    @app.exception_handler(VendorError)
    async def vendor_failed(request: Request, exc: VendorError):
        return _error_response(502, "vendor_error", exc)

    # Routers
    app.include_router(health.router)
    app.include_router(traffic.router)
    app.include_router(admin.router)
    settings = engine.settings if engine is not None else Settings()
    if settings.enable_prometheus:
        app.include_router(prometheus.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = Settings()
    uvicorn.run("api.main:app", host=settings.api_host, port=settings.api_port)
