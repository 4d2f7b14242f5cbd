"""
app.py - InfluxDB metrics sidecar host application
"""
import time
from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime
from contextlib import asynccontextmanager
from pathlib import Path

from prometheus_client import CONTENT_TYPE_LATEST

from config import settings
from logger import get_logger
from metrics import get_metrics
from monitoring import (
    ChangeNotifier,
    InfluxDbConfiguration,
    ReloadScheduler,
    get_global_registry
)
from reporting import ReporterLifecycle, ReporterState

logger = get_logger(__name__)

# Components
metric_registry = get_global_registry()
configuration = InfluxDbConfiguration(Path(settings.config_dir), settings.config_filename)
notifier = ChangeNotifier()
reload_scheduler = ReloadScheduler(
    configuration,
    notifier,
    initial_delay_seconds=settings.reload_initial_delay_seconds,
    interval_seconds=settings.reload_interval_seconds,
    history_size=settings.reload_history_size
)
reporting = ReporterLifecycle(metric_registry, configuration, notifier)

_started_at = time.monotonic()
metric_registry.gauge("sidecar.uptime_seconds", lambda: time.monotonic() - _started_at)
metric_registry.gauge("sidecar.config.properties", lambda: len(configuration.snapshot))


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: str
    reporter: Dict[str, Any]
    reload: Dict[str, Any]
    config_problems: List[str] = []


class ReloadResponse(BaseModel):
    status: str
    timestamp: str
    error: Optional[str] = None
    changes: List[Dict[str, str]] = []


async def on_start():
    """Host start hook"""
    configuration.load()
    reload_scheduler.start()
    await reporting.on_start()

    logger.info(f"{settings.app_name} v{settings.version} started in {settings.environment} mode")


async def on_stop():
    """Host stop hook"""
    reload_scheduler.stop()
    await reporting.on_stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the host start/stop hooks around the application lifetime"""
    try:
        await on_start()
    except Exception as e:
        # Export is optional for the host; keep serving health/metrics
        logger.critical(f"Startup of InfluxDB reporting failed: {e}", exc_info=True)

    yield

    logger.info("Application shutting down gracefully...")
    try:
        await on_stop()
    except Exception as e:
        logger.error(f"Error stopping InfluxDB reporting: {e}")
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.debug else None
)


@app.middleware("http")
async def time_requests(request: Request, call_next):
    """Record request durations in the exported registry"""
    start = time.perf_counter()
    try:
        return await call_next(request)
    finally:
        metric_registry.timer("sidecar.http.requests").update(time.perf_counter() - start)


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check with reporter and reload state"""
    reporter_status = reporting.get_status()
    problems = configuration.validate()

    if reporting.state is ReporterState.RUNNING and not problems:
        overall_status = "healthy"
    elif reporting.state is ReporterState.RUNNING:
        overall_status = "degraded"
    else:
        overall_status = "unhealthy"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.utcnow().isoformat(),
        reporter=reporter_status,
        reload=reload_scheduler.get_stats(),
        config_problems=problems
    )


@app.get("/metrics", tags=["System"])
async def metrics():
    """Prometheus metrics endpoint"""
    if not settings.enable_metrics:
        raise HTTPException(status_code=404)

    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@app.get("/config", tags=["Configuration"])
async def get_config():
    """Current reporter configuration (credentials redacted)"""
    snapshot = configuration.snapshot
    return {
        "source": str(configuration.config_path),
        "loaded_at": snapshot.loaded_at.isoformat(),
        "properties": configuration.redacted(),
    }


@app.post("/config/reload", response_model=ReloadResponse, tags=["Configuration"])
async def reload_config():
    """Reload the configuration file now"""
    result = await reload_scheduler.reload_now()
    return ReloadResponse(**result.to_dict())


@app.get("/config/reload/history", tags=["Configuration"])
async def reload_history(limit: int = 10):
    """Recent reload results"""
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 100")

    return {"history": [r.to_dict() for r in reload_scheduler.get_reload_history(limit)]}


def main():
    import uvicorn

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
            },
        },
        "root": {
            "level": settings.log_level,
            "handlers": ["default"],
        },
    }

    uvicorn.run(
        "app:app",
        host=settings.host,
        port=settings.port,
        workers=1,  # one reporter per process
        log_config=log_config,
    )


if __name__ == "__main__":
    main()
