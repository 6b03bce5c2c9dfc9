from contextlib import asynccontextmanager
import asyncio
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from dispatch_elig.api.router import api_router
from dispatch_elig.core.config import get_settings
from dispatch_elig.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from dispatch_elig.eligibility.engine import get_engine
from dispatch_elig.jobs.rollover import run_rollover_loop
from dispatch_elig.services.repository import RepositoryUnavailableError, get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    stop = asyncio.Event()
    rollover_task: asyncio.Task | None = None

    if not engine.is_initialized:
        try:
            await engine.initialize()
        except RepositoryUnavailableError as exc:
            logger.warning("eligibility engine not initialized: %s", exc)

    if engine.is_initialized:
        if settings.backfill_on_startup:
            summary = await engine.backfill()
            logger.info("startup backfill summary=%s", summary.as_dict())
        if settings.rollover_enabled:
            rollover_task = asyncio.create_task(run_rollover_loop(engine, settings, stop=stop))

    try:
        yield
    finally:
        stop.set()
        if rollover_task is not None:
            await rollover_task
        if _telemetry_runtime is not None:
            shutdown_telemetry(app, _telemetry_runtime)
        # Repository owns the asyncpg pool.
        await engine.repository.close()
        get_engine.cache_clear()
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
