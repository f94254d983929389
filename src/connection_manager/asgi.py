"""
FastAPI + Uvicorn ASGI application — operational endpoints around the scheduler.

Runs the whitelist refresh scheduler in a background thread and exposes
health and trigger endpoints only. Certificate and endpoint operations are
library calls and are not routed here.

  GET  /health   liveness: scheduler thread alive, no startup error
  GET  /ready    readiness: scheduler started
  GET  /info     metadata
  POST /trigger  run the whitelist refresh now

Entry point: uvicorn connection_manager.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from connection_manager import __version__
from connection_manager.config import AppSettings
from connection_manager.main import configure_structlog, create_refresh_job
from connection_manager.railway import LoggingExecutionContext, Result
from connection_manager.scheduler import create_scheduler

# ─────────────────────── Global State ───────────────────────

_scheduler_thread: threading.Thread | None = None
_scheduler_started = False
_scheduler_ready = False
_error_message: str | None = None
_job_fn: Callable[[], Result[int]] | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: build the job and start the scheduler thread. Shutdown: stop it."""
    global _scheduler_thread, _scheduler_ready, _error_message, _job_fn

    log.info("asgi.startup")

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    log.info(
        "asgi.startup_config",
        version=__version__,
        log_level=settings.log_level,
        cron=settings.scheduler.cron,
        run_on_startup=settings.run_on_startup,
    )

    try:
        _job_fn = create_refresh_job(settings)
        scheduler = create_scheduler(
            job_fn=_job_fn,
            cron=settings.scheduler.cron,
            run_on_startup=settings.run_on_startup,
        )
    except Exception as e:
        _error_message = f"Failed to initialize adapters/scheduler: {e}"
        log.error("asgi.init_error", error=_error_message)
        raise

    def run_scheduler() -> None:
        global _scheduler_started, _error_message
        try:
            _scheduler_started = True
            log.info("asgi.scheduler_thread_started")
            scheduler.start()
        except Exception as e:
            _error_message = f"Scheduler error: {e}"
            log.error("asgi.scheduler_error", error=_error_message)

    _scheduler_thread = threading.Thread(target=run_scheduler, daemon=True)
    _scheduler_thread.start()

    await asyncio.sleep(0.1)
    _scheduler_ready = True
    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown")
    try:
        scheduler.shutdown(wait=True)
    except Exception as e:
        log.warning("asgi.scheduler_shutdown_error", error=str(e))

    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5.0)
        if _scheduler_thread.is_alive():
            log.warning("asgi.scheduler_thread_timeout", timeout_seconds=5.0)

    log.info("asgi.shutdown_complete")


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="connection-manager",
    description="Hub/DFSP connection manager — whitelist refresh scheduler and health checks",
    version=__version__,
    lifespan=lifespan,
)


def _scheduler_running() -> bool:
    return _scheduler_thread is not None and _scheduler_thread.is_alive()


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness: 200 if the scheduler thread is alive and startup succeeded, else 503."""
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": _error_message})

    if not _scheduler_running():
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "scheduler thread not running"},
        )

    return JSONResponse(status_code=200, content={"status": "healthy", "scheduler_running": True})


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness: 202 while starting, 503 on error, 200 once the scheduler runs.

    "Ready" does not wait for the first refresh to complete.
    """
    if not _scheduler_ready or not _scheduler_started:
        return JSONResponse(
            status_code=202,
            content={"status": "starting", "scheduler_started": _scheduler_started},
        )

    if _error_message:
        return JSONResponse(status_code=503, content={"status": "error", "error": _error_message})

    return JSONResponse(
        status_code=200,
        content={"status": "ready", "scheduler_running": _scheduler_running()},
    )


@app.get("/info")
async def info() -> dict[str, Any]:
    return {
        "name": "connection-manager",
        "version": __version__,
        "scheduler_running": _scheduler_running(),
        "scheduler_started": _scheduler_started,
        "scheduler_ready": _scheduler_ready,
        "has_error": _error_message is not None,
    }


@app.post("/trigger")
async def trigger() -> JSONResponse:
    """
    Re-materialize every environment's whitelist now, off the event loop.

    Runs through a LoggingExecutionContext like the scheduled job, so a crash
    comes back as a TECHNICAL_ERROR failure. 200 with the number of
    environments refreshed; the failure's HTTP status with its code and
    message when the refresh fails; 503 before startup.
    """
    if _job_fn is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "reason": "Refresh job not initialized"},
        )

    log.info("trigger.manual_start", source="REST")

    ctx = LoggingExecutionContext(operation="ManualWhitelistRefresh")
    result = await asyncio.to_thread(ctx.execute, _job_fn)

    if result.is_success():
        log.info("trigger.completed", environments=result.value())
        return JSONResponse(
            status_code=200, content={"status": "success", "environments": result.value()}
        )

    failure = result.error()
    log.error("trigger.refresh_failed", failure=str(failure))
    return JSONResponse(
        status_code=failure.code.http_status,
        content={"status": "failed", "error_code": failure.code.value, "message": failure.message},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("connection_manager.asgi:app", host="0.0.0.0", port=8000, log_level="info")
