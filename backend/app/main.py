"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap, middleware/router wiring, scheduler lifecycle
    for the settlement sweeper and payout reconciler, and event bus startup.

Dependencies:
    - app.database
    - app.services.event_bus
    - app.workers.settlement_sweeper
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import app.database as _db
from app.config import settings
from app.database import close_db, connect_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.services.errors import (
    InvalidResultError,
    ResultAlreadyDeclaredError,
    ResultNotDeclaredError,
    SettlementError,
    SettlementInProgressError,
)

logger = logging.getLogger("matka")
scheduler = AsyncIOScheduler()


def _build_automated_job_specs() -> list[dict]:
    from app.workers.settlement_sweeper import reconcile_payouts, settle_declared_draws

    return [
        {
            "id": "settlement_sweeper",
            "func": settle_declared_draws,
            "trigger": "interval",
            "trigger_kwargs": {"minutes": settings.SWEEPER_INTERVAL_MINUTES},
        },
        {
            "id": "payout_reconciler",
            "func": reconcile_payouts,
            "trigger": "interval",
            "trigger_kwargs": {"minutes": settings.RECONCILE_INTERVAL_MINUTES},
        },
    ]


def _register_automated_jobs() -> int:
    added = 0
    for spec in _build_automated_job_specs():
        if scheduler.get_job(spec["id"]):
            continue
        scheduler.add_job(
            spec["func"],
            spec["trigger"],
            id=spec["id"],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **spec["trigger_kwargs"],
        )
        added += 1
    return added


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await connect_db()
    from app.services.event_bus import event_bus
    from app.services.event_handlers import register_event_handlers

    scheduler.start()
    if settings.AUTOMATION_ENABLED:
        added = _register_automated_jobs()
        logger.info("Automated workers enabled (%d jobs)", added)
    else:
        logger.info("Automated workers disabled via config")
    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config")
    logger.info("Background scheduler started")

    yield

    if settings.EVENT_BUS_ENABLED:
        await event_bus.stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await close_db()


app = FastAPI(
    title="Matka Settlement",
    description="Result declaration, bet settlement and winning payouts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "X-Admin-Key", "X-Request-ID"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from app.routers.draws import router as draws_router

app.include_router(draws_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        # Strip the "body" / "query" prefix for cleaner messages
        field = ".".join(str(l) for l in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    """Domain errors that escaped a router's own translation."""
    if isinstance(exc, ResultNotDeclaredError):
        code = 404
    elif isinstance(exc, (ResultAlreadyDeclaredError, SettlementInProgressError)):
        code = 409
    elif isinstance(exc, InvalidResultError):
        code = 422
    else:
        code = 500
        logger.error("Settlement error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry."})


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid input."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check -- verifies DB connection and event bus state."""
    from app.services.event_bus import event_bus

    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "event_bus": {
            "enabled": settings.EVENT_BUS_ENABLED,
            "running": event_bus.running,
        },
        "scheduler": {"running": scheduler.running, "jobs": len(scheduler.get_jobs())},
    }
