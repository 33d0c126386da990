"""
Roommate Match — FastAPI Application Entry Point

Production-ready application with:
- Async lifespan management (DB pool, Redis change relay)
- CORS, timeout, and structured-logging middleware
- Health-check endpoints (liveness + deep readiness)
- Active-request tracking for graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.deps import get_store
from app.config import get_settings
from app.store.relay import RedisChangeRelay
from app.store.sql import SqlDocumentStore

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("roommate")

# ---------------------------------------------------------------------------
# Active request counter for graceful shutdown
# ---------------------------------------------------------------------------

_active_requests: int = 0
_active_requests_lock = asyncio.Lock()
_shutdown_event = asyncio.Event()

DRAIN_TIMEOUT_SECONDS = 15


async def _increment_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests += 1


async def _decrement_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests -= 1


async def _drain_active_requests() -> None:
    """Wait until all in-flight requests complete or timeout expires."""
    deadline = time.monotonic() + DRAIN_TIMEOUT_SECONDS
    while True:
        async with _active_requests_lock:
            if _active_requests <= 0:
                break
        if time.monotonic() >= deadline:
            logger.warning(
                "drain_timeout_exceeded",
                remaining_requests=_active_requests,
            )
            break
        await asyncio.sleep(0.25)


# ---------------------------------------------------------------------------
# Redis helpers
# ---------------------------------------------------------------------------

_redis_client = None
_change_relay: RedisChangeRelay | None = None


async def _connect_redis() -> None:
    global _redis_client
    import redis.asyncio as aioredis

    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis_connected", url=settings.REDIS_URL)


async def _close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_closed")


def get_redis():
    """Return the shared Redis client (for use in health checks, etc.)."""
    return _redis_client


async def _start_change_relay() -> None:
    """Fan document changes out to the other workers over Redis pub/sub."""
    global _change_relay
    settings = get_settings()
    store = get_store()

    _change_relay = RedisChangeRelay(_redis_client, settings.CHANGE_CHANNEL, store.feed)
    if isinstance(store, SqlDocumentStore):
        store.relay = _change_relay
    _change_relay.start()
    logger.info("change_relay_started", channel=settings.CHANGE_CHANNEL)


async def _stop_change_relay() -> None:
    global _change_relay
    if _change_relay is None:
        return
    store = get_store()
    if isinstance(store, SqlDocumentStore):
        store.relay = None
    await _change_relay.stop()
    _change_relay = None


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources."""
    settings = get_settings()

    # -- Startup --------------------------------------------------------- #
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
        store_backend=settings.STORE_BACKEND,
    )

    # 1. Database connection pool — issuing a simple query warms the pool.
    if settings.STORE_BACKEND == "sql":
        from app.database import get_engine

        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_pool_initialised")

    # 2. Document store
    get_store()

    # 3. Redis change relay (optional; single-worker deployments skip it)
    if settings.REDIS_URL:
        await _connect_redis()
        await _start_change_relay()
    else:
        logger.info("redis_skip", reason="REDIS_URL not configured")

    logger.info("startup_complete")

    yield

    # -- Shutdown -------------------------------------------------------- #
    logger.info("shutdown_begin")

    # 1. Drain in-flight requests
    _shutdown_event.set()
    await _drain_active_requests()

    # 2. Stop the relay and close Redis
    await _stop_change_relay()
    await _close_redis()

    # 3. Dispose DB engine (closes the connection pool)
    if settings.STORE_BACKEND == "sql":
        from app.database import dispose_engine

        await dispose_engine()
        logger.info("database_pool_closed")

    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout."""

    def __init__(self, app, timeout_seconds: float = 70.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()

        await _increment_active()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise
        finally:
            await _decrement_active()

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title="Roommate Match",
    description="Mutual-like roommate matching with compatibility ranking and match-gated chat",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- Middleware (applied in reverse order — last added runs first) ---------- #

app.add_middleware(StructuredLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=70.0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Liveness check: always returns healthy if the process is
    running."""
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness check that verifies database and Redis connectivity."""
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "redis": "connected",
    }

    # Database
    if get_settings().STORE_BACKEND != "sql":
        result["database"] = "not_configured"
    else:
        try:
            from app.database import get_session_factory

            async with get_session_factory()() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("health_db_failure", error=str(exc))
            result["database"] = f"error: {exc}"
            result["status"] = "degraded"

    # Redis
    if not get_settings().REDIS_URL:
        result["redis"] = "not_configured"
    else:
        try:
            redis = get_redis()
            if redis is None:
                raise RuntimeError("Redis client not initialised")
            await redis.ping()
        except Exception as exc:
            logger.error("health_redis_failure", error=str(exc))
            result["redis"] = f"error: {exc}"
            result["status"] = "degraded"

    return result


# -- API router ------------------------------------------------------------ #

from app.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
