"""FastAPI application entry point for the Staffing Broker.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       build the TransactionRunner and, when enabled, start the expiry sweeper.
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Stop the sweeper, close database and Redis connections gracefully.

Run with:
    uvicorn staffing_broker.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import SystemClock
from staffing_broker.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from staffing_broker.domain.clock import Clock
    from staffing_broker.infrastructure.database.transactions import TransactionRunner


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings: Settings = app.state.settings

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database and the transaction runner
    from staffing_broker.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )
    from staffing_broker.infrastructure.database.transactions import TransactionRunner
    from staffing_broker.infrastructure.notifications import LoggingNotifier, LoggingOtpSender

    owns_database = app.state.runner is None
    if owns_database:
        await init_db()
        app.state.runner = TransactionRunner(
            get_session_factory(),
            max_attempts=settings.db_retry_attempts,
            backoff_seconds=settings.db_retry_backoff_seconds,
            notifier=LoggingNotifier(),
            otp_sender=LoggingOtpSender(reveal_codes=settings.is_development),
        )

    # 3. Initialize Redis (optional: only coordinates the sweeper)
    from staffing_broker.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Expiry sweeper
    from staffing_broker.services.expiry_sweeper import ExpirySweeper

    stop_sweeper = asyncio.Event()
    sweeper_task: asyncio.Task | None = None
    if settings.sweeper_enabled:
        sweeper = ExpirySweeper(app.state.runner, app.state.clock, settings)
        sweeper_task = asyncio.create_task(sweeper.run_periodic(stop_sweeper))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    stop_sweeper.set()
    if sweeper_task is not None:
        await sweeper_task
    if owns_database:
        await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app(
    settings: Settings | None = None,
    *,
    runner: TransactionRunner | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Application factory - creates and configures the FastAPI app.

    Passing a runner skips database initialization in the lifespan; tests
    use this to run the API against their own engine and clock.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Staffing Broker",
        description=(
            "Allocation of a finite worker pool to competing customers: "
            "reservations, contracts, invoices and OTP-gated payments."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.clock = clock or SystemClock()
    app.state.runner = runner

    # --- Middleware ---
    from staffing_broker.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from staffing_broker.api.routes.admin import router as admin_router
    from staffing_broker.api.routes.contracts import router as contracts_router
    from staffing_broker.api.routes.health import router as health_router
    from staffing_broker.api.routes.payments import router as payments_router
    from staffing_broker.api.routes.problems import router as problems_router
    from staffing_broker.api.routes.proposals import router as proposals_router
    from staffing_broker.api.routes.reservations import router as reservations_router
    from staffing_broker.api.routes.workers import router as workers_router

    app.include_router(health_router)
    app.include_router(workers_router)
    app.include_router(reservations_router)
    app.include_router(contracts_router)
    app.include_router(proposals_router)
    app.include_router(payments_router)
    app.include_router(problems_router)
    app.include_router(admin_router)

    return app


# The app instance used by Uvicorn
app = create_app()
