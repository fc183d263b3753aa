"""FastAPI application entry point for the roadside escrow service.

Lifecycle:
    1. Startup: logging, database, Redis (optional), gateway client, push
       sender, notification dispatcher and live tracker.
    2. Running: serve the REST API under /api/v1 and /health.
    3. Shutdown: stop every tracking loop, then close HTTP clients, the
       database and Redis.

Run with:
    uv run uvicorn roadside_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from redis.exceptions import RedisError

from roadside_escrow.config import get_settings
from roadside_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi.responses import JSONResponse


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from roadside_escrow.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis (bank directory cache only)
    from roadside_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except (RedisError, OSError) as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Outbound clients and transition observers
    from roadside_escrow.infrastructure.paystack import PaystackClient
    from roadside_escrow.infrastructure.push import PushSender
    from roadside_escrow.services.notification_service import NotificationDispatcher
    from roadside_escrow.services.tracking_service import LiveTracker

    if settings.paystack_sandbox:
        from roadside_escrow.infrastructure.paystack_sandbox import (
            SANDBOX_SECRET,
            PaystackSandbox,
        )

        sandbox = PaystackSandbox(settings.paystack_secret_key or SANDBOX_SECRET)
        gateway = PaystackClient(
            secret_key=sandbox.secret_key,
            currency=settings.paystack_currency,
            transport=sandbox.transport(),
        )
        app.state.sandbox = sandbox
        logger.warning("app.paystack_sandbox_enabled")
    else:
        gateway = PaystackClient.from_settings(settings)
    push = PushSender.from_settings(settings)
    dispatcher = NotificationDispatcher(push, settings)
    tracker = LiveTracker(get_session_factory(), settings)

    app.state.gateway = gateway
    app.state.dispatcher = dispatcher
    app.state.tracker = tracker
    app.state.observers = (dispatcher, tracker)

    if not settings.paystack_enabled and not settings.paystack_sandbox:
        logger.warning("app.paystack_not_configured")
    if not push.enabled:
        logger.warning("app.push_disabled")

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await tracker.shutdown()
    await gateway.close()
    await push.close()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    from roadside_escrow.api.middleware import error_response

    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid input')}" if location else "Invalid input"
    return error_response(400, "VALIDATION_ERROR", message)


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Roadside Escrow",
        description=(
            "Roadside assistance marketplace: request lifecycle, provider matching, "
            "live tracking and escrowed mobile-money payments."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # --- Middleware ---
    from roadside_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from roadside_escrow.api.routes.health import router as health_router
    from roadside_escrow.api.routes.payments import router as payments_router
    from roadside_escrow.api.routes.providers import router as providers_router
    from roadside_escrow.api.routes.requests import router as requests_router
    from roadside_escrow.api.routes.tracking import router as tracking_router
    from roadside_escrow.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(requests_router)
    app.include_router(payments_router)
    app.include_router(webhooks_router)
    app.include_router(tracking_router)
    app.include_router(providers_router)

    return app


# The app instance used by Uvicorn
app = create_app()
