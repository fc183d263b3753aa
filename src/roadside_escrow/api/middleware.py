"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware - injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware - catches domain exceptions -> error envelope
    3. CORSMiddleware - the customer web app and provider app call from browsers
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from roadside_escrow.domain.exceptions import (
    AuthError,
    ExternalServiceError,
    IllegalTransitionError,
    NotFoundError,
    PreconditionError,
    RoadsideError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Most specific first: MissingQuoteError must match ValidationError, not RoadsideError.
STATUS_CODES: tuple[tuple[type[RoadsideError], int], ...] = (
    (NotFoundError, 404),
    (IllegalTransitionError, 409),
    (PreconditionError, 409),
    (ValidationError, 400),
    (AuthError, 401),
    (ExternalServiceError, 502),
)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


def status_for(exc: RoadsideError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Translate domain exceptions into the {success: false, error} envelope."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except IllegalTransitionError as exc:
            logger.warning(
                "lifecycle.illegal_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return error_response(409, exc.code, exc.message)
        except ExternalServiceError as exc:
            logger.error(
                "external.error",
                service=exc.service,
                status_code=exc.status_code,
                error=exc.message,
            )
            return error_response(502, exc.code, exc.message)
        except RoadsideError as exc:
            status_code = status_for(exc)
            logger.warning("domain.error", error=exc.message, code=exc.code, status=status_code)
            return error_response(status_code, exc.code, exc.message)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters: middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
