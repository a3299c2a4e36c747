"""
Billing middleware for error handling and request logging.

Binds a correlation id for every request, renders ``BillingError`` as JSON
and turns anything unexpected into a generic 500.
"""

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from creatorhub.platform.billing.exceptions import BillingError
from creatorhub.platform.settings import get_settings

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = 1


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request-scoped context and logging.

    Features:
    - Reads or generates the correlation id and binds it to structlog contextvars
    - Logs completed subscription and webhook requests with their duration
    - Converts unexpected exceptions to a generic JSON error
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        header = get_settings().observability.correlation_id_header
        correlation_id = request.headers.get(header) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Unexpected error in request", error=str(e), duration=time.time() - start_time
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": {
                        "error_code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred processing your request",
                        "status_code": 500,
                        "recovery_hint": "Please try again later or contact support if the issue persists",
                    },
                    "correlation_id": correlation_id,
                    "request_path": request.url.path,
                },
                headers={header: correlation_id},
            )
        finally:
            structlog.contextvars.clear_contextvars()

        if request.url.path.startswith(("/api/v1/subscriptions", "/api/v1/webhooks")):
            logger.info(
                "Subscription request completed",
                correlation_id=correlation_id,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration=time.time() - start_time,
            )

        response.headers[header] = correlation_id
        return response


async def billing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a BillingError with its status code; retryable errors get Retry-After."""
    if not isinstance(exc, BillingError):
        raise exc

    correlation_id = getattr(request.state, "correlation_id", None)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Billing error occurred",
        correlation_id=correlation_id,
        path=request.url.path,
        error_code=exc.error_code,
        error_message=exc.message,
        error_context=exc.context,
    )

    headers = {}
    if exc.retryable:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.to_dict(),
            "correlation_id": correlation_id,
            "request_path": request.url.path,
        },
        headers=headers,
    )


def setup_billing_middleware(app: FastAPI) -> None:
    """
    Configure billing middleware for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_middleware(RequestContextMiddleware)

    logger.info("Billing middleware configured")


__all__ = ["RequestContextMiddleware", "billing_error_handler", "setup_billing_middleware"]
