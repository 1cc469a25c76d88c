"""
Centralized error handlers for FastAPI.

Maps signal domain errors to HTTP responses.
No stack traces or internal details are exposed to clients.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from signal_engine.domain.signals.errors import (
    ExternalServiceError,
    InvalidTransitionError,
    PortfolioNotFoundError,
    SignalDomainError,
    SignalNotFoundError,
)

logger = logging.getLogger(__name__)

HTTP_404 = 404
HTTP_409 = 409
HTTP_500 = 500
HTTP_502 = 502


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(SignalNotFoundError)
    async def handle_signal_not_found(
        _request: Request, exc: SignalNotFoundError
    ) -> JSONResponse:
        logger.warning("Signal not found: %s", exc.signal_id)
        return _error_response(HTTP_404, "Signal not found")

    @app.exception_handler(PortfolioNotFoundError)
    async def handle_portfolio_not_found(
        _request: Request, exc: PortfolioNotFoundError
    ) -> JSONResponse:
        logger.warning("Portfolio not found: %s", exc.portfolio_id)
        return _error_response(HTTP_404, "Portfolio not found")

    @app.exception_handler(InvalidTransitionError)
    async def handle_invalid_transition(
        _request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        logger.warning("Invalid transition: %s on %s", exc.event, exc.status)
        return _error_response(HTTP_409, "Invalid signal transition", exc.message)

    @app.exception_handler(ExternalServiceError)
    async def handle_external_service(
        _request: Request, exc: ExternalServiceError
    ) -> JSONResponse:
        logger.error("External service %s failed: %s", exc.service, exc.reason)
        return _error_response(HTTP_502, "Upstream service unavailable", exc.service)

    @app.exception_handler(SignalDomainError)
    async def handle_signal_domain(
        _request: Request, exc: SignalDomainError
    ) -> JSONResponse:
        """Catch-all for unhandled signal domain errors."""
        logger.error("Unhandled signal domain error: %s", exc.message)
        return _error_response(HTTP_500, "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(
        _request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "Internal server error")
