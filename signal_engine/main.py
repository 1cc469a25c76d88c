"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (health, signals)
- Error handlers (centralized domain-to-HTTP mapping)
- Rate limiting
- Logging configuration
- The signal engine and its job runner (started in the lifespan)

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from signal_engine.core.config import settings
from signal_engine.infrastructure.signals.tables import create_schema
from signal_engine.interfaces.health import router as health_router
from signal_engine.interfaces.signals.dependencies import SignalEngine, build_engine
from signal_engine.interfaces.signals.router import router as signals_router
from signal_engine.shared.errors.handlers import register_error_handlers
from signal_engine.shared.logging import configure_logging
from signal_engine.shared.security.rate_limiting import (
    limiter,
    rate_limit_exceeded_handler,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine if none was injected, create tables, run the job runner."""
    if app.state.signal_engine is None:
        app.state.signal_engine = build_engine(settings)
    engine: SignalEngine = app.state.signal_engine

    create_schema(engine.db_engine)
    if engine.settings.scheduler_enabled:
        engine.runner.start()
    logger.info("Signal engine ready.")

    yield

    engine.runner.stop()
    await engine.aclose()


def create_app(signal_engine: Optional[SignalEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        signal_engine: Pre-built engine (tests); built from settings when None.

    Returns:
        A fully configured FastAPI application instance.
    """
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.signal_engine = signal_engine

    # --- Rate Limiting ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(signals_router, prefix="/api/v1")

    return app


app = create_app()
