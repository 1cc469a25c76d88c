"""
Health check router.

Liveness/readiness endpoint. Reports whether the signal store answers and
what the job runner is doing (registered jobs, next firings, last runs).
Status is "degraded" while the store is unreachable.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from signal_engine.interfaces.signals.dependencies import SignalEngine, get_signal_engine
from signal_engine.interfaces.signals.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _database_status(engine: SignalEngine) -> str:
    try:
        with engine.db_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Signal store unreachable: %s", exc)
        return "unavailable"
    return "ok"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Signal store reachability and job runner status.",
)
def health_check(engine: SignalEngine = Depends(get_signal_engine)) -> HealthResponse:
    database = _database_status(engine)
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=engine.settings.version,
        database=database,
        scheduler=engine.runner.get_status(),
    )
