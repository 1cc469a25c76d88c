"""
FastAPI router for the signals bounded context.

All routes delegate to use cases. No business logic here.
Input validation is handled by Pydantic schemas.
Error mapping is handled by centralized error handlers.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from signal_engine.application.signals.dtos import ActionEvent, ActionResult, Outcome
from signal_engine.application.signals.execute_signal import ExecutionCoordinator
from signal_engine.application.signals.generate_signals import SignalGenerationJob
from signal_engine.application.signals.handle_signal_action import (
    SignalActionDispatcher,
)
from signal_engine.domain.signals.capital_ledger import CapitalLedger
from signal_engine.domain.signals.entities import (
    BrokerOrderStatus,
    SignalStatus,
    UserAction,
)
from signal_engine.domain.signals.errors import SignalNotFoundError
from signal_engine.infrastructure.scheduling.job_runner import SignalJobRunner
from signal_engine.infrastructure.signals.signal_repository import (
    SignalRepositoryAdapter,
)
from signal_engine.interfaces.signals.dependencies import (
    get_action_dispatcher,
    get_capital_ledger,
    get_execution_coordinator,
    get_generation_job,
    get_job_runner,
    get_signal_repository,
)
from signal_engine.interfaces.signals.schemas import (
    ActionResponse,
    CashPositionResponse,
    ErrorResponse,
    GenerateSignalsRequest,
    GenerateSignalsResponse,
    JobRunResponse,
    OrderUpdateRequest,
    OrderUpdateResponse,
    SignalActionItem,
    SignalActionRequest,
    SignalDetailResponse,
    SignalListResponse,
    SignalResponse,
)
from signal_engine.shared.security.rate_limiting import HEAVY_RATE_LIMIT, limiter

router = APIRouter(tags=["signals"])


def _action_response(result: ActionResult) -> ActionResponse:
    return ActionResponse(
        outcome=result.outcome.value,
        message=result.message,
        signal=SignalResponse.from_entity(result.signal) if result.signal else None,
        order_id=result.order_id,
    )


@router.get(
    "/signals",
    response_model=SignalListResponse,
    summary="List signals",
    description="List a portfolio's signals, newest first, optionally by status.",
)
def list_signals(
    portfolio_id: int = Query(..., ge=1),
    status: Optional[SignalStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    repo: SignalRepositoryAdapter = Depends(get_signal_repository),
) -> SignalListResponse:
    signals = repo.list_for_portfolio(portfolio_id, status=status, limit=limit)
    return SignalListResponse(signals=[SignalResponse.from_entity(s) for s in signals])


@router.get(
    "/signals/{signal_id}",
    response_model=SignalDetailResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a signal",
    description="Return a signal with its audit trail.",
)
def get_signal(
    signal_id: int,
    repo: SignalRepositoryAdapter = Depends(get_signal_repository),
) -> SignalDetailResponse:
    signal = repo.get(signal_id)
    if signal is None:
        raise SignalNotFoundError(signal_id)
    base = SignalResponse.from_entity(signal)
    return SignalDetailResponse(
        **base.model_dump(),
        actions=[SignalActionItem.from_entity(a) for a in repo.list_actions(signal_id)],
    )


@router.post(
    "/signals/{signal_id}/actions",
    response_model=ActionResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Act on a signal",
    description=(
        "Apply a button press (ACK, SNOOZE, DISMISS, EXECUTE, RETRY_MARKET). "
        "A press against a signal that already moved on returns ALREADY_HANDLED."
    ),
)
async def act_on_signal(
    signal_id: int,
    body: SignalActionRequest,
    dispatcher: SignalActionDispatcher = Depends(get_action_dispatcher),
) -> ActionResponse:
    result = await dispatcher.handle(
        ActionEvent(
            signal_id=signal_id,
            action=UserAction[body.action.value],
            recipient=body.recipient,
            message_ref=body.message_ref,
            actor=body.actor,
        )
    )
    if result.outcome is Outcome.NOT_FOUND:
        raise SignalNotFoundError(signal_id)
    return _action_response(result)


@router.post(
    "/signals/generate",
    response_model=GenerateSignalsResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Generate signals",
    description="Ask the recommendation source for trades and validate them now.",
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def generate_signals(
    request: Request,
    body: GenerateSignalsRequest,
    job: SignalGenerationJob = Depends(get_generation_job),
) -> GenerateSignalsResponse:
    result = await job.generate_for_portfolio(body.portfolio_id)
    return GenerateSignalsResponse(
        portfolio_id=result.portfolio_id,
        proposed=result.proposed,
        created=[SignalResponse.from_entity(s) for s in result.created],
        skipped_reason=result.skipped_reason,
    )


@router.get(
    "/portfolios/{portfolio_id}/cash",
    response_model=CashPositionResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Cash position",
    description="Raw, reserved and effective cash of a portfolio.",
)
def get_cash_position(
    portfolio_id: int,
    ledger: CapitalLedger = Depends(get_capital_ledger),
) -> CashPositionResponse:
    position = ledger.cash_position(portfolio_id)
    return CashPositionResponse(
        portfolio_id=position.portfolio_id,
        raw_cash=position.raw_cash,
        reserved_cash=position.reserved_cash,
        effective_cash=position.effective_cash,
    )


@router.post(
    "/orders/updates",
    response_model=OrderUpdateResponse,
    summary="Broker order update",
    description="Apply a pushed broker order status (webhook).",
)
async def apply_order_update(
    body: OrderUpdateRequest,
    coordinator: ExecutionCoordinator = Depends(get_execution_coordinator),
) -> OrderUpdateResponse:
    outcome = await coordinator.apply_order_update(
        BrokerOrderStatus(
            order_id=body.order_id,
            status=body.status,
            filled_quantity=body.filled_quantity,
            average_price=body.average_price,
            message=body.message,
        )
    )
    return OrderUpdateResponse(order_id=body.order_id, outcome=outcome.value)


@router.post(
    "/jobs/{name}/run",
    response_model=JobRunResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Run a job now",
    description="Run generate, notify, reconcile, expire or verify immediately.",
)
@limiter.limit(HEAVY_RATE_LIMIT)
async def run_job(
    request: Request,
    name: str,
    runner: SignalJobRunner = Depends(get_job_runner),
) -> JobRunResponse:
    try:
        result = await runner.run_now(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown job: {name}") from None
    return JobRunResponse(
        task_name=result.task_name,
        status=result.status.value,
        started_at=result.started_at,
        finished_at=result.finished_at,
        duration_seconds=result.duration_seconds,
        details=result.details,
        error=result.error,
    )
