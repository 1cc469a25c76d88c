"""
Dependency injection for the signals bounded context.

build_engine is the composition root: it constructs the store, the
adapters, the domain services, the use cases and the job runner once, and
the application keeps the result on app.state. FastAPI dependency
functions below only read from that container; nothing here is a module
level singleton.
"""

from dataclasses import asdict, dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from fastapi import Request
from sqlalchemy.engine import Engine

from signal_engine.application.signals.execute_signal import ExecutionCoordinator
from signal_engine.application.signals.expire_signals import ExpirySweeper
from signal_engine.application.signals.generate_signals import SignalGenerationJob
from signal_engine.application.signals.handle_signal_action import (
    SignalActionDispatcher,
)
from signal_engine.application.signals.notify_pending_signals import (
    NotificationScheduler,
)
from signal_engine.application.signals.verify_executed_signals import (
    ExecutedSignalVerifier,
)
from signal_engine.core.config import Settings
from signal_engine.domain.signals.capital_ledger import CapitalLedger
from signal_engine.domain.signals.ports import (
    Clock,
    ExecutionGateway,
    NotificationChannel,
    QuoteSource,
    RecommendationSource,
    utc_now,
)
from signal_engine.domain.signals.schedule_policy import Job, SchedulePolicy
from signal_engine.domain.signals.signal_validator import SignalValidator
from signal_engine.infrastructure.scheduling.job_runner import SignalJobRunner
from signal_engine.infrastructure.signals.execution_order_repository import (
    ExecutionOrderRepositoryAdapter,
)
from signal_engine.infrastructure.signals.offline_adapters import (
    DisconnectedGateway,
    LogOnlyChannel,
    NoRecommendations,
)
from signal_engine.infrastructure.signals.portfolio_repository import (
    PortfolioRepositoryAdapter,
)
from signal_engine.infrastructure.signals.recommendation_source import (
    HttpRecommendationSource,
)
from signal_engine.infrastructure.signals.signal_repository import (
    SignalRepositoryAdapter,
)
from signal_engine.infrastructure.signals.tables import build_db_engine
from signal_engine.infrastructure.signals.telegram_channel import (
    TelegramChannelAdapter,
)
from signal_engine.infrastructure.signals.upstox_gateway import UpstoxGatewayAdapter


@dataclass
class SignalEngine:
    """Everything the HTTP layer and the job runner need, wired once."""

    settings: Settings
    db_engine: Engine
    signal_repo: SignalRepositoryAdapter
    portfolio_repo: PortfolioRepositoryAdapter
    order_repo: ExecutionOrderRepositoryAdapter
    ledger: CapitalLedger
    validator: SignalValidator
    sweeper: ExpirySweeper
    notifier: NotificationScheduler
    coordinator: ExecutionCoordinator
    dispatcher: SignalActionDispatcher
    verifier: ExecutedSignalVerifier
    generation: SignalGenerationJob
    runner: SignalJobRunner
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for close in self.closers:
            await close()
        self.db_engine.dispose()


def build_engine(
    settings: Settings,
    db_engine: Optional[Engine] = None,
    channel: Optional[NotificationChannel] = None,
    gateway: Optional[ExecutionGateway] = None,
    quote_source: Optional[QuoteSource] = None,
    source: Optional[RecommendationSource] = None,
    clock: Clock = utc_now,
) -> SignalEngine:
    """Wire the signal engine from settings.

    Collaborators passed explicitly win over the ones built from settings;
    tests use this to inject in-memory doubles.
    """
    closers: list[Callable[[], Awaitable[None]]] = []
    timeout = settings.http_timeout_seconds

    if channel is None:
        if settings.telegram_bot_token:
            telegram = TelegramChannelAdapter(
                settings.telegram_bot_token, settings.telegram_base_url, timeout
            )
            closers.append(telegram.aclose)
            channel = telegram
        else:
            channel = LogOnlyChannel()

    if gateway is None:
        if settings.upstox_access_token:
            upstox = UpstoxGatewayAdapter(
                settings.upstox_base_url, settings.upstox_access_token, timeout
            )
            closers.append(upstox.aclose)
            gateway = upstox
            quote_source = quote_source or upstox
        else:
            gateway = DisconnectedGateway()

    if source is None:
        if settings.recommendation_url:
            http_source = HttpRecommendationSource(
                settings.recommendation_url, settings.recommendation_timeout_seconds
            )
            closers.append(http_source.aclose)
            source = http_source
        else:
            source = NoRecommendations()

    db = db_engine or build_db_engine(settings.database_url)
    signal_repo = SignalRepositoryAdapter(db)
    portfolio_repo = PortfolioRepositoryAdapter(db)
    order_repo = ExecutionOrderRepositoryAdapter(db)

    market_tz = ZoneInfo(settings.market_timezone)
    ledger = CapitalLedger(portfolio_repo, signal_repo)
    validator = SignalValidator(
        ledger,
        signal_repo,
        portfolio_repo,
        market_tz,
        daily_cap=settings.daily_signal_cap,
        max_proposals=settings.max_proposals_per_batch,
    )
    sweeper = ExpirySweeper(
        signal_repo, clock, max_age=timedelta(hours=settings.expiry_hours)
    )
    notifier = NotificationScheduler(
        signal_repo,
        portfolio_repo,
        channel,
        sweeper,
        clock,
        resend_interval=timedelta(minutes=settings.resend_interval_minutes),
        pacing_seconds=settings.notify_pacing_seconds,
    )
    coordinator = ExecutionCoordinator(
        signal_repo,
        portfolio_repo,
        order_repo,
        gateway,
        channel,
        ledger,
        clock,
        quote_source=quote_source,
        max_price_deviation=Decimal(str(settings.max_price_deviation)),
        reconcile_lookback=timedelta(hours=settings.reconcile_lookback_hours),
        placing_grace=timedelta(minutes=settings.placing_grace_minutes),
        pacing_seconds=settings.reconcile_pacing_seconds,
    )
    dispatcher = SignalActionDispatcher(signal_repo, coordinator, channel, clock)
    verifier = ExecutedSignalVerifier(
        signal_repo,
        portfolio_repo,
        gateway,
        channel,
        clock,
        lookback=timedelta(days=settings.unfilled_lookback_days),
    )
    generation = SignalGenerationJob(
        source,
        validator,
        portfolio_repo,
        ledger,
        verifier,
        clock,
        pacing_seconds=settings.generation_pacing_seconds,
    )

    async def run_generate() -> dict[str, Any]:
        results = await generation.generate_for_all()
        return {
            "portfolios": len(results),
            "created": sum(len(r.created) for r in results),
        }

    async def run_notify() -> dict[str, Any]:
        return asdict(await notifier.run_pass())

    async def run_reconcile() -> dict[str, Any]:
        return asdict(await coordinator.reconcile())

    async def run_expire() -> dict[str, Any]:
        return {"expired": sweeper.sweep()}

    async def run_verify() -> dict[str, Any]:
        results = await verifier.verify_all()
        return {
            "portfolios": len(results),
            "unfilled": {
                str(r.portfolio_id): list(r.unfilled_symbols)
                for r in results
                if r.unfilled_symbols
            },
        }

    runner = SignalJobRunner(
        jobs={
            Job.GENERATE: run_generate,
            Job.NOTIFY: run_notify,
            Job.RECONCILE: run_reconcile,
            Job.EXPIRE: run_expire,
            Job.VERIFY: run_verify,
        },
        policy=SchedulePolicy(tz=market_tz),
        intervals={
            Job.GENERATE: settings.generate_interval_seconds,
            Job.NOTIFY: settings.notify_interval_seconds,
            Job.RECONCILE: settings.reconcile_interval_seconds,
            Job.EXPIRE: settings.expire_interval_seconds,
        },
        clock=clock,
        timezone=settings.market_timezone,
    )

    return SignalEngine(
        settings=settings,
        db_engine=db,
        signal_repo=signal_repo,
        portfolio_repo=portfolio_repo,
        order_repo=order_repo,
        ledger=ledger,
        validator=validator,
        sweeper=sweeper,
        notifier=notifier,
        coordinator=coordinator,
        dispatcher=dispatcher,
        verifier=verifier,
        generation=generation,
        runner=runner,
        closers=closers,
    )


# ── FastAPI dependencies ─────────────────────────────────────────────


def get_signal_engine(request: Request) -> SignalEngine:
    return request.app.state.signal_engine


def get_signal_repository(request: Request) -> SignalRepositoryAdapter:
    return get_signal_engine(request).signal_repo


def get_capital_ledger(request: Request) -> CapitalLedger:
    return get_signal_engine(request).ledger


def get_action_dispatcher(request: Request) -> SignalActionDispatcher:
    return get_signal_engine(request).dispatcher


def get_execution_coordinator(request: Request) -> ExecutionCoordinator:
    return get_signal_engine(request).coordinator


def get_generation_job(request: Request) -> SignalGenerationJob:
    return get_signal_engine(request).generation


def get_job_runner(request: Request) -> SignalJobRunner:
    return get_signal_engine(request).runner
