"""
Use case: Generate new signals from the recommendation source.

Input:  portfolio id (or every active portfolio with a recipient)
Output: GenerationResult per portfolio
Side effects: persists PENDING signals through the SignalValidator; may
send an unfilled-signal advisory via the verifier.
Failure cases: PortfolioNotFoundError for an unknown portfolio id.
Recommendation source errors produce zero signals, never an exception.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from signal_engine.application.signals.dtos import GenerationResult
from signal_engine.application.signals.verify_executed_signals import (
    ExecutedSignalVerifier,
)
from signal_engine.domain.signals.capital_ledger import CapitalLedger
from signal_engine.domain.signals.entities import PortfolioContext
from signal_engine.domain.signals.errors import (
    ExternalServiceError,
    PortfolioNotFoundError,
)
from signal_engine.domain.signals.ports import (
    Clock,
    PortfolioRepository,
    RecommendationSource,
    utc_now,
)
from signal_engine.domain.signals.signal_validator import SignalValidator

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_PACING_SECONDS = 2.0


class SignalGenerationJob:
    """Asks the recommendation source for trades and validates them."""

    def __init__(
        self,
        source: RecommendationSource,
        validator: SignalValidator,
        portfolio_repo: PortfolioRepository,
        ledger: CapitalLedger,
        verifier: Optional[ExecutedSignalVerifier] = None,
        clock: Clock = utc_now,
        pacing_seconds: float = DEFAULT_PACING_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._source = source
        self._validator = validator
        self._portfolio_repo = portfolio_repo
        self._ledger = ledger
        self._verifier = verifier
        self._clock = clock
        self._pacing_seconds = pacing_seconds
        self._sleep = sleep

    async def generate_for_portfolio(self, portfolio_id: int) -> GenerationResult:
        """Run one generation for a portfolio.

        Raises:
            PortfolioNotFoundError: If the portfolio does not exist.
        """
        portfolio = self._portfolio_repo.get(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        if self._validator.daily_cap_reached(portfolio_id, self._clock()):
            logger.info("Portfolio %s reached its daily signal cap", portfolio_id)
            return GenerationResult(portfolio_id, skipped_reason="daily cap reached")

        avoid: tuple[str, ...] = ()
        if self._verifier is not None:
            verification = await self._verifier.verify_portfolio(portfolio)
            avoid = verification.unfilled_symbols

        context = PortfolioContext(
            portfolio=portfolio,
            cash=self._ledger.cash_position(portfolio_id),
            avoid_symbols=avoid,
        )
        try:
            proposals = await self._source.propose(context)
        except ExternalServiceError as exc:
            logger.error(
                "Recommendation source failed for portfolio %s: %s", portfolio_id, exc
            )
            return GenerationResult(portfolio_id, skipped_reason=exc.message)

        created = self._validator.validate(portfolio_id, proposals, self._clock())
        return GenerationResult(portfolio_id, created=created, proposed=len(proposals))

    async def generate_for_all(self) -> list[GenerationResult]:
        """Generate for every active portfolio that has a recipient."""
        eligible = [p for p in self._portfolio_repo.list_active() if p.recipient]
        results: list[GenerationResult] = []
        for index, portfolio in enumerate(eligible):
            if index and self._pacing_seconds > 0:
                await self._sleep(self._pacing_seconds)
            try:
                results.append(await self.generate_for_portfolio(portfolio.id))
            except Exception as exc:
                logger.error("Signal generation failed for portfolio %s: %s", portfolio.id, exc)
                results.append(GenerationResult(portfolio.id, skipped_reason=str(exc)))

        created = sum(len(r.created) for r in results)
        logger.info(
            "Generated %d signals across %d portfolios", created, len(eligible)
        )
        return results
