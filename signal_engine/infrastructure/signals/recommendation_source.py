"""
Adapter: HTTP JSON recommendation source.

Implements RecommendationSource port.
POSTs the portfolio context to a configured endpoint and parses the
``{"signals": [...]}`` answer into ProposedTrade objects. Items that cannot
be parsed are skipped with a warning; a malformed envelope yields no
proposals.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from signal_engine.domain.signals.entities import (
    PortfolioContext,
    ProposedTrade,
    Side,
    Trigger,
    TriggerType,
)
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.domain.signals.ports import RecommendationSource

logger = logging.getLogger(__name__)

SERVICE = "recommendation-source"


def _price(value: Any) -> Optional[Decimal]:
    if value in (None, "", 0):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    return price if price > 0 else None


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_trigger(item: dict) -> Trigger:
    """Build a Trigger, falling back to at-market when prices are missing."""
    kind = str(item.get("triggerType") or "MARKET").upper()
    if kind == TriggerType.LIMIT.value:
        price = _price(item.get("triggerPrice"))
        if price is not None:
            return Trigger.limit(price)
    elif kind == TriggerType.ZONE.value:
        low = _price(item.get("triggerLow"))
        high = _price(item.get("triggerHigh"))
        if low is not None:
            return Trigger.zone(low, high if high is not None else low)
    return Trigger.market()


def parse_proposal(item: dict) -> ProposedTrade:
    """Parse one recommendation item.

    Raises:
        ValueError: If symbol or side are missing or invalid.
    """
    symbol = str(item.get("symbol") or "").strip().upper()
    if not symbol:
        raise ValueError("missing symbol")
    side = Side(str(item.get("side") or "").upper())
    return ProposedTrade(
        symbol=symbol,
        side=side,
        quantity=_int(item.get("quantity"), 1),
        trigger=parse_trigger(item),
        confidence=_int(item.get("confidence"), 50),
        rationale=item.get("rationale") or None,
        exchange=str(item.get("exchange") or "NSE").upper(),
    )


def context_to_dict(context: PortfolioContext) -> dict:
    portfolio = context.portfolio
    return {
        "portfolioId": portfolio.id,
        "portfolioName": portfolio.name,
        "availableCash": str(context.cash.effective_cash),
        "rawCash": str(context.cash.raw_cash),
        "reservedCash": str(context.cash.reserved_cash),
        "holdings": [
            {"symbol": h.symbol, "quantity": h.quantity} for h in portfolio.holdings
        ],
        "avoidSymbols": list(context.avoid_symbols),
    }


class HttpRecommendationSource(RecommendationSource):
    """Fetches trade ideas from an HTTP endpoint.

    Args:
        url: Endpoint accepting the portfolio context as JSON.
        timeout: Request timeout in seconds (model-backed sources are slow).
        client: Optional pre-built client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def propose(self, context: PortfolioContext) -> list[ProposedTrade]:
        try:
            resp = await self._client.post(self._url, json=context_to_dict(context))
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                SERVICE, f"HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalServiceError(SERVICE, str(exc)) from exc

        items = body.get("signals") if isinstance(body, dict) else None
        if not isinstance(items, list):
            logger.warning(
                "Recommendation source returned no signal list for portfolio %s",
                context.portfolio.id,
            )
            return []

        proposals: list[ProposedTrade] = []
        for item in items:
            try:
                proposals.append(parse_proposal(item))
            except (ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed recommendation %r: %s", item, exc)
        logger.info(
            "Recommendation source proposed %d trades for portfolio %s",
            len(proposals), context.portfolio.id,
        )
        return proposals
