"""
Adapter: Upstox REST execution gateway.

Implements ExecutionGateway and QuoteSource ports over the Upstox v2 API
(order place/details/cancel, long-term holdings, LTP quotes) using
httpx.AsyncClient. Transport errors, non-2xx answers and malformed bodies
are raised as ExternalServiceError.
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from signal_engine.domain.signals.entities import (
    BrokerOrderStatus,
    Holding,
    OrderPlacement,
    OrderRequest,
    OrderType,
)
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.domain.signals.ports import ExecutionGateway, QuoteSource

logger = logging.getLogger(__name__)

SERVICE = "upstox"

_SEGMENTS = {"NSE": "NSE_EQ", "BSE": "BSE_EQ"}


def instrument_key(symbol: str, exchange: str) -> str:
    """Build the Upstox instrument key, e.g. NSE_EQ|RELIANCE."""
    segment = _SEGMENTS.get(exchange.upper(), exchange.upper())
    return f"{segment}|{symbol.upper()}"


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class UpstoxGatewayAdapter(ExecutionGateway, QuoteSource):
    """Upstox v2 client for orders, holdings and last traded prices.

    Args:
        base_url: API root, e.g. https://api.upstox.com/v2.
        access_token: Bearer token of the connected account.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # ExecutionGateway
    # ------------------------------------------------------------------

    async def place_order(self, order: OrderRequest) -> OrderPlacement:
        body = {
            "quantity": order.quantity,
            "product": "D",
            "validity": "DAY",
            "price": float(order.price) if order.order_type is OrderType.LIMIT else 0,
            "tag": f"signal-{order.portfolio_id}-{int(time.time())}",
            "instrument_token": instrument_key(order.symbol, order.exchange),
            "order_type": order.order_type.value,
            "transaction_type": order.side.value,
            "disclosed_quantity": 0,
            "trigger_price": 0,
            "is_amo": False,
        }
        logger.info(
            "Placing %s %s order: %s x%s @ %s",
            order.order_type.value, order.side.value,
            order.symbol, order.quantity, body["price"],
        )
        data = await self._request("POST", "/order/place", json=body)
        order_id = (data or {}).get("order_id")
        if not order_id:
            raise ExternalServiceError(SERVICE, "order placement returned no order id")
        return OrderPlacement(order_id=str(order_id), status="open")

    async def get_order_status(
        self, portfolio_id: int, order_id: str
    ) -> BrokerOrderStatus:
        data = await self._request(
            "GET", "/order/details", params={"order_id": order_id}
        ) or {}
        return BrokerOrderStatus(
            order_id=order_id,
            status=data.get("status") or "unknown",
            filled_quantity=int(data.get("filled_quantity") or 0),
            average_price=_to_decimal(data.get("average_price")),
            message=data.get("status_message"),
        )

    async def cancel_order(self, portfolio_id: int, order_id: str) -> None:
        await self._request("DELETE", "/order/cancel", params={"order_id": order_id})
        logger.info("Cancelled order %s (portfolio %s)", order_id, portfolio_id)

    async def get_holdings(self, portfolio_id: int) -> list[Holding]:
        data = await self._request("GET", "/portfolio/long-term-holdings") or []
        return [
            Holding(
                symbol=str(item.get("tradingsymbol") or item.get("trading_symbol", "")).upper(),
                quantity=int(item.get("quantity") or 0),
            )
            for item in data
        ]

    # ------------------------------------------------------------------
    # QuoteSource
    # ------------------------------------------------------------------

    async def get_last_price(self, symbol: str, exchange: str) -> Optional[Decimal]:
        key = instrument_key(symbol, exchange)
        data = await self._request(
            "GET", "/market-quote/ltp", params={"instrument_key": key}
        ) or {}
        for quote in data.values():
            price = _to_decimal((quote or {}).get("last_price"))
            if price is not None:
                return price
        return None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(
                method, path, headers=self._headers, **kwargs
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                SERVICE, f"{method} {path} -> HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalServiceError(SERVICE, f"{method} {path} failed: {exc}") from exc

        if isinstance(payload, dict) and payload.get("status") == "error":
            errors = payload.get("errors") or []
            reason = errors[0].get("message") if errors else "unknown error"
            raise ExternalServiceError(SERVICE, reason)
        return payload.get("data") if isinstance(payload, dict) else None
