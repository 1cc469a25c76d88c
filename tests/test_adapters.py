"""
Tests for the HTTP adapters (Upstox, Telegram, recommendation source).

Each adapter gets an httpx.AsyncClient backed by httpx.MockTransport, so
requests are inspected and answered in-process.
"""

import json
from decimal import Decimal

import httpx
import pytest

from signal_engine.domain.signals.entities import (
    ActionButton,
    CashPosition,
    DeliveryPayload,
    Holding,
    OrderRequest,
    OrderType,
    Portfolio,
    PortfolioContext,
    Side,
    TriggerType,
    UserAction,
)
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.infrastructure.signals.recommendation_source import (
    HttpRecommendationSource,
    parse_proposal,
)
from signal_engine.infrastructure.signals.telegram_channel import (
    TelegramChannelAdapter,
    render_signal,
)
from signal_engine.infrastructure.signals.upstox_gateway import (
    UpstoxGatewayAdapter,
    instrument_key,
)

TOKEN = "123456-SECRET"


def _client(handler, base_url: str = "") -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))


def _upstox(handler) -> UpstoxGatewayAdapter:
    return UpstoxGatewayAdapter(
        "https://api.upstox.com/v2",
        "access-token",
        client=_client(handler, "https://api.upstox.com/v2"),
    )


def _payload(**overrides) -> DeliveryPayload:
    values = dict(
        signal_id=5,
        portfolio_name="Growth",
        symbol="TCS",
        exchange="NSE",
        side=Side.BUY,
        quantity=4,
        trigger_description="Limit: ₹3500",
        confidence=72,
        rationale="Breakout above 50 DMA",
        reminder_number=1,
        actions=(
            ActionButton("🚀 Execute", UserAction.EXECUTE),
            ActionButton("❌ Dismiss", UserAction.DISMISS),
        ),
    )
    values.update(overrides)
    return DeliveryPayload(**values)


# ══════════════════════════════════════════════════════════════════════
# Upstox
# ══════════════════════════════════════════════════════════════════════


class TestUpstoxGateway:
    def test_instrument_key(self):
        assert instrument_key("reliance", "nse") == "NSE_EQ|RELIANCE"
        assert instrument_key("SBIN", "BSE") == "BSE_EQ|SBIN"

    @pytest.mark.asyncio
    async def test_place_limit_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "data": {"order_id": "240301000123"}})

        gateway = _upstox(handler)
        placement = await gateway.place_order(
            OrderRequest(1, "TCS", "NSE", Side.BUY, OrderType.LIMIT, 4, Decimal("3500"))
        )
        await gateway.aclose()

        assert placement.order_id == "240301000123"
        assert seen["path"] == "/v2/order/place"
        assert seen["auth"] == "Bearer access-token"
        assert seen["body"]["instrument_token"] == "NSE_EQ|TCS"
        assert seen["body"]["order_type"] == "LIMIT"
        assert seen["body"]["transaction_type"] == "BUY"
        assert seen["body"]["price"] == 3500.0
        assert seen["body"]["product"] == "D"

    @pytest.mark.asyncio
    async def test_market_order_sends_zero_price(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "data": {"order_id": "1"}})

        gateway = _upstox(handler)
        await gateway.place_order(OrderRequest(1, "TCS", "NSE", Side.SELL, OrderType.MARKET, 4))
        await gateway.aclose()

        assert seen["body"]["price"] == 0
        assert seen["body"]["transaction_type"] == "SELL"

    @pytest.mark.asyncio
    async def test_broker_error_payload_raises(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"status": "error", "errors": [{"message": "Insufficient funds"}]},
            )

        gateway = _upstox(handler)
        with pytest.raises(ExternalServiceError) as excinfo:
            await gateway.place_order(
                OrderRequest(1, "TCS", "NSE", Side.BUY, OrderType.MARKET, 1)
            )
        await gateway.aclose()
        assert excinfo.value.reason == "Insufficient funds"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        gateway = _upstox(lambda request: httpx.Response(503))
        with pytest.raises(ExternalServiceError) as excinfo:
            await gateway.get_holdings(1)
        await gateway.aclose()
        assert "503" in excinfo.value.reason

    @pytest.mark.asyncio
    async def test_order_status(self):
        def handler(request):
            assert request.url.params["order_id"] == "A1"
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "data": {
                        "status": "complete",
                        "filled_quantity": 4,
                        "average_price": 3498.5,
                        "status_message": None,
                    },
                },
            )

        gateway = _upstox(handler)
        status = await gateway.get_order_status(1, "A1")
        await gateway.aclose()

        assert status.is_success
        assert status.filled_quantity == 4
        assert status.average_price == Decimal("3498.5")

    @pytest.mark.asyncio
    async def test_holdings_and_last_price(self):
        def handler(request):
            if request.url.path.endswith("/long-term-holdings"):
                return httpx.Response(
                    200,
                    json={"status": "success", "data": [{"tradingsymbol": "infy", "quantity": 20}]},
                )
            return httpx.Response(
                200,
                json={"status": "success", "data": {"NSE_EQ:INFY": {"last_price": 1532.4}}},
            )

        gateway = _upstox(handler)
        holdings = await gateway.get_holdings(1)
        price = await gateway.get_last_price("INFY", "NSE")
        await gateway.aclose()

        assert holdings == [Holding("INFY", 20)]
        assert price == Decimal("1532.4")


# ══════════════════════════════════════════════════════════════════════
# Telegram
# ══════════════════════════════════════════════════════════════════════


class TestTelegramChannel:
    def test_render_first_delivery(self):
        text = render_signal(_payload())
        assert "🟢 *BUY SIGNAL*" in text
        assert "*TCS* (NSE)" in text
        assert "Limit: ₹3500" in text
        assert "72%" in text
        assert "Reminder" not in text

    def test_render_reminder(self):
        text = render_signal(_payload(side=Side.SELL, reminder_number=3))
        assert "🔴 *SELL SIGNAL*" in text
        assert "Reminder #3" in text

    @pytest.mark.asyncio
    async def test_deliver_sends_inline_keyboard(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 42}})

        channel = TelegramChannelAdapter(TOKEN, client=_client(handler))
        receipt = await channel.deliver("1001", _payload())
        await channel.aclose()

        assert receipt.message_ref == "42"
        assert seen["url"] == f"https://api.telegram.org/bot{TOKEN}/sendMessage"
        assert seen["body"]["chat_id"] == "1001"
        buttons = seen["body"]["reply_markup"]["inline_keyboard"][0]
        assert [b["callback_data"] for b in buttons] == ["sig_exec_5", "sig_dismiss_5"]

    @pytest.mark.asyncio
    async def test_plain_text_has_no_keyboard(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        channel = TelegramChannelAdapter(TOKEN, client=_client(handler))
        await channel.send_text("1001", "hello")
        await channel.aclose()

        assert "reply_markup" not in seen["body"]

    @pytest.mark.asyncio
    async def test_mark_handled_replaces_keyboard(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": True})

        channel = TelegramChannelAdapter(TOKEN, client=_client(handler))
        await channel.mark_handled("1001", "42", "✅ Acknowledged")
        await channel.aclose()

        assert seen["url"].endswith("/editMessageReplyMarkup")
        assert seen["body"]["message_id"] == 42
        assert seen["body"]["reply_markup"]["inline_keyboard"] == [
            [{"text": "✅ Acknowledged", "callback_data": "noop"}]
        ]

    @pytest.mark.asyncio
    async def test_api_error_raises_without_token(self):
        def handler(request):
            return httpx.Response(200, json={"ok": False, "description": "Bad Request: chat not found"})

        channel = TelegramChannelAdapter(TOKEN, client=_client(handler))
        with pytest.raises(ExternalServiceError) as excinfo:
            await channel.send_text("1001", "hello")
        await channel.aclose()

        assert "chat not found" in excinfo.value.message
        assert TOKEN not in excinfo.value.message

    @pytest.mark.asyncio
    async def test_transport_error_does_not_leak_token(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        channel = TelegramChannelAdapter(TOKEN, client=_client(handler))
        with pytest.raises(ExternalServiceError) as excinfo:
            await channel.send_text("1001", "hello")
        await channel.aclose()

        assert TOKEN not in excinfo.value.message


# ══════════════════════════════════════════════════════════════════════
# Recommendation source
# ══════════════════════════════════════════════════════════════════════


def _context() -> PortfolioContext:
    portfolio = Portfolio(
        id=1,
        name="Growth",
        available_cash=Decimal("10000"),
        holdings=[Holding("INFY", 20)],
    )
    return PortfolioContext(
        portfolio=portfolio,
        cash=CashPosition(1, Decimal("10000"), Decimal("2500")),
        avoid_symbols=("HDFC",),
    )


class TestRecommendationSource:
    def test_parse_zone_and_fallback_to_market(self):
        zone = parse_proposal(
            {"symbol": "tcs", "side": "buy", "triggerType": "ZONE", "triggerLow": 90, "triggerHigh": 110}
        )
        assert zone.symbol == "TCS"
        assert zone.trigger.type is TriggerType.ZONE
        assert zone.trigger.low == Decimal("90")

        fallback = parse_proposal({"symbol": "ITC", "side": "SELL", "triggerType": "LIMIT"})
        assert fallback.trigger.type is TriggerType.MARKET
        assert fallback.quantity == 1
        assert fallback.confidence == 50

    def test_parse_rejects_bad_side(self):
        with pytest.raises(ValueError):
            parse_proposal({"symbol": "TCS", "side": "HOLD"})

    @pytest.mark.asyncio
    async def test_posts_context_and_skips_malformed_items(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "signals": [
                        {"symbol": "TCS", "side": "BUY", "quantity": 2, "triggerType": "LIMIT",
                         "triggerPrice": "3500", "confidence": 81, "rationale": "Momentum"},
                        {"side": "BUY"},
                        "garbage",
                    ]
                },
            )

        source = HttpRecommendationSource("https://reco.local/propose", client=_client(handler))
        proposals = await source.propose(_context())
        await source.aclose()

        assert [(p.symbol, p.quantity, p.confidence) for p in proposals] == [("TCS", 2, 81)]
        assert seen["body"]["availableCash"] == "7500"
        assert seen["body"]["avoidSymbols"] == ["HDFC"]
        assert seen["body"]["holdings"] == [{"symbol": "INFY", "quantity": 20}]

    @pytest.mark.asyncio
    async def test_unexpected_envelope_yields_nothing(self):
        source = HttpRecommendationSource(
            "https://reco.local/propose",
            client=_client(lambda request: httpx.Response(200, json={"ideas": []})),
        )
        assert await source.propose(_context()) == []
        await source.aclose()

    @pytest.mark.asyncio
    async def test_http_failure_raises_external_error(self):
        source = HttpRecommendationSource(
            "https://reco.local/propose",
            client=_client(lambda request: httpx.Response(500)),
        )
        with pytest.raises(ExternalServiceError):
            await source.propose(_context())
        await source.aclose()
