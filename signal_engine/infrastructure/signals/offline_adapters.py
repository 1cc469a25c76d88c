"""
Adapters used when an external collaborator has no credentials configured.

LogOnlyChannel writes rendered messages to the log instead of sending
them, so a development instance still runs full notification passes.
The gateway and recommendation stand-ins raise ExternalServiceError on
every call, which use cases already treat as a skipped item.
"""

import logging
from itertools import count
from typing import Optional, Sequence

from signal_engine.domain.signals.entities import (
    ActionButton,
    BrokerOrderStatus,
    DeliveryPayload,
    DeliveryReceipt,
    Holding,
    OrderPlacement,
    OrderRequest,
    PortfolioContext,
    ProposedTrade,
)
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.domain.signals.ports import (
    ExecutionGateway,
    NotificationChannel,
    RecommendationSource,
)
from signal_engine.infrastructure.signals.telegram_channel import render_signal

logger = logging.getLogger(__name__)


class LogOnlyChannel(NotificationChannel):
    """Notification channel that only logs."""

    def __init__(self) -> None:
        self._ids = count(1)

    async def deliver(
        self, recipient: str, payload: DeliveryPayload
    ) -> DeliveryReceipt:
        return await self.send_text(
            recipient, render_signal(payload), payload.signal_id, payload.actions
        )

    async def send_text(
        self,
        recipient: str,
        text: str,
        signal_id: Optional[int] = None,
        actions: Sequence[ActionButton] = (),
    ) -> DeliveryReceipt:
        ref = str(next(self._ids))
        logger.info(
            "[to %s #%s] %s %s",
            recipient, ref, text.replace("\n", " | "),
            [b.label for b in actions],
        )
        return DeliveryReceipt(message_ref=ref)

    async def mark_handled(
        self, recipient: str, message_ref: str, label: str
    ) -> None:
        logger.info("[to %s #%s] buttons -> %s", recipient, message_ref, label)


class DisconnectedGateway(ExecutionGateway):
    """Execution gateway stand-in when no broker token is configured."""

    def _fail(self) -> ExternalServiceError:
        return ExternalServiceError("upstox", "no access token configured")

    async def place_order(self, order: OrderRequest) -> OrderPlacement:
        raise self._fail()

    async def get_order_status(
        self, portfolio_id: int, order_id: str
    ) -> BrokerOrderStatus:
        raise self._fail()

    async def cancel_order(self, portfolio_id: int, order_id: str) -> None:
        raise self._fail()

    async def get_holdings(self, portfolio_id: int) -> list[Holding]:
        raise self._fail()


class NoRecommendations(RecommendationSource):
    """Recommendation source stand-in when no endpoint is configured."""

    async def propose(self, context: PortfolioContext) -> list[ProposedTrade]:
        raise ExternalServiceError("recommendation-source", "no endpoint configured")
