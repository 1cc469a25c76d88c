"""
Adapter: Telegram Bot API notification channel.

Implements NotificationChannel port.
Renders signals as Markdown messages with one row of inline buttons whose
callback data is ``sig_<action>_<signal id>``, and edits a delivered
message's keyboard down to a single inert label once it is handled.

The recipient is the Telegram chat id; the message reference returned in
the DeliveryReceipt is the Telegram message id.
"""

import logging
from typing import Any, Optional, Sequence

import httpx

from signal_engine.domain.signals.entities import (
    ActionButton,
    DeliveryPayload,
    DeliveryReceipt,
    Side,
)
from signal_engine.domain.signals.errors import ExternalServiceError
from signal_engine.domain.signals.ports import NotificationChannel

logger = logging.getLogger(__name__)

SERVICE = "telegram"
NOOP_CALLBACK = "noop"


def callback_data(action: ActionButton, signal_id: int) -> str:
    return f"sig_{action.action.value}_{signal_id}"


def confidence_bar(confidence: int) -> str:
    filled = max(0, min(10, confidence // 10))
    return "█" * filled + "░" * (10 - filled)


def render_signal(payload: DeliveryPayload) -> str:
    """Render a signal delivery as Telegram Markdown."""
    side_emoji = "🟢" if payload.side is Side.BUY else "🔴"
    lines = [
        f"{side_emoji} *{payload.side.value} SIGNAL*",
        "━━━━━━━━━━━━━━━━━━━",
        f"*{payload.symbol}* ({payload.exchange})",
        f"Qty: {payload.quantity} | {payload.trigger_description}",
        "",
        f"📁 *{payload.portfolio_name}*",
        "",
        f"Confidence: {confidence_bar(payload.confidence)} {payload.confidence}%",
    ]
    if payload.rationale:
        lines.append(payload.rationale)
    if payload.reminder_number > 1:
        lines.append(f"⏰ _Reminder #{payload.reminder_number}_")
    return "\n".join(lines)


def _keyboard(signal_id: Optional[int], actions: Sequence[ActionButton]) -> dict:
    return {
        "inline_keyboard": [
            [
                {"text": button.label, "callback_data": callback_data(button, signal_id)}
                for button in actions
            ]
        ]
    }


class TelegramChannelAdapter(NotificationChannel):
    """Telegram Bot API client.

    Args:
        bot_token: Bot token; never logged.
        base_url: Bot API root (default https://api.telegram.org).
        timeout: Per-request timeout in seconds.
        client: Optional pre-built client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        bot_token: str,
        base_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._api = f"{base_url.rstrip('/')}/bot{bot_token}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def deliver(
        self, recipient: str, payload: DeliveryPayload
    ) -> DeliveryReceipt:
        return await self.send_text(
            recipient,
            render_signal(payload),
            signal_id=payload.signal_id,
            actions=payload.actions,
        )

    async def send_text(
        self,
        recipient: str,
        text: str,
        signal_id: Optional[int] = None,
        actions: Sequence[ActionButton] = (),
    ) -> DeliveryReceipt:
        body: dict[str, Any] = {
            "chat_id": recipient,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        if actions and signal_id is not None:
            body["reply_markup"] = _keyboard(signal_id, actions)

        result = await self._call("sendMessage", body)
        message_id = (result or {}).get("message_id")
        return DeliveryReceipt(message_ref=str(message_id) if message_id else None)

    async def mark_handled(
        self, recipient: str, message_ref: str, label: str
    ) -> None:
        await self._call(
            "editMessageReplyMarkup",
            {
                "chat_id": recipient,
                "message_id": int(message_ref),
                "reply_markup": {
                    "inline_keyboard": [[{"text": label, "callback_data": NOOP_CALLBACK}]]
                },
            },
        )

    async def _call(self, method: str, body: dict) -> Any:
        try:
            resp = await self._client.post(f"{self._api}/{method}", json=body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                SERVICE, f"{method} -> HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            # str(exc) may embed the request URL, which carries the token.
            raise ExternalServiceError(SERVICE, f"{method} failed: {type(exc).__name__}") from exc

        if not payload.get("ok", False):
            raise ExternalServiceError(
                SERVICE, payload.get("description") or f"{method} not ok"
            )
        logger.debug("Telegram %s ok", method)
        return payload.get("result")
