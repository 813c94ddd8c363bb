"""Notification helpers (Telegram)."""

import logging
import httpx
from typing import Optional

from option_seller.config import settings
from option_seller.domain.models import TradeAction
from option_seller.realtime.events import EngineEvent, EngineStoppedEvent, TradeEvent

logger = logging.getLogger(__name__)


async def send_telegram_message(
    text: str,
    token: Optional[str] = None,
    chat_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Send a Telegram message if bot token + chat ID are configured."""
    token = token or settings.TELEGRAM_BOT_TOKEN
    chat_id = chat_id or settings.TELEGRAM_CHAT_ID

    if not token or not chat_id:
        logger.info("Telegram alert skipped (missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID)")
        return False

    url = f"https://api.telegram.org/bot{token}/sendMessage"
    payload = {"chat_id": chat_id, "text": text}

    try:
        async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
        return True
    except httpx.HTTPError as exc:
        logger.error(f"Telegram alert failed: {exc}")
        return False


def format_event(event: EngineEvent) -> Optional[str]:
    if isinstance(event, TradeEvent):
        record = event.record
        if record.action == TradeAction.ENTRY:
            return f"[ENTRY] SELL {record.quantity} {record.instrument} @ {record.price:.2f} ({record.reason})"
        return (
            f"[EXIT] BUY {record.quantity} {record.instrument} @ {record.price:.2f} "
            f"P&L {record.pnl:.2f} ({record.reason})"
        )
    if isinstance(event, EngineStoppedEvent):
        return f"[STOPPED] {event.reason}\nDay P&L {event.day_pnl:.2f}"
    return None


class TelegramTradeNotifier:
    """EngineEvents subscriber that forwards trades and shutdowns to Telegram."""

    def __init__(self, token: Optional[str] = None, chat_id: Optional[str] = None):
        self.token = token
        self.chat_id = chat_id

    async def __call__(self, event: EngineEvent) -> None:
        text = format_event(event)
        if text:
            await send_telegram_message(text, token=self.token, chat_id=self.chat_id)
