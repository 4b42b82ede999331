"""
Telegram Notifier — Position close alerts, close failures and lifecycle status.

Message bodies are built by plain functions so they can be checked without a
network. Delivery is best effort: a failed send is logged, never raised into
the watcher or the closer.
"""

from __future__ import annotations
import aiohttp
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/sendMessage"

REASON_LABELS = {"TP": "TAKE PROFIT", "SL": "STOP LOSS"}


def format_position_closed(
    symbol: str, side: str, reason: str, entry_price: str, close_price: str, qty: str, pnl: str
) -> str:
    icon = "❌" if pnl.startswith("-") else "✅"
    return (
        f"{icon} <b>{REASON_LABELS.get(reason, reason)} · {side}</b>\n\n"
        f"<code>{symbol}</code> {qty} @ {entry_price} → {close_price}\n"
        f"PnL: <code>${pnl}</code>"
    )


def format_close_failure(symbol: str, side: str, reason: str, error: str) -> str:
    return (
        f"⚠️ <b>{reason} close failed</b> · <code>{symbol}</code> {side}\n"
        f"<code>{error[:200]}</code>\n"
        f"Retrying on the next pass."
    )


class TelegramNotifier:
    """Posts HTML messages to one chat via the Bot API."""

    def __init__(self, bot_token: str, chat_id: str, enabled: bool = True, timeout_sec: float = 10):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.enabled = enabled and bool(bot_token) and bool(chat_id)
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(self, text: str) -> bool:
        """Returns True when Telegram accepted the message."""
        if not self.enabled:
            logger.debug(f"[TG] disabled, dropping: {text[:80]}")
            return False
        try:
            return await self._post({
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            })
        except Exception as e:
            logger.warning(f"[TG] Delivery failed: {e}")
            return False

    async def _post(self, payload: Dict[str, Any]) -> bool:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        url = API_URL.format(token=self.bot_token)
        async with self._session.post(url, json=payload) as resp:
            if resp.status == 200:
                return True
            logger.warning(f"[TG] HTTP {resp.status}: {(await resp.text())[:200]}")
            return False

    async def send_position_closed(self, **fields):
        await self.send(format_position_closed(**fields))

    async def send_trigger_failure(self, symbol: str, side: str, reason: str, error: str):
        await self.send(format_close_failure(symbol, side, reason, error))

    async def send_bot_status(self, status: str):
        await self.send(f"🤖 <b>Risk watcher</b>: {status}")
