from __future__ import annotations

import logging
from typing import Any

import httpx

from pumpswap_sniper.config import Settings
from pumpswap_sniper.core.models import Position


class TelegramNotifier:
    """Fire-and-forget Telegram delivery. Failures are logged, never raised."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.token = settings.TELEGRAM_BOT_TOKEN
        self.chat_id = settings.TELEGRAM_CHAT_ID
        self.enabled = settings.TELEGRAM_ENABLED and bool(self.token and self.chat_id)
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.logger = logging.getLogger("pumpswap_sniper.telegram")

    async def close(self) -> None:
        await self.client.aclose()

    async def send_message(self, text: str) -> None:
        if not self.enabled:
            return
        payload: dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        await self._post("sendMessage", payload)

    async def notify_open(self, position: Position) -> None:
        await self.send_message(build_open_message(position))

    async def notify_close(self, position: Position) -> None:
        await self.send_message(build_close_message(position))

    async def _post(self, method: str, payload: dict[str, Any]) -> None:
        url = f"https://api.telegram.org/bot{self.token}/{method}"
        try:
            response = await self.client.post(url, json=payload)
            if response.status_code >= 400:
                self.logger.warning("Telegram %s failed: %s %s", method, response.status_code, response.text[:200])
        except httpx.HTTPError as exc:
            self.logger.warning("Telegram %s error: %s", method, exc)


def build_open_message(position: Position) -> str:
    return (
        "🟢 *Position opened*\n"
        f"Pool: `{position.pool.pool}`\n"
        f"Mint: `{position.pool.base_mint}`\n"
        f"Spent: {position.entry_quote_amount / 1e9:.4f} SOL\n"
        f"Entry: {position.entry_price:.12f}\n"
        f"TP: +{position.take_profit_pct:.0f}% | SL: -{position.stop_loss_pct:.0f}%\n"
        f"Tx: `{position.entry_signature}`"
    )


def build_close_message(position: Position) -> str:
    pnl = position.realized_pnl or 0.0
    icon = "✅" if pnl >= 0 else "🔻"
    reason = position.exit_reason.value if position.exit_reason else "?"
    return (
        f"{icon} *Position closed* ({reason})\n"
        f"Pool: `{position.pool.pool}`\n"
        f"Close: {position.close_price or 0.0:.12f}\n"
        f"PnL: {pnl:+.4f} SOL\n"
        f"Tx: `{position.close_signature}`"
    )
