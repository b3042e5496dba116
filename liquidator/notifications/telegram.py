"""Telegram notification service (alerts bot + logs bot)."""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
# Telegram rejects messages longer than this.
_MAX_LENGTH = 4096


class TelegramNotifier:
    """Send execution alerts and cycle logs via two Telegram bots."""

    def __init__(self, config: TelegramConfig, timeout: int = 10) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id
        self.timeout = timeout

    @staticmethod
    def _render(message: str, subject: str = "") -> str:
        text = html.escape(message, quote=False)
        if subject:
            text = f"<b>{html.escape(subject, quote=False)}</b>\n\n{text}"
        return text[:_MAX_LENGTH]

    async def _send_message(self, text: str, bot_token: str, silent: bool = False) -> bool:
        """Post ``text`` (already HTML-escaped) through the given bot."""
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(
                    _API_URL.format(token=bot_token),
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status == 200:
                        return True
                    logger.error("Failed to send Telegram message: HTTP %s", response.status)
                    return False
        except aiohttp.ClientError as e:
            logger.error("Telegram request failed: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send an execution or liquidatable-position alert (unmuted bot)."""
        text = self._render(message, subject)
        if await self._send_message(text, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Send a cycle summary (logs bot)."""
        if await self._send_message(self._render(message), self.log_bot_token, silent=silent):
            logger.debug("Telegram log sent")
            return True
        return False
