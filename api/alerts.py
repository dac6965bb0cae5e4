import asyncio
import logging
from typing import Optional, Set

import aiohttp

from config import config


logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramNotifier:
    """Best-effort Telegram sink; messages are HTML formatted."""

    def __init__(self, bot_token: Optional[str] = None, chat_id: Optional[str] = None,
                 api_url: str = TELEGRAM_API_URL):
        notifications = config.get('notifications') or {}
        token = bot_token or notifications.get('telegram_bot_token')
        chat = chat_id or notifications.get('telegram_chat_id')
        # Treat empty or unresolved ${ENV} values as disabled
        if _is_set(token) and _is_set(chat):
            self.bot_token = str(token)
            self.chat_id = str(chat)
            self.enabled = True
        else:
            self.bot_token = None
            self.chat_id = None
            self.enabled = False
        self.api_url = api_url.rstrip('/')
        self._pending: Set[asyncio.Task] = set()

    async def send_message(self, text: str) -> bool:
        if not self.enabled:
            logger.info("[Notify] %s", text)
            return False

        payload = {
            'chat_id': self.chat_id,
            'text': text,
            'parse_mode': 'HTML',
        }
        url = f"{self.api_url}/bot{self.bot_token}/sendMessage"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=5)
                ) as response:
                    if response.status != 200:
                        logger.error(
                            "[Notify] Telegram sendMessage failed with status %s",
                            response.status,
                        )
                        return False
        except Exception as e:
            logger.error("[Notify] Telegram error: %s", e)
            return False

        logger.info("Telegram message sent")
        return True

    def notify(self, text: str) -> asyncio.Task:
        """Schedule ``send_message`` without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.send_message(text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _is_set(value) -> bool:
    if value is None:
        return False
    text = str(value).strip()
    return bool(text) and not (text.startswith('${') and text.endswith('}'))
