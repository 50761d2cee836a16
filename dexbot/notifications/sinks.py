"""
Notification sinks - where trade announcements are published
"""

import time
from abc import ABC, abstractmethod
from typing import Optional

from loguru import logger
from pydantic import BaseModel

from ..data.http_client import post_json


class PublishResult(BaseModel):
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class NotificationSink(ABC):
    """Publishes a text announcement; never raises"""

    @abstractmethod
    async def publish(self, message: str) -> PublishResult:
        pass


class LogSink(NotificationSink):
    """Writes announcements to the log instead of an external service"""

    async def publish(self, message: str) -> PublishResult:
        logger.info(f"Notification:\n{message}")
        return PublishResult(success=True, id=f"log_{int(time.time() * 1000)}")


class TelegramSink(NotificationSink):
    """Posts announcements to a Telegram chat through the Bot API"""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, bot_token: str, chat_id: str, disable_preview: bool = True):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.disable_preview = disable_preview

    async def publish(self, message: str) -> PublishResult:
        payload = {
            "chat_id": self.chat_id,
            "text": message,
            "disable_web_page_preview": self.disable_preview,
        }
        try:
            data = await post_json(self.API_URL.format(token=self.bot_token), payload)
        except Exception as e:
            logger.warning(f"Telegram notification failed: {e}")
            return PublishResult(success=False, error=str(e))

        if not data.get("ok"):
            error = data.get("description", "unknown Telegram error")
            logger.warning(f"Telegram rejected notification: {error}")
            return PublishResult(success=False, error=error)

        message_id = data.get("result", {}).get("message_id")
        logger.debug(f"Telegram notification sent (message {message_id})")
        return PublishResult(success=True, id=str(message_id) if message_id is not None else None)
