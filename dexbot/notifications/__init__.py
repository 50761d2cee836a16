"""
Trade notifications
"""

from typing import Optional

from ..data.config import TradingSettings
from .messages import build_buy_message, build_sell_message
from .sinks import LogSink, NotificationSink, PublishResult, TelegramSink


def build_sink(settings: TradingSettings) -> Optional[NotificationSink]:
    """Telegram when configured, otherwise the log; None when notifications are off."""
    if not settings.notifications_enabled:
        return None
    if settings.telegram_bot_token and settings.telegram_chat_id:
        return TelegramSink(settings.telegram_bot_token, settings.telegram_chat_id)
    return LogSink()


__all__ = [
    "build_buy_message",
    "build_sell_message",
    "build_sink",
    "LogSink",
    "NotificationSink",
    "PublishResult",
    "TelegramSink",
]
