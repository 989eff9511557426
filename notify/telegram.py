"""
Telegram notification sink.
Sends formatted transfer messages to one chat with rate limiting.
"""
import asyncio
import logging
from typing import Optional, Tuple

from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter

from core.models import TransferNotification
from notify.formatting import format_transfer_notification

logger = logging.getLogger(__name__)


def parse_chat_destination(chat_config: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    """
    Parse chat destination from config string.

    Args:
        chat_config: Either "chat_id" or "chat_id:thread_id"

    Returns:
        Tuple of (chat_id, message_thread_id)
    """
    if not chat_config:
        return None, None

    try:
        if ':' in chat_config:
            chat_id_str, thread_id_str = chat_config.split(':', 1)
            return int(chat_id_str), int(thread_id_str)
        else:
            return int(chat_config), None
    except ValueError:
        logger.error(f"Invalid chat destination format: {chat_config}")
        return None, None


class TelegramSink:
    """
    Delivers transfer notifications to a Telegram chat.
    Stops sending once the bot is blocked or removed from the chat.
    """

    def __init__(self, bot: Bot, chat_destination: str):
        """Initialize sink with bot instance and "chat_id[:thread_id]" destination."""
        self.bot = bot
        self.chat_id, self.thread_id = parse_chat_destination(chat_destination)
        self.blocked = False
        self._rate_limit_delay = 0.05  # 50ms between messages

    async def deliver(self, notification: TransferNotification):
        """Send transfer notification to the configured chat."""
        if self.blocked or self.chat_id is None:
            return
        message = format_transfer_notification(notification)
        await self._send_message(message)

    async def _send_message(self, text: str):
        """Send message with rate limiting and error handling."""
        await asyncio.sleep(self._rate_limit_delay)

        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                message_thread_id=self.thread_id,
                parse_mode=None,  # Plain text for better emoji support
                disable_web_page_preview=True
            )

        except TelegramRetryAfter as e:
            logger.warning(f"Rate limit hit for chat {self.chat_id}, waiting {e.retry_after}s")
            await asyncio.sleep(e.retry_after)
            # Retry once
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=text,
                message_thread_id=self.thread_id,
                parse_mode=None,
                disable_web_page_preview=True
            )

        except TelegramForbiddenError:
            logger.warning(f"Bot blocked or removed from chat {self.chat_id}, disabling Telegram delivery")
            self.blocked = True

    async def close(self):
        await self.bot.session.close()
