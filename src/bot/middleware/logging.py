"""
Logging middleware - logs incoming updates and handler timing
"""

from typing import Callable, Dict, Any, Awaitable

import time

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery

from loguru import logger


def describe_event(event: TelegramObject) -> str:
    """Short one-line description of a message or callback"""
    if isinstance(event, Message):
        if event.text:
            return event.text[:100]
        if event.caption:
            return f"[{event.content_type}] {event.caption[:80]}"
        return f"[{event.content_type}]"
    if isinstance(event, CallbackQuery):
        return f"callback {event.data}"
    return type(event).__name__


class LoggingMiddleware(BaseMiddleware):
    """
    Logs every message and callback with the sender, and how long the
    handler chain took
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user_id = None
        update_type = type(event).__name__

        if isinstance(event, (Message, CallbackQuery)) and event.from_user:
            user_id = event.from_user.id
            username = event.from_user.username
            logger.info(f"{update_type} from @{username} (ID: {user_id}): {describe_event(event)}")

        start_time = time.monotonic()

        try:
            result = await handler(event, data)
        except Exception as e:
            logger.error(
                f"{update_type} failed after {time.monotonic() - start_time:.3f}s "
                f"(user: {user_id}): {e}"
            )
            raise

        logger.debug(
            f"{update_type} processed in {time.monotonic() - start_time:.3f}s (user: {user_id})"
        )
        return result
