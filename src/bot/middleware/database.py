"""
Database middleware - provides a database session and the stored user to handlers
"""

from typing import Callable, Dict, Any, Awaitable, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.sentry import set_user_context
from src.database.crud import get_user, touch_user
from src.database.engine import get_session_maker


class DatabaseMiddleware(BaseMiddleware):
    """
    Opens one session per update and loads the sender's user row.

    Usage in handler:
        async def my_handler(message: Message, session: AsyncSession, user: Optional[User]):
            ...

    ``user`` is None for senders that never ran /start (or were evicted).
    Registration itself happens in the /start handler.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_maker = session_maker

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        session_maker = self.session_maker or get_session_maker()
        async with session_maker() as session:
            data["session"] = session
            data["user"] = None

            telegram_user = None
            if isinstance(event, (Message, CallbackQuery)):
                telegram_user = event.from_user

            if telegram_user:
                set_user_context(telegram_user.id, telegram_user.username)
                try:
                    db_user = await get_user(session, telegram_user.id)
                    if db_user is not None:
                        await touch_user(session, telegram_user.id)
                    data["user"] = db_user
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"Error loading user {telegram_user.id}: {e}")

            try:
                result = await handler(event, data)
                await session.commit()
                return result
            except Exception as e:
                await session.rollback()
                logger.error(f"Handler error, session rolled back: {e}")
                raise
