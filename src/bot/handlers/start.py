"""
/start and /cancel command handlers
"""

from html import escape
from typing import Optional

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.bot.handlers.catalog import render_root
from src.database.crud import register_user
from src.database.models import User
from src.services.trackers import SessionStore

router = Router(name="start")

USERNAME_REQUIRED = (
    "👋 <b>Welcome!</b>\n\n"
    "To place orders you need a Telegram username.\n"
    "Set one in <i>Settings → Username</i>, then send /start again."
)


@router.message(CommandStart())
async def cmd_start(message: Message, session: AsyncSession, user: Optional[User] = None):
    """
    Register the sender and show the catalog

    Senders without a username are not registered.
    """
    tg_user = message.from_user
    if not tg_user.username:
        logger.info(f"/start refused for {tg_user.id}: no username")
        await message.answer(USERNAME_REQUIRED)
        return

    db_user, created = await register_user(
        session,
        telegram_id=tg_user.id,
        username=tg_user.username,
        first_name=tg_user.first_name,
        last_name=tg_user.last_name,
        language_code=tg_user.language_code,
    )
    if created:
        logger.info(f"New customer {db_user.telegram_id} (@{db_user.username})")

    greeting = f"👋 Welcome{' back' if not created else ''}, <b>{escape(tg_user.first_name or tg_user.username)}</b>!\n\n"
    text, keyboard = await render_root(session)
    await message.answer(greeting + text, reply_markup=keyboard)


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, sessions: SessionStore):
    """Abort any interactive session (poke, reply mode, manual delivery)"""
    cleared = sessions.clear(message.from_user.id)
    if cleared is None:
        await message.answer("Nothing to cancel.")
        return

    logger.info(f"User {message.from_user.id} cancelled {cleared.kind.value} session")
    await message.answer("❌ Operation cancelled.")
