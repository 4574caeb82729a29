"""
Admin middleware - flags admins and blocks operator features for everyone else
"""

from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from loguru import logger

from src.services.admin_directory import AdminDirectory
from src.utils import callback_data as cb


class AdminMiddleware(BaseMiddleware):
    """
    Sets ``data["is_admin"]`` for every update and refuses admin-only
    commands and ``admin_`` callbacks from non-admins.
    """

    ADMIN_COMMANDS = {
        "/merger",
        "/ledger",
        "/poke",
        "/deliver",
    }

    def __init__(self, directory: AdminDirectory):
        self.directory = directory

    def is_admin_command(self, text: str) -> bool:
        if not text or not text.startswith("/"):
            return False
        # "/poke@shop_bot @alice" -> "/poke"
        command = text.split()[0].split("@")[0].lower()
        return command in self.ADMIN_COMMANDS

    @staticmethod
    def is_admin_callback(data: str) -> bool:
        return bool(data) and data.startswith(cb.ADMIN)

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = None
        is_admin_action = False

        if isinstance(event, Message):
            user = event.from_user
            is_admin_action = self.is_admin_command(event.text or "")
        elif isinstance(event, CallbackQuery):
            user = event.from_user
            is_admin_action = self.is_admin_callback(event.data or "")

        user_is_admin = bool(user) and self.directory.is_admin(user.id)
        data["is_admin"] = user_is_admin

        if not is_admin_action or user_is_admin:
            return await handler(event, data)

        if not user:
            logger.warning("Admin action attempted without user info")
            return None

        logger.warning(f"Non-admin user {user.id} (@{user.username}) attempted an admin action")
        if isinstance(event, Message):
            await event.answer("⛔ <b>Access denied</b>\n\nThis command is for admins only.")
        else:
            await event.answer("⛔ Admins only.", show_alert=True)
        return None
