# coding: utf-8
"""
Chat client facade over aiogram.Bot

The only place that talks to the Telegram Bot API on behalf of the core.
Every aiogram error is translated into the shop error taxonomy, so callers
deal with ChatDeactivated / ChatUnreachable / ChatBlocked / ChatTransient
and never with aiogram exceptions.
"""
import asyncio
from dataclasses import dataclass
from typing import List, Optional

from aiogram import Bot
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramNetworkError,
    TelegramNotFound,
    TelegramRetryAfter,
    TelegramServerError,
)
from aiogram.types import InlineKeyboardMarkup, ReplyParameters
from loguru import logger

from src.core.enums import ChatOutcome, PayloadKind
from src.core.exceptions import (
    ChatBlocked,
    ChatDeactivated,
    ChatTransient,
    ChatUnreachable,
    ShopError,
)
from src.services.payloads import Payload
from src.services.prompts import Prompt, render_prompt

# Telegram caption limit
CAPTION_LIMIT = 1024

DELETED_ACCOUNT_NAME = "Deleted Account"

_UNREACHABLE_MARKERS = ("chat not found", "peer_id_invalid", "user not found")


def classify_telegram_error(error: Exception) -> ShopError:
    """
    Map an aiogram/transport error onto the shop error taxonomy

    Args:
        error: Exception raised by an aiogram call

    Returns:
        ChatDeactivated, ChatUnreachable, ChatBlocked or ChatTransient
    """
    text = str(getattr(error, "message", "") or error).lower()

    if isinstance(error, (TelegramRetryAfter, TelegramNetworkError, TelegramServerError)):
        return ChatTransient(str(error))
    if isinstance(error, asyncio.TimeoutError):
        return ChatTransient("Telegram request timed out")

    if "user is deactivated" in text or "deactivated" in text:
        return ChatDeactivated(str(error))
    if "bot was blocked" in text:
        return ChatBlocked(str(error))
    if isinstance(error, TelegramNotFound) or any(marker in text for marker in _UNREACHABLE_MARKERS):
        return ChatUnreachable(str(error))

    return ChatTransient(str(error))


@dataclass(frozen=True)
class ChatProfile:
    user_id: int
    username: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]

    @property
    def looks_deleted(self) -> bool:
        if self.first_name == DELETED_ACCOUNT_NAME:
            return True
        return not (self.first_name or self.last_name or self.username)


@dataclass(frozen=True)
class ChatLookup:
    """getChat result: an outcome plus the profile or the platform error text"""

    outcome: ChatOutcome
    profile: Optional[ChatProfile] = None
    error: Optional[str] = None


class ChatClient:
    """
    Thin async facade: send/edit/answer/getChat with typed errors

    Args:
        bot: aiogram Bot instance (carries the request timeout in its session)
    """

    def __init__(self, bot: Bot):
        self.bot = bot

    async def _call(self, coro):
        try:
            return await coro
        except (TelegramAPIError, asyncio.TimeoutError) as e:
            raise classify_telegram_error(e) from e

    # ===========================
    # Sending
    # ===========================

    async def send_text(
        self,
        chat_id: int,
        text: str,
        keyboard: Optional[InlineKeyboardMarkup] = None,
        reply_to_message_id: Optional[int] = None,
    ) -> int:
        """Send an HTML text message, returns the message id"""
        kwargs = {"reply_markup": keyboard}
        if reply_to_message_id:
            kwargs["reply_parameters"] = ReplyParameters(message_id=reply_to_message_id)
        message = await self._call(self.bot.send_message(chat_id, text, **kwargs))
        return message.message_id

    async def send_prompt(
        self, chat_id: int, prompt: Prompt, reply_to_message_id: Optional[int] = None
    ) -> int:
        rendered = render_prompt(prompt)
        return await self.send_text(chat_id, rendered.text, rendered.keyboard, reply_to_message_id)

    async def send_media(
        self,
        chat_id: int,
        kind: PayloadKind,
        file_id: str,
        caption: Optional[str] = None,
        keyboard: Optional[InlineKeyboardMarkup] = None,
    ) -> int:
        """Send a document, photo or video by file id"""
        if caption and len(caption) > CAPTION_LIMIT:
            caption = caption[: CAPTION_LIMIT - 1] + "…"

        if kind is PayloadKind.DOCUMENT:
            call = self.bot.send_document(chat_id, file_id, caption=caption, reply_markup=keyboard)
        elif kind is PayloadKind.PHOTO:
            call = self.bot.send_photo(chat_id, file_id, caption=caption, reply_markup=keyboard)
        elif kind is PayloadKind.VIDEO:
            call = self.bot.send_video(chat_id, file_id, caption=caption, reply_markup=keyboard)
        else:
            raise ValueError(f"send_media does not handle {kind}")

        message = await self._call(call)
        return message.message_id

    async def send_payload(self, chat_id: int, payload: Payload, prompt: Prompt) -> int:
        """
        Deliver a payload with the rendered prompt as text or caption

        The prompt is expected to include the payload details.
        """
        rendered = render_prompt(prompt)
        if payload.kind is PayloadKind.TEXT:
            return await self.send_text(chat_id, rendered.text, rendered.keyboard)
        return await self.send_media(
            chat_id, payload.kind, payload.file_id, rendered.text, rendered.keyboard
        )

    # ===========================
    # Editing / callbacks
    # ===========================

    async def edit_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        keyboard: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        """
        Edit a message's text

        Returns:
            True if edited (or unchanged), False if the message can no longer be edited
        """
        try:
            await self.bot.edit_message_text(
                text=text, chat_id=chat_id, message_id=message_id, reply_markup=keyboard
            )
            return True
        except TelegramBadRequest as e:
            if "message is not modified" in str(e).lower():
                return True
            logger.warning(f"Cannot edit message {message_id} in {chat_id}: {e}")
            return False
        except TelegramAPIError as e:
            raise classify_telegram_error(e) from e

    async def edit_prompt(self, chat_id: int, message_id: int, prompt: Prompt) -> bool:
        rendered = render_prompt(prompt)
        return await self.edit_text(chat_id, message_id, rendered.text, rendered.keyboard)

    async def answer_callback(
        self, callback_id: str, text: Optional[str] = None, alert: bool = False
    ) -> None:
        """Answer a callback query; failures are logged (the query may be stale)"""
        try:
            await self.bot.answer_callback_query(callback_id, text=text, show_alert=alert)
        except TelegramAPIError as e:
            logger.debug(f"answer_callback_query failed: {e}")

    # ===========================
    # Lookups
    # ===========================

    async def get_chat(self, user_id: int) -> ChatLookup:
        """
        Look up a user's private chat and classify the result

        Never raises for platform errors; the outcome carries the class.
        """
        try:
            chat = await self.bot.get_chat(user_id)
        except (TelegramAPIError, asyncio.TimeoutError) as e:
            error = classify_telegram_error(e)
            if isinstance(error, ChatDeactivated):
                outcome = ChatOutcome.DEACTIVATED
            elif isinstance(error, ChatBlocked):
                outcome = ChatOutcome.BLOCKED
            elif isinstance(error, ChatUnreachable):
                outcome = ChatOutcome.UNREACHABLE
            else:
                outcome = ChatOutcome.TRANSIENT
            return ChatLookup(outcome=outcome, error=str(e))

        profile = ChatProfile(
            user_id=user_id,
            username=chat.username,
            first_name=chat.first_name,
            last_name=chat.last_name,
        )
        if profile.looks_deleted:
            return ChatLookup(outcome=ChatOutcome.DELETED, profile=profile)
        return ChatLookup(outcome=ChatOutcome.OK, profile=profile)

    async def get_chat_administrators(self, chat_id: int) -> List[int]:
        """User ids of the (non-bot) administrators of a group"""
        members = await self._call(self.bot.get_chat_administrators(chat_id))
        return [member.user.id for member in members if not member.user.is_bot]
