"""
Customer order handlers: buy, pay, confirm, status, cancel, copy address,
reply to admin, and the reply-mode relay
"""

from typing import Optional

from aiogram import Router, F
from aiogram.types import CallbackQuery, Message
from loguru import logger

from src.core.exceptions import ValidationError
from src.database.models import User
from src.services.order_engine import OrderEngine, Outcome
from src.services.payloads import payload_from_message
from src.services.trackers import SessionKind, SessionStore
from src.utils import callback_data as cb

router = Router(name="orders")

NEEDS_USERNAME = "⚠️ Please set a Telegram username and send /start first."


async def answer_outcome(callback: CallbackQuery, outcome: Outcome) -> None:
    """Answer a callback query with an engine outcome"""
    await callback.answer(outcome.notice, show_alert=outcome.alert)


async def _refuse_without_username(callback: CallbackQuery, user: Optional[User]) -> bool:
    """Interactive flows are refused for unregistered users and users without a username"""
    if user is None or not user.username:
        await callback.answer(NEEDS_USERNAME, show_alert=True)
        return True
    return False


async def _parse(callback: CallbackQuery, parser, *args):
    try:
        return parser(callback.data, *args)
    except ValidationError as e:
        logger.warning(f"Bad callback data from {callback.from_user.id}: {callback.data!r} ({e.message})")
        await callback.answer(e.message, show_alert=True)
        return None


# ===========================
# Buying
# ===========================


@router.callback_query(F.data.startswith(cb.BUY))
async def buy_callback(callback: CallbackQuery, engine: OrderEngine, user: Optional[User] = None):
    if await _refuse_without_username(callback, user):
        return
    product_id = await _parse(callback, cb.parse_id, cb.BUY)
    if product_id is None:
        return
    outcome = await engine.buy_requested(callback.from_user.id, callback.from_user.id, product_id)
    await answer_outcome(callback, outcome)


@router.callback_query(F.data.startswith(cb.PAY))
async def pay_callback(callback: CallbackQuery, engine: OrderEngine, user: Optional[User] = None):
    if await _refuse_without_username(callback, user):
        return
    parsed = await _parse(callback, cb.parse_payment_choice)
    if parsed is None:
        return
    currency, product_id = parsed
    outcome = await engine.payment_method_chosen(
        callback.from_user.id, callback.from_user.username, callback.from_user.id, product_id, currency
    )
    await answer_outcome(callback, outcome)


@router.callback_query(F.data.startswith(cb.CONFIRM))
async def confirm_callback(callback: CallbackQuery, engine: OrderEngine):
    order_id = await _parse(callback, cb.parse_id, cb.CONFIRM)
    if order_id is None:
        return
    outcome = await engine.payment_claimed(
        callback.from_user.id, callback.from_user.username, callback.from_user.id, order_id
    )
    await answer_outcome(callback, outcome)


# ===========================
# Order management
# ===========================


@router.callback_query(F.data.startswith(cb.STATUS))
async def status_callback(callback: CallbackQuery, engine: OrderEngine):
    order_id = await _parse(callback, cb.parse_id, cb.STATUS)
    if order_id is None:
        return
    outcome = await engine.order_status(callback.from_user.id, callback.from_user.id, order_id)
    await answer_outcome(callback, outcome)


@router.callback_query(F.data.startswith(cb.CANCEL_ORDER))
async def cancel_order_callback(callback: CallbackQuery, engine: OrderEngine):
    order_id = await _parse(callback, cb.parse_id, cb.CANCEL_ORDER)
    if order_id is None:
        return
    message_id = callback.message.message_id if callback.message else None
    outcome = await engine.customer_cancel(
        callback.from_user.id, callback.from_user.username, callback.from_user.id, message_id, order_id
    )
    await answer_outcome(callback, outcome)


@router.callback_query(F.data.startswith(cb.COPY_ADDRESS))
async def copy_address_callback(callback: CallbackQuery, engine: OrderEngine):
    parsed = await _parse(callback, cb.parse_copy_target)
    if parsed is None:
        return
    order_id, address = parsed
    outcome = await engine.copy_address(callback.from_user.id, callback.from_user.id, order_id, address)
    await answer_outcome(callback, outcome)


@router.callback_query(F.data.startswith(cb.REPLY_TO_ADMIN))
async def reply_to_admin_callback(callback: CallbackQuery, engine: OrderEngine, user: Optional[User] = None):
    if await _refuse_without_username(callback, user):
        return
    order_id = await _parse(callback, cb.parse_id, cb.REPLY_TO_ADMIN)
    if order_id is None:
        return
    outcome = await engine.activate_reply_mode(callback.from_user.id, callback.from_user.id, order_id)
    await answer_outcome(callback, outcome)


# ===========================
# Reply mode relay (must be registered last)
# ===========================


def in_reply_mode(message: Message, sessions: SessionStore) -> bool:
    return (
        message.from_user is not None
        and sessions.get(message.from_user.id, SessionKind.REPLY_MODE) is not None
    )


@router.message(F.chat.type == "private", in_reply_mode)
async def reply_mode_message(message: Message, engine: OrderEngine):
    """Forward the buyer's next message to the admins"""
    await engine.relay_buyer_reply(
        message.from_user.id,
        message.from_user.username,
        message.chat.id,
        payload_from_message(message),
    )
