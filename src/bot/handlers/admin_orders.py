"""
Admin order handlers: confirm/cancel decisions, product uploads by reply,
/deliver sessions and support replies routed to buyers
"""

from aiogram import Router, F
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message
from loguru import logger

from src.core.exceptions import ValidationError
from src.services.order_engine import OrderEngine
from src.services.payloads import payload_from_message
from src.services.trackers import SessionKind, SessionStore
from src.utils import callback_data as cb
from src.bot.handlers.orders import answer_outcome

router = Router(name="admin_orders")


def is_admin_user(event, is_admin: bool = False) -> bool:
    return is_admin


def has_delivery_session(message: Message, sessions: SessionStore) -> bool:
    return (
        message.from_user is not None
        and sessions.get(message.from_user.id, SessionKind.DELIVER) is not None
    )


def is_tracked_reply(message: Message, engine: OrderEngine) -> bool:
    reply = message.reply_to_message
    return reply is not None and engine.tracker.lookup(message.chat.id, reply.message_id) is not None


# ===========================
# Decisions
# ===========================


@router.callback_query(F.data.startswith(cb.ADMIN), is_admin_user)
async def admin_decision_callback(callback: CallbackQuery, engine: OrderEngine):
    """admin_<confirm|cancel>_<orderId>_<buyerId>"""
    admin = callback.from_user
    try:
        decision, order_id, buyer_id = cb.parse_admin_decision(callback.data)
    except ValidationError as e:
        await engine.report_admin_diagnostic(admin.id, e.message, callback.data)
        await callback.answer("⚠️ Malformed admin action, see the diagnostic message.", show_alert=True)
        return

    message = callback.message
    outcome = await engine.admin_decision(
        admin.id,
        admin.username or admin.first_name,
        message.chat.id if message else admin.id,
        message.message_id if message else None,
        order_id,
        buyer_id,
        decision,
    )
    await answer_outcome(callback, outcome)


# ===========================
# Manual delivery
# ===========================


@router.message(Command("deliver"), is_admin_user)
async def cmd_deliver(message: Message, command: CommandObject, engine: OrderEngine):
    """/deliver <orderId>: the next message is delivered to the buyer"""
    args = (command.args or "").strip()
    if not args.isdigit():
        await message.answer("Usage: <code>/deliver &lt;orderId&gt;</code>")
        return

    outcome = await engine.begin_manual_delivery(message.from_user.id, message.chat.id, int(args))
    await message.answer(outcome.notice or "")


@router.message(is_admin_user, has_delivery_session)
async def manual_delivery_message(message: Message, engine: OrderEngine):
    outcome = await engine.consume_manual_delivery(
        message.from_user.id, message.chat.id, payload_from_message(message)
    )
    if outcome is not None and outcome.notice:
        await message.reply(outcome.notice)


# ===========================
# Replies to tracked admin messages
# ===========================


@router.message(is_admin_user, is_tracked_reply)
async def admin_reply_message(message: Message, engine: OrderEngine):
    """Reply to an upload request delivers the product; reply to a delivery reaches the buyer"""
    outcome = await engine.route_admin_reply(
        message.from_user.id,
        message.chat.id,
        message.reply_to_message.message_id,
        payload_from_message(message),
    )
    if outcome is None:
        # entry expired between the filter and the handler
        logger.debug(f"Reply {message.message_id} from admin {message.from_user.id} no longer tracked")
        return
    if not outcome.ok and outcome.notice:
        await message.reply(f"⚠️ {outcome.notice}")
