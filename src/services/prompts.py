# coding: utf-8
"""
Prompts - abstract outbound messages

The order engine, watcher and reconciler emit Prompt(kind, params); the chat
client renders them into HTML text plus an optional inline keyboard right
before sending. Keeping rendering here lets tests assert on prompt kinds
without parsing message text.
"""
from dataclasses import dataclass, field
from enum import Enum
from html import escape
from typing import Any, Callable, Dict, List, Optional

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from config.config import SUPPORT_USERNAME
from src.core.enums import AdminDecision, Currency, OrderStatus
from src.utils import callback_data as cb


class PromptKind(str, Enum):
    """Every message the core can emit"""

    ORDER_SUMMARY = "order_summary"
    PAYMENT_INSTRUCTIONS = "payment_instructions"
    NEW_ORDER_NOTIFICATION = "new_order_notification"
    PAYMENT_ACKNOWLEDGED = "payment_acknowledged"
    STILL_PROCESSING_REMINDER = "still_processing_reminder"
    PAYMENT_CLAIM_NOTIFICATION = "payment_claim_notification"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_REJECTED = "payment_rejected"
    UPLOAD_REQUESTED = "upload_requested"
    DECISION_RECORDED = "decision_recorded"
    PRODUCT_DELIVERY = "product_delivery"
    DELIVERY_COMPLETED = "delivery_completed"
    ORDER_COMPLETED = "order_completed"
    DELIVERY_FAILED = "delivery_failed"
    ADMIN_DIAGNOSTIC = "admin_diagnostic"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_CANCELLED_ADMIN = "order_cancelled_admin"
    ORDER_STATUS = "order_status"
    COPY_ADDRESS = "copy_address"
    SUPPORT_MESSAGE = "support_message"
    REPLY_MODE_ACTIVATED = "reply_mode_activated"
    BUYER_REPLY = "buyer_reply"
    BUYER_REPLY_SENT = "buyer_reply_sent"
    RELAY_CONFIRMED = "relay_confirmed"
    TRANSACTION_DETECTED = "transaction_detected"
    ERROR = "error"


@dataclass(frozen=True)
class Prompt:
    kind: PromptKind
    params: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.params[key]


@dataclass(frozen=True)
class RenderedPrompt:
    text: str
    keyboard: Optional[InlineKeyboardMarkup] = None


STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "⏳ Waiting for payment verification",
    OrderStatus.AWAITING_PRODUCT: "✅ Payment confirmed, your product is being prepared",
    OrderStatus.DELIVERED: "📦 Delivered",
    OrderStatus.CANCELLED: "❌ Cancelled",
}


def describe_status(status: OrderStatus) -> str:
    return STATUS_DESCRIPTIONS.get(status, status.value)


def format_price(price: Any) -> str:
    return f"${float(price):.2f}"


def _who(params: Dict[str, Any], id_key: str = "buyer_id") -> str:
    username = params.get("username")
    user_id = params.get(id_key)
    if username:
        return f"@{escape(username)} (<code>{user_id}</code>)"
    return f"<code>{user_id}</code>"


def _keyboard(rows: List[List[InlineKeyboardButton]]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=rows)


def _button(text: str, data: str) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=text, callback_data=data)


# ===========================
# Customer-facing
# ===========================


def _order_summary(p):
    text = (
        "🛒 <b>Order Summary</b>\n\n"
        f"📦 Product: <b>{escape(p['product_name'])}</b>\n"
        f"💵 Price: <b>{format_price(p['price'])}</b>\n"
    )
    if p.get("description"):
        text += f"\n{escape(p['description'])}\n"
    text += "\nChoose a payment method:"
    pid = p["product_id"]
    return text, _keyboard([
        [
            _button("₿ Pay with BTC", cb.pay(Currency.BTC, pid)),
            _button("Ł Pay with LTC", cb.pay(Currency.LTC, pid)),
        ]
    ])


def _payment_instructions(p):
    oid = p["order_id"]
    text = (
        f"💳 <b>Payment Instructions - Order #{oid}</b>\n\n"
        f"📦 Product: <b>{escape(p['product_name'])}</b>\n"
        f"💵 Amount: <b>{format_price(p['amount'])}</b> in <b>{p['currency']}</b>\n\n"
        f"📍 Send {p['currency']} to:\n<code>{escape(p['address'])}</code>\n\n"
        "After sending, tap <b>I've paid</b>. An admin will verify the payment."
    )
    return text, _keyboard([
        [_button("✅ I've paid", cb.confirm(oid))],
        [
            _button("📋 Copy address", cb.copy_address(oid)),
            _button("📊 Status", cb.status(oid)),
        ],
        [_button("❌ Cancel order", cb.cancel_order(oid))],
    ])


def _payment_acknowledged(p):
    oid = p["order_id"]
    text = (
        f"⏳ <b>Payment Processing</b>\n\n"
        f"Thank you! Your payment claim for order #{oid} was sent to our team.\n"
        "You will be notified as soon as it is verified."
    )
    return text, _keyboard([[_button("📊 Check status", cb.status(oid))]])


def _still_processing(p):
    oid = p["order_id"]
    text = (
        "⏳ <b>Payment Processing</b>\n\n"
        f"Your confirmation for order #{oid} is already being reviewed. "
        "No need to confirm again."
    )
    return text, _keyboard([[_button("📊 Check status", cb.status(oid))]])


def _payment_confirmed(p):
    return (
        "✅ <b>Payment Confirmed</b>\n\n"
        f"Your payment for order #{p['order_id']} "
        f"(<b>{escape(p['product_name'])}</b>) was verified.\n"
        "Your product will be delivered here shortly."
    ), None


def _payment_rejected(p):
    return (
        "❌ <b>Order Cancelled</b>\n\n"
        f"Payment for order #{p['order_id']} could not be verified.\n"
        "If you believe this is a mistake, please contact support."
    ), None


def _product_delivery(p):
    text = (
        f"📦 <b>Your order #{p['order_id']} has been delivered!</b>\n"
        f"Product: <b>{escape(p['product_name'])}</b>"
    )
    if p.get("details"):
        text += f"\n\n{escape(p['details'])}"
    return text, None


def _order_completed(p):
    return (
        f"🎉 <b>Order #{p['order_id']} completed</b>\n\n"
        "Thank you for your purchase! Reply via the support button if anything is wrong."
    ), None


def _order_cancelled(p):
    return f"❌ Order #{p['order_id']} has been cancelled.", None


def _order_status(p):
    status = OrderStatus(p["status"])
    text = (
        f"📊 <b>Order #{p['order_id']}</b>\n\n"
        f"📦 {escape(p['product_name'])}\n"
        f"💵 {format_price(p['price'])} ({p['currency']})\n"
        f"Status: {describe_status(status)}"
    )
    return text, None


def _copy_address(p):
    return (
        f"📋 {p['currency']} address:\n\n<code>{escape(p['address'])}</code>"
    ), None


def _support_message(p):
    oid = p["order_id"]
    text = f"💬 <b>Message from Support</b>\nRegarding Order #{oid}"
    if p.get("details"):
        text += f"\n\n{escape(p['details'])}"
    return text, _keyboard([
        [_button("↩️ Reply to admin", cb.reply_to_admin(oid))],
        [InlineKeyboardButton(text="🆘 Support", url=f"https://t.me/{SUPPORT_USERNAME}")],
    ])


def _reply_mode_activated(p):
    return (
        f"✍️ Send your message for order #{p['order_id']} now.\n"
        f"Reply mode expires in {p['minutes']} minutes. Send /cancel to stop."
    ), None


def _buyer_reply_sent(p):
    return f"✅ Your message about order #{p['order_id']} was sent to support.", None


def _error(p):
    return escape(p["message"]), None


# ===========================
# Admin-facing
# ===========================


def _new_order(p):
    return (
        f"🆕 <b>New Order #{p['order_id']}</b>\n\n"
        f"👤 Buyer: {_who(p)}\n"
        f"📦 Product: {escape(p['product_name'])}\n"
        f"💵 {format_price(p['price'])} in {p['currency']}\n"
        f"📍 <code>{escape(p['address'])}</code>"
    ), None


def _claim_notification(p):
    oid, bid = p["order_id"], p["buyer_id"]
    text = (
        f"💰 <b>Payment Claim - Order #{oid}</b>\n\n"
        f"👤 Buyer: {_who(p)}\n"
        f"📦 Product: {escape(p['product_name'])}\n"
        f"💵 {format_price(p['price'])} in {p['currency']}\n"
        f"📍 <code>{escape(p['address'] or '-')}</code>\n\n"
        "Verify the payment on-chain, then confirm or cancel."
    )
    return text, _keyboard([
        [
            _button("✅ Confirm", cb.admin_decision(AdminDecision.CONFIRM, oid, bid)),
            _button("❌ Cancel", cb.admin_decision(AdminDecision.CANCEL, oid, bid)),
        ]
    ])


def _upload_requested(p):
    return (
        f"📤 <b>Product Upload Required - Order #{p['order_id']}</b>\n\n"
        f"👤 Buyer: {_who(p)}\n"
        f"📦 Product: {escape(p['product_name'])}\n\n"
        "Reply to this message with the product file, image, video or details."
    ), None


def _decision_recorded(p):
    decision = AdminDecision(p["decision"])
    verdict = "✅ CONFIRMED" if decision is AdminDecision.CONFIRM else "❌ CANCELLED"
    text = (
        f"{verdict} - Order #{p['order_id']}\n"
        f"👤 Buyer: <code>{p['buyer_id']}</code>\n"
        f"🛡 By: {escape(p.get('admin_name') or str(p.get('admin_id')))}"
    )
    return text, None


def _delivery_completed(p):
    return (
        f"✅ <b>Product Delivered Successfully</b> - Order #{p['order_id']}\n\n"
        f"👤 Buyer: <code>{p['buyer_id']}</code>\n"
        f"📦 {escape(p['product_name'])} ({p['delivery_type']})\n\n"
        "Reply to this message to send a message to the buyer."
    ), None


def _delivery_failed(p):
    return (
        f"⚠️ <b>Delivery Failed</b> - Order #{p['order_id']}\n\n"
        f"Error: {escape(p['error'])}\n"
        "The order is still awaiting product."
    ), None


def _admin_diagnostic(p):
    text = f"🩺 <b>Diagnostic</b>\n\n{escape(p['reason'])}"
    if p.get("callback_data"):
        text += f"\n\nCallback: <code>{escape(p['callback_data'])}</code>"
    return text, None


def _cancelled_admin(p):
    return (
        f"🚫 Order #{p['order_id']} was cancelled by the buyer {_who(p)}."
    ), None


def _buyer_reply(p):
    text = f"📨 <b>Buyer reply - Order #{p['order_id']}</b>\n👤 {_who(p)}"
    if p.get("details"):
        text += f"\n\n{escape(p['details'])}"
    return text, None


def _relay_confirmed(p):
    return f"✅ Message delivered to buyer <code>{p['buyer_id']}</code> (order #{p['order_id']}).", None


def _transaction_detected(p):
    amount = p["amount"]
    amount_text = "unknown" if _is_zero(amount) else f"{amount} {p['currency']}"
    height = p.get("block_height")
    return (
        "🔔 <b>Onchain Transaction Detected</b>\n\n"
        f"💱 Currency: {p['currency']}\n"
        f"💰 Amount: {amount_text}\n"
        f"📍 Address: <code>{escape(p['address'])}</code>\n"
        f"🔗 TXID: <code>{escape(p['txid'])}</code>\n"
        f"✅ Confirmations: {p['confirmations']}"
        + (f"\n🧱 Block: {height}" if height else "")
        + "\n\nMatch it to an order manually before confirming."
    ), None


def _is_zero(amount: Any) -> bool:
    try:
        return float(amount) == 0
    except (TypeError, ValueError):
        return True


_RENDERERS: Dict[PromptKind, Callable[[Dict[str, Any]], tuple]] = {
    PromptKind.ORDER_SUMMARY: _order_summary,
    PromptKind.PAYMENT_INSTRUCTIONS: _payment_instructions,
    PromptKind.NEW_ORDER_NOTIFICATION: _new_order,
    PromptKind.PAYMENT_ACKNOWLEDGED: _payment_acknowledged,
    PromptKind.STILL_PROCESSING_REMINDER: _still_processing,
    PromptKind.PAYMENT_CLAIM_NOTIFICATION: _claim_notification,
    PromptKind.PAYMENT_CONFIRMED: _payment_confirmed,
    PromptKind.PAYMENT_REJECTED: _payment_rejected,
    PromptKind.UPLOAD_REQUESTED: _upload_requested,
    PromptKind.DECISION_RECORDED: _decision_recorded,
    PromptKind.PRODUCT_DELIVERY: _product_delivery,
    PromptKind.DELIVERY_COMPLETED: _delivery_completed,
    PromptKind.ORDER_COMPLETED: _order_completed,
    PromptKind.DELIVERY_FAILED: _delivery_failed,
    PromptKind.ADMIN_DIAGNOSTIC: _admin_diagnostic,
    PromptKind.ORDER_CANCELLED: _order_cancelled,
    PromptKind.ORDER_CANCELLED_ADMIN: _cancelled_admin,
    PromptKind.ORDER_STATUS: _order_status,
    PromptKind.COPY_ADDRESS: _copy_address,
    PromptKind.SUPPORT_MESSAGE: _support_message,
    PromptKind.REPLY_MODE_ACTIVATED: _reply_mode_activated,
    PromptKind.BUYER_REPLY: _buyer_reply,
    PromptKind.BUYER_REPLY_SENT: _buyer_reply_sent,
    PromptKind.RELAY_CONFIRMED: _relay_confirmed,
    PromptKind.TRANSACTION_DETECTED: _transaction_detected,
    PromptKind.ERROR: _error,
}


def render_prompt(prompt: Prompt) -> RenderedPrompt:
    """
    Render a prompt into HTML text and an optional inline keyboard

    Args:
        prompt: Prompt to render

    Returns:
        RenderedPrompt
    """
    text, keyboard = _RENDERERS[prompt.kind](prompt.params)
    return RenderedPrompt(text=text, keyboard=keyboard)
