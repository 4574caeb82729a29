# coding: utf-8
"""
Callback-data protocol

Short `_`-separated strings carried by inline buttons:

    cat_<categoryId>
    buy_<productId>
    pay_<btc|ltc>_<productId>
    confirm_<orderId>
    status_<orderId>
    cancel_order_<orderId>
    copy_address_<orderId | address>
    reply_to_admin_<orderId>
    admin_<confirm|cancel>_<orderId>_<buyerId>

Parsers tolerate buttons from older message versions (extra trailing
segments, upper-case currency codes) and raise ValidationError on anything
they cannot read safely.
"""
from typing import Tuple

from src.core.enums import AdminDecision, Currency
from src.core.exceptions import ValidationError


CATEGORY = "cat_"
BUY = "buy_"
PAY = "pay_"
CONFIRM = "confirm_"
STATUS = "status_"
CANCEL_ORDER = "cancel_order_"
COPY_ADDRESS = "copy_address_"
REPLY_TO_ADMIN = "reply_to_admin_"
ADMIN = "admin_"

# Telegram rejects callback data longer than this
MAX_CALLBACK_BYTES = 64


def _to_int(raw: str, field: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}: {raw!r}")


def parse_id(data: str, prefix: str) -> int:
    """
    Parse ``<prefix><id>[_<ignored>...]``

    Args:
        data: Raw callback data
        prefix: Expected prefix, including the trailing underscore

    Returns:
        Parsed integer id

    Raises:
        ValidationError: prefix mismatch or non-numeric id
    """
    if not data or not data.startswith(prefix):
        raise ValidationError(f"Unexpected callback data: {data!r}")
    tail = data[len(prefix):].split("_", 1)[0]
    return _to_int(tail, "id")


def parse_payment_choice(data: str) -> Tuple[Currency, int]:
    """Parse ``pay_<currency>_<productId>``"""
    parts = (data or "").split("_")
    if len(parts) < 3 or parts[0] != "pay":
        raise ValidationError(f"Malformed payment callback: {data!r}")
    try:
        currency = Currency.parse(parts[1])
    except ValueError:
        raise ValidationError(f"Unsupported currency: {parts[1]!r}")
    return currency, _to_int(parts[2], "product id")


def parse_admin_decision(data: str) -> Tuple[AdminDecision, int, int]:
    """
    Parse ``admin_<confirm|cancel>_<orderId>_<buyerId>``

    Returns:
        (decision, order_id, buyer_id)

    Raises:
        ValidationError: fewer than four segments, unknown decision or non-numeric ids
    """
    parts = (data or "").split("_")
    if len(parts) < 4 or parts[0] != "admin":
        raise ValidationError(
            f"Admin callback has {len(parts)} segment(s), expected 4: {data!r}"
        )
    try:
        decision = AdminDecision(parts[1])
    except ValueError:
        raise ValidationError(f"Unknown admin decision: {parts[1]!r}")
    return decision, _to_int(parts[2], "order id"), _to_int(parts[3], "buyer id")


def parse_copy_target(data: str) -> Tuple[int | None, str | None]:
    """
    Parse ``copy_address_<orderId>`` or the legacy ``copy_address_<address>``

    Returns:
        (order_id, None) or (None, address)
    """
    if not data or not data.startswith(COPY_ADDRESS):
        raise ValidationError(f"Unexpected callback data: {data!r}")
    tail = data[len(COPY_ADDRESS):]
    if not tail:
        raise ValidationError("Empty copy target")
    if tail.isdigit():
        return int(tail), None
    return None, tail


# ===========================
# Builders
# ===========================


def category(category_id: int) -> str:
    return f"{CATEGORY}{category_id}"


def buy(product_id: int) -> str:
    return f"{BUY}{product_id}"


def pay(currency: Currency, product_id: int) -> str:
    return f"{PAY}{currency.value.lower()}_{product_id}"


def confirm(order_id: int) -> str:
    return f"{CONFIRM}{order_id}"


def status(order_id: int) -> str:
    return f"{STATUS}{order_id}"


def cancel_order(order_id: int) -> str:
    return f"{CANCEL_ORDER}{order_id}"


def copy_address(order_id: int) -> str:
    return f"{COPY_ADDRESS}{order_id}"


def reply_to_admin(order_id: int) -> str:
    return f"{REPLY_TO_ADMIN}{order_id}"


def admin_decision(decision: AdminDecision, order_id: int, buyer_id: int) -> str:
    return f"{ADMIN}{decision.value}_{order_id}_{buyer_id}"
