"""
Tests for the callback-data protocol
"""

import pytest

from src.core.enums import AdminDecision, Currency
from src.core.exceptions import ValidationError
from src.utils import callback_data as cb


def test_builders_stay_within_telegram_limit():
    data = cb.admin_decision(AdminDecision.CONFIRM, 2**31, 2**40)

    assert data == f"admin_confirm_{2**31}_{2**40}"
    assert len(data.encode()) <= cb.MAX_CALLBACK_BYTES
    assert cb.pay(Currency.LTC, 7) == "pay_ltc_7"
    assert cb.cancel_order(12) == "cancel_order_12"


def test_parse_id_ignores_trailing_segments():
    assert cb.parse_id("confirm_42", cb.CONFIRM) == 42
    assert cb.parse_id("status_42_extra", cb.STATUS) == 42
    assert cb.parse_id("cancel_order_9", cb.CANCEL_ORDER) == 9


@pytest.mark.parametrize("data", ["confirm_", "confirm_abc", "status_1", "", None])
def test_parse_id_rejects_garbage(data):
    with pytest.raises(ValidationError):
        cb.parse_id(data, cb.CONFIRM)


def test_parse_payment_choice():
    assert cb.parse_payment_choice("pay_btc_7") == (Currency.BTC, 7)
    assert cb.parse_payment_choice("pay_LTC_8") == (Currency.LTC, 8)

    with pytest.raises(ValidationError):
        cb.parse_payment_choice("pay_doge_7")
    with pytest.raises(ValidationError):
        cb.parse_payment_choice("pay_btc")


def test_parse_admin_decision():
    assert cb.parse_admin_decision("admin_confirm_5_1001") == (AdminDecision.CONFIRM, 5, 1001)
    assert cb.parse_admin_decision("admin_cancel_5_1001") == (AdminDecision.CANCEL, 5, 1001)


@pytest.mark.parametrize(
    "data",
    ["admin_confirm_5", "admin_confirm", "admin_approve_5_1001", "admin_confirm_x_1001", "admin_confirm_5_"],
)
def test_parse_admin_decision_rejects_malformed(data):
    with pytest.raises(ValidationError):
        cb.parse_admin_decision(data)


def test_parse_copy_target():
    assert cb.parse_copy_target("copy_address_17") == (17, None)
    assert cb.parse_copy_target("copy_address_bc1qlegacy") == (None, "bc1qlegacy")

    with pytest.raises(ValidationError):
        cb.parse_copy_target("copy_address_")
