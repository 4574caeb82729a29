"""
Tests for admin resolution and the admin middleware
"""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.types import CallbackQuery, Chat, Message, User

from src.bot.middleware.admin import AdminMiddleware
from src.core.exceptions import ChatTransient
from src.services.admin_directory import AdminDirectory

ADMIN_GROUP = -100


def make_message(user_id: int, text: str) -> Message:
    return Message(
        message_id=1,
        date=datetime(2026, 1, 1),
        chat=Chat(id=user_id, type="private"),
        from_user=User(id=user_id, is_bot=False, first_name="Test"),
        text=text,
    )


@pytest.mark.asyncio
async def test_static_and_group_admins(fake_chat):
    fake_chat.administrators = [7, 8]
    directory = AdminDirectory([1], fake_chat, ADMIN_GROUP)

    assert directory.is_admin(1)
    assert not directory.is_admin(7)

    assert await directory.refresh() == 2
    assert directory.is_admin(7)
    assert directory.all_ids == {1, 7, 8}

    fake_chat.administrators = [8]
    await directory.refresh()
    assert not directory.is_admin(7)


@pytest.mark.asyncio
async def test_refresh_failure_keeps_last_known_admins(fake_chat):
    fake_chat.administrators = [7]
    directory = AdminDirectory([1], fake_chat, ADMIN_GROUP)
    await directory.refresh()

    fake_chat.failures[ADMIN_GROUP] = ChatTransient("timeout")
    assert await directory.refresh() == 1
    assert directory.is_admin(7)


@pytest.mark.asyncio
async def test_refresh_without_group_is_a_no_op():
    assert await AdminDirectory([1]).refresh() == 0


def test_admin_command_detection():
    middleware = AdminMiddleware(AdminDirectory([1]))

    assert middleware.is_admin_command("/poke@shop_bot @alice")
    assert middleware.is_admin_command("/LEDGER")
    assert not middleware.is_admin_command("/start")
    assert not middleware.is_admin_command("merger")
    assert middleware.is_admin_callback("admin_confirm_1_2")
    assert not middleware.is_admin_callback("confirm_1")


@pytest.mark.asyncio
async def test_middleware_flags_admins_and_passes_through():
    middleware = AdminMiddleware(AdminDirectory([1]))
    handler = AsyncMock(return_value="handled")
    data = {}

    assert await middleware(handler, make_message(1, "/merger"), data) == "handled"
    assert data["is_admin"] is True

    data = {}
    assert await middleware(handler, make_message(2, "/start"), data) == "handled"
    assert data["is_admin"] is False


@pytest.mark.asyncio
async def test_middleware_blocks_non_admin_commands():
    event = MagicMock(spec=Message)
    event.from_user = SimpleNamespace(id=2, username="mallory")
    event.text = "/merger"
    event.answer = AsyncMock()
    middleware = AdminMiddleware(AdminDirectory([1]))
    handler = AsyncMock()
    data = {}

    assert await middleware(handler, event, data) is None

    handler.assert_not_called()
    assert data["is_admin"] is False
    assert "Access denied" in event.answer.call_args.args[0]


@pytest.mark.asyncio
async def test_middleware_blocks_non_admin_callbacks():
    event = MagicMock(spec=CallbackQuery)
    event.from_user = SimpleNamespace(id=2, username="mallory")
    event.data = "admin_confirm_5_1001"
    event.answer = AsyncMock()
    middleware = AdminMiddleware(AdminDirectory([1]))
    handler = AsyncMock()

    await middleware(handler, event, {})

    handler.assert_not_called()
    assert event.answer.call_args.kwargs["show_alert"] is True
