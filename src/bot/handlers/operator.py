"""
Operator commands: /merger, /ledger and the /poke wizard
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import List, Optional, Tuple

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import ADMIN_GROUP
from src.core.exceptions import ShopError
from src.database import crud
from src.services.chat_client import ChatClient
from src.services.directory_reconciler import (
    DirectoryReconciler,
    ProgressMessage,
    START_MESSAGE,
    format_report,
    ledger_summary,
)
from src.services.trackers import SessionKind, SessionStore
from src.bot.handlers.admin_orders import is_admin_user

router = Router(name="operator")

POKE_PREVIEW = 150


# ===========================
# /merger
# ===========================


@router.message(Command("merger"), is_admin_user)
async def cmd_merger(
    message: Message,
    reconciler: DirectoryReconciler,
    chat: ChatClient,
    admin_group: Optional[int] = ADMIN_GROUP,
):
    """Run the directory reconciliation now, with live progress in this chat"""
    if reconciler.is_running:
        await message.answer("⏳ A directory sync is already running.")
        return

    logger.info(f"Admin {message.from_user.id} started directory sync")
    status = await message.answer(START_MESSAGE)
    progress = ProgressMessage(message.chat.id, status.message_id)

    report = await reconciler.run(progress)
    if report is None:
        await message.answer("⏳ A directory sync is already running.")
        return

    await reconciler.deliver_report(message.chat.id, report, progress)

    if admin_group is not None and admin_group != message.chat.id:
        try:
            await chat.send_text(admin_group, format_report(report))
        except ShopError as e:
            logger.warning(f"Could not cross-post sync report to admin group: {e.message}")


# ===========================
# /ledger
# ===========================


@router.message(Command("ledger"), is_admin_user)
async def cmd_ledger(message: Message, session: AsyncSession):
    await message.answer(await ledger_summary(session))


# ===========================
# /poke
# ===========================


@dataclass
class PokeReport:
    sent: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)


def parse_usernames(raw: str) -> List[str]:
    """"@alice, bob  @Carol" -> ["alice", "bob", "Carol"] (order kept, duplicates dropped)"""
    seen = set()
    usernames = []
    for token in re.split(r"[,\s]+", raw or ""):
        name = token.strip().lstrip("@")
        if name and name.lower() not in seen:
            seen.add(name.lower())
            usernames.append(name)
    return usernames


def format_poke_message(text: str, sent_at: datetime) -> str:
    return (
        "🔔 <b>Admin Message</b>\n\n"
        f"{escape(text)}\n\n"
        "━━━━━━━━━━━━━━━━━━━━━\n"
        "👨‍💼 From: Admin Team\n"
        f"📅 {sent_at:%Y-%m-%d %H:%M}\n\n"
        "<i>If you need assistance, feel free to reach out to support.</i>"
    )


async def send_pokes(
    session: AsyncSession, chat: ChatClient, usernames: List[str], text: str
) -> PokeReport:
    """
    Deliver an admin message to every stored user matching one of the usernames

    Matching is case-insensitive; a failed send does not stop the others.
    """
    report = PokeReport()
    users = await crud.find_users_by_usernames(session, usernames)
    found = {user.username.lower() for user in users if user.username}
    report.not_found = [name for name in usernames if name.lower() not in found]

    body = format_poke_message(text, datetime.now())
    for user in users:
        try:
            await chat.send_text(user.telegram_id, body)
        except ShopError as e:
            logger.warning(f"Poke to @{user.username} ({user.telegram_id}) failed: {e.message}")
            report.failed.append((user.username, e.message))
            continue
        logger.info(f"Poke sent to @{user.username} ({user.telegram_id})")
        report.sent.append(user.username)
    return report


def format_poke_report(report: PokeReport, text: str) -> str:
    lines = ["✅ <b>Poke Completed</b>", ""]
    if report.sent:
        lines.append(f"📤 <b>Delivered ({len(report.sent)})</b>")
        lines += [f"  ✓ @{escape(name)}" for name in report.sent]
        lines.append("")
    if report.failed:
        lines.append(f"❌ <b>Failed ({len(report.failed)})</b>")
        lines += [f"  ✗ @{escape(name)}: {escape(reason)}" for name, reason in report.failed]
        lines.append("")
    if report.not_found:
        lines.append(f"🔍 <b>Not found ({len(report.not_found)})</b>")
        lines += [f"  ? @{escape(name)}" for name in report.not_found]
        lines.append("")

    preview = text if len(text) <= POKE_PREVIEW else text[:POKE_PREVIEW] + "..."
    lines.append("━━━━━━━━━━━━━━━━━━━━━")
    lines.append(f"📝 Message: {escape(preview)}")
    lines.append(
        f"📊 {len(report.sent)} sent, {len(report.failed)} failed, {len(report.not_found)} not found"
    )
    return "\n".join(lines)


def _ask_for_message(usernames: List[str], minutes: int) -> str:
    targets = ", ".join(f"@{escape(name)}" for name in usernames)
    return (
        "📌 <b>Poke Ready</b>\n\n"
        f"🎯 Targets ({len(usernames)}): {targets}\n\n"
        f"📝 Now send the message to deliver. Session expires in {minutes} min, /cancel to abort."
    )


@router.message(Command("poke"), is_admin_user)
async def cmd_poke(message: Message, command: CommandObject, sessions: SessionStore):
    admin_id = message.from_user.id
    usernames = parse_usernames(command.args or "")

    if not usernames:
        sessions.start(admin_id, SessionKind.POKE, "recipients")
        await message.answer(
            "📌 <b>Poke Setup</b>\n\n"
            "Send the usernames to poke, separated by commas:\n"
            "<code>@alice, @bob</code>\n\n/cancel to abort."
        )
        return

    sessions.start(admin_id, SessionKind.POKE, "message", usernames=usernames)
    await message.answer(_ask_for_message(usernames, sessions.timeout_minutes))


def in_poke_session(message: Message, sessions: SessionStore) -> bool:
    return (
        message.from_user is not None
        and sessions.get(message.from_user.id, SessionKind.POKE) is not None
    )


@router.message(is_admin_user, in_poke_session)
async def poke_input(message: Message, session: AsyncSession, chat: ChatClient, sessions: SessionStore):
    admin_id = message.from_user.id
    poke = sessions.get(admin_id, SessionKind.POKE)
    if poke is None:
        await message.answer("⏰ Poke session has expired. Start again with /poke.")
        return

    text = (message.text or message.caption or "").strip()

    if poke.step == "recipients":
        usernames = parse_usernames(text)
        if not usernames:
            await message.answer("❌ Please provide valid usernames.")
            return
        sessions.advance(admin_id, "message", usernames=usernames)
        await message.answer(_ask_for_message(usernames, sessions.timeout_minutes))
        return

    if not text:
        await message.answer("❌ Please send the message as text.")
        return

    sessions.clear(admin_id)
    usernames = poke.payload["usernames"]
    report = await send_pokes(session, chat, usernames, text)
    logger.info(
        f"Poke by admin {admin_id}: {len(report.sent)} sent, "
        f"{len(report.failed)} failed, {len(report.not_found)} not found"
    )
    await message.answer(format_poke_report(report, text))
