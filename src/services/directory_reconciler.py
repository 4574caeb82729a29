# coding: utf-8
"""
Directory Reconciler

Batched, rate-limited scan of the users table against Telegram:

- every user gets a getChat lookup; lookups inside a batch run concurrently
  and settle independently
- confirmed-gone accounts (deleted, deactivated, unreachable, blocked) are
  archived to removed_users_ledger and deleted in one transaction
- changed usernames are refreshed
- transient failures keep the user and are only reported

Only one run may be active per process; re-entry is refused.
"""
import asyncio
import time
from dataclasses import dataclass, field
from html import escape
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import BATCH_SIZE, BATCH_PAUSE_MS, PROGRESS_EDIT_INTERVAL
from src.core.enums import ChatOutcome, RemovalCategory
from src.core.exceptions import ShopError
from src.database import crud
from src.database.models import RemovedUserLedger, User
from src.services.chat_client import ChatLookup

REPORT_LIMIT = 4000
BAR_WIDTH = 20

REMOVAL_REASONS = {
    ChatOutcome.DELETED: "Deleted / deactivated account (API confirmed)",
    ChatOutcome.DEACTIVATED: "Account deactivated",
    ChatOutcome.UNREACHABLE: "Chat not found / unresolvable",
    ChatOutcome.BLOCKED: "User blocked the bot",
}

START_MESSAGE = "🔄 <b>Directory Sync Starting...</b>\n\nPreparing to scan all users…"


@dataclass
class UserNote:
    telegram_id: int
    username: Optional[str] = None
    detail: Optional[str] = None  # reason, new username, first name or error


@dataclass
class ReconcileReport:
    total_users: int = 0
    checked: int = 0
    confirmed: int = 0
    username_updated: List[UserNote] = field(default_factory=list)
    deleted: List[UserNote] = field(default_factory=list)
    unreachable: List[UserNote] = field(default_factory=list)
    blocked: List[UserNote] = field(default_factory=list)
    no_username: List[UserNote] = field(default_factory=list)
    errors: List[UserNote] = field(default_factory=list)
    duration: float = 0.0

    @property
    def archived(self) -> int:
        return len(self.deleted) + len(self.unreachable) + len(self.blocked)

    def bucket(self, category: RemovalCategory) -> List[UserNote]:
        return {
            RemovalCategory.DELETED: self.deleted,
            RemovalCategory.UNREACHABLE: self.unreachable,
            RemovalCategory.BLOCKED: self.blocked,
        }[category]


@dataclass(frozen=True)
class ProgressMessage:
    chat_id: int
    message_id: int


# ===========================
# Formatting
# ===========================


def progress_bar(done: int, total: int, width: int = BAR_WIDTH) -> str:
    """20-cell bar with percentage, e.g. ▓▓▓▓░░░░ 50%"""
    ratio = 1.0 if total <= 0 else min(1.0, done / total)
    filled = round(ratio * width)
    return f"{'▓' * filled}{'░' * (width - filled)} {round(ratio * 100)}%"


def format_progress(report: ReconcileReport, elapsed: float) -> str:
    done, total = report.checked, report.total_users
    eta = (elapsed / done) * (total - done) if done else 0
    return (
        "🔄 <b>Directory Sync in progress</b>\n\n"
        f"{progress_bar(done, total)}\n"
        f"Checked: {done}/{total}\n"
        f"✅ {report.confirmed} | ✏️ {len(report.username_updated)} | "
        f"📦 {report.archived} | ⚠️ {len(report.errors)}\n"
        f"⏱ {elapsed:.0f}s elapsed, ~{eta:.0f}s left"
    )


def _at(username: Optional[str]) -> str:
    return f"@{escape(username)}" if username else "—"


def _section(lines: List[str], title: str, notes: List[UserNote], limit: int, render) -> None:
    if not notes:
        return
    lines.append(f"{title} ({len(notes)})")
    for note in notes[:limit]:
        lines.append(f"  • {render(note)}")
    if len(notes) > limit:
        lines.append(f"  <i>…and {len(notes) - limit} more</i>")
    lines.append("")


def format_report(report: ReconcileReport) -> str:
    """
    Final run summary, truncated to fit a single Telegram message

    Args:
        report: Completed reconcile report

    Returns:
        HTML text
    """
    lines = [
        "🔄 <b>Directory Sync Report</b>",
        "━━━━━━━━━━━━━━━━━━━━━",
        "📊 <b>Overview</b>",
        f"• Total users scanned: {report.total_users}",
        f"• Confirmed reachable: ✅ {report.confirmed}",
        f"• Archived to ledger: 📦 {report.archived}",
        f"• Transient errors (kept): {len(report.errors)}",
        f"• Duration: {report.duration:.1f}s",
        "",
    ]

    _section(
        lines, "✏️ <b>Usernames Updated</b>", report.username_updated, 25,
        lambda n: f"<code>{n.telegram_id}</code> {_at(n.username)} → {_at(n.detail)}",
    )
    _section(
        lines, "🗑️ <b>Deleted Accounts → Ledger</b>", report.deleted, 15,
        lambda n: f"<code>{n.telegram_id}</code> {_at(n.username)} - {escape(n.detail or '')}",
    )
    _section(
        lines, "🔇 <b>Unreachable → Ledger</b>", report.unreachable, 10,
        lambda n: f"<code>{n.telegram_id}</code> {_at(n.username)} - {escape(n.detail or '')}",
    )
    _section(
        lines, "🚫 <b>Blocked Bot → Ledger</b>", report.blocked, 10,
        lambda n: f"<code>{n.telegram_id}</code> {_at(n.username)}",
    )
    _section(
        lines, "⚠️ <b>No Username Set - kept</b>", report.no_username, 10,
        lambda n: f"<code>{n.telegram_id}</code> ({escape(n.detail or '?')})",
    )
    _section(
        lines, "❗ <b>Errors - kept</b>", report.errors, 5,
        lambda n: f"<code>{n.telegram_id}</code> {escape((n.detail or '')[:80])}",
    )

    text = "\n".join(lines).rstrip()
    if len(text) > REPORT_LIMIT:
        # cut on a line boundary so no HTML tag is left open
        cut = text.rfind("\n", 0, REPORT_LIMIT - 40)
        text = text[: cut if cut > 0 else REPORT_LIMIT - 40] + "\n\n<i>…report truncated</i>"
    return text


def format_ledger(stats: Dict[str, int], entries: List[RemovedUserLedger]) -> str:
    """/ledger output: per-category totals and the most recent evictions"""
    lines = ["📒 <b>Removed Users Ledger</b>", ""]
    for category in RemovalCategory:
        lines.append(f"{category.icon} {category.value.capitalize()}: {stats.get(category.value, 0)}")
    lines.append(f"<b>Total:</b> {stats.get('total', 0)}")

    if entries:
        lines += ["", f"🕑 <b>Most recent ({len(entries)})</b>"]
        for entry in entries:
            try:
                icon = RemovalCategory(entry.removal_category).icon
            except ValueError:
                icon = "•"
            when = entry.removed_at.strftime("%Y-%m-%d %H:%M") if entry.removed_at else "?"
            lines.append(
                f"{icon} <code>{entry.telegram_id}</code> {_at(entry.username)} - "
                f"{escape(entry.removal_reason)} ({when})"
            )
    else:
        lines += ["", "No evictions recorded yet."]
    return "\n".join(lines)


# ===========================
# Reconciler
# ===========================


class DirectoryReconciler:
    """
    Batched user-directory reconciliation

    Args:
        session_maker: async session factory
        chat: ChatClient (get_chat, send_text, edit_text)
        batch_size: users per concurrent batch
        pause_ms: sleep after each batch except the last
        progress_every: edit the progress message every N batches (and after the last)
        sleep: awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        chat,
        batch_size: int = BATCH_SIZE,
        pause_ms: int = BATCH_PAUSE_MS,
        progress_every: int = PROGRESS_EDIT_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_maker = session_maker
        self.chat = chat
        self.batch_size = max(1, batch_size)
        self.pause = pause_ms / 1000
        self.progress_every = max(1, progress_every)
        self._sleep = sleep

        self._running = False
        self._stop = asyncio.Event()
        self.last_report: Optional[ReconcileReport] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask a running reconciliation to stop after the current batch"""
        self._stop.set()

    async def run(self, progress: Optional[ProgressMessage] = None) -> Optional[ReconcileReport]:
        """
        Reconcile every user once

        Args:
            progress: message to edit with live progress

        Returns:
            The report, or None if a run is already in progress
        """
        if self._running:
            logger.info("Directory reconciliation already running")
            return None
        self._running = True
        self._stop.clear()

        started = time.monotonic()
        report = ReconcileReport()
        try:
            async with self.session_maker() as session:
                users = await crud.list_users_ordered(session)
            report.total_users = len(users)
            logger.info(f"Directory reconciliation started: {len(users)} users")

            batches = [users[i:i + self.batch_size] for i in range(0, len(users), self.batch_size)]
            for index, batch in enumerate(batches, start=1):
                if self._stop.is_set():
                    logger.warning("Directory reconciliation stopped early")
                    break

                await self._process_batch(batch, report)

                is_last = index == len(batches)
                if progress and (index % self.progress_every == 0 or is_last):
                    await self._edit(progress, format_progress(report, time.monotonic() - started))
                if not is_last:
                    await self._sleep(self.pause)
        finally:
            report.duration = time.monotonic() - started
            self._running = False

        self.last_report = report
        logger.info(
            f"Directory reconciliation finished in {report.duration:.1f}s: "
            f"checked={report.checked} confirmed={report.confirmed} archived={report.archived} "
            f"updated={len(report.username_updated)} errors={len(report.errors)}"
        )
        return report

    async def _process_batch(self, batch: List[User], report: ReconcileReport) -> None:
        lookups = await asyncio.gather(
            *(self.chat.get_chat(user.telegram_id) for user in batch),
            return_exceptions=True,
        )
        async with self.session_maker() as session:
            for user, lookup in zip(batch, lookups):
                report.checked += 1
                if isinstance(lookup, BaseException):
                    logger.warning(f"getChat for {user.telegram_id} raised: {lookup}")
                    report.errors.append(UserNote(user.telegram_id, user.username, str(lookup) or type(lookup).__name__))
                    continue
                try:
                    await self._apply(session, user, lookup, report)
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"Reconcile write for {user.telegram_id} failed: {e}")
                    report.errors.append(UserNote(user.telegram_id, user.username, f"database: {e}"))

    async def _apply(
        self, session: AsyncSession, user: User, lookup: ChatLookup, report: ReconcileReport
    ) -> None:
        """Decide and apply the action for one user"""
        outcome = lookup.outcome

        if outcome is ChatOutcome.TRANSIENT:
            report.errors.append(UserNote(user.telegram_id, user.username, lookup.error))
            return

        category = outcome.removal_category
        if category is not None:
            reason = REMOVAL_REASONS[outcome]
            await crud.archive_and_delete_user(
                session, user, category, reason, api_error_message=lookup.error
            )
            report.bucket(category).append(UserNote(user.telegram_id, user.username, reason))
            return

        report.confirmed += 1
        new_username = lookup.profile.username if lookup.profile else None
        if new_username != user.username:
            await crud.update_username(session, user.telegram_id, new_username)
            report.username_updated.append(UserNote(user.telegram_id, user.username, new_username))
        if not new_username:
            first_name = lookup.profile.first_name if lookup.profile else user.first_name
            report.no_username.append(UserNote(user.telegram_id, None, first_name))

    async def _edit(self, progress: ProgressMessage, text: str) -> bool:
        try:
            return await self.chat.edit_text(progress.chat_id, progress.message_id, text)
        except ShopError as e:
            logger.debug(f"Progress edit failed: {e.message}")
            return False

    async def run_with_live_report(self, chat_id: int) -> Optional[ReconcileReport]:
        """
        Post a start message in ``chat_id``, use it for progress, then replace it with the report

        Returns:
            The report, or None if a run is already in progress
        """
        if self._running:
            return None

        progress = None
        try:
            message_id = await self.chat.send_text(chat_id, START_MESSAGE)
            progress = ProgressMessage(chat_id, message_id)
        except ShopError as e:
            logger.warning(f"Could not post reconcile start message to {chat_id}: {e.message}")

        report = await self.run(progress)
        if report is None:
            return None

        await self.deliver_report(chat_id, report, progress)
        return report

    async def deliver_report(
        self, chat_id: int, report: ReconcileReport, progress: Optional[ProgressMessage] = None
    ) -> None:
        """Edit the progress message into the report, or send the report afresh"""
        text = format_report(report)
        if progress and await self._edit(progress, text):
            return
        try:
            await self.chat.send_text(chat_id, text)
        except ShopError as e:
            logger.error(f"Reconcile report could not be delivered to {chat_id}: {e.message}")


async def ledger_summary(session: AsyncSession, recent: int = 10) -> str:
    """Build the /ledger message"""
    stats = await crud.get_ledger_stats(session)
    entries = await crud.get_recent_ledger_entries(session, recent)
    return format_ledger(stats, entries)
