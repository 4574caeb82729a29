"""
Tests for the directory reconciler
"""

import pytest

from src.core.enums import ChatOutcome
from src.database import crud
from src.services.chat_client import ChatLookup, ChatProfile
from src.services.directory_reconciler import (
    REPORT_LIMIT,
    START_MESSAGE,
    DirectoryReconciler,
    ProgressMessage,
    ReconcileReport,
    UserNote,
    format_ledger,
    format_report,
    ledger_summary,
    progress_bar,
)

REPORT_CHAT = -1001


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep is not None:
            await self.on_sleep()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def reconciler(session_maker, fake_chat, sleep) -> DirectoryReconciler:
    return DirectoryReconciler(
        session_maker, fake_chat, batch_size=2, pause_ms=1100, progress_every=2, sleep=sleep
    )


async def seed_users(session_maker, *users):
    async with session_maker() as session:
        for telegram_id, username in users:
            await crud.register_user(session, telegram_id, username, first_name=f"First{telegram_id}")


async def stored_ids(session_maker):
    async with session_maker() as session:
        return [u.telegram_id for u in await crud.list_users_ordered(session)]


# ===========================
# Classification and eviction
# ===========================


@pytest.mark.asyncio
async def test_deactivated_user_is_archived_and_removed(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "user1"), (2, "ghost"))
    fake_chat.lookups[2] = ChatLookup(ChatOutcome.DEACTIVATED, error="Bad Request: user is deactivated")

    report = await reconciler.run()

    assert await stored_ids(session_maker) == [1]
    assert [n.telegram_id for n in report.deleted] == [2]
    async with session_maker() as session:
        entry = (await crud.get_recent_ledger_entries(session))[0]
    assert entry.telegram_id == 2
    assert entry.username == "ghost"
    assert entry.first_name == "First2"
    assert entry.removal_category == "deleted"
    assert entry.removal_reason == "Account deactivated"
    assert entry.api_error_message == "Bad Request: user is deactivated"


@pytest.mark.asyncio
async def test_each_removal_category(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "a"), (2, "b"), (3, "c"))
    fake_chat.lookups[1] = ChatLookup(ChatOutcome.DELETED, ChatProfile(1, None, "Deleted Account", None))
    fake_chat.lookups[2] = ChatLookup(ChatOutcome.UNREACHABLE, error="Bad Request: chat not found")
    fake_chat.lookups[3] = ChatLookup(ChatOutcome.BLOCKED, error="Forbidden: bot was blocked by the user")

    report = await reconciler.run()

    assert report.archived == 3
    assert report.deleted[0].detail == "Deleted / deactivated account (API confirmed)"
    assert report.unreachable[0].detail == "Chat not found / unresolvable"
    assert report.blocked[0].detail == "User blocked the bot"
    assert await stored_ids(session_maker) == []
    async with session_maker() as session:
        stats = await crud.get_ledger_stats(session)
    assert stats == {"deleted": 1, "unreachable": 1, "blocked": 1, "total": 3}


@pytest.mark.asyncio
async def test_transient_errors_keep_the_user(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "user1"), (2, "user2"))
    fake_chat.lookups[1] = ChatLookup(ChatOutcome.TRANSIENT, error="Too Many Requests: retry after 5")
    fake_chat.lookups[2] = RuntimeError("socket closed")

    report = await reconciler.run()

    assert await stored_ids(session_maker) == [1, 2]
    assert report.checked == 2
    assert report.archived == 0
    assert [n.detail for n in report.errors] == ["Too Many Requests: retry after 5", "socket closed"]
    async with session_maker() as session:
        assert await crud.get_recent_ledger_entries(session) == []


@pytest.mark.asyncio
async def test_usernames_are_refreshed(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "user1"), (2, "old_name"), (3, "had_one"))
    fake_chat.lookups[3] = ChatLookup(ChatOutcome.OK, ChatProfile(3, None, "Bob", None))

    report = await reconciler.run()

    assert report.confirmed == 3
    assert [(n.telegram_id, n.username, n.detail) for n in report.username_updated] == [
        (2, "old_name", "user2"),
        (3, "had_one", None),
    ]
    assert [(n.telegram_id, n.detail) for n in report.no_username] == [(3, "Bob")]
    async with session_maker() as session:
        assert (await crud.get_user(session, 2)).username == "user2"
        assert (await crud.get_user(session, 3)).username is None


# ===========================
# Batching
# ===========================


@pytest.mark.asyncio
async def test_every_user_checked_once_in_batches(reconciler, fake_chat, session_maker, sleep):
    await seed_users(session_maker, *((i, f"user{i}") for i in (5, 3, 1, 4, 2)))

    report = await reconciler.run(ProgressMessage(REPORT_CHAT, 77))

    assert fake_chat.get_chat_calls == [1, 2, 3, 4, 5]
    assert report.total_users == report.checked == 5
    # three batches: pause after the first two only
    assert sleep.calls == [1.1, 1.1]
    # progress after batch 2 and after the last batch
    assert len(fake_chat.edits) == 2
    assert "5/5" in fake_chat.edits[-1][2]


@pytest.mark.asyncio
async def test_empty_directory(reconciler, fake_chat, sleep):
    report = await reconciler.run()

    assert report.total_users == 0
    assert fake_chat.get_chat_calls == []
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_second_run_is_refused_while_running(session_maker, fake_chat):
    nested = []

    async def try_again():
        nested.append(await reconciler.run())

    reconciler = DirectoryReconciler(session_maker, fake_chat, batch_size=1, sleep=RecordingSleep(try_again))
    await seed_users(session_maker, (1, "user1"), (2, "user2"))

    report = await reconciler.run()

    assert report is not None
    assert nested == [None]
    assert fake_chat.get_chat_calls == [1, 2]
    assert reconciler.is_running is False
    assert reconciler.last_report is report


@pytest.mark.asyncio
async def test_stop_ends_run_after_current_batch(session_maker, fake_chat):
    reconciler = None

    async def stop():
        reconciler.stop()

    reconciler = DirectoryReconciler(session_maker, fake_chat, batch_size=1, sleep=RecordingSleep(stop))
    await seed_users(session_maker, (1, "user1"), (2, "user2"), (3, "user3"))

    report = await reconciler.run()

    assert report.checked == 1
    assert await stored_ids(session_maker) == [1, 2, 3]


# ===========================
# Live report
# ===========================


@pytest.mark.asyncio
async def test_live_report_replaces_start_message(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "user1"))

    await reconciler.run_with_live_report(REPORT_CHAT)

    start = fake_chat.sent[0]
    assert (start.chat_id, start.text) == (REPORT_CHAT, START_MESSAGE)
    chat_id, message_id, text = fake_chat.edits[-1]
    assert (chat_id, message_id) == (REPORT_CHAT, start.message_id)
    assert text.startswith("🔄 <b>Directory Sync Report</b>")


@pytest.mark.asyncio
async def test_report_is_sent_fresh_when_edit_fails(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "user1"))
    fake_chat.editable = False

    await reconciler.run_with_live_report(REPORT_CHAT)

    assert len(fake_chat.sent) == 2
    assert "Total users scanned: 1" in fake_chat.sent[-1].text


# ===========================
# Formatting
# ===========================


def test_progress_bar():
    assert progress_bar(5, 10) == "▓" * 10 + "░" * 10 + " 50%"
    assert progress_bar(0, 0) == "▓" * 20 + " 100%"
    assert progress_bar(0, 3).endswith(" 0%")


def test_report_lists_are_capped():
    report = ReconcileReport(total_users=30, checked=30)
    report.deleted = [UserNote(i, f"user{i}", "Account deactivated") for i in range(30)]

    text = format_report(report)

    assert "🗑️ <b>Deleted Accounts → Ledger</b> (30)" in text
    assert "…and 15 more" in text
    assert "Archived to ledger: 📦 30" in text


def test_report_is_truncated_on_a_line_boundary():
    report = ReconcileReport()
    report.username_updated = [UserNote(i, "x" * 150, "y" * 150) for i in range(25)]
    report.no_username = [UserNote(i, None, "z" * 200) for i in range(10)]

    text = format_report(report)

    assert len(text) <= REPORT_LIMIT
    assert text.endswith("<i>…report truncated</i>")
    assert text.count("<code>") == text.count("</code>")


def test_usernames_are_escaped():
    report = ReconcileReport()
    report.no_username = [UserNote(1, None, "<b>Eve</b>")]

    assert "&lt;b&gt;Eve&lt;/b&gt;" in format_report(report)


def test_empty_ledger():
    text = format_ledger({"deleted": 0, "unreachable": 0, "blocked": 0, "total": 0}, [])

    assert "No evictions recorded yet." in text
    assert "<b>Total:</b> 0" in text


@pytest.mark.asyncio
async def test_ledger_summary_after_run(reconciler, fake_chat, session_maker):
    await seed_users(session_maker, (1, "gone"))
    fake_chat.lookups[1] = ChatLookup(ChatOutcome.BLOCKED, error="Forbidden: bot was blocked by the user")
    await reconciler.run()

    async with session_maker() as session:
        text = await ledger_summary(session)

    assert "🚫 Blocked: 1" in text
    assert "<code>1</code> @gone - User blocked the bot" in text
