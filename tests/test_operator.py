"""
Tests for operator tooling: /poke helpers and scheduled jobs
"""

from datetime import datetime

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.bot.handlers.operator import (
    PokeReport,
    format_poke_message,
    format_poke_report,
    parse_usernames,
    send_pokes,
)
from src.core.exceptions import ChatBlocked
from src.database import crud
from src.services.admin_directory import AdminDirectory
from src.services.directory_reconciler import DirectoryReconciler
from src.services.throttle_registry import ThrottleRegistry
from src.services.trackers import DeliveryTracker, SessionKind, SessionStore, TrackingKind
from src.tasks.reconcile_scheduler import (
    purge_expired,
    run_nightly_reconcile,
    schedule_maintenance_tasks,
    schedule_reconcile_tasks,
)


def test_parse_usernames():
    assert parse_usernames("@alice, bob  @Carol,,@ALICE") == ["alice", "bob", "Carol"]
    assert parse_usernames("  ") == []
    assert parse_usernames(None) == []


def test_poke_message_is_escaped():
    text = format_poke_message("Price <b>drop</b> & more", datetime(2026, 5, 1, 9, 30))

    assert "Price &lt;b&gt;drop&lt;/b&gt; &amp; more" in text
    assert "📅 2026-05-01 09:30" in text


@pytest.mark.asyncio
async def test_send_pokes_reports_each_recipient(db_session, fake_chat):
    await crud.register_user(db_session, 1, "Alice")
    await crud.register_user(db_session, 2, "bob")
    fake_chat.failures[2] = ChatBlocked("Forbidden: bot was blocked by the user")

    report = await send_pokes(db_session, fake_chat, ["alice", "bob", "carol"], "hello")

    assert report.sent == ["Alice"]
    assert report.failed == [("bob", "Forbidden: bot was blocked by the user")]
    assert report.not_found == ["carol"]
    assert [m.chat_id for m in fake_chat.sent] == [1]
    assert "hello" in fake_chat.sent[0].text


def test_poke_report_summary():
    report = PokeReport(sent=["alice"], failed=[("bob", "blocked")], not_found=["carol"])

    text = format_poke_report(report, "x" * 200)

    assert "📤 <b>Delivered (1)</b>" in text
    assert "✗ @bob: blocked" in text
    assert "? @carol" in text
    assert "📝 Message: " + "x" * 150 + "..." in text
    assert text.endswith("📊 1 sent, 1 failed, 1 not found")


# ===========================
# Scheduled jobs
# ===========================


def test_schedule_reconcile_tasks(session_maker, fake_chat):
    scheduler = AsyncIOScheduler()
    reconciler = DirectoryReconciler(session_maker, fake_chat)

    schedule_reconcile_tasks(scheduler, reconciler, -100, cron="0 3 * * *", timezone="Africa/Nairobi")

    job = scheduler.get_job("nightly_reconcile")
    assert isinstance(job.trigger, CronTrigger)
    assert str(job.trigger.timezone) == "Africa/Nairobi"
    assert job.args == (reconciler, -100)


def test_disabled_reconcile_is_not_scheduled(session_maker, fake_chat):
    scheduler = AsyncIOScheduler()

    schedule_reconcile_tasks(scheduler, DirectoryReconciler(session_maker, fake_chat), None, enabled=False)

    assert scheduler.get_jobs() == []


def test_schedule_maintenance_tasks(clock):
    scheduler = AsyncIOScheduler()
    trackers = (DeliveryTracker(clock=clock), SessionStore(clock=clock), ThrottleRegistry(clock=clock))

    schedule_maintenance_tasks(scheduler, AdminDirectory([1]), *trackers)
    assert [job.id for job in scheduler.get_jobs()] == ["purge_expired"]

    scheduler = AsyncIOScheduler()
    schedule_maintenance_tasks(scheduler, AdminDirectory([1], admin_group=-100), *trackers)
    assert sorted(job.id for job in scheduler.get_jobs()) == ["admin_refresh", "purge_expired"]


def test_purge_expired(clock):
    tracker = DeliveryTracker(ttl=60, clock=clock)
    sessions = SessionStore(timeout=300, clock=clock)
    tracker.track(TrackingKind.DELIVERY, -100, 5, 1, 1001)
    sessions.start(42, SessionKind.POKE, "recipients")

    clock.advance(400)
    purge_expired(tracker, sessions, ThrottleRegistry(clock=clock))

    assert len(tracker) == 0
    assert sessions.get(42) is None


@pytest.mark.asyncio
async def test_nightly_reconcile_reports_to_admin_group(session_maker, fake_chat):
    async with session_maker() as session:
        await crud.register_user(session, 1, "user1")
    reconciler = DirectoryReconciler(session_maker, fake_chat)

    await run_nightly_reconcile(reconciler, -100)

    assert reconciler.last_report.checked == 1
    assert fake_chat.to(-100)
