# coding: utf-8
"""
Reconcile Scheduler - APScheduler jobs

- nightly directory reconciliation, reported to ADMIN_GROUP
- periodic refresh of the ADMIN_GROUP administrator list
- periodic purge of expired trackers, sessions and throttle windows
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from config.config import (
    ADMIN_REFRESH_INTERVAL,
    RECONCILE_CRON,
    RECONCILE_ENABLED,
    RECONCILE_TIMEZONE,
)
from src.services.admin_directory import AdminDirectory
from src.services.directory_reconciler import DirectoryReconciler
from src.services.throttle_registry import ThrottleRegistry
from src.services.trackers import DeliveryTracker, SessionStore

CLEANUP_INTERVAL_MINUTES = 10


async def run_nightly_reconcile(reconciler: DirectoryReconciler, report_chat: Optional[int]) -> None:
    """Cron entry point; a run already in progress is skipped"""
    try:
        if report_chat is None:
            report = await reconciler.run()
        else:
            report = await reconciler.run_with_live_report(report_chat)
    except Exception as e:
        logger.exception(f"Nightly directory sync failed: {e}")
        return

    if report is None:
        logger.info("Nightly directory sync skipped: a run is already in progress")


async def refresh_admins(directory: AdminDirectory) -> None:
    try:
        await directory.refresh()
    except Exception as e:
        logger.exception(f"Admin refresh failed: {e}")


def purge_expired(
    tracker: DeliveryTracker, sessions: SessionStore, registry: ThrottleRegistry
) -> None:
    tracked = tracker.cleanup()
    expired = sessions.cleanup()
    windows = registry.cleanup()
    if tracked or expired or windows:
        logger.debug(
            f"Purged {tracked} tracked message(s), {expired} session(s), {windows} throttle entr(ies)"
        )


def schedule_reconcile_tasks(
    scheduler: AsyncIOScheduler,
    reconciler: DirectoryReconciler,
    report_chat: Optional[int],
    cron: str = RECONCILE_CRON,
    timezone: str = RECONCILE_TIMEZONE,
    enabled: bool = RECONCILE_ENABLED,
) -> None:
    """
    Schedule the nightly directory sync

    Args:
        scheduler: APScheduler instance
        reconciler: DirectoryReconciler
        report_chat: chat receiving progress and the report (ADMIN_GROUP)
        cron: crontab expression
        timezone: IANA timezone for the cron expression
        enabled: False leaves the sync to /merger only
    """
    if not enabled:
        logger.info("Nightly directory sync disabled")
        return

    scheduler.add_job(
        run_nightly_reconcile,
        CronTrigger.from_crontab(cron, timezone=timezone),
        args=[reconciler, report_chat],
        id="nightly_reconcile",
        name="Nightly directory sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Nightly directory sync scheduled: '{cron}' ({timezone})")


def schedule_maintenance_tasks(
    scheduler: AsyncIOScheduler,
    directory: AdminDirectory,
    tracker: DeliveryTracker,
    sessions: SessionStore,
    registry: ThrottleRegistry,
    admin_refresh_seconds: int = ADMIN_REFRESH_INTERVAL,
) -> None:
    """Admin-list refresh and in-memory cleanup"""
    if directory.admin_group is not None:
        scheduler.add_job(
            refresh_admins,
            "interval",
            seconds=admin_refresh_seconds,
            args=[directory],
            id="admin_refresh",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(f"Admin list refresh scheduled every {admin_refresh_seconds}s")

    scheduler.add_job(
        purge_expired,
        "interval",
        minutes=CLEANUP_INTERVAL_MINUTES,
        args=[tracker, sessions, registry],
        id="purge_expired",
        replace_existing=True,
        max_instances=1,
    )
