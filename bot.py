"""
Digistore marketplace bot - main entry point
"""

import asyncio
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from config.config import (
    ADMIN_GROUP,
    ADMIN_IDS,
    BOT_TOKEN,
    BTC_ADDRESS,
    CHAT_REQUEST_TIMEOUT,
    DATABASE_URL,
    LTC_ADDRESS,
    VOUCH_CHANNEL,
    Cooldowns,
    validate_config,
)
from config.logging import setup_logging
from config.sentry import init_sentry
from src.bot.handlers import start, operator, admin_orders, catalog, orders
from src.bot.middleware.admin import AdminMiddleware
from src.bot.middleware.database import DatabaseMiddleware
from src.bot.middleware.logging import LoggingMiddleware
from src.core.enums import Currency
from src.database.engine import check_connection, dispose_engine, get_session_maker, init_db
from src.services.admin_directory import AdminDirectory
from src.services.blockchain_watcher import BlockchainWatcher
from src.services.chat_client import ChatClient
from src.services.directory_reconciler import DirectoryReconciler
from src.services.order_engine import OrderEngine
from src.services.throttle_registry import ThrottleRegistry
from src.services.trackers import DeliveryTracker, SessionStore
from src.services.vouch_service import VouchService
from src.tasks.blockchain_scanner import start_blockchain_scanner, stop_blockchain_scanner
from src.tasks.reconcile_scheduler import schedule_maintenance_tasks, schedule_reconcile_tasks

# Background task references
_scheduler = None
_shutdown_done = False


async def setup_bot_commands(bot: Bot) -> None:
    """
    Setup bot commands menu

    Args:
        bot: Bot instance
    """
    commands = [
        BotCommand(command="start", description="🛍️ Open the shop"),
        BotCommand(command="cancel", description="❌ Cancel the current operation"),
    ]

    await bot.set_my_commands(commands)
    logger.info("Bot commands menu initialized successfully")


async def on_startup(bot: Bot, dispatcher: Dispatcher, **kwargs) -> None:
    """Actions to perform on bot startup"""
    global _scheduler

    logger.info("Starting Digistore marketplace bot...")

    if not await check_connection():
        raise RuntimeError("Database is not reachable")
    # PostgreSQL schema is managed by Alembic (alembic upgrade head)
    if DATABASE_URL.startswith("sqlite"):
        await init_db()

    await setup_bot_commands(bot)

    directory: AdminDirectory = dispatcher["admin_directory"]
    await directory.refresh()

    await start_blockchain_scanner(dispatcher["watcher"])

    _scheduler = AsyncIOScheduler()
    schedule_reconcile_tasks(_scheduler, dispatcher["reconciler"], ADMIN_GROUP)
    schedule_maintenance_tasks(
        _scheduler,
        directory,
        dispatcher["engine"].tracker,
        dispatcher["sessions"],
        dispatcher["registry"],
    )
    _scheduler.start()
    logger.info("Scheduler started")

    bot_info = await bot.get_me()
    logger.info(f"Bot started: @{bot_info.username} (ID: {bot_info.id})")


async def on_shutdown(bot: Bot, dispatcher: Dispatcher = None, **kwargs) -> None:
    """Stop the watcher, the scheduler, the database engine and the bot session, in that order"""
    global _scheduler, _shutdown_done

    if _shutdown_done:
        return
    _shutdown_done = True

    logger.info("Shutting down Digistore marketplace bot...")

    await stop_blockchain_scanner()

    if dispatcher is not None:
        dispatcher["reconciler"].stop()
        await dispatcher["engine"].drain()

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")

    await dispose_engine()
    logger.info("Database connections closed")

    await bot.session.close()
    logger.info("Bot session closed")


def build_dispatcher(bot: Bot) -> Dispatcher:
    """Create the services, register them as workflow data and wire routers"""
    session_maker = get_session_maker()
    chat = ChatClient(bot)

    registry = ThrottleRegistry(
        action_windows=Cooldowns.action_windows(),
        confirmation_cooldown=Cooldowns.CONFIRMATION_COOLDOWN,
        max_confirmations_per_hour=Cooldowns.CONFIRMATION_MAX_PER_HOUR,
        duplicate_window=Cooldowns.CONFIRMATION_DUPLICATE_WINDOW,
    )
    sessions = SessionStore()
    directory = AdminDirectory(ADMIN_IDS, chat, ADMIN_GROUP)

    fallback = {}
    if BTC_ADDRESS:
        fallback[Currency.BTC] = BTC_ADDRESS
    if LTC_ADDRESS:
        fallback[Currency.LTC] = LTC_ADDRESS

    engine = OrderEngine(
        session_maker,
        chat,
        registry,
        DeliveryTracker(),
        sessions,
        VouchService(chat, VOUCH_CHANNEL),
        admin_channel=ADMIN_GROUP,
        admin_ids=ADMIN_IDS,
        fallback_addresses=fallback,
    )
    watcher = BlockchainWatcher(
        session_maker,
        chat,
        registry,
        admin_targets=[ADMIN_GROUP] if ADMIN_GROUP is not None else ADMIN_IDS,
    )
    reconciler = DirectoryReconciler(session_maker, chat)

    dp = Dispatcher(storage=MemoryStorage())
    dp["chat"] = chat
    dp["registry"] = registry
    dp["sessions"] = sessions
    dp["admin_directory"] = directory
    dp["engine"] = engine
    dp["watcher"] = watcher
    dp["reconciler"] = reconciler
    dp["admin_group"] = ADMIN_GROUP

    # Register middleware (order matters!)
    # 1. Admin flag runs before filters: handlers filter on is_admin
    dp.message.outer_middleware(AdminMiddleware(directory))
    dp.callback_query.outer_middleware(AdminMiddleware(directory))

    # 2. Logging
    dp.message.middleware(LoggingMiddleware())
    dp.callback_query.middleware(LoggingMiddleware())

    # 3. Database session + stored user
    dp.message.middleware(DatabaseMiddleware(session_maker))
    dp.callback_query.middleware(DatabaseMiddleware(session_maker))

    # Register routers (specific first, reply-mode catch-all last)
    dp.include_router(start.router)
    dp.include_router(operator.router)
    dp.include_router(admin_orders.router)
    dp.include_router(catalog.router)
    dp.include_router(orders.router)

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)
    return dp


async def main() -> None:
    """Main bot function"""
    setup_logging()
    init_sentry()

    try:
        validate_config()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info("Configuration validated successfully")

    bot = Bot(
        token=BOT_TOKEN,
        session=AiohttpSession(timeout=CHAT_REQUEST_TIMEOUT),
        default=DefaultBotProperties(
            parse_mode=ParseMode.HTML, link_preview_is_disabled=True
        ),
    )
    dp = build_dispatcher(bot)

    try:
        logger.info("Starting bot polling...")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            drop_pending_updates=True,
        )
    except Exception as e:
        logger.exception(f"Critical error during bot operation: {e}")
        raise
    finally:
        await on_shutdown(bot, dp)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
