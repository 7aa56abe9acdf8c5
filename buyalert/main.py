"""Application entrypoint."""

from __future__ import annotations

import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import BotCommand, BotCommandScopeDefault
from telegram.ext import ApplicationBuilder

from buyalert.config import load_settings
from buyalert.handlers.commands import HandlerContext, setup as setup_handlers
from buyalert.jobs.persistence import PersistenceService
from buyalert.jobs.watchers import ErrorPolicy, WatcherManager
from buyalert.ledger import LedgerClient
from buyalert.notifier import TelegramDispatcher
from buyalert.setup_flow import SetupFlow
from buyalert.store.backends import build_backend
from buyalert.store.settings import SettingsStore
from buyalert.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

COMMANDS = [
    BotCommand("help", "Display help message"),
    BotCommand("start", "Send the welcome message"),
    BotCommand("s", "Watch a token: /s <token address>"),
    BotCommand("setup", "Edit alert settings for a token"),
    BotCommand("set", "Change one setting on the draft"),
    BotCommand("draft", "Show the draft"),
    BotCommand("confirm", "Save the draft and start watching"),
    BotCommand("delete", "Stop watching a token"),
    BotCommand("list", "Tokens being watched"),
]


async def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, log_file=settings.log_file)

    application = ApplicationBuilder().token(settings.telegram_bot_token).build()
    await application.initialize()

    await application.bot.set_my_commands(COMMANDS, scope=BotCommandScopeDefault())

    store = SettingsStore()
    scheduler = AsyncIOScheduler()
    persistence = PersistenceService(
        store=store,
        backend=build_backend(settings),
        scheduler=scheduler,
        interval_seconds=settings.persist_interval_seconds,
    )
    restored = await persistence.load()

    ledger = LedgerClient(
        explorer_base_url=str(settings.explorer_base_url),
        price_base_url=str(settings.price_api_base_url),
        chain_id=settings.price_chain_id,
        timeout=settings.http_timeout_seconds,
    )
    watchers = WatcherManager(
        store=store,
        ledger=ledger,
        dispatcher=TelegramDispatcher(application.bot),
        price_api_key=settings.debank_api_key,
        interval_seconds=settings.poll_interval_seconds,
        error_policy=ErrorPolicy(settings.fetch_error_policy),
        notify_empty=settings.notify_empty_transfers,
    )
    flow = SetupFlow(store=store, watchers=watchers)

    setup_handlers(
        application,
        HandlerContext(
            flow=flow,
            store=store,
            watchers=watchers,
            admin_ids=settings.admin_user_ids,
            allowed_chat_id=settings.telegram_chat_id,
        ),
    )

    persistence.start()
    scheduler.start()

    try:
        await application.start()
        if application.updater:
            await application.updater.start_polling()

        resumed = await watchers.resume_all()
        logger.info("bot_started", restored=restored, watching=resumed)

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int) -> None:
            logger.info("shutdown_signal_received", signal=signum)
            stop_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

        await stop_event.wait()

    finally:
        logger.info("bot_stopping")
        if application.updater and application.updater.running:
            await application.updater.stop()
        if application.running:
            await application.stop()
        await watchers.shutdown()
        await persistence.shutdown()
        scheduler.shutdown(wait=False)
        await ledger.aclose()
        await application.shutdown()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
