"""
main.py
-------
Entry point for the recurring document scheduler.

Responsibilities:
    - Initialize the database connection pool and schema.
    - Configure and start the Telegram bot with the series handlers.
    - Run the generation and upcoming-notification ticks on the job queue.
"""

from telegram import BotCommand
from telegram.ext import Application, CommandHandler, ContextTypes

from config import (
    GENERATION_INTERVAL_SECONDS,
    NOTIFICATION_INTERVAL_SECONDS,
    TELEGRAM_BOT_TOKEN,
)
from db.connection import close_pool, init_pool
from db.init_db import create_tables
from handlers.series_handler import (
    add_series_command,
    cancel_command,
    forecast_command,
    pause_command,
    resume_command,
    series_command,
    upcoming_command,
    update_series_command,
)
from handlers.start_handler import help_command, start_command
from services.dispatchers import (
    TelegramDocumentDispatcher,
    TelegramSeriesEventNotifier,
    TelegramUpcomingNotifier,
)
from services.generation_service import GenerationEngine
from services.notification_service import UpcomingNotificationService
from utils.logger import get_logger

logger = get_logger(__name__)


async def run_generation_tick(context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Scheduled job: generate documents for one batch of due series.
    Whatever is left over is picked up by the next tick.
    """
    engine: GenerationEngine = context.bot_data["generation_engine"]
    try:
        await engine.run_due()
    except Exception as e:
        logger.error(f"Generation tick failed: {e}")


async def run_notification_tick(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Scheduled job: announce series whose next document is due soon."""
    service: UpcomingNotificationService = context.bot_data["notification_service"]
    try:
        await service.notify_upcoming()
    except Exception as e:
        logger.error(f"Upcoming notification tick failed: {e}")


async def post_init(application: Application) -> None:
    """Register the commands menu and wire the scheduler to the bot."""
    bot = application.bot
    application.bot_data["generation_engine"] = GenerationEngine(
        executor=TelegramDocumentDispatcher(bot),
        on_series_event=TelegramSeriesEventNotifier(bot),
    )
    application.bot_data["notification_service"] = UpcomingNotificationService(
        notifier=TelegramUpcomingNotifier(bot),
    )

    commands = [
        BotCommand("start", "🚀 Start the bot"),
        BotCommand("help", "📖 Show help"),
        BotCommand("series", "🔁 List recurring series"),
        BotCommand("add_series", "➕ Create a recurring series"),
        BotCommand("update_series", "✏️ Update a series"),
        BotCommand("pause", "⏸️ Pause a series"),
        BotCommand("resume", "▶️ Resume a series"),
        BotCommand("cancel", "⛔ Cancel a series"),
        BotCommand("upcoming", "📅 Preview upcoming documents"),
        BotCommand("forecast", "📈 Monthly forecast"),
    ]
    await bot.set_my_commands(commands)
    logger.info("Bot commands menu registered successfully.")


def main() -> None:
    """Initialize and run the scheduler bot."""

    # ── 1. Database setup ─────────────────────────────────
    logger.info("Initializing database...")
    init_pool()
    create_tables()

    # ── 2. Build the Telegram application ─────────────────
    logger.info("Starting Telegram bot...")
    app = Application.builder().token(TELEGRAM_BOT_TOKEN).post_init(post_init).build()

    # ── 3. Register command handlers ──────────────────────
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("series", series_command))
    app.add_handler(CommandHandler("add_series", add_series_command))
    app.add_handler(CommandHandler("update_series", update_series_command))
    app.add_handler(CommandHandler("pause", pause_command))
    app.add_handler(CommandHandler("resume", resume_command))
    app.add_handler(CommandHandler("cancel", cancel_command))
    app.add_handler(CommandHandler("upcoming", upcoming_command))
    app.add_handler(CommandHandler("forecast", forecast_command))

    # ── 4. Schedule jobs ──────────────────────────────────
    job_queue = app.job_queue
    if job_queue:
        job_queue.run_repeating(
            run_generation_tick,
            interval=GENERATION_INTERVAL_SECONDS,
            first=10,
            name="generation_tick",
        )
        job_queue.run_repeating(
            run_notification_tick,
            interval=NOTIFICATION_INTERVAL_SECONDS,
            first=30,
            name="upcoming_notification_tick",
        )
        logger.info(
            f"Scheduled generation every {GENERATION_INTERVAL_SECONDS}s "
            f"+ upcoming notices every {NOTIFICATION_INTERVAL_SECONDS}s"
        )
    else:
        logger.warning("Job queue unavailable; install python-telegram-bot[job-queue] to run the scheduler")

    # ── 5. Start polling ──────────────────────────────────
    logger.info("🚀 Scheduler is running! Press Ctrl+C to stop.")
    app.run_polling(drop_pending_updates=True, allowed_updates=["message"])

    # ── 6. Cleanup on shutdown ────────────────────────────
    close_pool()
    logger.info("Scheduler stopped.")


if __name__ == "__main__":
    main()
