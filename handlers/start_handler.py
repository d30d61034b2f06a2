"""
handlers/start_handler.py
--------------------------
Handles /start and /help commands.
Shows the available series commands.
"""

from telegram import Update
from telegram.ext import ContextTypes

from utils.logger import get_logger

logger = get_logger(__name__)

HELP_TEXT = """
🤖 *Recurring document scheduler*
Documents are generated automatically on each series' schedule 🧾

*🔧 Available commands:*
/start - Start the bot
/help - Show this help
/series - List your recurring series (/series 3 shows one with its documents)
/add\\_series - Create a recurring series
/update\\_series - Change a setting of a series
/pause - Pause a series (example: /pause 3)
/resume - Resume a paused series
/cancel - Cancel a series for good
/upcoming - Preview the next documents of a series
/forecast - Expected amounts for the next months
"""


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command - show welcome message."""
    user = update.effective_user
    logger.info(f"User {user.id} ({user.first_name}) started the bot.")

    await update.message.reply_text(
        f"Hello {user.first_name}! 👋\n"
        f"I generate your recurring documents on schedule and tell you before each one is due.\n\n"
        f"Type /help to see all commands.",
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command - show all available commands."""
    await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")
