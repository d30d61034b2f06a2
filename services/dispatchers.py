"""
services/dispatchers.py
-----------------------
Telegram adapters for the scheduler's outbound side.

The scheduler only knows three callables (document executor, upcoming
notifier, series-event notifier). These classes implement them by sending
chat messages to the owner of each series.
"""

from collections import defaultdict

from telegram import Bot
from telegram.helpers import escape_markdown

from models.recurring import GeneratedDocument, RecurringSeries
from services.labels import format_next_scheduled, frequency_label, frequency_short_label
from utils.logger import get_logger

logger = get_logger(__name__)


def _money(amount, currency) -> str:
    return escape_markdown(f"{amount or 0:.2f} {currency or ''}".strip(), version=1)


def _name(series: RecurringSeries) -> str:
    """Customer name, escaped for legacy Markdown."""
    return escape_markdown(series.customer_name or f"Series #{series.id}", version=1)


def format_document_message(series: RecurringSeries, document: GeneratedDocument) -> str:
    due = document.due_date.strftime("%Y-%m-%d") if document.due_date else "-"
    return (
        f"🧾 *Document #{document.sequence} generated*\n\n"
        f"📌 {_name(series)}\n"
        f"💶 {_money(document.amount, document.currency)}\n"
        f"🔁 {frequency_short_label(series.frequency, series.frequency_interval)}\n"
        f"📅 Due: {due}"
    )


def format_upcoming_message(batch: list[RecurringSeries]) -> str:
    lines = ["⏰ *Upcoming recurring documents*\n"]
    for series in batch:
        when = series.next_scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
        lines.append(f"• #{series.id} {_name(series)} | {_money(series.amount, series.currency)} | {when}")
    return "\n".join(lines)


def format_event_message(event: str, series: RecurringSeries) -> str:
    if event == "completed":
        return (
            f"✅ *Series complete*\n\n"
            f"📌 {_name(series)}\n"
            f"🧾 {series.invoices_generated} document(s) generated."
        )
    if event == "paused":
        return (
            f"⏸️ *Series paused after repeated failures*\n\n"
            f"📌 {_name(series)}\n"
            f"🔁 {frequency_label(series.frequency, series.frequency_day, series.frequency_week, series.frequency_interval)}\n"
            f"❌ {series.consecutive_failures} failed attempt(s) in a row.\n\n"
            f"Fix the problem, then /resume {series.id}"
        )
    return f"ℹ️ {_name(series)}: {event} ({format_next_scheduled(series.next_scheduled_at, series.status)})"


class TelegramDocumentDispatcher:
    """Document executor: delivers each generated document to its owner's chat."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def __call__(self, series: RecurringSeries, document: GeneratedDocument) -> None:
        await self.bot.send_message(
            chat_id=series.user_id,
            text=format_document_message(series, document),
            parse_mode="Markdown",
        )
        logger.info(f"Delivered document #{document.id} of series #{series.id} to user {series.user_id}")


class TelegramUpcomingNotifier:
    """
    Upcoming notifier: one message per owner listing their due-soon series.

    Any failed send raises, so the whole batch stays unstamped and is
    offered again on the next tick.
    """

    def __init__(self, bot: Bot):
        self.bot = bot

    async def __call__(self, batch: list[RecurringSeries]) -> None:
        by_user: dict[int, list[RecurringSeries]] = defaultdict(list)
        for series in batch:
            by_user[series.user_id].append(series)

        for user_id, series_list in by_user.items():
            await self.bot.send_message(
                chat_id=user_id,
                text=format_upcoming_message(series_list),
                parse_mode="Markdown",
            )
            logger.info(f"Sent upcoming notice for {len(series_list)} series to user {user_id}")


class TelegramSeriesEventNotifier:
    """Tells the owner when a series completed or was paused automatically."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def __call__(self, event: str, series: RecurringSeries) -> None:
        await self.bot.send_message(
            chat_id=series.user_id,
            text=format_event_message(event, series),
            parse_mode="Markdown",
        )
