"""
handlers/series_handler.py
--------------------------
Handles recurring series commands: list and inspect, create, update,
pause, resume, cancel, preview upcoming documents and the monthly forecast.
Every command only sees the series owned by the sender.
"""

import re
from datetime import datetime, time, timezone
from typing import Optional

from telegram import Update
from telegram.ext import ContextTypes

from config import DEFAULT_CURRENCY, FORECAST_DEFAULT_MONTHS
from models.recurring import (
    DocumentStatus,
    EndType,
    Frequency,
    GeneratedDocument,
    RecurringSeries,
    SeriesStatus,
)
from services.errors import ConcurrentUpdateError, InvalidTransitionError, SeriesNotFoundError
from services.forecast_service import ForecastService
from services.labels import (
    DAY_NAMES,
    format_next_scheduled,
    format_progress,
    frequency_label,
)
from services.lifecycle_service import LifecycleService
from services.validation import SeriesValidationError
from utils.logger import get_logger

logger = get_logger(__name__)
lifecycle_service = LifecycleService()
forecast_service = ForecastService()

_FREQ_MAP = {
    "weekly": Frequency.WEEKLY,
    "monthly": Frequency.MONTHLY_DATE,
    "monthly_date": Frequency.MONTHLY_DATE,
    "monthly_weekday": Frequency.MONTHLY_WEEKDAY,
    "quarterly": Frequency.QUARTERLY,
    "semi_annual": Frequency.SEMI_ANNUAL,
    "annual": Frequency.ANNUAL,
    "yearly": Frequency.ANNUAL,
    "custom": Frequency.CUSTOM,
}

_STATUS_ICONS = {
    SeriesStatus.ACTIVE: "🟢",
    SeriesStatus.PAUSED: "⏸️",
    SeriesStatus.COMPLETED: "✅",
    SeriesStatus.CANCELED: "⛔",
}

_DOCUMENT_ICONS = {
    DocumentStatus.PENDING: "⏳",
    DocumentStatus.GENERATED: "✅",
    DocumentStatus.FAILED: "❌",
}

ADD_SERIES_USAGE = (
    "📝 *Add a recurring series*\n\n"
    "*Format:*\n"
    "`/add_series customer | amount [currency] | frequency | day | end`\n\n"
    "*Examples:*\n"
    "• `/add_series Acme | 150 EUR | monthly | 15`\n"
    "• `/add_series Globex | 40 | weekly | friday`\n"
    "• `/add_series Initech | 200 | monthly_weekday | 2 tuesday | count 12`\n"
    "• `/add_series Hooli | 99 | custom | 14 | until 2027-06-30`\n\n"
    "*Frequencies:* weekly, monthly, monthly\\_weekday, quarterly, "
    "semi\\_annual, annual, custom"
)

UPDATE_SERIES_USAGE = (
    "✏️ *Update a recurring series*\n\n"
    "*Format:*\n"
    "`/update_series id field value`\n\n"
    "*Fields:*\n"
    "• `amount 180 EUR`\n"
    "• `customer Acme Ltd`\n"
    "• `schedule monthly 1` or `schedule weekly friday`\n"
    "• `end count 6`, `end until 2027-06-30` or `end never`\n"
    "• `due 14` (days until the document is due)"
)


def _parse_day_of_week(token: str) -> Optional[int]:
    token = token.strip().lower()
    if token.isdigit():
        return int(token)
    for index, name in enumerate(DAY_NAMES):
        if len(token) >= 3 and name.lower().startswith(token):
            return index
    return None


def _parse_end(token: str) -> Optional[dict]:
    """'until 2027-06-30' | 'count 12' | 'never' | ''."""
    token = token.strip().lower()
    if token in ("", "never"):
        return {"end_type": EndType.NEVER}

    match = re.fullmatch(r"until\s+(\d{4}-\d{2}-\d{2})", token)
    if match:
        try:
            end_day = datetime.fromisoformat(match.group(1)).date()
        except ValueError:
            return None
        # Inclusive: the whole end day counts.
        end_date = datetime.combine(end_day, time.max, tzinfo=timezone.utc)
        return {"end_type": EndType.ON_DATE, "end_date": end_date}

    match = re.fullmatch(r"(?:count|x)\s*(\d+)", token)
    if match:
        return {"end_type": EndType.AFTER_COUNT, "end_count": int(match.group(1))}
    return None


def _parse_money(text: str) -> Optional[tuple[float, Optional[str]]]:
    """'150', '150 eur', '200,50' -> (amount, currency or None)."""
    match = re.fullmatch(r"(\d+(?:[.,]\d+)?)\s*([A-Za-z]{3})?", text.strip())
    if not match:
        return None
    currency = match.group(2).upper() if match.group(2) else None
    return float(match.group(1).replace(",", ".")), currency


def _parse_schedule(frequency_token: str, param: str) -> Optional[dict]:
    """Frequency plus its day/week/interval parameter."""
    frequency = _FREQ_MAP.get(frequency_token.strip().lower())
    if frequency is None:
        return None
    parsed = {"frequency": frequency}

    param = param.strip()
    if not param:
        return parsed
    if frequency is Frequency.WEEKLY:
        day = _parse_day_of_week(param)
        if day is None:
            return None
        parsed["frequency_day"] = day
    elif frequency is Frequency.MONTHLY_WEEKDAY:
        tokens = param.split()
        if len(tokens) != 2 or not tokens[0].isdigit():
            return None
        day = _parse_day_of_week(tokens[1])
        if day is None:
            return None
        parsed["frequency_week"] = int(tokens[0])
        parsed["frequency_day"] = day
    elif frequency is Frequency.CUSTOM:
        if not param.isdigit():
            return None
        parsed["frequency_interval"] = int(param)
    else:
        if not param.isdigit():
            return None
        parsed["frequency_day"] = int(param)
    return parsed


def parse_series_args(text: str) -> Optional[dict]:
    """
    Parse the structured /add_series format:
      customer | amount [currency] | frequency | day | end

    Returns None when the text does not follow the format. Range checks
    are left to the service validation.
    """
    parts = [p.strip() for p in text.split("|")]
    if len(parts) < 3 or not parts[0]:
        return None

    money = _parse_money(parts[1])
    if money is None:
        return None
    amount, currency = money

    schedule = _parse_schedule(parts[2], parts[3] if len(parts) >= 4 else "")
    if schedule is None:
        return None

    end = _parse_end(parts[4] if len(parts) >= 5 else "")
    if end is None:
        return None

    parsed = {
        "customer_name": parts[0],
        "amount": amount,
        "currency": currency or DEFAULT_CURRENCY,
    }
    parsed.update(schedule)
    parsed.update(end)
    return parsed


def parse_update_args(field: str, value: str) -> Optional[dict]:
    """
    Parse one /update_series change into series fields:
      amount 200 [currency] | customer <name> | schedule <frequency> [day]
      end <until YYYY-MM-DD|count N|never> | due <days>

    Schedule and end changes reset the fields they replace.
    """
    field = field.strip().lower()
    value = value.strip()

    if field == "amount":
        money = _parse_money(value)
        if money is None:
            return None
        amount, currency = money
        return {"amount": amount, "currency": currency} if currency else {"amount": amount}

    if field == "customer":
        return {"customer_name": value} if value else None

    if field == "schedule":
        frequency_token, _, param = value.partition(" ")
        schedule = _parse_schedule(frequency_token, param)
        if schedule is None:
            return None
        return {"frequency_day": None, "frequency_week": None, "frequency_interval": None, **schedule}

    if field == "end":
        end = _parse_end(value)
        if end is None:
            return None
        return {"end_date": None, "end_count": None, **end}

    if field == "due":
        return {"due_date_offset": int(value)} if value.isdigit() else None

    return None


def format_series_line(series: RecurringSeries) -> str:
    icon = _STATUS_ICONS.get(series.status, "•")
    label = frequency_label(
        series.frequency, series.frequency_day, series.frequency_week, series.frequency_interval
    )
    total = series.end_count if series.end_type is EndType.AFTER_COUNT else None
    line = (
        f"{icon} #{series.id} {series.customer_name or '-'} | "
        f"{series.amount or 0:.2f} {series.currency or ''} | {label}\n"
        f"    🧾 {format_progress(series.invoices_generated, total)} generated · "
        f"{format_next_scheduled(series.next_scheduled_at, series.status)}"
    )
    if series.status is SeriesStatus.PAUSED and series.consecutive_failures:
        last = series.last_generated_at.strftime("%Y-%m-%d") if series.last_generated_at else "never"
        line += f"\n    ⚠️ {series.consecutive_failures} failed attempt(s), last generated: {last}"
    return line


def _series_id_arg(context: ContextTypes.DEFAULT_TYPE) -> Optional[int]:
    if not context.args:
        return None
    try:
        return int(context.args[0].lstrip("#"))
    except ValueError:
        return None


def format_document_line(document: GeneratedDocument) -> str:
    icon = _DOCUMENT_ICONS.get(document.status, "•")
    when = document.generated_at or document.claimed_at
    line = f"{icon} Cycle {document.sequence}: {document.status.value}"
    if when:
        line += f" ({when.strftime('%Y-%m-%d %H:%M')} UTC)"
    if document.status is DocumentStatus.FAILED and document.error:
        line += f"\n    ❌ {document.error}"
    return line


async def series_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /series - list the sender's series with status and progress.

    /series <id> shows one series with its documents, /series <id> <cycle>
    one document.
    """
    user = update.effective_user
    if context.args:
        await _series_detail(update, context, user.id)
        return

    series_list = lifecycle_service.list_for_user(user.id)
    if not series_list:
        await update.message.reply_text("🔁 No recurring series yet. Use /add_series to create one.")
        return

    lines = ["🔁 Your recurring series\n"]
    lines.extend(format_series_line(s) for s in series_list)
    await update.message.reply_text("\n".join(lines))


async def _series_detail(update: Update, context: ContextTypes.DEFAULT_TYPE, user_id: int) -> None:
    series_id = _series_id_arg(context)
    cycle = context.args[1] if len(context.args) >= 2 else None
    if series_id is None or (cycle is not None and not cycle.isdigit()):
        await update.message.reply_text("⚠️ Usage: /series [series id] [cycle]\nExample: /series 3")
        return

    try:
        if cycle is not None:
            document = lifecycle_service.document(series_id, int(cycle), user_id)
            if document is None:
                await update.message.reply_text(f"📭 Cycle {cycle} of series #{series_id} has no document.")
                return
            await update.message.reply_text(
                f"🧾 Series #{series_id}\n{format_document_line(document)}\n"
                f"💶 {document.amount or 0:.2f} {document.currency or ''}"
            )
            return

        series = lifecycle_service.get(series_id, user_id)
        documents = lifecycle_service.documents(series_id, user_id)
    except SeriesNotFoundError:
        await update.message.reply_text(f"❌ Series #{series_id} not found.")
        return

    lines = [format_series_line(series), ""]
    if documents:
        lines.append("🧾 Documents")
        lines.extend(format_document_line(d) for d in documents)
    else:
        lines.append("🧾 No documents yet.")
    await update.message.reply_text("\n".join(lines))


async def add_series_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /add_series - create a new series.

    Examples:
        /add_series Acme | 150 EUR | monthly | 15
        /add_series Initech | 200 | monthly_weekday | 2 tuesday | count 12
    """
    user = update.effective_user
    if not context.args:
        await update.message.reply_text(ADD_SERIES_USAGE, parse_mode="Markdown")
        return

    parsed = parse_series_args(" ".join(context.args))
    if parsed is None:
        await update.message.reply_text(ADD_SERIES_USAGE, parse_mode="Markdown")
        return

    try:
        series = lifecycle_service.create_series(team_id=user.id, user_id=user.id, **parsed)
    except SeriesValidationError as e:
        problems = "\n".join(f"• {err.message}" for err in e.errors)
        await update.message.reply_text(f"⚠️ Invalid series:\n{problems}")
        return

    label = frequency_label(
        series.frequency, series.frequency_day, series.frequency_week, series.frequency_interval
    )
    await update.message.reply_text(
        f"✅ Series #{series.id} created\n"
        f"📌 {series.customer_name} | {series.amount:.2f} {series.currency}\n"
        f"🔁 {label}\n"
        f"📅 First document: {series.next_scheduled_at.strftime('%Y-%m-%d %H:%M')} UTC"
    )


async def _run_transition(update: Update, context: ContextTypes.DEFAULT_TYPE, command: str, action) -> None:
    user = update.effective_user
    series_id = _series_id_arg(context)
    if series_id is None:
        await update.message.reply_text(f"⚠️ Usage: /{command} <series id>\nExample: /{command} 3")
        return

    try:
        series = action(series_id, user.id)
    except SeriesNotFoundError:
        await update.message.reply_text(f"❌ Series #{series_id} not found.")
        return
    except InvalidTransitionError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return
    except ConcurrentUpdateError:
        await update.message.reply_text(f"⚠️ Series #{series_id} is busy, try again in a moment.")
        return

    await update.message.reply_text(
        f"{_STATUS_ICONS.get(series.status, '•')} Series #{series.id}: "
        f"{format_next_scheduled(series.next_scheduled_at, series.status)}"
    )


async def pause_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pause <id>."""
    await _run_transition(update, context, "pause", lifecycle_service.pause)


async def resume_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resume <id> - reschedules from now; completes the series if its end was reached."""
    await _run_transition(update, context, "resume", lifecycle_service.resume)


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancel <id> - stops the series for good; its documents are kept."""
    await _run_transition(update, context, "cancel", lifecycle_service.cancel)


async def update_series_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Handle /update_series <id> <field> <value> - change one setting of a series.

    Examples:
        /update_series 3 amount 180 EUR
        /update_series 3 schedule weekly friday
        /update_series 3 end count 6
    """
    user = update.effective_user
    series_id = _series_id_arg(context)
    changes = None
    if series_id is not None and len(context.args) >= 2:
        changes = parse_update_args(context.args[1], " ".join(context.args[2:]))
    if changes is None:
        await update.message.reply_text(UPDATE_SERIES_USAGE, parse_mode="Markdown")
        return

    try:
        series = lifecycle_service.update_series(series_id, user.id, changes)
    except SeriesNotFoundError:
        await update.message.reply_text(f"❌ Series #{series_id} not found.")
        return
    except SeriesValidationError as e:
        problems = "\n".join(f"• {err.message}" for err in e.errors)
        await update.message.reply_text(f"⚠️ Invalid series:\n{problems}")
        return
    except InvalidTransitionError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return
    except ConcurrentUpdateError:
        await update.message.reply_text(f"⚠️ Series #{series_id} is busy, try again in a moment.")
        return

    await update.message.reply_text(f"✏️ Series #{series.id} updated\n{format_series_line(series)}")


async def upcoming_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /upcoming <id> [count] - preview the next documents of a series."""
    user = update.effective_user
    series_id = _series_id_arg(context)
    if series_id is None:
        await update.message.reply_text("⚠️ Usage: /upcoming <series id> [count]\nExample: /upcoming 3 5")
        return

    limit = 10
    if len(context.args) >= 2 and context.args[1].isdigit():
        limit = max(1, min(int(context.args[1]), 50))

    try:
        occurrences, summary = lifecycle_service.upcoming(series_id, user.id, limit=limit)
    except SeriesNotFoundError:
        await update.message.reply_text(f"❌ Series #{series_id} not found.")
        return

    if not occurrences:
        await update.message.reply_text(f"📭 Series #{series_id} has no upcoming documents.")
        return

    lines = [f"📅 Next documents of series #{series_id}\n"]
    for occurrence in occurrences:
        lines.append(f"• {occurrence.date.strftime('%Y-%m-%d')}: {occurrence.amount:.2f} {summary.currency}")
    if summary.total_count is not None:
        lines.append(
            f"\n🧮 Total: {summary.total_count} document(s), "
            f"{summary.total_amount:.2f} {summary.currency}"
        )
    await update.message.reply_text("\n".join(lines))


async def forecast_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /forecast [months] - expected amounts per month for active series."""
    user = update.effective_user
    months = FORECAST_DEFAULT_MONTHS
    if context.args:
        try:
            months = int(context.args[0])
        except ValueError:
            await update.message.reply_text("⚠️ Usage: /forecast [months]\nExample: /forecast 6")
            return

    try:
        forecast = forecast_service.forecast(user.id, months)
    except ValueError as e:
        await update.message.reply_text(f"⚠️ {e}")
        return

    lines = [f"📈 Forecast for the next {months} month(s)\n"]
    for bucket in forecast.months:
        if bucket.count == 0:
            lines.append(f"• {bucket.month}: -")
            continue
        amounts = ", ".join(f"{amount:.2f} {currency}" for currency, amount in sorted(bucket.amounts.items()))
        lines.append(f"• {bucket.month}: {bucket.count} document(s), {amounts}")

    totals = forecast.totals()
    if totals:
        lines.append("\n💰 Total: " + ", ".join(f"{a:.2f} {c}" for c, a in sorted(totals.items())))
    await update.message.reply_text("\n".join(lines))
