"""
services/labels.py
------------------
Human-readable descriptions of a series' schedule and progress.
Used by the chat handlers and the notifier messages.
"""

from datetime import datetime
from typing import Optional

from models.recurring import Frequency, SeriesStatus

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
_ORDINALS = ["1st", "2nd", "3rd", "4th", "5th"]


def format_ordinal(n: int) -> str:
    """1 -> '1st', 2 -> '2nd', 11 -> '11th', 23 -> '23rd'."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def frequency_label(
    frequency: Frequency,
    frequency_day: Optional[int],
    frequency_week: Optional[int],
    frequency_interval: Optional[int] = None,
) -> str:
    """
    Long label for a schedule.

    Example:
        "Weekly on Friday", "Monthly on the 2nd Tuesday", "Every 14 days"
    """
    frequency = Frequency(frequency)
    if frequency_day is not None and 0 <= frequency_day <= 6:
        day_name = DAY_NAMES[frequency_day]
    else:
        day_name = DAY_NAMES[0]

    if frequency is Frequency.WEEKLY:
        return f"Weekly on {day_name}"
    if frequency is Frequency.BIWEEKLY:
        return f"Bi-weekly on {day_name}"
    if frequency is Frequency.MONTHLY_DATE:
        return f"Monthly on the {format_ordinal(frequency_day or 1)}"
    if frequency is Frequency.MONTHLY_WEEKDAY:
        return f"Monthly on the {_ORDINALS[(frequency_week or 1) - 1]} {day_name}"
    if frequency is Frequency.MONTHLY_LAST_DAY:
        return "Monthly on the last day"
    if frequency is Frequency.QUARTERLY:
        return f"Quarterly on the {format_ordinal(frequency_day or 1)}"
    if frequency is Frequency.SEMI_ANNUAL:
        return f"Semi-annually on the {format_ordinal(frequency_day or 1)}"
    if frequency is Frequency.ANNUAL:
        return f"Annually on the {format_ordinal(frequency_day or 1)}"
    if frequency_interval:
        return f"Every {frequency_interval} days"
    return "Custom"


def frequency_short_label(frequency: Frequency, frequency_interval: Optional[int] = None) -> str:
    frequency = Frequency(frequency)
    if frequency in (Frequency.MONTHLY_DATE, Frequency.MONTHLY_WEEKDAY, Frequency.MONTHLY_LAST_DAY):
        return "Monthly"
    if frequency is Frequency.CUSTOM:
        return f"Every {frequency_interval} days" if frequency_interval else "Custom"
    return {
        Frequency.WEEKLY: "Weekly",
        Frequency.BIWEEKLY: "Bi-weekly",
        Frequency.QUARTERLY: "Quarterly",
        Frequency.SEMI_ANNUAL: "Semi-annual",
        Frequency.ANNUAL: "Annual",
    }[frequency]


def format_progress(sequence: Optional[int], total_count: Optional[int]) -> str:
    """'3 of 12' for bounded series, '3' otherwise."""
    if sequence is None:
        return ""
    if total_count is None:
        return f"{sequence}"
    return f"{sequence} of {total_count}"


def format_next_scheduled(next_scheduled_at: Optional[datetime], status: SeriesStatus) -> str:
    status = SeriesStatus(status)
    if status is SeriesStatus.COMPLETED:
        return "Series complete"
    if status is SeriesStatus.CANCELED:
        return "Canceled"
    if status is SeriesStatus.PAUSED:
        return "Paused"
    if next_scheduled_at is None:
        return ""
    return f"Next on {next_scheduled_at.strftime('%b')} {next_scheduled_at.day}"
