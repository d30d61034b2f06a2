"""
services/date_calculator.py
---------------------------
Pure date arithmetic for recurring series.

Every function takes its reference instant explicitly, performs no I/O
and keeps no state, so it is safe to call from any number of ticks at once.

Calendar arithmetic (adding days and months, clamping the day of month)
happens on naive local wall-clock time in the series' timezone. Only
`to_utc` turns that back into an absolute instant, which keeps the
intended calendar date stable across daylight-saving shifts.
"""

import calendar
from datetime import datetime, timedelta, timezone
from itertools import islice
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from models.recurring import (
    EndType,
    Frequency,
    Occurrence,
    RecurrenceParams,
    UpcomingSummary,
)

# Upper bound for bounded previews and for total-count enumeration.
MAX_PREVIEW_ITERATIONS = 100
MAX_SUMMARY_ITERATIONS = 1000

_MONTH_STEPS = {
    Frequency.MONTHLY_DATE: 1,
    Frequency.QUARTERLY: 3,
    Frequency.SEMI_ANNUAL: 6,
    Frequency.ANNUAL: 12,
}


class UnsupportedFrequencyError(ValueError):
    """Raised for a frequency that has no scheduling rule."""

    def __init__(self, frequency):
        value = getattr(frequency, "value", frequency)
        super().__init__(f"Unsupported frequency: {value}")
        self.frequency = frequency


# ── Local-time boundary ───────────────────────────────────

def to_local(instant: datetime, tz_name: str) -> datetime:
    """Absolute instant -> naive wall-clock time in `tz_name`."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(ZoneInfo(tz_name)).replace(tzinfo=None)


def to_utc(local: datetime, tz_name: str) -> datetime:
    """Naive wall-clock time in `tz_name` -> aware UTC instant."""
    return local.replace(tzinfo=ZoneInfo(tz_name)).astimezone(timezone.utc)


# ── Civil-date helpers ────────────────────────────────────

def _weekday_sunday_first(value: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (value.weekday() + 1) % 7


def _clamp(value: Optional[int], low: int, high: int, default: int) -> int:
    if value is None:
        return default
    return min(max(value, low), high)


def nth_weekday_of_month(year: int, month: int, day_of_week: int, week: int) -> int:
    """
    Day of month of the `week`-th `day_of_week` (0 = Sunday) in a month.

    The first occurrence plus (week - 1) weeks. A 5th occurrence that does
    not exist runs past the end of the month; the caller's timedelta
    arithmetic carries it into the following month.
    """
    first_weekday = (calendar.weekday(year, month, 1) + 1) % 7
    days_until_target = (day_of_week - first_weekday) % 7
    return 1 + days_until_target + (week - 1) * 7


def _next_weekly(local: datetime, target_day: int) -> datetime:
    days_ahead = (target_day - _weekday_sunday_first(local)) % 7 or 7
    return local + timedelta(days=days_ahead)


def _next_monthly_weekday(local: datetime, target_day: int, target_week: int) -> datetime:
    next_month = local + relativedelta(months=1)
    day = nth_weekday_of_month(next_month.year, next_month.month, target_day, target_week)
    return next_month.replace(day=1) + timedelta(days=day - 1)


def _add_months_clamped(local: datetime, months: int, target_day: int) -> datetime:
    # relativedelta clamps an out-of-range day to the month's last day.
    return local + relativedelta(months=months, day=target_day)


# ── Public API ────────────────────────────────────────────

def next_scheduled_date(params: RecurrenceParams, reference: datetime) -> datetime:
    """
    Calculate the next scheduled instant after `reference`.

    Args:
        params: Frequency parameters of the series.
        reference: The previous scheduled instant (or "now" on resume).

    Returns:
        An aware UTC datetime strictly after `reference`.

    Raises:
        UnsupportedFrequencyError: For frequencies without a rule.
    """
    frequency = Frequency(params.frequency)
    local = to_local(reference, params.timezone)

    if frequency is Frequency.WEEKLY:
        target_day = _clamp(params.frequency_day, 0, 6, default=0)
        next_local = _next_weekly(local, target_day)

    elif frequency is Frequency.MONTHLY_DATE:
        target_day = params.frequency_day if params.frequency_day is not None else 1
        next_local = _add_months_clamped(local, 1, target_day)

    elif frequency is Frequency.MONTHLY_WEEKDAY:
        target_day = _clamp(params.frequency_day, 0, 6, default=0)
        target_week = _clamp(params.frequency_week, 1, 5, default=1)
        next_local = _next_monthly_weekday(local, target_day, target_week)

    elif frequency in (Frequency.QUARTERLY, Frequency.SEMI_ANNUAL, Frequency.ANNUAL):
        target_day = params.frequency_day if params.frequency_day is not None else local.day
        next_local = _add_months_clamped(local, _MONTH_STEPS[frequency], target_day)

    elif frequency is Frequency.CUSTOM:
        next_local = local + timedelta(days=params.frequency_interval or 1)

    else:
        raise UnsupportedFrequencyError(frequency)

    return to_utc(next_local, params.timezone)


def first_scheduled_date(issue_date: datetime, now: datetime) -> datetime:
    """
    When the first cycle of a new series is due.

    The issue date when its UTC calendar day is after today's UTC day,
    otherwise `now` (generate immediately).
    """
    issue_utc = to_local(issue_date, "UTC")
    now_utc = to_local(now, "UTC")
    if issue_utc.date() > now_utc.date():
        return issue_date
    return now


def advance_to_future(
    params: RecurrenceParams,
    scheduled: datetime,
    now: datetime,
    max_iterations: int = 1000,
) -> tuple[datetime, int, bool]:
    """
    Step `scheduled` forward until it is strictly after `now`.

    Used when the scheduler ran late so a computed next date is already
    in the past; missed cycles are skipped rather than generated in a burst.

    Returns:
        (next date, intervals skipped, whether the iteration limit was hit).
        On hitting the limit the date falls back to the next occurrence
        after `now` and the skip count is reported as 0.
    """
    next_date = scheduled
    skipped = 0
    while next_date <= now and skipped < max_iterations:
        next_date = next_scheduled_date(params, next_date)
        skipped += 1

    hit_limit = skipped >= max_iterations
    if hit_limit:
        next_date = next_scheduled_date(params, now)
        skipped = 0
    return next_date, skipped, hit_limit


def iter_occurrences(params: RecurrenceParams, start: datetime) -> Iterator[datetime]:
    """Yield `start` and every following scheduled instant, forever."""
    current = start
    while True:
        yield current
        current = next_scheduled_date(params, current)


def upcoming_occurrences(
    params: RecurrenceParams,
    start: datetime,
    amount: float,
    currency: str,
    end_type: EndType,
    end_date: Optional[datetime],
    end_count: Optional[int],
    already_generated: int = 0,
    limit: int = 10,
) -> tuple[list[Occurrence], UpcomingSummary]:
    """
    Project the next occurrences of a series, starting at `start`.

    Stops at whichever comes first: `limit`, the end date, or the
    remaining count (`end_count - already_generated`).

    Returns:
        The occurrences and a summary. Summary totals are None when the
        series never ends.
    """
    end_type = EndType(end_type)
    max_items = limit if end_type is EndType.NEVER else min(limit, MAX_PREVIEW_ITERATIONS)
    remaining = None
    if end_type is EndType.AFTER_COUNT and end_count is not None:
        remaining = max(end_count - already_generated, 0)
        max_items = min(max_items, remaining)

    occurrences = []
    for current in islice(iter_occurrences(params, start), max(max_items, 0)):
        if end_type is EndType.ON_DATE and end_date is not None and current > end_date:
            break
        occurrences.append(Occurrence(date=current, amount=amount))

    total_count = None
    total_amount = None
    if end_type is EndType.AFTER_COUNT and end_count is not None:
        total_count = end_count
        total_amount = end_count * amount
    elif end_type is EndType.ON_DATE and end_date is not None:
        total_count = 0
        for current in islice(iter_occurrences(params, start), MAX_SUMMARY_ITERATIONS):
            if current > end_date:
                break
            total_count += 1
        total_amount = total_count * amount

    summary = UpcomingSummary(
        has_end_date=end_type is not EndType.NEVER,
        total_count=total_count,
        total_amount=total_amount,
        currency=currency,
    )
    return occurrences, summary


def is_completed(
    end_type: EndType,
    end_date: Optional[datetime],
    end_count: Optional[int],
    generated_count: int,
    next_scheduled_at: Optional[datetime],
) -> bool:
    """Whether a series has reached its end condition."""
    end_type = EndType(end_type)
    if end_type is EndType.NEVER:
        return False
    if end_type is EndType.ON_DATE:
        return (
            end_date is not None
            and next_scheduled_at is not None
            and next_scheduled_at > end_date
        )
    if end_type is EndType.AFTER_COUNT:
        return end_count is not None and generated_count >= end_count
    return False
