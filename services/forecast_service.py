"""
services/forecast_service.py
----------------------------
Projects active series forward and sums the expected amounts per month.
"""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from config import DEFAULT_CURRENCY, FORECAST_DEFAULT_MONTHS, FORECAST_MAX_MONTHS
from models.recurring import Frequency, RecurrenceParams, RecurringSeries, SeriesStatus
from repositories.series_repo import SeriesRepository
from services.date_calculator import UnsupportedFrequencyError, to_local, upcoming_occurrences
from utils.logger import get_logger

logger = get_logger(__name__)

# Extra occurrences so month-length and week-boundary effects never cut a bucket short.
SAFETY_BUFFER = 2
WEEKS_PER_MONTH = 4.33


def max_occurrences_for(params: RecurrenceParams, months: int) -> int:
    """Upper bound of occurrences a series can have within `months` months."""
    frequency = Frequency(params.frequency)
    if frequency is Frequency.WEEKLY:
        count = math.ceil(months * WEEKS_PER_MONTH)
    elif frequency in (Frequency.MONTHLY_DATE, Frequency.MONTHLY_WEEKDAY):
        count = months
    elif frequency is Frequency.QUARTERLY:
        count = math.ceil(months / 3)
    elif frequency is Frequency.SEMI_ANNUAL:
        count = math.ceil(months / 6)
    elif frequency is Frequency.ANNUAL:
        count = math.ceil(months / 12)
    elif frequency is Frequency.CUSTOM:
        count = math.ceil(months * 31 / (params.frequency_interval or 1))
    else:
        raise UnsupportedFrequencyError(frequency)
    return count + SAFETY_BUFFER


@dataclass
class ForecastMonth:
    """Expected documents of one calendar month ('YYYY-MM'), summed per currency."""
    month: str
    count: int = 0
    amounts: dict[str, float] = field(default_factory=dict)


@dataclass
class Forecast:
    start: datetime
    end: datetime
    months: list[ForecastMonth]

    def totals(self) -> dict[str, float]:
        totals: dict[str, float] = defaultdict(float)
        for bucket in self.months:
            for currency, amount in bucket.amounts.items():
                totals[currency] += amount
        return {currency: round(amount, 2) for currency, amount in totals.items()}


def _month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def project(series_list: Iterable[RecurringSeries], now: datetime, months: int) -> Forecast:
    """
    Bucket the occurrences of `series_list` between `now` and `now + months`.

    Occurrences are bucketed by the calendar month in the series' own
    timezone. Overdue occurrences (before `now`) are counted in the first
    month; anything after the window end is dropped. Local months that
    fall outside the window are folded into its first or last month.
    """
    end = now + relativedelta(months=months)
    buckets: dict[str, ForecastMonth] = {}
    cursor = datetime(now.year, now.month, 1)
    while cursor <= datetime(end.year, end.month, 1):
        key = _month_key(cursor)
        buckets[key] = ForecastMonth(month=key)
        cursor += relativedelta(months=1)
    first_key, last_key = min(buckets), max(buckets)

    for series in series_list:
        if series.status is not SeriesStatus.ACTIVE or series.next_scheduled_at is None:
            continue
        currency = series.currency or DEFAULT_CURRENCY
        amount = series.amount or 0.0
        try:
            occurrences, _ = upcoming_occurrences(
                series.params,
                series.next_scheduled_at,
                amount,
                currency,
                series.end_type,
                series.end_date,
                series.end_count,
                already_generated=series.invoices_generated,
                limit=max_occurrences_for(series.params, months),
            )
        except UnsupportedFrequencyError as e:
            logger.warning(f"Series #{series.id} left out of forecast: {e}")
            continue

        for occurrence in occurrences:
            if occurrence.date > end:
                break
            when = max(occurrence.date, now)
            # Local month keys can fall just outside the UTC window; fold them in.
            key = min(max(_month_key(to_local(when, series.timezone)), first_key), last_key)
            bucket = buckets[key]
            bucket.count += 1
            bucket.amounts[currency] = round(bucket.amounts.get(currency, 0.0) + occurrence.amount, 2)

    return Forecast(start=now, end=end, months=[buckets[k] for k in sorted(buckets)])


class ForecastService:
    """Forecast of expected document amounts for the next months."""

    def __init__(self, repo: Optional[SeriesRepository] = None):
        self.repo = repo or SeriesRepository()

    def forecast(
        self,
        user_id: Optional[int] = None,
        months: int = FORECAST_DEFAULT_MONTHS,
        now: Optional[datetime] = None,
    ) -> Forecast:
        """
        Project all active series (of one owner, or all) `months` ahead.

        Raises:
            ValueError: If `months` is outside 1..FORECAST_MAX_MONTHS.
        """
        if not 1 <= months <= FORECAST_MAX_MONTHS:
            raise ValueError(f"Forecast horizon must be 1-{FORECAST_MAX_MONTHS} months")
        now = now or datetime.now(timezone.utc)
        series = self.repo.list_active(user_id)
        forecast = project(series, now, months)
        logger.info(f"Forecast for {len(series)} active series over {months} month(s)")
        return forecast
