"""
services/validation.py
----------------------
Validation of series configuration before it is persisted.
Invalid values are rejected, never coerced.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.recurring import UNSUPPORTED_FREQUENCIES, EndType, Frequency

_DAY_OF_WEEK_FREQUENCIES = {
    Frequency.WEEKLY: "weekly",
    Frequency.MONTHLY_WEEKDAY: "monthly weekday",
}

_DAY_OF_MONTH_FREQUENCIES = {
    Frequency.MONTHLY_DATE: "monthly",
    Frequency.QUARTERLY: "quarterly",
    Frequency.SEMI_ANNUAL: "semi-annual",
    Frequency.ANNUAL: "annual",
}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class SeriesValidationError(ValueError):
    """Raised when a series configuration is invalid. Carries every field error."""

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors))


def _parse_enum(enum_cls, value, field_name: str, errors: list[FieldError]):
    try:
        return enum_cls(value)
    except ValueError:
        errors.append(FieldError(field_name, f"Unknown {field_name} '{value}'"))
        return None


def validate_series_config(
    frequency,
    frequency_day: Optional[int],
    frequency_week: Optional[int],
    frequency_interval: Optional[int],
    end_type,
    end_date: Optional[datetime],
    end_count: Optional[int],
    timezone: str,
    due_date_offset: int = 30,
) -> list[FieldError]:
    """
    Validate the schedule and end condition of a series.

    Returns:
        List of FieldError (empty if valid).
    """
    errors: list[FieldError] = []

    freq = _parse_enum(Frequency, frequency, "frequency", errors)
    end = _parse_enum(EndType, end_type, "end_type", errors)

    if freq in UNSUPPORTED_FREQUENCIES:
        errors.append(FieldError(
            "frequency",
            f"Frequency '{freq.value}' is not supported by the scheduler",
        ))

    if freq in _DAY_OF_WEEK_FREQUENCIES:
        label = _DAY_OF_WEEK_FREQUENCIES[freq]
        if frequency_day is None:
            errors.append(FieldError("frequency_day", f"Day of week is required for {label} frequency"))
        elif not 0 <= frequency_day <= 6:
            errors.append(FieldError("frequency_day", "Day of week must be 0-6 (Sunday-Saturday)"))

    if freq is Frequency.MONTHLY_WEEKDAY:
        if frequency_week is None:
            errors.append(FieldError("frequency_week", "Week occurrence is required for monthly weekday frequency"))
        elif not 1 <= frequency_week <= 5:
            errors.append(FieldError("frequency_week", "Week occurrence must be 1-5 (1st through 5th)"))

    if freq in _DAY_OF_MONTH_FREQUENCIES:
        label = _DAY_OF_MONTH_FREQUENCIES[freq]
        if frequency_day is None:
            errors.append(FieldError("frequency_day", f"Day of month is required for {label} frequency"))
        elif not 1 <= frequency_day <= 31:
            errors.append(FieldError("frequency_day", "Day of month must be 1-31"))

    if freq is Frequency.CUSTOM:
        if frequency_interval is None:
            errors.append(FieldError("frequency_interval", "Day interval is required for custom frequency"))
        elif frequency_interval < 1:
            errors.append(FieldError("frequency_interval", "Day interval must be at least 1"))

    if end is EndType.ON_DATE and end_date is None:
        errors.append(FieldError("end_date", "End date is required when ending on a specific date"))

    if end is EndType.AFTER_COUNT:
        if end_count is None:
            errors.append(FieldError("end_count", "Document count is required when ending after a count"))
        elif end_count < 1:
            errors.append(FieldError("end_count", "Document count must be at least 1"))

    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        errors.append(FieldError("timezone", f"Unknown timezone '{timezone}'"))

    if due_date_offset is None or due_date_offset < 0:
        errors.append(FieldError("due_date_offset", "Due date offset must be zero or more days"))

    return errors


def ensure_valid_series_config(**config) -> None:
    """Raise SeriesValidationError if `validate_series_config` reports anything."""
    errors = validate_series_config(**config)
    if errors:
        raise SeriesValidationError(errors)
