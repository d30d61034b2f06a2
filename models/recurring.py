"""
models/recurring.py
-------------------
Domain models for recurring document series and the documents they generate.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Frequency(str, Enum):
    """How often a series generates a document."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY_DATE = "monthly_date"
    MONTHLY_WEEKDAY = "monthly_weekday"
    MONTHLY_LAST_DAY = "monthly_last_day"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"
    CUSTOM = "custom"


# Accepted on input but without a schedule rule; see DESIGN.md.
UNSUPPORTED_FREQUENCIES = frozenset({Frequency.BIWEEKLY, Frequency.MONTHLY_LAST_DAY})


class EndType(str, Enum):
    """How a series ends."""
    NEVER = "never"
    ON_DATE = "on_date"
    AFTER_COUNT = "after_count"


class SeriesStatus(str, Enum):
    """Lifecycle state of a series."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELED = "canceled"


SCHEDULED_STATUSES = frozenset({SeriesStatus.ACTIVE, SeriesStatus.PAUSED})


class DocumentStatus(str, Enum):
    """Generation state of a single cycle's document."""
    PENDING = "pending"
    GENERATED = "generated"
    FAILED = "failed"


@dataclass(frozen=True)
class RecurrenceParams:
    """
    The subset of a series that drives date calculation.

    Attributes:
        frequency: The Frequency of the series.
        frequency_day: 0-6 (Sunday-Saturday) for weekday-based frequencies,
            1-31 for day-of-month frequencies.
        frequency_week: 1-5, which occurrence of the weekday in the month.
        frequency_interval: Days between documents for custom frequency.
        timezone: IANA timezone name of the series owner.
    """
    frequency: Frequency
    frequency_day: Optional[int] = None
    frequency_week: Optional[int] = None
    frequency_interval: Optional[int] = None
    timezone: str = "UTC"


@dataclass
class RecurringSeries:
    """
    Configuration and live scheduling state of one recurring series.

    The template payload (amount, currency, line_items, template, blocks)
    is copied into each generated document without interpretation.

    Attributes:
        id: Database primary key (None for new records).
        team_id: Owning team.
        user_id: Owning user; also the chat that receives notifications.
        customer_id: Optional customer reference.
        customer_name: Customer name snapshot.
        status: Current SeriesStatus.
        invoices_generated: Successfully generated documents so far.
        consecutive_failures: Failed attempts since the last success or resume.
        next_scheduled_at: When the next cycle is due (UTC). None once the
            series is completed or canceled.
        version: Incremented on every state write; used for conditional updates.
    """
    team_id: int
    user_id: int
    frequency: Frequency
    timezone: str
    end_type: EndType = EndType.NEVER
    frequency_day: Optional[int] = None
    frequency_week: Optional[int] = None
    frequency_interval: Optional[int] = None
    end_date: Optional[datetime] = None
    end_count: Optional[int] = None
    due_date_offset: int = 30
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    line_items: list[Any] = field(default_factory=list)
    template: dict[str, Any] = field(default_factory=dict)
    blocks: dict[str, Any] = field(default_factory=dict)
    status: SeriesStatus = SeriesStatus.ACTIVE
    invoices_generated: int = 0
    consecutive_failures: int = 0
    next_scheduled_at: Optional[datetime] = None
    last_generated_at: Optional[datetime] = None
    upcoming_notification_sent_at: Optional[datetime] = None
    version: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def params(self) -> RecurrenceParams:
        return RecurrenceParams(
            frequency=self.frequency,
            frequency_day=self.frequency_day,
            frequency_week=self.frequency_week,
            frequency_interval=self.frequency_interval,
            timezone=self.timezone,
        )

    @property
    def next_sequence(self) -> int:
        """Sequence number of the cycle that is due next."""
        return self.invoices_generated + 1

    def __str__(self) -> str:
        name = self.customer_name or f"series #{self.id}"
        return f"{name}: {self.amount} {self.currency} ({self.frequency.value}, {self.status.value})"


@dataclass
class GeneratedDocument:
    """
    One concrete document produced by a cycle of a series.

    (series_id, sequence) is unique: it is the idempotency key of a cycle.
    """
    series_id: Optional[int]
    sequence: int
    team_id: int
    user_id: int
    status: DocumentStatus = DocumentStatus.PENDING
    amount: Optional[float] = None
    currency: Optional[str] = None
    line_items: list[Any] = field(default_factory=list)
    template: dict[str, Any] = field(default_factory=dict)
    blocks: dict[str, Any] = field(default_factory=dict)
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    generated_at: Optional[datetime] = None
    error: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class Occurrence:
    """A projected future document: when, and for how much."""
    date: datetime
    amount: float


@dataclass(frozen=True)
class UpcomingSummary:
    """Totals of a series' projection. Totals are None for never-ending series."""
    has_end_date: bool
    total_count: Optional[int]
    total_amount: Optional[float]
    currency: str
