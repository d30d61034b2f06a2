"""
services/lifecycle_service.py
-----------------------------
Business logic for the lifecycle of a recurring series:
create, update, pause, resume and cancel.

    active ──pause──▶ paused ──resume──▶ active
      │                 │  └──resume (end reached)──▶ completed
      └──────cancel─────┴──▶ canceled (terminal)

Transitions are computed by pure functions on a copy of the series and
persisted with a version-guarded write.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from config import DEFAULT_CURRENCY, DEFAULT_DUE_DATE_OFFSET, DEFAULT_TIMEZONE
from models.recurring import (
    SCHEDULED_STATUSES,
    EndType,
    Frequency,
    GeneratedDocument,
    Occurrence,
    RecurringSeries,
    SeriesStatus,
    UpcomingSummary,
)
from repositories.document_repo import DocumentRepository
from repositories.series_repo import SeriesRepository
from services.date_calculator import (
    first_scheduled_date,
    is_completed,
    next_scheduled_date,
    upcoming_occurrences,
)
from services.errors import ConcurrentUpdateError, InvalidTransitionError, SeriesNotFoundError
from services.validation import ensure_valid_series_config
from utils.logger import get_logger

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3

_SCHEDULE_FIELDS = ("frequency", "frequency_day", "frequency_week", "frequency_interval", "timezone")
_UPDATABLE_FIELDS = _SCHEDULE_FIELDS + (
    "end_type", "end_date", "end_count", "due_date_offset",
    "customer_id", "customer_name", "amount", "currency",
    "line_items", "template", "blocks",
)


# ── Pure transitions ──────────────────────────────────────

def paused_state(series: RecurringSeries) -> RecurringSeries:
    """active -> paused. The schedule is frozen, not cleared."""
    if series.status is not SeriesStatus.ACTIVE:
        raise InvalidTransitionError(series.id, series.status, "pause")
    return replace(series, status=SeriesStatus.PAUSED)


def resumed_state(series: RecurringSeries, now: datetime) -> RecurringSeries:
    """
    paused -> active, or paused -> completed.

    The next date is computed from `now`, not from the frozen value, so
    cycles missed while paused are not generated in a burst. End conditions
    are re-checked because they may have been reached while paused.
    """
    if series.status is not SeriesStatus.PAUSED:
        raise InvalidTransitionError(series.id, series.status, "resume")

    next_at = next_scheduled_date(series.params, now)
    if is_completed(series.end_type, series.end_date, series.end_count,
                    series.invoices_generated, next_at):
        return replace(series, status=SeriesStatus.COMPLETED, next_scheduled_at=None)

    return replace(
        series,
        status=SeriesStatus.ACTIVE,
        consecutive_failures=0,
        next_scheduled_at=next_at,
    )


def canceled_state(series: RecurringSeries) -> RecurringSeries:
    """active|paused -> canceled. Generated documents are kept."""
    if series.status not in SCHEDULED_STATUSES:
        raise InvalidTransitionError(series.id, series.status, "cancel")
    return replace(series, status=SeriesStatus.CANCELED, next_scheduled_at=None)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleService:
    """
    Handles creation and state transitions of recurring series.

    Responsibilities:
        - Validate and create series with their first scheduled date.
        - Pause, resume and cancel series.
        - Reschedule a series when its frequency changes.
        - Preview the upcoming documents of a series.
    """

    def __init__(
        self,
        repo: Optional[SeriesRepository] = None,
        document_repo: Optional[DocumentRepository] = None,
    ):
        self.repo = repo or SeriesRepository()
        self.document_repo = document_repo or DocumentRepository()

    # ── Create / update ───────────────────────────────────

    def create_series(
        self,
        team_id: int,
        user_id: int,
        frequency: Frequency,
        timezone_name: str = DEFAULT_TIMEZONE,
        end_type: EndType = EndType.NEVER,
        frequency_day: Optional[int] = None,
        frequency_week: Optional[int] = None,
        frequency_interval: Optional[int] = None,
        end_date: Optional[datetime] = None,
        end_count: Optional[int] = None,
        due_date_offset: int = DEFAULT_DUE_DATE_OFFSET,
        issue_date: Optional[datetime] = None,
        customer_id: Optional[int] = None,
        customer_name: Optional[str] = None,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
        line_items: Optional[list] = None,
        template: Optional[dict] = None,
        blocks: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> RecurringSeries:
        """
        Validate and persist a new active series.

        The first cycle is due at `issue_date` if that day is still ahead,
        otherwise immediately.

        Raises:
            SeriesValidationError: If the configuration is invalid.
        """
        now = now or _utcnow()
        ensure_valid_series_config(
            frequency=frequency,
            frequency_day=frequency_day,
            frequency_week=frequency_week,
            frequency_interval=frequency_interval,
            end_type=end_type,
            end_date=end_date,
            end_count=end_count,
            timezone=timezone_name,
            due_date_offset=due_date_offset,
        )

        series = RecurringSeries(
            team_id=team_id,
            user_id=user_id,
            customer_id=customer_id,
            customer_name=customer_name,
            frequency=Frequency(frequency),
            frequency_day=frequency_day,
            frequency_week=frequency_week,
            frequency_interval=frequency_interval,
            timezone=timezone_name,
            end_type=EndType(end_type),
            end_date=end_date,
            end_count=end_count,
            due_date_offset=due_date_offset,
            amount=amount,
            currency=currency or DEFAULT_CURRENCY,
            line_items=line_items or [],
            template=template or {},
            blocks=blocks or {},
            status=SeriesStatus.ACTIVE,
            next_scheduled_at=first_scheduled_date(issue_date or now, now),
        )
        saved = self.repo.add(series)
        logger.info(
            f"Created series #{saved.id} for user {user_id}, first cycle at {saved.next_scheduled_at}"
        )
        return saved

    def update_series(
        self,
        series_id: int,
        user_id: int,
        changes: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> RecurringSeries:
        """
        Change the configuration or template payload of a scheduled series.

        When a schedule field changes on an active series, the next date is
        recomputed from `now`.

        Raises:
            ValueError: For fields that cannot be updated.
            SeriesValidationError: If the merged configuration is invalid.
            InvalidTransitionError: If the series is completed or canceled.
        """
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        now = now or _utcnow()
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = self._load(series_id, user_id)
            if current.status not in SCHEDULED_STATUSES:
                raise InvalidTransitionError(series_id, current.status, "update")

            updated = replace(current, **changes)
            updated.frequency = Frequency(updated.frequency)
            updated.end_type = EndType(updated.end_type)
            ensure_valid_series_config(
                frequency=updated.frequency,
                frequency_day=updated.frequency_day,
                frequency_week=updated.frequency_week,
                frequency_interval=updated.frequency_interval,
                end_type=updated.end_type,
                end_date=updated.end_date,
                end_count=updated.end_count,
                timezone=updated.timezone,
                due_date_offset=updated.due_date_offset,
            )

            schedule_changed = any(
                getattr(updated, name) != getattr(current, name) for name in _SCHEDULE_FIELDS
            )
            if schedule_changed and updated.status is SeriesStatus.ACTIVE:
                updated.next_scheduled_at = next_scheduled_date(updated.params, now)

            if self.repo.update_config(updated, current.version):
                logger.info(f"Updated series #{series_id} (rescheduled={schedule_changed})")
                return updated

        raise ConcurrentUpdateError(series_id, MAX_WRITE_ATTEMPTS)

    # ── Transitions ───────────────────────────────────────

    def pause(self, series_id: int, user_id: Optional[int] = None) -> RecurringSeries:
        """Pause an active series."""
        series = self._transition(series_id, user_id, paused_state)
        logger.info(f"Paused series #{series_id}")
        return series

    def resume(
        self,
        series_id: int,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RecurringSeries:
        """Resume a paused series; completes it instead if its end was reached."""
        now = now or _utcnow()
        series = self._transition(series_id, user_id, lambda s: resumed_state(s, now))
        if series.status is SeriesStatus.COMPLETED:
            logger.info(f"Series #{series_id} completed on resume (end condition already met)")
        else:
            logger.info(f"Resumed series #{series_id}, next cycle at {series.next_scheduled_at}")
        return series

    def cancel(self, series_id: int, user_id: Optional[int] = None) -> RecurringSeries:
        """Cancel a series for good. Its documents are kept."""
        series = self._transition(series_id, user_id, canceled_state)
        logger.info(f"Canceled series #{series_id}")
        return series

    # ── Read ──────────────────────────────────────────────

    def get(self, series_id: int, user_id: Optional[int] = None) -> RecurringSeries:
        return self._load(series_id, user_id)

    def list_for_user(self, user_id: int) -> list[RecurringSeries]:
        return self.repo.list_for_user(user_id)

    def documents(self, series_id: int, user_id: Optional[int] = None) -> list[GeneratedDocument]:
        """Every document row of a series (any status), in cycle order."""
        self._load(series_id, user_id)
        return self.document_repo.list_for_series(series_id)

    def document(self, series_id: int, sequence: int, user_id: Optional[int] = None) -> Optional[GeneratedDocument]:
        """The document of one cycle, or None if that cycle never ran."""
        self._load(series_id, user_id)
        return self.document_repo.get(series_id, sequence)

    def upcoming(
        self,
        series_id: int,
        user_id: Optional[int] = None,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> tuple[list[Occurrence], UpcomingSummary]:
        """Preview the next documents of a series from its next scheduled date."""
        series = self._load(series_id, user_id)
        start = series.next_scheduled_at or now or _utcnow()
        return upcoming_occurrences(
            series.params,
            start,
            series.amount or 0.0,
            series.currency or DEFAULT_CURRENCY,
            series.end_type,
            series.end_date,
            series.end_count,
            already_generated=series.invoices_generated,
            limit=limit,
        )

    # ── Helpers ───────────────────────────────────────────

    def _load(self, series_id: int, user_id: Optional[int]) -> RecurringSeries:
        series = self.repo.get_by_id(series_id, user_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    def _transition(self, series_id: int, user_id: Optional[int], compute) -> RecurringSeries:
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = self._load(series_id, user_id)
            updated = compute(current)
            if self.repo.save_state(updated, current.version):
                return updated
        raise ConcurrentUpdateError(series_id, MAX_WRITE_ATTEMPTS)
