"""
services/generation_service.py
------------------------------
Generates one document per (series, cycle) and advances the series.

Workflow of one cycle:
    1. Claim the (series id, sequence) slot in storage. A lost claim means
       another tick or a redelivered work item already owns this cycle.
    2. Hand the document to the executor (render/send), awaited with a timeout.
    3. On success: count it, move the schedule forward from the previous
       scheduled date, skip missed cycles, complete the series if its end
       is reached.
       On failure: count the failure, keep the schedule so the same cycle
       is retried next tick, pause the series after repeated failures.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from config import (
    CATCH_UP_MAX_ITERATIONS,
    CLAIM_STALE_AFTER_MINUTES,
    DUE_BATCH_SIZE,
    GENERATION_TIMEOUT_SECONDS,
    MAX_CONSECUTIVE_FAILURES,
)
from models.recurring import GeneratedDocument, RecurringSeries, SeriesStatus
from repositories.document_repo import DocumentRepository
from repositories.series_repo import SeriesRepository
from services.date_calculator import advance_to_future, is_completed, next_scheduled_date
from services.errors import ConcurrentUpdateError, SeriesNotFoundError, UnrecordedGenerationError
from utils.logger import get_logger

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3

# Renders/sends a claimed document. Raises on failure.
DocumentExecutor = Callable[[RecurringSeries, GeneratedDocument], Awaitable[None]]
# Told about series that completed or were auto-paused during a tick.
SeriesEventNotifier = Callable[[str, RecurringSeries], Awaitable[None]]


# ── Pure state changes ────────────────────────────────────

def apply_generation_success(
    series: RecurringSeries,
    now: datetime,
    max_catch_up: int = CATCH_UP_MAX_ITERATIONS,
) -> RecurringSeries:
    """
    State of `series` after its current cycle was generated.

    The next date is computed from the previous scheduled date, not from
    `now`, so the cadence ("every 2nd Friday") is kept however late the
    tick ran. If that date is still not in the future the schedule is
    stepped forward, at most `max_catch_up` times.
    """
    generated = series.invoices_generated + 1
    base = series.next_scheduled_at or now
    candidate = next_scheduled_date(series.params, base)
    next_at, skipped, hit_limit = advance_to_future(series.params, candidate, now, max_catch_up)
    if skipped:
        logger.info(f"Series #{series.id} skipped {skipped} missed cycle(s)")
    if hit_limit:
        logger.warning(f"Series #{series.id} hit the catch-up limit; rescheduled from now")

    updated = replace(
        series,
        invoices_generated=generated,
        consecutive_failures=0,
        last_generated_at=now,
    )

    if series.status is SeriesStatus.CANCELED:
        # Canceled while the document was in flight: count it, stay canceled.
        return updated

    if is_completed(series.end_type, series.end_date, series.end_count, generated, next_at):
        updated.status = SeriesStatus.COMPLETED
        updated.next_scheduled_at = None
    else:
        updated.next_scheduled_at = next_at
    return updated


def apply_generation_failure(
    series: RecurringSeries,
    threshold: int = MAX_CONSECUTIVE_FAILURES,
) -> tuple[RecurringSeries, bool]:
    """
    State of `series` after a failed attempt, and whether it was auto-paused.

    The schedule is left unchanged so the same cycle is retried.
    """
    failures = series.consecutive_failures + 1
    updated = replace(series, consecutive_failures=failures)
    auto_paused = series.status is SeriesStatus.ACTIVE and failures >= threshold
    if auto_paused:
        updated.status = SeriesStatus.PAUSED
    return updated, auto_paused


def build_document(series: RecurringSeries, sequence: int, now: datetime) -> GeneratedDocument:
    """A pending document for one cycle, with the template payload copied as is."""
    return GeneratedDocument(
        series_id=series.id,
        sequence=sequence,
        team_id=series.team_id,
        user_id=series.user_id,
        amount=series.amount,
        currency=series.currency,
        line_items=series.line_items,
        template=series.template,
        blocks=series.blocks,
        issue_date=now,
        due_date=now + timedelta(days=series.due_date_offset),
        claimed_at=now,
    )


@dataclass
class CycleResult:
    """Outcome of one attempted cycle: 'generated', 'skipped' or 'failed'."""
    series_id: int
    sequence: int
    outcome: str
    document_id: Optional[int] = None
    error: Optional[str] = None
    series: Optional[RecurringSeries] = None


@dataclass
class TickResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    has_more: bool = False
    results: list[CycleResult] = field(default_factory=list)


class GenerationEngine:
    """
    Turns due cycles into documents exactly once.

    Duplicate attempts at the same cycle (overlapping ticks, redelivered
    work, manual retries) are resolved by the storage-level uniqueness of
    (series id, sequence), never by locks in this process.
    """

    def __init__(
        self,
        executor: DocumentExecutor,
        series_repo: Optional[SeriesRepository] = None,
        document_repo: Optional[DocumentRepository] = None,
        on_series_event: Optional[SeriesEventNotifier] = None,
        timeout_seconds: float = GENERATION_TIMEOUT_SECONDS,
        failure_threshold: int = MAX_CONSECUTIVE_FAILURES,
        claim_stale_after: timedelta = timedelta(minutes=CLAIM_STALE_AFTER_MINUTES),
    ):
        self.executor = executor
        self.series_repo = series_repo or SeriesRepository()
        self.document_repo = document_repo or DocumentRepository()
        self.on_series_event = on_series_event
        self.timeout_seconds = timeout_seconds
        self.failure_threshold = failure_threshold
        self.claim_stale_after = claim_stale_after

    async def run_due(self, now: Optional[datetime] = None, limit: int = DUE_BATCH_SIZE) -> TickResult:
        """
        One scheduler tick: generate every due series in one batch.

        Series are independent; a failure in one does not stop the batch.
        """
        now = now or datetime.now(timezone.utc)
        due, has_more = self.series_repo.get_due(now, limit)
        result = TickResult(has_more=has_more)

        if not due:
            logger.info("No recurring series due for generation")
            return result
        logger.info(f"Found {len(due)} recurring series to process (more pending: {has_more})")

        for series in due:
            try:
                cycle = await self.generate_cycle(series, now)
            except UnrecordedGenerationError as e:
                logger.error(str(e))
                cycle = CycleResult(series.id, e.sequence, "failed", e.document_id, error=str(e))
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(f"Error processing series #{series.id}: {error}")
                updated = await self._record_failure_after_error(series.id, now)
                cycle = CycleResult(series.id, series.next_sequence, "failed", error=error, series=updated)
            result.results.append(cycle)
            if cycle.outcome == "generated":
                result.processed += 1
            elif cycle.outcome == "skipped":
                result.skipped += 1
            else:
                result.failed += 1

        logger.info(
            f"Recurring scheduler tick done: processed={result.processed} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result

    async def generate_cycle(self, series: RecurringSeries, now: datetime) -> CycleResult:
        """Claim, generate and record the next cycle of `series`."""
        sequence = series.next_sequence
        document = self.document_repo.claim(
            build_document(series, sequence, now),
            stale_before=now - self.claim_stale_after,
        )
        if document is None:
            logger.info(f"Cycle {sequence} of series #{series.id} already claimed, skipping")
            return CycleResult(series.id, sequence, "skipped")

        try:
            await asyncio.wait_for(self.executor(series, document), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Failed to generate cycle {sequence} of series #{series.id}: {error}")
            self.document_repo.mark_failed(document.id, error)
            updated = await self.record_failure(series.id, now)
            return CycleResult(series.id, sequence, "failed", document.id, error, updated)

        try:
            updated = await self.record_success(series.id, document, now)
        except Exception as e:
            raise UnrecordedGenerationError(series.id, sequence, document.id, e) from e
        logger.info(f"Generated document #{document.id} (cycle {sequence}) for series #{series.id}")
        return CycleResult(series.id, sequence, "generated", document.id, series=updated)

    async def record_success(
        self,
        series_id: int,
        document: GeneratedDocument,
        now: datetime,
    ) -> RecurringSeries:
        """Advance the series after `document` was generated."""
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = self._load(series_id)
            updated = apply_generation_success(current, now)
            if self.document_repo.record_success(document, now, updated, current.version):
                if updated.status is SeriesStatus.COMPLETED:
                    logger.info(f"Series #{series_id} completed after {updated.invoices_generated} document(s)")
                    await self._emit("completed", updated)
                return updated
        raise ConcurrentUpdateError(series_id, MAX_WRITE_ATTEMPTS)

    async def record_failure(self, series_id: int, now: datetime) -> RecurringSeries:
        """Count a failed attempt; pause the series at the failure threshold."""
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = self._load(series_id)
            updated, auto_paused = apply_generation_failure(current, self.failure_threshold)
            if self.series_repo.save_state(updated, current.version):
                if auto_paused:
                    logger.warning(
                        f"Auto-paused series #{series_id} after {updated.consecutive_failures} consecutive failures"
                    )
                    await self._emit("paused", updated)
                return updated
        raise ConcurrentUpdateError(series_id, MAX_WRITE_ATTEMPTS)

    async def _record_failure_after_error(self, series_id: int, now: datetime) -> Optional[RecurringSeries]:
        """Count a failed attempt after a storage error; a second error only gets logged."""
        try:
            return await self.record_failure(series_id, now)
        except Exception as e:
            logger.error(f"Could not record failure of series #{series_id}: {e}")
            return None

    def _load(self, series_id: int) -> RecurringSeries:
        series = self.series_repo.get_by_id(series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    async def _emit(self, event: str, series: RecurringSeries) -> None:
        if self.on_series_event is None:
            return
        try:
            await self.on_series_event(event, series)
        except Exception as e:
            # State is already committed at this point.
            logger.error(f"Failed to notify '{event}' for series #{series.id}: {e}")
