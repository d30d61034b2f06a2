"""
services/notification_service.py
--------------------------------
Advance notices for series whose next document is due soon.
Called by the scheduler on its own tick.
"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from config import UPCOMING_BATCH_SIZE, UPCOMING_LOOKAHEAD_HOURS
from models.recurring import RecurringSeries, SeriesStatus
from repositories.series_repo import SeriesRepository
from utils.logger import get_logger

logger = get_logger(__name__)

# Delivers one batch of due-soon series. Raises if delivery failed.
UpcomingNotifier = Callable[[list[RecurringSeries]], Awaitable[None]]


def needs_upcoming_notice(series: RecurringSeries, now: datetime, hours_ahead: int) -> bool:
    """
    Whether `series` should get an advance notice for its current cycle.

    It must be active and due within (now, now + hours_ahead]. A notice
    recorded at or before next_scheduled_at - (hours_ahead + 1)h was sent
    for an earlier cycle and is ignored.
    """
    if series.status is not SeriesStatus.ACTIVE or series.next_scheduled_at is None:
        return False
    if not now < series.next_scheduled_at <= now + timedelta(hours=hours_ahead):
        return False
    sent_at = series.upcoming_notification_sent_at
    if sent_at is None:
        return True
    return sent_at <= series.next_scheduled_at - timedelta(hours=hours_ahead + 1)


class UpcomingNotificationService:
    """
    Selects due-soon series and hands them to the notifier.

    A series is stamped as notified only after the notifier returns, so a
    failed delivery is retried on the next tick.
    """

    def __init__(
        self,
        notifier: UpcomingNotifier,
        repo: Optional[SeriesRepository] = None,
        hours_ahead: int = UPCOMING_LOOKAHEAD_HOURS,
    ):
        self.notifier = notifier
        self.repo = repo or SeriesRepository()
        self.hours_ahead = hours_ahead

    def select(
        self,
        now: datetime,
        limit: int = UPCOMING_BATCH_SIZE,
    ) -> tuple[list[RecurringSeries], bool]:
        """One batch of series needing a notice, and whether more are waiting."""
        batch, has_more = self.repo.get_upcoming_due(now, self.hours_ahead, limit)
        return [s for s in batch if needs_upcoming_notice(s, now, self.hours_ahead)], has_more

    async def notify_upcoming(
        self,
        now: Optional[datetime] = None,
        limit: int = UPCOMING_BATCH_SIZE,
    ) -> int:
        """
        Send advance notices for one batch.

        Returns:
            Number of series notified.
        """
        now = now or datetime.now(timezone.utc)
        batch, has_more = self.select(now, limit)
        if not batch:
            logger.info("No upcoming recurring documents to announce")
            return 0

        try:
            await self.notifier(batch)
        except Exception as e:
            logger.error(f"Failed to send {len(batch)} upcoming notice(s): {e}")
            return 0

        for series in batch:
            self.repo.mark_upcoming_notification_sent(series.id, now)
            series.upcoming_notification_sent_at = now

        logger.info(f"Sent {len(batch)} upcoming notice(s) (more pending: {has_more})")
        return len(batch)
