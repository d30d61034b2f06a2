import asyncio
from datetime import timedelta

import pytest

from models.recurring import SeriesStatus
from services.notification_service import UpcomingNotificationService, needs_upcoming_notice
from tests.fakes import utc

NOW = utc(2025, 1, 14, 10)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.batches = []

    async def __call__(self, batch):
        if self.fail:
            raise ConnectionError("telegram unreachable")
        self.batches.append([s.id for s in batch])


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(notifier, series_repo):
    return UpcomingNotificationService(notifier, repo=series_repo, hours_ahead=24)


def test_due_within_window_needs_notice(make_series):
    series = make_series(next_scheduled_at=NOW + timedelta(hours=5))
    assert needs_upcoming_notice(series, NOW, 24) is True


@pytest.mark.parametrize("offset", [timedelta(hours=-1), timedelta(0), timedelta(hours=25)])
def test_outside_window_needs_no_notice(make_series, offset):
    series = make_series(next_scheduled_at=NOW + offset)
    assert needs_upcoming_notice(series, NOW, 24) is False


def test_paused_series_needs_no_notice(make_series):
    series = make_series(status=SeriesStatus.PAUSED, next_scheduled_at=NOW + timedelta(hours=5))
    assert needs_upcoming_notice(series, NOW, 24) is False


def test_notice_for_current_cycle_is_not_repeated(make_series):
    next_at = NOW + timedelta(hours=5)
    series = make_series(next_scheduled_at=next_at, upcoming_notification_sent_at=NOW - timedelta(hours=2))
    assert needs_upcoming_notice(series, NOW, 24) is False


def test_notice_from_previous_cycle_is_ignored(make_series):
    next_at = NOW + timedelta(hours=5)
    series = make_series(next_scheduled_at=next_at, upcoming_notification_sent_at=next_at - timedelta(days=7))
    assert needs_upcoming_notice(series, NOW, 24) is True


def test_stale_boundary_is_inclusive(make_series):
    next_at = NOW + timedelta(hours=5)
    sent_at = next_at - timedelta(hours=25)
    series = make_series(next_scheduled_at=next_at, upcoming_notification_sent_at=sent_at)
    assert needs_upcoming_notice(series, NOW, 24) is True


def test_notify_stamps_series_once_delivered(service, notifier, series_repo, make_series):
    soon = make_series(next_scheduled_at=NOW + timedelta(hours=3))
    make_series(next_scheduled_at=NOW + timedelta(days=3))

    assert asyncio.run(service.notify_upcoming(NOW)) == 1
    assert notifier.batches == [[soon.id]]
    assert series_repo.rows[soon.id].upcoming_notification_sent_at == NOW

    assert asyncio.run(service.notify_upcoming(NOW + timedelta(hours=1))) == 0
    assert len(notifier.batches) == 1


def test_failed_delivery_is_retried_next_tick(series_repo, make_series):
    series = make_series(next_scheduled_at=NOW + timedelta(hours=3))
    failing = UpcomingNotificationService(RecordingNotifier(fail=True), repo=series_repo)

    assert asyncio.run(failing.notify_upcoming(NOW)) == 0
    assert series_repo.rows[series.id].upcoming_notification_sent_at is None

    working = UpcomingNotificationService(RecordingNotifier(), repo=series_repo)
    assert asyncio.run(working.notify_upcoming(NOW)) == 1


def test_select_reports_more_pending(service, make_series):
    for hours in (1, 2, 3):
        make_series(next_scheduled_at=NOW + timedelta(hours=hours))
    batch, has_more = service.select(NOW, limit=2)
    assert len(batch) == 2
    assert has_more is True
