import pytest

from models.recurring import EndType, Frequency, SeriesStatus
from services.errors import InvalidTransitionError, SeriesNotFoundError
from services.generation_service import build_document
from services.lifecycle_service import (
    LifecycleService,
    canceled_state,
    paused_state,
    resumed_state,
)
from services.validation import SeriesValidationError
from tests.fakes import utc

NOW = utc(2025, 3, 10, 12)


@pytest.fixture
def service(series_repo, document_repo):
    return LifecycleService(repo=series_repo, document_repo=document_repo)


# ── Pure transitions ──────────────────────────────────────

def test_pause_keeps_schedule(make_series):
    series = make_series()
    paused = paused_state(series)
    assert paused.status is SeriesStatus.PAUSED
    assert paused.next_scheduled_at == series.next_scheduled_at
    assert series.status is SeriesStatus.ACTIVE


def test_resume_reschedules_from_now_and_resets_failures(make_series):
    series = make_series(status=SeriesStatus.PAUSED, consecutive_failures=3,
                         next_scheduled_at=utc(2024, 11, 15, 9))
    resumed = resumed_state(series, NOW)
    assert resumed.status is SeriesStatus.ACTIVE
    assert resumed.consecutive_failures == 0
    assert resumed.next_scheduled_at == utc(2025, 4, 15, 12)


def test_resume_completes_series_whose_end_date_passed(make_series):
    series = make_series(status=SeriesStatus.PAUSED, end_type=EndType.ON_DATE,
                         end_date=utc(2025, 3, 31))
    resumed = resumed_state(series, NOW)
    assert resumed.status is SeriesStatus.COMPLETED
    assert resumed.next_scheduled_at is None


def test_resume_completes_series_whose_count_was_reached(make_series):
    series = make_series(status=SeriesStatus.PAUSED, end_type=EndType.AFTER_COUNT,
                         end_count=4, invoices_generated=4)
    assert resumed_state(series, NOW).status is SeriesStatus.COMPLETED


def test_cancel_clears_schedule(make_series):
    canceled = canceled_state(make_series(status=SeriesStatus.PAUSED))
    assert canceled.status is SeriesStatus.CANCELED
    assert canceled.next_scheduled_at is None


@pytest.mark.parametrize("status,transition", [
    (SeriesStatus.PAUSED, paused_state),
    (SeriesStatus.COMPLETED, paused_state),
    (SeriesStatus.ACTIVE, lambda s: resumed_state(s, NOW)),
    (SeriesStatus.CANCELED, lambda s: resumed_state(s, NOW)),
    (SeriesStatus.COMPLETED, canceled_state),
    (SeriesStatus.CANCELED, canceled_state),
])
def test_invalid_transitions_raise(make_series, status, transition):
    series = make_series(status=status)
    with pytest.raises(InvalidTransitionError):
        transition(series)


# ── Service ───────────────────────────────────────────────

def test_service_persists_transitions(service, series_repo, make_series):
    series = make_series()
    service.pause(series.id, user_id=42)
    assert series_repo.rows[series.id].status is SeriesStatus.PAUSED

    service.resume(series.id, user_id=42, now=NOW)
    stored = series_repo.rows[series.id]
    assert stored.status is SeriesStatus.ACTIVE
    assert stored.next_scheduled_at > NOW

    service.cancel(series.id, user_id=42)
    stored = series_repo.rows[series.id]
    assert stored.status is SeriesStatus.CANCELED
    assert stored.next_scheduled_at is None
    assert stored.version == 3


def test_service_scopes_series_to_owner(service, make_series):
    series = make_series(user_id=42)
    with pytest.raises(SeriesNotFoundError):
        service.pause(series.id, user_id=7)


def test_service_missing_series(service):
    with pytest.raises(SeriesNotFoundError):
        service.cancel(999)


def test_create_series_due_now_when_issue_date_is_today(service, series_repo):
    series = service.create_series(
        team_id=1, user_id=42, frequency=Frequency.WEEKLY, frequency_day=1,
        customer_name="Globex", amount=40.0, now=NOW,
    )
    assert series.id in series_repo.rows
    assert series.status is SeriesStatus.ACTIVE
    assert series.next_scheduled_at == NOW
    assert series.currency == "USD"


def test_create_series_with_future_issue_date(service):
    issue = utc(2025, 4, 1, 8)
    series = service.create_series(
        team_id=1, user_id=42, frequency="monthly_date", frequency_day=1,
        issue_date=issue, now=NOW,
    )
    assert series.frequency is Frequency.MONTHLY_DATE
    assert series.next_scheduled_at == issue


def test_create_series_rejects_invalid_config(service, series_repo):
    with pytest.raises(SeriesValidationError):
        service.create_series(team_id=1, user_id=42, frequency=Frequency.BIWEEKLY, frequency_day=1)
    assert series_repo.rows == {}


def test_update_schedule_reschedules_active_series(service, series_repo, make_series):
    series = make_series()
    updated = service.update_series(
        series.id, 42, {"frequency": Frequency.CUSTOM, "frequency_interval": 10}, now=NOW,
    )
    assert updated.next_scheduled_at == utc(2025, 3, 20, 12)
    assert series_repo.rows[series.id].frequency is Frequency.CUSTOM


def test_update_payload_keeps_schedule(service, series_repo, make_series):
    series = make_series()
    updated = service.update_series(series.id, 42, {"amount": 250.0}, now=NOW)
    assert updated.next_scheduled_at == series.next_scheduled_at
    assert series_repo.rows[series.id].amount == 250.0


def test_update_rejects_unknown_fields_and_terminal_series(service, make_series):
    series = make_series()
    with pytest.raises(ValueError):
        service.update_series(series.id, 42, {"invoices_generated": 0})

    done = make_series(status=SeriesStatus.COMPLETED, next_scheduled_at=None)
    with pytest.raises(InvalidTransitionError):
        service.update_series(done.id, 42, {"amount": 1.0})


def test_upcoming_preview(service, make_series):
    series = make_series(end_type=EndType.AFTER_COUNT, end_count=3, invoices_generated=1)
    occurrences, summary = service.upcoming(series.id, 42)
    assert [o.date for o in occurrences] == [utc(2025, 1, 15, 9), utc(2025, 2, 15, 9)]
    assert summary.total_count == 3
    assert summary.total_amount == 300.0


def test_documents_are_scoped_to_owner(service, document_repo, make_series):
    series = make_series(user_id=42)
    document_repo.claim(build_document(series, 1, NOW), stale_before=NOW)

    assert [d.sequence for d in service.documents(series.id, 42)] == [1]
    assert service.document(series.id, 1, 42).sequence == 1
    assert service.document(series.id, 2, 42) is None
    with pytest.raises(SeriesNotFoundError):
        service.documents(series.id, 7)
