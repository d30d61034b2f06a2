import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from handlers import series_handler
from handlers.series_handler import format_series_line, parse_series_args, parse_update_args
from models.recurring import EndType, Frequency, RecurringSeries, SeriesStatus
from services.lifecycle_service import LifecycleService
from services.generation_service import build_document
from tests.fakes import utc


def make_update(user_id: int = 42):
    return SimpleNamespace(
        effective_user=SimpleNamespace(id=user_id, first_name="Dana"),
        message=SimpleNamespace(reply_text=AsyncMock()),
    )


def make_context(*args):
    return SimpleNamespace(args=list(args))


def replied_text(update) -> str:
    return update.message.reply_text.await_args.args[0]


# ── parse_series_args ─────────────────────────────────────

def test_parse_monthly_with_currency():
    parsed = parse_series_args("Acme Corp | 150 eur | monthly | 15")
    assert parsed == {
        "customer_name": "Acme Corp",
        "amount": 150.0,
        "currency": "EUR",
        "frequency": Frequency.MONTHLY_DATE,
        "frequency_day": 15,
        "end_type": EndType.NEVER,
    }


def test_parse_weekly_day_name():
    parsed = parse_series_args("Globex | 40 | weekly | fri")
    assert parsed["frequency"] is Frequency.WEEKLY
    assert parsed["frequency_day"] == 5


def test_parse_monthly_weekday_with_count():
    parsed = parse_series_args("Initech | 200,50 | monthly_weekday | 2 tuesday | count 12")
    assert parsed["amount"] == 200.5
    assert (parsed["frequency_week"], parsed["frequency_day"]) == (2, 2)
    assert (parsed["end_type"], parsed["end_count"]) == (EndType.AFTER_COUNT, 12)


def test_parse_custom_until_date():
    parsed = parse_series_args("Hooli | 99 | custom | 14 | until 2027-06-30")
    assert parsed["frequency_interval"] == 14
    assert parsed["end_type"] is EndType.ON_DATE
    assert parsed["end_date"].date().isoformat() == "2027-06-30"


@pytest.mark.parametrize("text", [
    "Acme | 150",
    "Acme | lots | monthly | 15",
    "Acme | 150 | fortnightly | 15",
    "Acme | 150 | weekly | someday",
    "Acme | 150 | monthly_weekday | tuesday",
    "Acme | 150 | monthly | 15 | forever and ever",
    " | 150 | monthly | 15",
])
def test_parse_rejects_malformed_input(text):
    assert parse_series_args(text) is None


def test_series_line_shows_failures_of_paused_series():
    series = RecurringSeries(
        id=3, team_id=1, user_id=42, frequency=Frequency.MONTHLY_DATE, frequency_day=1,
        timezone="UTC", customer_name="Acme", amount=10.0, currency="EUR",
        status=SeriesStatus.PAUSED, consecutive_failures=3, invoices_generated=2,
        next_scheduled_at=utc(2025, 2, 1), last_generated_at=utc(2025, 1, 1),
    )
    line = format_series_line(series)
    assert "#3 Acme" in line
    assert "Paused" in line
    assert "3 failed attempt(s), last generated: 2025-01-01" in line


# ── Commands ──────────────────────────────────────────────

@pytest.fixture
def lifecycle(series_repo, document_repo):
    service = LifecycleService(repo=series_repo, document_repo=document_repo)
    with patch.object(series_handler, "lifecycle_service", service):
        yield service


def test_add_series_creates_owned_series(lifecycle, series_repo):
    update = make_update()
    context = make_context(*"Acme | 150 EUR | monthly | 15".split())
    asyncio.run(series_handler.add_series_command(update, context))

    (stored,) = series_repo.rows.values()
    assert stored.user_id == 42
    assert stored.customer_name == "Acme"
    assert f"Series #{stored.id} created" in replied_text(update)


def test_add_series_reports_validation_errors(lifecycle, series_repo):
    update = make_update()
    context = make_context(*"Acme | 150 | monthly | 40".split())
    asyncio.run(series_handler.add_series_command(update, context))

    assert series_repo.rows == {}
    assert "Day of month must be 1-31" in replied_text(update)


def test_pause_of_foreign_series_is_not_found(lifecycle, make_series):
    series = make_series(user_id=7)
    update = make_update(user_id=42)
    asyncio.run(series_handler.pause_command(update, make_context(str(series.id))))
    assert "not found" in replied_text(update)


def test_resume_of_active_series_is_rejected(lifecycle, make_series):
    series = make_series()
    update = make_update()
    asyncio.run(series_handler.resume_command(update, make_context(str(series.id))))
    assert "Cannot resume" in replied_text(update)


def test_cancel_without_id_shows_usage(lifecycle):
    update = make_update()
    asyncio.run(series_handler.cancel_command(update, make_context()))
    assert "Usage: /cancel" in replied_text(update)


def test_series_detail_lists_documents(lifecycle, document_repo, make_series):
    series = make_series()
    document_repo.claim(build_document(series, 1, utc(2025, 1, 15, 9)), stale_before=utc(2025, 1, 15))
    document_repo.mark_failed(1, "renderer unavailable")

    update = make_update()
    asyncio.run(series_handler.series_command(update, make_context(str(series.id))))

    text = replied_text(update)
    assert f"#{series.id} Acme" in text
    assert "Cycle 1: failed" in text
    assert "renderer unavailable" in text


def test_series_detail_of_one_cycle(lifecycle, make_series):
    series = make_series()
    update = make_update()
    asyncio.run(series_handler.series_command(update, make_context(str(series.id), "2")))
    assert "Cycle 2 of series" in replied_text(update)


def test_series_detail_of_foreign_series_is_not_found(lifecycle, make_series):
    series = make_series(user_id=7)
    update = make_update(user_id=42)
    asyncio.run(series_handler.series_command(update, make_context(str(series.id))))
    assert "not found" in replied_text(update)


# ── /update_series ────────────────────────────────────────

@pytest.mark.parametrize("field,value,expected", [
    ("amount", "180", {"amount": 180.0}),
    ("amount", "180 usd", {"amount": 180.0, "currency": "USD"}),
    ("customer", "Acme Ltd", {"customer_name": "Acme Ltd"}),
    ("due", "14", {"due_date_offset": 14}),
    ("end", "count 6", {"end_type": EndType.AFTER_COUNT, "end_date": None, "end_count": 6}),
    ("schedule", "weekly friday", {
        "frequency": Frequency.WEEKLY, "frequency_day": 5,
        "frequency_week": None, "frequency_interval": None,
    }),
])
def test_parse_update_args(field, value, expected):
    assert parse_update_args(field, value) == expected


@pytest.mark.parametrize("field,value", [
    ("amount", "lots"), ("customer", ""), ("schedule", "fortnightly"),
    ("end", "someday"), ("due", "-3"), ("status", "active"),
])
def test_parse_update_args_rejects_malformed_input(field, value):
    assert parse_update_args(field, value) is None


def test_update_series_changes_amount(lifecycle, series_repo, make_series):
    series = make_series()
    update = make_update()
    asyncio.run(series_handler.update_series_command(
        update, make_context(str(series.id), "amount", "180", "USD"),
    ))

    stored = series_repo.rows[series.id]
    assert (stored.amount, stored.currency) == (180.0, "USD")
    assert f"Series #{series.id} updated" in replied_text(update)


def test_update_series_rejects_invalid_schedule(lifecycle, series_repo, make_series):
    series = make_series()
    update = make_update()
    asyncio.run(series_handler.update_series_command(
        update, make_context(str(series.id), "schedule", "monthly", "40"),
    ))

    assert series_repo.rows[series.id].frequency_day == 15
    assert "Day of month must be 1-31" in replied_text(update)


def test_update_series_without_change_shows_usage(lifecycle, make_series):
    series = make_series()
    update = make_update()
    asyncio.run(series_handler.update_series_command(update, make_context(str(series.id))))
    assert "Update a recurring series" in replied_text(update)
