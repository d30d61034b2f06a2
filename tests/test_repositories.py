from unittest.mock import MagicMock, patch

import pytest

from models.recurring import DocumentStatus, Frequency, GeneratedDocument, SeriesStatus
from repositories.document_repo import DocumentRepository
from repositories.series_repo import SeriesRepository
from tests.fakes import utc

NOW = utc(2025, 1, 15, 9)


def series_row(series_id: int, **overrides) -> dict:
    row = {
        "id": series_id, "team_id": 1, "user_id": 42, "customer_id": None, "customer_name": "Acme",
        "frequency": "monthly_date", "frequency_day": 15, "frequency_week": None,
        "frequency_interval": None, "timezone": "UTC",
        "end_type": "never", "end_date": None, "end_count": None, "due_date_offset": 30,
        "amount": 100, "currency": "EUR", "line_items": [], "template": {}, "blocks": None,
        "status": "active", "invoices_generated": 0, "consecutive_failures": 0,
        "next_scheduled_at": NOW, "last_generated_at": None, "upcoming_notification_sent_at": None,
        "version": 0, "created_at": NOW, "updated_at": NOW,
    }
    row.update(overrides)
    return row


def document_row(**overrides) -> dict:
    row = {
        "id": 9, "series_id": 1, "recurring_sequence": 1, "team_id": 1, "user_id": 42,
        "status": "pending", "amount": 100, "currency": "EUR", "line_items": [],
        "template": {}, "blocks": {}, "issue_date": NOW, "due_date": NOW,
        "claimed_at": NOW, "generated_at": None, "error": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def db():
    """Patch the pool in both repositories; yields (connection, cursor)."""
    conn = MagicMock()
    cur = conn.cursor.return_value.__enter__.return_value
    with patch("repositories.series_repo.get_connection", return_value=conn), \
            patch("repositories.series_repo.release_connection") as release_series, \
            patch("repositories.document_repo.get_connection", return_value=conn), \
            patch("repositories.document_repo.release_connection") as release_docs:
        conn.release_series = release_series
        conn.release_docs = release_docs
        yield conn, cur


def executed_sql(cur) -> list[str]:
    return [c.args[0] for c in cur.execute.call_args_list]


# ── SeriesRepository ──────────────────────────────────────

def test_get_due_fetches_one_extra_row(db):
    conn, cur = db
    cur.fetchall.return_value = [series_row(1), series_row(2), series_row(3)]

    batch, has_more = SeriesRepository().get_due(NOW, limit=2)

    assert [s.id for s in batch] == [1, 2]
    assert has_more is True
    sql, params = cur.execute.call_args.args
    assert "status = 'active'" in sql and "ORDER BY next_scheduled_at ASC" in sql
    assert params == (NOW, 3)
    conn.release_series.assert_called_once_with(conn)


def test_row_mapping(db):
    _, cur = db
    cur.fetchall.return_value = [series_row(5, status="paused", blocks=None, amount=12)]
    series = SeriesRepository().get_by_id(5, user_id=42)

    assert series.frequency is Frequency.MONTHLY_DATE
    assert series.status is SeriesStatus.PAUSED
    assert series.amount == 12.0
    assert series.blocks == {}
    assert "AND user_id = %s" in cur.execute.call_args.args[0]


def test_upcoming_query_excludes_current_cycle_notices(db):
    _, cur = db
    cur.fetchall.return_value = []
    SeriesRepository().get_upcoming_due(NOW, hours_ahead=24, limit=100)

    sql, params = cur.execute.call_args.args
    assert "upcoming_notification_sent_at <= next_scheduled_at - %(stale_window)s" in sql
    assert params["stale_window"].total_seconds() == 25 * 3600
    assert params["limit"] == 101


def test_save_state_is_version_guarded(db):
    conn, cur = db
    cur.rowcount = 1
    series = SeriesRepository._row_to_series(series_row(1, version=4))

    assert SeriesRepository().save_state(series, expected_version=4) is True
    sql, params = cur.execute.call_args.args
    assert "WHERE id = %(id)s AND version = %(expected_version)s" in sql
    assert params["expected_version"] == 4
    assert series.version == 5
    conn.commit.assert_called_once()


def test_save_state_reports_conflict(db):
    _, cur = db
    cur.rowcount = 0
    series = SeriesRepository._row_to_series(series_row(1, version=4))

    assert SeriesRepository().save_state(series, expected_version=4) is False
    assert series.version == 4


def test_add_rolls_back_and_raises_on_error(db):
    conn, cur = db
    cur.execute.side_effect = RuntimeError("connection reset")
    series = SeriesRepository._row_to_series(series_row(None))

    with pytest.raises(RuntimeError):
        SeriesRepository().add(series)
    conn.rollback.assert_called_once()
    conn.release_series.assert_called_once_with(conn)


# ── DocumentRepository ────────────────────────────────────

def make_document() -> GeneratedDocument:
    return GeneratedDocument(series_id=1, sequence=1, team_id=1, user_id=42, claimed_at=NOW)


def test_claim_inserts_with_conflict_guard(db):
    conn, cur = db
    cur.fetchone.return_value = document_row()

    document = DocumentRepository().claim(make_document(), stale_before=NOW)

    assert document.id == 9
    assert document.status is DocumentStatus.PENDING
    (sql,) = executed_sql(cur)
    assert "ON CONFLICT (series_id, recurring_sequence) DO NOTHING" in sql
    conn.commit.assert_called_once()


def test_claim_falls_back_to_conditional_reclaim(db):
    _, cur = db
    cur.fetchone.side_effect = [None, None]

    assert DocumentRepository().claim(make_document(), stale_before=NOW) is None
    insert_sql, reclaim_sql = executed_sql(cur)
    assert "status = 'failed'" in reclaim_sql
    assert "claimed_at < %(stale_before)s" in reclaim_sql


def test_record_success_rolls_back_on_version_conflict(db):
    conn, cur = db
    cur.rowcount = 0
    document = DocumentRepository._row_to_document(document_row())
    series = SeriesRepository._row_to_series(series_row(1, version=2))

    assert DocumentRepository().record_success(document, NOW, series, 2) is False
    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()
    assert document.status is DocumentStatus.PENDING


def test_record_success_writes_document_and_series_together(db):
    conn, cur = db
    cur.rowcount = 1
    document = DocumentRepository._row_to_document(document_row())
    series = SeriesRepository._row_to_series(series_row(1, version=2))

    assert DocumentRepository().record_success(document, NOW, series, 2) is True
    doc_sql, state_sql = executed_sql(cur)
    assert "status = 'generated'" in doc_sql
    assert "UPDATE recurring_series" in state_sql
    conn.commit.assert_called_once()
    assert document.status is DocumentStatus.GENERATED
    assert series.version == 3


def test_get_document_of_one_cycle(db):
    conn, cur = db
    cur.fetchall.return_value = [document_row(status="generated", generated_at=NOW)]

    document = DocumentRepository().get(1, 1)

    assert document.status is DocumentStatus.GENERATED
    assert document.sequence == 1
    sql, params = cur.execute.call_args.args
    assert "WHERE series_id = %s AND recurring_sequence = %s" in sql
    assert params == (1, 1)
    conn.release_docs.assert_called_once_with(conn)


def test_get_missing_document_returns_none(db):
    _, cur = db
    cur.fetchall.return_value = []
    assert DocumentRepository().get(1, 5) is None


def test_list_for_series_in_cycle_order(db):
    _, cur = db
    cur.fetchall.return_value = [
        document_row(id=1, recurring_sequence=1, status="generated"),
        document_row(id=2, recurring_sequence=2, status="failed", error="timeout"),
    ]

    documents = DocumentRepository().list_for_series(1)

    assert [(d.sequence, d.status) for d in documents] == [
        (1, DocumentStatus.GENERATED), (2, DocumentStatus.FAILED),
    ]
    sql, params = cur.execute.call_args.args
    assert "ORDER BY recurring_sequence ASC" in sql
    assert params == (1,)
