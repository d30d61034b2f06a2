"""
repositories/series_repo.py
---------------------------
Data access layer for recurring series.
All SQL queries related to the `recurring_series` table live here.

State changes are written with a single conditional UPDATE guarded by the
row's `version`, so two ticks that read the same series cannot overwrite
each other's counters.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from psycopg2 import extras

from db.connection import get_connection, release_connection
from models.recurring import EndType, Frequency, RecurringSeries, SeriesStatus
from utils.logger import get_logger

logger = get_logger(__name__)

SERIES_COLUMNS = """
    id, team_id, user_id, customer_id, customer_name,
    frequency, frequency_day, frequency_week, frequency_interval, timezone,
    end_type, end_date, end_count, due_date_offset,
    amount, currency, line_items, template, blocks,
    status, invoices_generated, consecutive_failures,
    next_scheduled_at, last_generated_at, upcoming_notification_sent_at,
    version, created_at, updated_at
"""

STATE_UPDATE_SQL = """
    UPDATE recurring_series
    SET status = %(status)s,
        invoices_generated = %(invoices_generated)s,
        consecutive_failures = %(consecutive_failures)s,
        next_scheduled_at = %(next_scheduled_at)s,
        last_generated_at = %(last_generated_at)s,
        version = version + 1,
        updated_at = NOW()
    WHERE id = %(id)s AND version = %(expected_version)s;
"""


def state_params(series: RecurringSeries, expected_version: int) -> dict:
    """Bind parameters for STATE_UPDATE_SQL."""
    return {
        "id": series.id,
        "expected_version": expected_version,
        "status": series.status.value,
        "invoices_generated": series.invoices_generated,
        "consecutive_failures": series.consecutive_failures,
        "next_scheduled_at": series.next_scheduled_at,
        "last_generated_at": series.last_generated_at,
    }


class SeriesRepository:
    """Repository for the recurring_series table."""

    # ── CREATE ────────────────────────────────────────────

    def add(self, series: RecurringSeries) -> RecurringSeries:
        """
        Insert a new series.

        Returns:
            The same object with `id`, `created_at` and `updated_at` populated.
        """
        sql = """
            INSERT INTO recurring_series
                (team_id, user_id, customer_id, customer_name,
                 frequency, frequency_day, frequency_week, frequency_interval, timezone,
                 end_type, end_date, end_count, due_date_offset,
                 amount, currency, line_items, template, blocks,
                 status, invoices_generated, consecutive_failures, next_scheduled_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, created_at, updated_at;
        """
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    series.team_id, series.user_id, series.customer_id, series.customer_name,
                    series.frequency.value, series.frequency_day, series.frequency_week,
                    series.frequency_interval, series.timezone,
                    series.end_type.value, series.end_date, series.end_count, series.due_date_offset,
                    series.amount, series.currency,
                    extras.Json(series.line_items), extras.Json(series.template), extras.Json(series.blocks),
                    series.status.value, series.invoices_generated, series.consecutive_failures,
                    series.next_scheduled_at,
                ))
                row = cur.fetchone()
                series.id, series.created_at, series.updated_at = row
            conn.commit()
            logger.info(f"Added recurring series #{series.id} ({series.frequency.value})")
            return series
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to add recurring series: {e}")
            raise
        finally:
            release_connection(conn)

    # ── READ ──────────────────────────────────────────────

    def get_by_id(self, series_id: int, user_id: Optional[int] = None) -> Optional[RecurringSeries]:
        """Fetch a single series by ID, optionally scoped to its owner."""
        sql = f"SELECT {SERIES_COLUMNS} FROM recurring_series WHERE id = %s"
        params: list = [series_id]
        if user_id is not None:
            sql += " AND user_id = %s"
            params.append(user_id)
        rows = self._fetch(sql + ";", params)
        return rows[0] if rows else None

    def list_for_user(
        self,
        user_id: int,
        statuses: Optional[Iterable[SeriesStatus]] = None,
    ) -> list[RecurringSeries]:
        """All series of a user, newest first, optionally filtered by status."""
        sql = f"SELECT {SERIES_COLUMNS} FROM recurring_series WHERE user_id = %s"
        params: list = [user_id]
        if statuses:
            sql += " AND status = ANY(%s)"
            params.append([SeriesStatus(s).value for s in statuses])
        sql += " ORDER BY created_at DESC, id DESC;"
        return self._fetch(sql, params)

    def list_active(self, user_id: Optional[int] = None) -> list[RecurringSeries]:
        """Active series (all owners, or one), soonest first. Used by the forecast."""
        sql = f"SELECT {SERIES_COLUMNS} FROM recurring_series WHERE status = 'active'"
        params: list = []
        if user_id is not None:
            sql += " AND user_id = %s"
            params.append(user_id)
        sql += " ORDER BY next_scheduled_at ASC;"
        return self._fetch(sql, params)

    def get_due(self, now: datetime, limit: int = 50) -> tuple[list[RecurringSeries], bool]:
        """
        Active series whose next cycle is due at or before `now`.

        Oldest overdue first. Fetches one extra row to report whether more
        series are waiting without a separate count query.

        Returns:
            (series batch, has_more)
        """
        sql = f"""
            SELECT {SERIES_COLUMNS} FROM recurring_series
            WHERE status = 'active' AND next_scheduled_at <= %s
            ORDER BY next_scheduled_at ASC
            LIMIT %s;
        """
        rows = self._fetch(sql, (now, limit + 1))
        return rows[:limit], len(rows) > limit

    def get_upcoming_due(
        self,
        now: datetime,
        hours_ahead: int = 24,
        limit: int = 100,
    ) -> tuple[list[RecurringSeries], bool]:
        """
        Active series due within (now, now + hours_ahead] that have not been
        notified for their current cycle.

        A stored notice older than next_scheduled_at - (hours_ahead + 1)h
        belongs to an earlier cycle and does not count.

        Returns:
            (series batch, has_more)
        """
        sql = f"""
            SELECT {SERIES_COLUMNS} FROM recurring_series
            WHERE status = 'active'
              AND next_scheduled_at > %(now)s
              AND next_scheduled_at <= %(until)s
              AND (
                    upcoming_notification_sent_at IS NULL
                 OR upcoming_notification_sent_at <= next_scheduled_at - %(stale_window)s
              )
            ORDER BY next_scheduled_at ASC
            LIMIT %(limit)s;
        """
        rows = self._fetch(sql, {
            "now": now,
            "until": now + timedelta(hours=hours_ahead),
            "stale_window": timedelta(hours=hours_ahead + 1),
            "limit": limit + 1,
        })
        return rows[:limit], len(rows) > limit

    # ── UPDATE ────────────────────────────────────────────

    def save_state(self, series: RecurringSeries, expected_version: int) -> bool:
        """
        Persist lifecycle state (status, counters, schedule) atomically.

        Args:
            series: Series carrying the new state.
            expected_version: The version the new state was computed from.

        Returns:
            False if the row changed since it was read (nothing written).
        """
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(STATE_UPDATE_SQL, state_params(series, expected_version))
                updated = cur.rowcount > 0
            conn.commit()
            if updated:
                series.version = expected_version + 1
            else:
                logger.warning(f"Series #{series.id} changed concurrently (version {expected_version})")
            return updated
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to save state of series #{series.id}: {e}")
            raise
        finally:
            release_connection(conn)

    def update_config(self, series: RecurringSeries, expected_version: int) -> bool:
        """Persist schedule, end condition, template payload and next_scheduled_at."""
        sql = """
            UPDATE recurring_series
            SET customer_id = %(customer_id)s,
                customer_name = %(customer_name)s,
                frequency = %(frequency)s,
                frequency_day = %(frequency_day)s,
                frequency_week = %(frequency_week)s,
                frequency_interval = %(frequency_interval)s,
                timezone = %(timezone)s,
                end_type = %(end_type)s,
                end_date = %(end_date)s,
                end_count = %(end_count)s,
                due_date_offset = %(due_date_offset)s,
                amount = %(amount)s,
                currency = %(currency)s,
                line_items = %(line_items)s,
                template = %(template)s,
                blocks = %(blocks)s,
                next_scheduled_at = %(next_scheduled_at)s,
                version = version + 1,
                updated_at = NOW()
            WHERE id = %(id)s AND version = %(expected_version)s;
        """
        params = {
            "id": series.id,
            "expected_version": expected_version,
            "customer_id": series.customer_id,
            "customer_name": series.customer_name,
            "frequency": series.frequency.value,
            "frequency_day": series.frequency_day,
            "frequency_week": series.frequency_week,
            "frequency_interval": series.frequency_interval,
            "timezone": series.timezone,
            "end_type": series.end_type.value,
            "end_date": series.end_date,
            "end_count": series.end_count,
            "due_date_offset": series.due_date_offset,
            "amount": series.amount,
            "currency": series.currency,
            "line_items": extras.Json(series.line_items),
            "template": extras.Json(series.template),
            "blocks": extras.Json(series.blocks),
            "next_scheduled_at": series.next_scheduled_at,
        }
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                updated = cur.rowcount > 0
            conn.commit()
            if updated:
                series.version = expected_version + 1
            return updated
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to update series #{series.id}: {e}")
            raise
        finally:
            release_connection(conn)

    def mark_upcoming_notification_sent(self, series_id: int, sent_at: datetime) -> bool:
        """Stamp the advance notice of the current cycle."""
        sql = """
            UPDATE recurring_series
            SET upcoming_notification_sent_at = %s, updated_at = NOW()
            WHERE id = %s;
        """
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(sql, (sent_at, series_id))
                updated = cur.rowcount > 0
            conn.commit()
            return updated
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to stamp upcoming notice for series #{series_id}: {e}")
            raise
        finally:
            release_connection(conn)

    # ── HELPERS ───────────────────────────────────────────

    def _fetch(self, sql: str, params) -> list[RecurringSeries]:
        conn = get_connection()
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return [self._row_to_series(r) for r in cur.fetchall()]
        finally:
            release_connection(conn)

    @staticmethod
    def _row_to_series(row: dict) -> RecurringSeries:
        """Convert a database row to a RecurringSeries domain object."""
        return RecurringSeries(
            id=row["id"],
            team_id=row["team_id"],
            user_id=row["user_id"],
            customer_id=row["customer_id"],
            customer_name=row["customer_name"],
            frequency=Frequency(row["frequency"]),
            frequency_day=row["frequency_day"],
            frequency_week=row["frequency_week"],
            frequency_interval=row["frequency_interval"],
            timezone=row["timezone"],
            end_type=EndType(row["end_type"]),
            end_date=row["end_date"],
            end_count=row["end_count"],
            due_date_offset=row["due_date_offset"],
            amount=float(row["amount"]) if row["amount"] is not None else None,
            currency=row["currency"],
            line_items=row["line_items"] or [],
            template=row["template"] or {},
            blocks=row["blocks"] or {},
            status=SeriesStatus(row["status"]),
            invoices_generated=row["invoices_generated"],
            consecutive_failures=row["consecutive_failures"],
            next_scheduled_at=row["next_scheduled_at"],
            last_generated_at=row["last_generated_at"],
            upcoming_notification_sent_at=row["upcoming_notification_sent_at"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
