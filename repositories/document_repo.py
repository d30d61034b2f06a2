"""
repositories/document_repo.py
-----------------------------
Data access layer for generated documents.

The UNIQUE (series_id, recurring_sequence) constraint is the idempotency
key of a cycle: claiming a cycle is an insert that the database either
accepts or rejects, never a read followed by a write.
"""

from datetime import datetime
from typing import Optional

from psycopg2 import extras

from db.connection import get_connection, release_connection
from models.recurring import DocumentStatus, GeneratedDocument, RecurringSeries
from repositories.series_repo import STATE_UPDATE_SQL, state_params
from utils.logger import get_logger

logger = get_logger(__name__)

DOCUMENT_COLUMNS = """
    id, series_id, recurring_sequence, team_id, user_id, status,
    amount, currency, line_items, template, blocks,
    issue_date, due_date, claimed_at, generated_at, error
"""


class DocumentRepository:
    """Repository for the generated_documents table."""

    def claim(self, document: GeneratedDocument, stale_before: datetime) -> Optional[GeneratedDocument]:
        """
        Claim the (series, sequence) slot of `document` for generation.

        The insert succeeds only for a fresh cycle. An existing row is taken
        over only when its last attempt failed or its pending claim is older
        than `stale_before`.

        Returns:
            The claimed document, or None if the cycle is already generated
            or in progress elsewhere.
        """
        insert_sql = f"""
            INSERT INTO generated_documents
                (series_id, recurring_sequence, team_id, user_id, status,
                 amount, currency, line_items, template, blocks,
                 issue_date, due_date, claimed_at)
            VALUES (%(series_id)s, %(sequence)s, %(team_id)s, %(user_id)s, 'pending',
                    %(amount)s, %(currency)s, %(line_items)s, %(template)s, %(blocks)s,
                    %(issue_date)s, %(due_date)s, %(claimed_at)s)
            ON CONFLICT (series_id, recurring_sequence) DO NOTHING
            RETURNING {DOCUMENT_COLUMNS};
        """
        reclaim_sql = f"""
            UPDATE generated_documents
            SET status = 'pending', claimed_at = %(claimed_at)s, error = NULL,
                issue_date = %(issue_date)s, due_date = %(due_date)s
            WHERE series_id = %(series_id)s
              AND recurring_sequence = %(sequence)s
              AND (status = 'failed' OR (status = 'pending' AND claimed_at < %(stale_before)s))
            RETURNING {DOCUMENT_COLUMNS};
        """
        params = {
            "series_id": document.series_id,
            "sequence": document.sequence,
            "team_id": document.team_id,
            "user_id": document.user_id,
            "amount": document.amount,
            "currency": document.currency,
            "line_items": extras.Json(document.line_items),
            "template": extras.Json(document.template),
            "blocks": extras.Json(document.blocks),
            "issue_date": document.issue_date,
            "due_date": document.due_date,
            "claimed_at": document.claimed_at,
            "stale_before": stale_before,
        }
        conn = get_connection()
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(insert_sql, params)
                row = cur.fetchone()
                if row is None:
                    cur.execute(reclaim_sql, params)
                    row = cur.fetchone()
            conn.commit()
            return self._row_to_document(row) if row else None
        except Exception as e:
            conn.rollback()
            logger.error(
                f"Failed to claim cycle {document.sequence} of series #{document.series_id}: {e}"
            )
            raise
        finally:
            release_connection(conn)

    def record_success(
        self,
        document: GeneratedDocument,
        generated_at: datetime,
        series: RecurringSeries,
        expected_version: int,
    ) -> bool:
        """
        Mark `document` generated and write the advanced series state in
        one transaction.

        Returns:
            False (and nothing written) if the series changed since
            `expected_version` was read.
        """
        doc_sql = """
            UPDATE generated_documents
            SET status = 'generated', generated_at = %s, error = NULL
            WHERE id = %s;
        """
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(doc_sql, (generated_at, document.id))
                cur.execute(STATE_UPDATE_SQL, state_params(series, expected_version))
                if cur.rowcount == 0:
                    conn.rollback()
                    return False
            conn.commit()
            document.status = DocumentStatus.GENERATED
            document.generated_at = generated_at
            series.version = expected_version + 1
            return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to record generated document #{document.id}: {e}")
            raise
        finally:
            release_connection(conn)

    def mark_failed(self, document_id: int, error: str) -> None:
        """Release a claim after a failed attempt so the cycle can be retried."""
        sql = "UPDATE generated_documents SET status = 'failed', error = %s WHERE id = %s;"
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(sql, (error[:2000], document_id))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to mark document #{document_id} as failed: {e}")
            raise
        finally:
            release_connection(conn)

    def get(self, series_id: int, sequence: int) -> Optional[GeneratedDocument]:
        """Fetch the document of one cycle."""
        sql = f"""
            SELECT {DOCUMENT_COLUMNS} FROM generated_documents
            WHERE series_id = %s AND recurring_sequence = %s;
        """
        rows = self._fetch(sql, (series_id, sequence))
        return rows[0] if rows else None

    def list_for_series(self, series_id: int) -> list[GeneratedDocument]:
        """All documents of a series in cycle order."""
        sql = f"""
            SELECT {DOCUMENT_COLUMNS} FROM generated_documents
            WHERE series_id = %s ORDER BY recurring_sequence ASC;
        """
        return self._fetch(sql, (series_id,))

    # ── HELPERS ───────────────────────────────────────────

    def _fetch(self, sql: str, params) -> list[GeneratedDocument]:
        conn = get_connection()
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return [self._row_to_document(r) for r in cur.fetchall()]
        finally:
            release_connection(conn)

    @staticmethod
    def _row_to_document(row: dict) -> GeneratedDocument:
        """Convert a database row to a GeneratedDocument domain object."""
        return GeneratedDocument(
            id=row["id"],
            series_id=row["series_id"],
            sequence=row["recurring_sequence"],
            team_id=row["team_id"],
            user_id=row["user_id"],
            status=DocumentStatus(row["status"]),
            amount=float(row["amount"]) if row["amount"] is not None else None,
            currency=row["currency"],
            line_items=row["line_items"] or [],
            template=row["template"] or {},
            blocks=row["blocks"] or {},
            issue_date=row["issue_date"],
            due_date=row["due_date"],
            claimed_at=row["claimed_at"],
            generated_at=row["generated_at"],
            error=row["error"],
        )
