"""
db/init_db.py
-------------
Creates the database schema (tables) if they do not already exist.
Run this module directly to initialize a fresh database:
    python -m db.init_db
"""

from db.connection import get_connection, release_connection
from utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
-- Recurring series: schedule configuration, template payload and live state
CREATE TABLE IF NOT EXISTS recurring_series (
    id                  SERIAL PRIMARY KEY,
    team_id             BIGINT NOT NULL,
    user_id             BIGINT NOT NULL,
    customer_id         BIGINT,
    customer_name       VARCHAR(200),
    frequency           VARCHAR(20) NOT NULL CHECK (frequency IN (
                            'weekly', 'biweekly', 'monthly_date', 'monthly_weekday',
                            'monthly_last_day', 'quarterly', 'semi_annual', 'annual', 'custom')),
    frequency_day       INT,
    frequency_week      INT,
    frequency_interval  INT,
    timezone            VARCHAR(64) NOT NULL,
    end_type            VARCHAR(20) NOT NULL CHECK (end_type IN ('never', 'on_date', 'after_count')),
    end_date            TIMESTAMPTZ,
    end_count           INT,
    due_date_offset     INT NOT NULL DEFAULT 30,
    amount              NUMERIC(12,2),
    currency            VARCHAR(5),
    line_items          JSONB NOT NULL DEFAULT '[]'::jsonb,
    template            JSONB NOT NULL DEFAULT '{}'::jsonb,
    blocks              JSONB NOT NULL DEFAULT '{}'::jsonb,
    status              VARCHAR(20) NOT NULL DEFAULT 'active'
                            CHECK (status IN ('active', 'paused', 'completed', 'canceled')),
    invoices_generated  INT NOT NULL DEFAULT 0,
    consecutive_failures INT NOT NULL DEFAULT 0,
    next_scheduled_at   TIMESTAMPTZ,
    last_generated_at   TIMESTAMPTZ,
    upcoming_notification_sent_at TIMESTAMPTZ,
    version             INT NOT NULL DEFAULT 0,
    created_at          TIMESTAMPTZ DEFAULT NOW(),
    updated_at          TIMESTAMPTZ DEFAULT NOW(),
    CHECK ((status IN ('active', 'paused')) = (next_scheduled_at IS NOT NULL))
);

-- Generated documents: one row per (series, cycle)
CREATE TABLE IF NOT EXISTS generated_documents (
    id                  SERIAL PRIMARY KEY,
    series_id           INT REFERENCES recurring_series(id),
    recurring_sequence  INT NOT NULL,
    team_id             BIGINT NOT NULL,
    user_id             BIGINT NOT NULL,
    status              VARCHAR(20) NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'generated', 'failed')),
    amount              NUMERIC(12,2),
    currency            VARCHAR(5),
    line_items          JSONB NOT NULL DEFAULT '[]'::jsonb,
    template            JSONB NOT NULL DEFAULT '{}'::jsonb,
    blocks              JSONB NOT NULL DEFAULT '{}'::jsonb,
    issue_date          TIMESTAMPTZ,
    due_date            TIMESTAMPTZ,
    claimed_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    generated_at        TIMESTAMPTZ,
    error               TEXT,
    UNIQUE (series_id, recurring_sequence)
);

-- Indexes for the scheduler queries
CREATE INDEX IF NOT EXISTS idx_series_user ON recurring_series(user_id);
CREATE INDEX IF NOT EXISTS idx_series_due ON recurring_series(next_scheduled_at) WHERE status = 'active';
CREATE INDEX IF NOT EXISTS idx_documents_series ON generated_documents(series_id);
"""


def create_tables() -> None:
    """
    Execute the schema SQL to create all tables.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    conn = get_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        conn.commit()
        logger.info("Database schema initialized successfully.")
    except Exception as e:
        conn.rollback()
        logger.error(f"Failed to initialize schema: {e}")
        raise
    finally:
        release_connection(conn)


if __name__ == "__main__":
    from db.connection import init_pool
    init_pool()
    create_tables()
    print("Database schema created successfully.")
