"""Database schema for leadledger SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist and per-table column metadata (ALLOWED_TABLES, JSON_COLUMNS)
- Database initialization (init_db)

Money is stored as TEXT decimal strings and timestamps as ISO-8601 UTC TEXT.
Uniqueness rules the engine depends on are enforced here, not only in code.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "jobs",
        "job_applications",
        "job_transitions",
        "service_pricing",
        "contractors",
        "credit_transactions",
        "job_access",
        "commission_payments",
        "commission_invoices",
        "settlement_records",
        "payments",
        "refunds",
        "audit_log",
        "schema_version",
    }
)

# Columns holding JSON-encoded dicts
JSON_COLUMNS = {
    "job_transitions": frozenset({"metadata"}),
    "audit_log": frozenset({"before", "after"}),
}


def validate_table_name(table: str) -> str:
    """Validate a table name against the allowlist.

    Raises:
        ValueError: If the table name is not allowed
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    customer_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    service_id TEXT,
    job_size TEXT NOT NULL DEFAULT 'medium',
    budget TEXT,
    lead_price_override TEXT,
    max_contractors_per_job INTEGER NOT NULL DEFAULT 5 CHECK (max_contractors_per_job >= 1),
    status TEXT NOT NULL DEFAULT 'draft',
    won_by_contractor_id TEXT,
    final_amount TEXT,
    customer_confirmed INTEGER NOT NULL DEFAULT 0,
    commission_paid INTEGER NOT NULL DEFAULT 0,
    cancellation_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    posted_at TEXT,
    winner_selected_at TEXT,
    start_date TEXT,
    completed_at TEXT,
    confirmed_at TEXT,
    cancelled_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_customer ON jobs(customer_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

CREATE TABLE IF NOT EXISTS job_applications (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    contractor_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    proposed_rate TEXT,
    message TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (job_id, contractor_id)
);

CREATE TABLE IF NOT EXISTS job_transitions (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_job_transitions_job ON job_transitions(job_id);

CREATE TABLE IF NOT EXISTS service_pricing (
    service_id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    small_price TEXT,
    medium_price TEXT,
    large_price TEXT
);

CREATE TABLE IF NOT EXISTS contractors (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    credits_balance INTEGER NOT NULL DEFAULT 0 CHECK (credits_balance >= 0),
    weekly_credits_limit INTEGER NOT NULL DEFAULT 0 CHECK (weekly_credits_limit >= 0),
    last_credit_reset TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    suspended_for_commission_id TEXT,
    jobs_completed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS credit_transactions (
    id TEXT PRIMARY KEY,
    contractor_id TEXT NOT NULL REFERENCES contractors(id),
    type TEXT NOT NULL,
    amount INTEGER NOT NULL CHECK (amount > 0),
    description TEXT NOT NULL,
    job_id TEXT,
    actor_id TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_credit_transactions_contractor
    ON credit_transactions(contractor_id);

CREATE TABLE IF NOT EXISTS job_access (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    contractor_id TEXT NOT NULL,
    access_method TEXT NOT NULL,
    paid_amount TEXT,
    credits_used INTEGER NOT NULL DEFAULT 0,
    payment_id TEXT,
    accessed_at TEXT NOT NULL,
    UNIQUE (job_id, contractor_id)
);

CREATE TABLE IF NOT EXISTS commission_payments (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL UNIQUE REFERENCES jobs(id),
    contractor_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    final_job_amount TEXT NOT NULL,
    commission_rate TEXT NOT NULL,
    commission_amount TEXT NOT NULL,
    vat_amount TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    due_date TEXT NOT NULL,
    paid_at TEXT,
    waived_at TEXT,
    waive_reason TEXT,
    reminders_sent INTEGER NOT NULL DEFAULT 0,
    last_reminder_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_commission_status ON commission_payments(status);

CREATE TABLE IF NOT EXISTS commission_invoices (
    id TEXT PRIMARY KEY,
    commission_id TEXT NOT NULL UNIQUE REFERENCES commission_payments(id),
    invoice_number TEXT NOT NULL,
    contractor_id TEXT NOT NULL,
    job_id TEXT NOT NULL,
    amount TEXT NOT NULL,
    vat_amount TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    due_date TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settlement_records (
    id TEXT PRIMARY KEY,
    commission_id TEXT NOT NULL REFERENCES commission_payments(id),
    method TEXT NOT NULL,
    amount TEXT NOT NULL,
    charge_id TEXT,
    reason TEXT,
    actor_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    contractor_id TEXT NOT NULL,
    job_id TEXT,
    commission_id TEXT,
    purpose TEXT NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    status TEXT NOT NULL,
    charge_id TEXT NOT NULL,
    idempotency_key TEXT NOT NULL UNIQUE,
    refunded_amount TEXT NOT NULL DEFAULT '0.00',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS refunds (
    id TEXT PRIMARY KEY,
    payment_id TEXT NOT NULL REFERENCES payments(id),
    amount TEXT NOT NULL,
    reason TEXT NOT NULL,
    refund_id TEXT NOT NULL,
    idempotency_key TEXT NOT NULL UNIQUE,
    actor_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    actor_id TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    before TEXT NOT NULL DEFAULT '{}',
    after TEXT NOT NULL DEFAULT '{}',
    reason TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables (idempotent) and record the schema version."""
    conn.executescript(SCHEMA)
    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
