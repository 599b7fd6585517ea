"""SQLite storage backend.

Each ``transaction()`` opens its own connection and starts a
``BEGIN IMMEDIATE`` write transaction, so concurrent transactions (threads or
processes sharing the database file) are serialized by SQLite's write lock
and every check-then-write sequence inside one transaction sees a stable
view. Query-only work goes through ``read()``, a deferred transaction
that never asks for the write lock; with WAL it does not wait on a writer.
A write lock that cannot be had within the busy timeout surfaces as
``StorageBusyError``.
"""

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from leadledger.access.models import JobAccess
from leadledger.audit import AuditEntry
from leadledger.commission.models import CommissionInvoice, CommissionPayment, SettlementRecord
from leadledger.credits.models import Contractor, CreditTransaction
from leadledger.errors import DuplicateRecordError, StorageBusyError
from leadledger.jobs.models import Job, JobApplication, JobStateTransition
from leadledger.payments.models import Payment, Refund
from leadledger.pricing import ServicePricing
from leadledger.storage.schema import JSON_COLUMNS, init_db, validate_table_name
from leadledger.utils import get_data_dir

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "leadledger.db"

BUSY_TIMEOUT_MS = 5000


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error)
    return "locked" in message or "busy" in message


class SQLiteTransaction:
    """Repository methods bound to one open connection. See ``MarketTransaction``."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # === Row helpers ===

    def _execute(self, sql: str, params=()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateRecordError(f"Duplicate record: {e}") from e
            raise ValueError(f"Constraint violated: {e}") from e

    @staticmethod
    def _encode(table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        json_cols = JSON_COLUMNS.get(table, frozenset())
        return {k: (json.dumps(v) if k in json_cols else v) for k, v in data.items()}

    @staticmethod
    def _decode(table: str, row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for col in JSON_COLUMNS.get(table, frozenset()):
            if data.get(col):
                data[col] = json.loads(data[col])
        return data

    def _insert(self, table: str, data: Dict[str, Any]) -> None:
        table = validate_table_name(table)
        data = self._encode(table, data)
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        self._execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(data.values())
        )

    def _update(self, table: str, data: Dict[str, Any], key: str = "id") -> bool:
        table = validate_table_name(table)
        data = self._encode(table, data)
        assignments = ", ".join(f"{col} = ?" for col in data if col != key)
        params = [v for col, v in data.items() if col != key] + [data[key]]
        cur = self._execute(f"UPDATE {table} SET {assignments} WHERE {key} = ?", params)
        return cur.rowcount > 0

    def _one(self, table: str, model, where: str, params=()) -> Optional[Any]:
        table = validate_table_name(table)
        row = self._execute(f"SELECT * FROM {table} WHERE {where} LIMIT 1", params).fetchone()
        return model.from_dict(self._decode(table, row)) if row else None

    def _many(
        self, table: str, model, filters: Dict[str, Any], order_by: str, suffix: str = ""
    ) -> List[Any]:
        table = validate_table_name(table)
        clauses, params = [], []
        for col, value in filters.items():
            if value is None:
                continue
            clauses.append(f"{col} = ?")
            params.append(getattr(value, "value", value))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._execute(
            f"SELECT * FROM {table}{where} ORDER BY {order_by}{suffix}", params
        ).fetchall()
        return [model.from_dict(self._decode(table, row)) for row in rows]

    # === Jobs ===

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._one("jobs", Job, "id = ?", (job_id,))

    def save_job(self, job: Job) -> str:
        job.validate()
        self._insert("jobs", job.to_dict())
        return job.id

    def update_job(self, job: Job) -> bool:
        job.validate()
        return self._update("jobs", job.to_dict())

    def list_jobs(
        self,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        return self._many(
            "jobs",
            Job,
            {"status": status, "customer_id": customer_id, "won_by_contractor_id": contractor_id},
            "created_at DESC",
            f" LIMIT {int(limit)} OFFSET {int(offset)}",
        )

    def save_application(self, application: JobApplication) -> str:
        self._insert("job_applications", application.to_dict())
        return application.id

    def update_application(self, application: JobApplication) -> bool:
        return self._update("job_applications", application.to_dict())

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        return self._one("job_applications", JobApplication, "id = ?", (application_id,))

    def find_application(self, job_id: str, contractor_id: str) -> Optional[JobApplication]:
        return self._one(
            "job_applications",
            JobApplication,
            "job_id = ? AND contractor_id = ?",
            (job_id, contractor_id),
        )

    def list_applications(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[JobApplication]:
        return self._many(
            "job_applications",
            JobApplication,
            {"job_id": job_id, "contractor_id": contractor_id, "status": status},
            "created_at, rowid",
        )

    def save_transition(self, transition: JobStateTransition) -> str:
        self._insert("job_transitions", transition.to_dict())
        return transition.id

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        return self._many(
            "job_transitions", JobStateTransition, {"job_id": job_id}, "created_at, rowid"
        )

    # === Pricing ===

    def get_service_pricing(self, service_id: str) -> Optional[ServicePricing]:
        return self._one("service_pricing", ServicePricing, "service_id = ?", (service_id,))

    def save_service_pricing(self, pricing: ServicePricing) -> str:
        if not self._update("service_pricing", pricing.to_dict(), key="service_id"):
            self._insert("service_pricing", pricing.to_dict())
        return pricing.service_id

    # === Contractors and credits ===

    def get_contractor(self, contractor_id: str) -> Optional[Contractor]:
        return self._one("contractors", Contractor, "id = ?", (contractor_id,))

    def save_contractor(self, contractor: Contractor) -> str:
        self._insert("contractors", contractor.to_dict())
        return contractor.id

    def update_contractor(self, contractor: Contractor) -> bool:
        return self._update("contractors", contractor.to_dict())

    def list_contractors(self, status: Optional[str] = None) -> List[Contractor]:
        return self._many("contractors", Contractor, {"status": status}, "created_at, rowid")

    def save_credit_transaction(self, transaction: CreditTransaction) -> str:
        self._insert("credit_transactions", transaction.to_dict())
        return transaction.id

    def list_credit_transactions(self, contractor_id: str) -> List[CreditTransaction]:
        return self._many(
            "credit_transactions",
            CreditTransaction,
            {"contractor_id": contractor_id},
            "created_at, rowid",
        )

    # === Lead access ===

    def get_access(self, job_id: str, contractor_id: str) -> Optional[JobAccess]:
        return self._one(
            "job_access", JobAccess, "job_id = ? AND contractor_id = ?", (job_id, contractor_id)
        )

    def save_access(self, access: JobAccess) -> str:
        self._insert("job_access", access.to_dict())
        return access.id

    def count_access(self, job_id: str) -> int:
        row = self._execute("SELECT COUNT(*) FROM job_access WHERE job_id = ?", (job_id,)).fetchone()
        return int(row[0])

    def list_access(
        self, job_id: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[JobAccess]:
        return self._many(
            "job_access",
            JobAccess,
            {"job_id": job_id, "contractor_id": contractor_id},
            "accessed_at, rowid",
        )

    # === Commission ===

    def get_commission(self, commission_id: str) -> Optional[CommissionPayment]:
        return self._one("commission_payments", CommissionPayment, "id = ?", (commission_id,))

    def get_commission_for_job(self, job_id: str) -> Optional[CommissionPayment]:
        return self._one("commission_payments", CommissionPayment, "job_id = ?", (job_id,))

    def save_commission(self, commission: CommissionPayment) -> str:
        self._insert("commission_payments", commission.to_dict())
        return commission.id

    def update_commission(self, commission: CommissionPayment) -> bool:
        return self._update("commission_payments", commission.to_dict())

    def list_commissions(
        self, status: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[CommissionPayment]:
        return self._many(
            "commission_payments",
            CommissionPayment,
            {"status": status, "contractor_id": contractor_id},
            "due_date, rowid",
        )

    def save_invoice(self, invoice: CommissionInvoice) -> str:
        self._insert("commission_invoices", invoice.to_dict())
        return invoice.id

    def get_invoice_for_commission(self, commission_id: str) -> Optional[CommissionInvoice]:
        return self._one(
            "commission_invoices", CommissionInvoice, "commission_id = ?", (commission_id,)
        )

    def save_settlement(self, record: SettlementRecord) -> str:
        self._insert("settlement_records", record.to_dict())
        return record.id

    def list_settlements(self, commission_id: str) -> List[SettlementRecord]:
        return self._many(
            "settlement_records",
            SettlementRecord,
            {"commission_id": commission_id},
            "created_at, rowid",
        )

    # === Payments ===

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self._one("payments", Payment, "id = ?", (payment_id,))

    def get_payment_by_key(self, idempotency_key: str) -> Optional[Payment]:
        return self._one("payments", Payment, "idempotency_key = ?", (idempotency_key,))

    def save_payment(self, payment: Payment) -> str:
        self._insert("payments", payment.to_dict())
        return payment.id

    def update_payment(self, payment: Payment) -> bool:
        return self._update("payments", payment.to_dict())

    def get_refund_by_key(self, idempotency_key: str) -> Optional[Refund]:
        return self._one("refunds", Refund, "idempotency_key = ?", (idempotency_key,))

    def save_refund(self, refund: Refund) -> str:
        self._insert("refunds", refund.to_dict())
        return refund.id

    def list_refunds(self, payment_id: str) -> List[Refund]:
        return self._many("refunds", Refund, {"payment_id": payment_id}, "created_at, rowid")

    # === Audit ===

    def save_audit(self, entry: AuditEntry) -> str:
        self._insert("audit_log", entry.to_dict())
        return entry.id

    def list_audit(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None
    ) -> List[AuditEntry]:
        return self._many(
            "audit_log",
            AuditEntry,
            {"entity_type": entity_type, "entity_id": entity_id},
            "created_at, rowid",
        )


class SQLiteMarketStorage:
    """SQLite-backed ``MarketStorage``.

    Args:
        db_path: Database file. Defaults to ``<data dir>/leadledger.db``.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = self._validate_db_path(
            Path(db_path) if db_path else get_data_dir() / DEFAULT_DB_NAME
        )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.closing(self._get_conn()) as conn:
            init_db(conn)

    def _validate_db_path(self, db_path: Path) -> Path:
        try:
            resolved = db_path.expanduser().resolve()
        except (OSError, RuntimeError) as e:
            logger.error(f"Invalid database path: {e}")
            raise ValueError(f"Invalid database path: {e}")
        if resolved.exists() and resolved.is_dir():
            raise ValueError(f"Invalid database path: {resolved} is a directory")
        return resolved

    def _get_conn(self) -> sqlite3.Connection:
        """Open a connection in autocommit mode; transactions are explicit."""
        conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        return conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[SQLiteTransaction]:
        """Context manager that handles the transaction AND closes the connection.

        - ``BEGIN IMMEDIATE`` on entry (takes the write lock up front)
        - commit on success
        - rollback on exception
        - connection close in all cases
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield SQLiteTransaction(conn)
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if _is_busy(e):
                logger.warning(f"Database busy, transaction abandoned: {e}")
                raise StorageBusyError(f"Storage busy: {e}") from e
            raise
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextlib.contextmanager
    def read(self) -> Iterator[SQLiteTransaction]:
        """Deferred read transaction: one consistent snapshot, no write lock.

        Always rolled back; anything written through it is discarded.
        """
        conn = self._get_conn()
        try:
            conn.execute("BEGIN")
            yield SQLiteTransaction(conn)
        except sqlite3.OperationalError as e:
            if _is_busy(e):
                logger.warning(f"Database busy during read: {e}")
                raise StorageBusyError(f"Storage busy: {e}") from e
            raise
        finally:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            conn.close()

    def close(self) -> None:
        """Connections are per-transaction; nothing to release."""
