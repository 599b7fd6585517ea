"""In-memory storage for testing and local development.

One process-wide re-entrant lock serializes transactions. Each transaction
snapshots the tables on entry and restores them if the block raises, so a
failed operation leaves no partial writes. Records are deep-copied on the way
in and out; callers never hold references into the store.
"""

import contextlib
import copy
import logging
import threading
from typing import Dict, Iterator, List, Optional

from leadledger.access.models import JobAccess
from leadledger.audit import AuditEntry
from leadledger.commission.models import CommissionInvoice, CommissionPayment, SettlementRecord
from leadledger.credits.models import Contractor, CreditTransaction
from leadledger.errors import DuplicateRecordError
from leadledger.jobs.models import Job, JobApplication, JobStateTransition
from leadledger.payments.models import Payment, Refund
from leadledger.pricing import ServicePricing
from leadledger.utils import utc_now

logger = logging.getLogger(__name__)

_TABLES = (
    "jobs",
    "applications",
    "transitions",
    "pricing",
    "contractors",
    "credit_transactions",
    "access",
    "commissions",
    "invoices",
    "settlements",
    "payments",
    "refunds",
    "audit",
)


class InMemoryTransaction:
    """Repository view over the in-memory tables. See ``MarketTransaction``."""

    def __init__(self, tables: Dict[str, dict]):
        self._t = tables

    @staticmethod
    def _copy(record):
        return copy.deepcopy(record)

    def _insert(self, table: str, key, record) -> None:
        if key in self._t[table]:
            raise DuplicateRecordError(f"Duplicate {table} record", table=table)
        self._t[table][key] = self._copy(record)

    def _replace(self, table: str, key, record) -> bool:
        if key not in self._t[table]:
            return False
        self._t[table][key] = self._copy(record)
        return True

    def _values(self, table: str) -> list:
        return [self._copy(r) for r in self._t[table].values()]

    # === Jobs ===

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._copy(self._t["jobs"].get(job_id))

    def save_job(self, job: Job) -> str:
        job.validate()
        self._insert("jobs", job.id, job)
        return job.id

    def update_job(self, job: Job) -> bool:
        job.validate()
        return self._replace("jobs", job.id, job)

    def list_jobs(
        self,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        jobs = self._values("jobs")
        if status is not None:
            jobs = [j for j in jobs if j.status == getattr(status, "value", status)]
        if customer_id is not None:
            jobs = [j for j in jobs if j.customer_id == customer_id]
        if contractor_id is not None:
            jobs = [j for j in jobs if j.won_by_contractor_id == contractor_id]
        jobs.sort(key=lambda j: j.created_at or utc_now(), reverse=True)
        return jobs[offset : offset + limit]

    def save_application(self, application: JobApplication) -> str:
        if self.find_application(application.job_id, application.contractor_id):
            raise DuplicateRecordError("Duplicate application", table="applications")
        self._insert("applications", application.id, application)
        return application.id

    def update_application(self, application: JobApplication) -> bool:
        return self._replace("applications", application.id, application)

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        return self._copy(self._t["applications"].get(application_id))

    def find_application(self, job_id: str, contractor_id: str) -> Optional[JobApplication]:
        for app in self._t["applications"].values():
            if app.job_id == job_id and app.contractor_id == contractor_id:
                return self._copy(app)
        return None

    def list_applications(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[JobApplication]:
        apps = self._values("applications")
        if job_id is not None:
            apps = [a for a in apps if a.job_id == job_id]
        if contractor_id is not None:
            apps = [a for a in apps if a.contractor_id == contractor_id]
        if status is not None:
            apps = [a for a in apps if a.status == getattr(status, "value", status)]
        apps.sort(key=lambda a: a.created_at)
        return apps

    def save_transition(self, transition: JobStateTransition) -> str:
        self._insert("transitions", transition.id, transition)
        return transition.id

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        rows = [t for t in self._values("transitions") if t.job_id == job_id]
        rows.sort(key=lambda t: t.created_at)
        return rows

    # === Pricing ===

    def get_service_pricing(self, service_id: str) -> Optional[ServicePricing]:
        return self._copy(self._t["pricing"].get(service_id))

    def save_service_pricing(self, pricing: ServicePricing) -> str:
        self._t["pricing"][pricing.service_id] = self._copy(pricing)
        return pricing.service_id

    # === Contractors and credits ===

    def get_contractor(self, contractor_id: str) -> Optional[Contractor]:
        return self._copy(self._t["contractors"].get(contractor_id))

    def save_contractor(self, contractor: Contractor) -> str:
        self._insert("contractors", contractor.id, contractor)
        return contractor.id

    def update_contractor(self, contractor: Contractor) -> bool:
        if contractor.credits_balance < 0:
            raise ValueError("Credits balance cannot be negative")
        return self._replace("contractors", contractor.id, contractor)

    def list_contractors(self, status: Optional[str] = None) -> List[Contractor]:
        rows = self._values("contractors")
        if status is not None:
            rows = [c for c in rows if c.status == getattr(status, "value", status)]
        rows.sort(key=lambda c: c.created_at)
        return rows

    def save_credit_transaction(self, transaction: CreditTransaction) -> str:
        self._insert("credit_transactions", transaction.id, transaction)
        return transaction.id

    def list_credit_transactions(self, contractor_id: str) -> List[CreditTransaction]:
        rows = [t for t in self._values("credit_transactions") if t.contractor_id == contractor_id]
        rows.sort(key=lambda t: t.created_at)
        return rows

    # === Lead access ===

    def get_access(self, job_id: str, contractor_id: str) -> Optional[JobAccess]:
        return self._copy(self._t["access"].get((job_id, contractor_id)))

    def save_access(self, access: JobAccess) -> str:
        self._insert("access", (access.job_id, access.contractor_id), access)
        return access.id

    def count_access(self, job_id: str) -> int:
        return sum(1 for (j, _c) in self._t["access"] if j == job_id)

    def list_access(
        self, job_id: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[JobAccess]:
        rows = self._values("access")
        if job_id is not None:
            rows = [a for a in rows if a.job_id == job_id]
        if contractor_id is not None:
            rows = [a for a in rows if a.contractor_id == contractor_id]
        rows.sort(key=lambda a: a.accessed_at)
        return rows

    # === Commission ===

    def get_commission(self, commission_id: str) -> Optional[CommissionPayment]:
        return self._copy(self._t["commissions"].get(commission_id))

    def get_commission_for_job(self, job_id: str) -> Optional[CommissionPayment]:
        for commission in self._t["commissions"].values():
            if commission.job_id == job_id:
                return self._copy(commission)
        return None

    def save_commission(self, commission: CommissionPayment) -> str:
        if self.get_commission_for_job(commission.job_id):
            raise DuplicateRecordError("Commission already exists for job", table="commissions")
        self._insert("commissions", commission.id, commission)
        return commission.id

    def update_commission(self, commission: CommissionPayment) -> bool:
        return self._replace("commissions", commission.id, commission)

    def list_commissions(
        self, status: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[CommissionPayment]:
        rows = self._values("commissions")
        if status is not None:
            rows = [c for c in rows if c.status == getattr(status, "value", status)]
        if contractor_id is not None:
            rows = [c for c in rows if c.contractor_id == contractor_id]
        rows.sort(key=lambda c: c.due_date)
        return rows

    def save_invoice(self, invoice: CommissionInvoice) -> str:
        self._insert("invoices", invoice.commission_id, invoice)
        return invoice.id

    def get_invoice_for_commission(self, commission_id: str) -> Optional[CommissionInvoice]:
        return self._copy(self._t["invoices"].get(commission_id))

    def save_settlement(self, record: SettlementRecord) -> str:
        self._insert("settlements", record.id, record)
        return record.id

    def list_settlements(self, commission_id: str) -> List[SettlementRecord]:
        rows = [s for s in self._values("settlements") if s.commission_id == commission_id]
        rows.sort(key=lambda s: s.created_at)
        return rows

    # === Payments ===

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self._copy(self._t["payments"].get(payment_id))

    def get_payment_by_key(self, idempotency_key: str) -> Optional[Payment]:
        for payment in self._t["payments"].values():
            if payment.idempotency_key == idempotency_key:
                return self._copy(payment)
        return None

    def save_payment(self, payment: Payment) -> str:
        if self.get_payment_by_key(payment.idempotency_key):
            raise DuplicateRecordError("Duplicate payment idempotency key", table="payments")
        self._insert("payments", payment.id, payment)
        return payment.id

    def update_payment(self, payment: Payment) -> bool:
        return self._replace("payments", payment.id, payment)

    def get_refund_by_key(self, idempotency_key: str) -> Optional[Refund]:
        for refund in self._t["refunds"].values():
            if refund.idempotency_key == idempotency_key:
                return self._copy(refund)
        return None

    def save_refund(self, refund: Refund) -> str:
        if self.get_refund_by_key(refund.idempotency_key):
            raise DuplicateRecordError("Duplicate refund idempotency key", table="refunds")
        self._insert("refunds", refund.id, refund)
        return refund.id

    def list_refunds(self, payment_id: str) -> List[Refund]:
        rows = [r for r in self._values("refunds") if r.payment_id == payment_id]
        rows.sort(key=lambda r: r.created_at)
        return rows

    # === Audit ===

    def save_audit(self, entry: AuditEntry) -> str:
        self._insert("audit", entry.id, entry)
        return entry.id

    def list_audit(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None
    ) -> List[AuditEntry]:
        rows = self._values("audit")
        if entity_type is not None:
            rows = [e for e in rows if e.entity_type == entity_type]
        if entity_id is not None:
            rows = [e for e in rows if e.entity_id == entity_id]
        rows.sort(key=lambda e: e.created_at)
        return rows


class InMemoryMarketStorage:
    """In-memory ``MarketStorage``."""

    def __init__(self):
        self._tables: Dict[str, dict] = {name: {} for name in _TABLES}
        self._lock = threading.RLock()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[InMemoryTransaction]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield InMemoryTransaction(self._tables)
            except Exception as e:
                logger.debug(f"Transaction failed, rolling back: {e}")
                self._tables.clear()
                self._tables.update(snapshot)
                raise

    @contextlib.contextmanager
    def read(self) -> Iterator[InMemoryTransaction]:
        with self._lock:
            yield InMemoryTransaction(self._tables)

    def close(self) -> None:
        pass
