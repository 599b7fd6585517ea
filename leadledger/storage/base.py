"""Storage protocols for the lead engine.

All reads and writes go through ``MarketStorage.transaction()``, which yields a
``MarketTransaction``. Everything done through one transaction commits or
rolls back together, and transactions are serialized against each other for
writes, so check-then-write sequences (capacity, balances, settlement) are
safe without further locking.

Transactions must not be nested, and no network call may be made while one
is open.

Unique constraints every backend enforces (violations raise
``DuplicateRecordError``):

- one JobAccess per (job_id, contractor_id)
- one JobApplication per (job_id, contractor_id)
- one CommissionPayment per job_id
- one CommissionInvoice per commission_id
- Payment.idempotency_key and Refund.idempotency_key
"""

from typing import ContextManager, List, Optional, Protocol

from leadledger.access.models import JobAccess
from leadledger.audit import AuditEntry
from leadledger.commission.models import CommissionInvoice, CommissionPayment, SettlementRecord
from leadledger.credits.models import Contractor, CreditTransaction
from leadledger.jobs.models import Job, JobApplication, JobStateTransition
from leadledger.payments.models import Payment, Refund
from leadledger.pricing import ServicePricing


class MarketTransaction(Protocol):
    """Repository methods available inside one storage transaction."""

    # === Jobs ===

    def get_job(self, job_id: str) -> Optional[Job]: ...

    def save_job(self, job: Job) -> str:
        """Insert a new job. Returns the job ID."""
        ...

    def update_job(self, job: Job) -> bool:
        """Replace a job. Validates flag combinations first."""
        ...

    def list_jobs(
        self,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """List jobs, newest first. ``contractor_id`` matches the winner."""
        ...

    def save_application(self, application: JobApplication) -> str: ...

    def update_application(self, application: JobApplication) -> bool: ...

    def get_application(self, application_id: str) -> Optional[JobApplication]: ...

    def find_application(self, job_id: str, contractor_id: str) -> Optional[JobApplication]: ...

    def list_applications(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[JobApplication]: ...

    def save_transition(self, transition: JobStateTransition) -> str: ...

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        """Transitions for a job, oldest first."""
        ...

    # === Pricing ===

    def get_service_pricing(self, service_id: str) -> Optional[ServicePricing]: ...

    def save_service_pricing(self, pricing: ServicePricing) -> str:
        """Insert or replace pricing for a service."""
        ...

    # === Contractors and credits ===

    def get_contractor(self, contractor_id: str) -> Optional[Contractor]: ...

    def save_contractor(self, contractor: Contractor) -> str: ...

    def update_contractor(self, contractor: Contractor) -> bool: ...

    def list_contractors(self, status: Optional[str] = None) -> List[Contractor]: ...

    def save_credit_transaction(self, transaction: CreditTransaction) -> str: ...

    def list_credit_transactions(self, contractor_id: str) -> List[CreditTransaction]:
        """Ledger rows for a contractor, oldest first."""
        ...

    # === Lead access ===

    def get_access(self, job_id: str, contractor_id: str) -> Optional[JobAccess]: ...

    def save_access(self, access: JobAccess) -> str: ...

    def count_access(self, job_id: str) -> int: ...

    def list_access(
        self, job_id: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[JobAccess]: ...

    # === Commission ===

    def get_commission(self, commission_id: str) -> Optional[CommissionPayment]: ...

    def get_commission_for_job(self, job_id: str) -> Optional[CommissionPayment]: ...

    def save_commission(self, commission: CommissionPayment) -> str: ...

    def update_commission(self, commission: CommissionPayment) -> bool: ...

    def list_commissions(
        self, status: Optional[str] = None, contractor_id: Optional[str] = None
    ) -> List[CommissionPayment]:
        """Commissions ordered by due date."""
        ...

    def save_invoice(self, invoice: CommissionInvoice) -> str: ...

    def get_invoice_for_commission(self, commission_id: str) -> Optional[CommissionInvoice]: ...

    def save_settlement(self, record: SettlementRecord) -> str: ...

    def list_settlements(self, commission_id: str) -> List[SettlementRecord]: ...

    # === Payments ===

    def get_payment(self, payment_id: str) -> Optional[Payment]: ...

    def get_payment_by_key(self, idempotency_key: str) -> Optional[Payment]: ...

    def save_payment(self, payment: Payment) -> str: ...

    def update_payment(self, payment: Payment) -> bool: ...

    def get_refund_by_key(self, idempotency_key: str) -> Optional[Refund]: ...

    def save_refund(self, refund: Refund) -> str: ...

    def list_refunds(self, payment_id: str) -> List[Refund]: ...

    # === Audit ===

    def save_audit(self, entry: AuditEntry) -> str: ...

    def list_audit(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None
    ) -> List[AuditEntry]:
        """Audit entries, oldest first."""
        ...


class MarketStorage(Protocol):
    """A transactional store for the lead engine."""

    def transaction(self) -> ContextManager[MarketTransaction]:
        """Open a write-serialized transaction; commit on success, roll back on error."""
        ...

    def read(self) -> ContextManager[MarketTransaction]:
        """Open a read-only view. Does not wait for or block writers where the backend allows."""
        ...

    def close(self) -> None: ...
